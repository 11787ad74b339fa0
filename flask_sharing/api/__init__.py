import datetime
import functools
import logging
from typing import Any, Optional

from flask import current_app, jsonify, make_response, request
from flask_login import current_user
from marshmallow import ValidationError as SchemaValidationError

from ..const import LOGMSG_ERR_UNEXPECTED
from ..exceptions import LoginRequired, SharingError

log = logging.getLogger(__name__)


def get_manager():
    """The ``SharingManager`` of the current app"""
    return current_app.extensions["sharing"].manager


def response(code: int, **kwargs):
    """
    Generic HTTP JSON response method

    :param code: HTTP code (int)
    :param kwargs: Data structure for response (dict)
    :return: HTTP Json response
    """
    _ret_json = jsonify(kwargs)
    resp = make_response(_ret_json, code)
    resp.headers["Content-Type"] = "application/json; charset=utf-8"
    return resp


def error_response(error: SharingError):
    return response(error.http_status, **error.to_dict())


def safe(f):
    """
    A decorator that catches sharing and validation errors and returns
    them as JSON, and logs any other exception returning a 500 without
    internal details.
    """

    @functools.wraps(f)
    def wraps(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except SharingError as e:
            return error_response(e)
        except SchemaValidationError as e:
            return response(
                422,
                error_code="VALIDATION_ERROR",
                message="Invalid input",
                details=e.messages,
            )
        except Exception:
            log.exception(LOGMSG_ERR_UNEXPECTED.format(request.path))
            return response(
                500, error_code="INTERNAL_ERROR", message="Internal server error"
            )

    return wraps


def protect(f):
    """Require a signed in caller, answering 401 otherwise"""

    @functools.wraps(f)
    def wraps(*args, **kwargs):
        if not current_user or not current_user.is_authenticated:
            return error_response(LoginRequired("Authentication required"))
        return f(*args, **kwargs)

    return wraps


def current_user_id() -> Optional[int]:
    if current_user and current_user.is_authenticated:
        return int(current_user.id)
    return None


def load_json(schema) -> Any:
    """Validate the request body with a marshmallow schema"""
    payload = request.get_json(silent=True)
    if payload is None:
        payload = {}
    return schema.load(payload)


def to_naive_utc(value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    """Stored datetimes are naive UTC"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(datetime.timezone.utc).replace(tzinfo=None)
