"""
Caller identification with Flask-Login.

Applications with their own ``LoginManager`` keep it; sharing only needs
``current_user`` to be a ``User`` (or expose an ``id``). Without one a
``LoginManager`` is installed whose request loader trusts the gateway header
``X-Sharing-User-Id`` when ``SHARING_TRUST_USER_HEADER`` is enabled.
"""

import logging
from typing import Optional

from flask import current_app, Flask
from flask_login import LoginManager

from ..const import USER_ID_HEADER
from ..models.sharing import User

log = logging.getLogger(__name__)


def _repository():
    return current_app.extensions["sharing"].manager.repository


def load_user(user_id) -> Optional[User]:
    try:
        user = _repository().get_user(int(user_id))
    except (TypeError, ValueError):
        return None
    if user is None or not user.is_active:
        return None
    return user


def load_user_from_request(req) -> Optional[User]:
    if not current_app.config.get("SHARING_TRUST_USER_HEADER"):
        return None
    user_id = req.headers.get(USER_ID_HEADER)
    if not user_id:
        return None
    user = load_user(user_id)
    if user is None:
        log.warning("Rejected %s header for unknown user %s", USER_ID_HEADER, user_id)
    return user


def create_login_manager(app: Flask) -> LoginManager:
    """
    Return the app's ``LoginManager``, creating one bound to sharing users
    when the app has none.
    """
    lm = getattr(app, "login_manager", None)
    if lm is not None:
        return lm
    lm = LoginManager(app)
    lm.user_loader(load_user)
    lm.request_loader(load_user_from_request)
    return lm
