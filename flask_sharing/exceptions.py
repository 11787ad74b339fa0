"""
Exception hierarchy for project sharing.

Every error raised by the managers is a ``SharingError`` with a stable
``error_code`` and the HTTP status the REST layer answers with. None of these
are retried by the library; only transient store failures are (see
``flask_sharing.utils.transaction``).
"""

import re
from typing import Any, Dict, Optional


_error_code_re = re.compile(r"([a-z0-9])([A-Z])")


class SharingError(Exception):
    """
    Base exception for all sharing errors.

    :param message: Human readable message, safe to show to the caller
    :param error_code: Stable code, derived from the class name when omitted
    :param details: Extra, non sensitive, information for the caller
    """

    http_status = 400

    def __init__(
        self,
        message: Optional[str] = None,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.default_message()
        super().__init__(self.message)
        self.error_code = error_code or self._generate_error_code()
        self.details = details or {}

    @classmethod
    def default_message(cls) -> str:
        return "Sharing operation failed"

    def _generate_error_code(self) -> str:
        """CamelCase class name to UPPER_SNAKE_CASE"""
        return _error_code_re.sub(r"\1_\2", self.__class__.__name__).upper()

    def to_dict(self) -> Dict[str, Any]:
        result = {"error_code": self.error_code, "message": self.message}
        if self.details:
            result["details"] = self.details
        return result


class Unauthorized(SharingError):
    """Actor lacks the required permission level."""

    http_status = 403

    @classmethod
    def default_message(cls):
        return "You don't have permission to perform this action"


class ValidationError(SharingError):
    """Malformed input: bad email, quota out of range, past expiry..."""

    http_status = 422

    def __init__(self, message=None, field_name: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.field_name = field_name
        if field_name:
            self.details.setdefault("field", field_name)

    @classmethod
    def default_message(cls):
        return "Invalid input"


class InvalidPermissionLevel(ValidationError):
    """Attempt to assign ``owner`` or an unknown level."""

    @classmethod
    def default_message(cls):
        return "Invalid permission level"


class NotFound(SharingError):
    http_status = 404

    @classmethod
    def default_message(cls):
        return "Resource not found"


class ProjectNotFound(NotFound):
    @classmethod
    def default_message(cls):
        return "Project not found"


class UserNotFound(NotFound):
    @classmethod
    def default_message(cls):
        return "No account matches this user"


class CollaboratorNotFound(NotFound):
    @classmethod
    def default_message(cls):
        return "Collaborator not found"


class LinkNotFound(NotFound):
    @classmethod
    def default_message(cls):
        return "Share link not found"


class SessionNotFound(NotFound):
    @classmethod
    def default_message(cls):
        return "Collaboration session not found"


class AlreadyCollaborator(SharingError):
    http_status = 409

    @classmethod
    def default_message(cls):
        return "User is already a collaborator on this project"


class NoChange(SharingError):
    http_status = 409

    @classmethod
    def default_message(cls):
        return "The collaborator already has this permission level"


class InvalidStateTransition(SharingError):
    """A status transition was attempted from a terminal or unexpected state."""

    http_status = 409

    @classmethod
    def default_message(cls):
        return "This action is not allowed in the current state"


class InvitationExpired(InvalidStateTransition):
    @classmethod
    def default_message(cls):
        return "This invitation has expired"


class LinkExpired(SharingError):
    http_status = 410

    @classmethod
    def default_message(cls):
        return "This share link has expired"


class LinkQuotaExhausted(SharingError):
    http_status = 410

    @classmethod
    def default_message(cls):
        return "This share link has reached its maximum number of uses"


class LinkRevoked(SharingError):
    http_status = 403

    @classmethod
    def default_message(cls):
        return "This share link has been revoked"


class LoginRequired(SharingError):
    http_status = 401

    @classmethod
    def default_message(cls):
        return "Authentication required"


class DomainNotAllowed(SharingError):
    http_status = 403

    @classmethod
    def default_message(cls):
        return "Your email domain is not allowed to use this share link"


class StoreUnavailable(SharingError):
    """Raised once transient store failures exhausted their retries."""

    http_status = 503

    @classmethod
    def default_message(cls):
        return "Data storage is temporarily unavailable, please try again later"
