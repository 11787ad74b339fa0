__version__ = "1.0.0"

from .base import db, Sharing  # noqa: F401
from .collaboration import (  # noqa: F401
    CollaborationSessionManager,
    ConflictDetector,
    InvitationManager,
    LogNotifier,
    MailNotifier,
    SharingManager,
    ShareLinkManager,
)
from .models.sqla import Model, SQLA  # noqa: F401
from .permissions import authorize, can_manage_collaborators, PermissionLevel  # noqa: F401
