from .access_log import AccessLog  # noqa: F401
from .conflict_detector import ConcurrentAccessReport, ConflictDetector  # noqa: F401
from .invitation_manager import InvitationManager  # noqa: F401
from .manager import SharingManager  # noqa: F401
from .notifications import InvitationNotifier, LogNotifier, MailNotifier  # noqa: F401
from .session_manager import CollaborationSessionManager  # noqa: F401
from .share_link_manager import LinkResolution, ShareLinkManager  # noqa: F401
