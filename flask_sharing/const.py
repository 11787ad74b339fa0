"""
Constants for Flask-Sharing: configuration defaults, access event types
and log message templates.
"""

# -----------------------------------
#  Configuration defaults
# -----------------------------------
DEFAULT_URL_PREFIX = "/api/v1"
DEFAULT_BASE_URL = "http://localhost:5000"
DEFAULT_ONLINE_WINDOW_SECONDS = 300
DEFAULT_IDLE_WINDOW_SECONDS = 1800
DEFAULT_SESSION_RETENTION_HOURS = 24
DEFAULT_TOKEN_BYTES = 32
MIN_TOKEN_BYTES = 16
DEFAULT_MAX_ACCESS_COUNT = 10
DEFAULT_MAX_ACCESS_COUNT_LIMIT = 10000
DEFAULT_EDITING_ACTIVITIES = ("editing", "typing", "modifying")
DEFAULT_STORE_RETRY_ATTEMPTS = 3
DEFAULT_STORE_RETRY_DELAY = 0.1
MAX_STORE_RETRY_DELAY = 2.0
RECENT_ACTIVITY_SECONDS = 60

DEFAULT_RATE_LIMITS = {
    "collaborators_read": "20 per minute",
    "collaborators_write": "10 per minute",
    "links_read": "20 per minute",
    "links_write": "10 per minute",
    "sessions_read": "30 per minute",
    "sessions_heartbeat": "60 per minute",
    "sessions_write": "10 per minute",
    "share_resolve": "30 per minute",
    "sharing_read": "30 per minute",
}

USER_ID_HEADER = "X-Sharing-User-Id"

# -----------------------------------
#  Access event types
# -----------------------------------
EVENT_INVITE_SENT = "invite_sent"
EVENT_INVITATION_RESENT = "invitation_resent"
EVENT_INVITATION_ACCEPTED = "invitation_accepted"
EVENT_INVITATION_DECLINED = "invitation_declined"
EVENT_PERMISSION_UPDATED = "permission_updated"
EVENT_COLLABORATOR_REMOVED = "collaborator_removed"
EVENT_SHARE_LINK_CREATED = "share_link_created"
EVENT_SHARE_LINK_ACCESSED = "share_link_accessed"
EVENT_SHARE_LINK_REVOKED = "share_link_revoked"
EVENT_SESSION_ENDED = "session_ended"
EVENT_ACCESS_DENIED = "access_denied"

EVENT_TYPES = (
    EVENT_INVITE_SENT,
    EVENT_INVITATION_RESENT,
    EVENT_INVITATION_ACCEPTED,
    EVENT_INVITATION_DECLINED,
    EVENT_PERMISSION_UPDATED,
    EVENT_COLLABORATOR_REMOVED,
    EVENT_SHARE_LINK_CREATED,
    EVENT_SHARE_LINK_ACCESSED,
    EVENT_SHARE_LINK_REVOKED,
    EVENT_SESSION_ENDED,
    EVENT_ACCESS_DENIED,
)

# -----------------------------------
#  Log messages
# -----------------------------------
LOGMSG_INF_INVITE_SENT = "Invited user {0} to project {1} as {2}"
LOGMSG_INF_INVITATION_RESENT = "Re-sent invitation for user {0} on project {1}"
LOGMSG_INF_INVITATION_ACCEPTED = "User {0} accepted invitation to project {1}"
LOGMSG_INF_INVITATION_DECLINED = "User {0} declined invitation to project {1}"
LOGMSG_INF_PERMISSION_UPDATED = "Changed permission of user {0} on project {1}: {2} -> {3}"
LOGMSG_INF_COLLABORATOR_REVOKED = "Revoked user {0} from project {1}"
LOGMSG_INF_LINK_CREATED = "Created share link {0} for project {1}"
LOGMSG_INF_LINK_REVOKED = "Revoked share link {0} of project {1}"
LOGMSG_INF_SESSIONS_REAPED = "Removed {0} collaboration sessions idle since before {1}"
LOGMSG_WAR_ACCESS_DENIED = "Denied {0} on project {1} for user {2}: {3}"
LOGMSG_WAR_LINK_REJECTED = "Rejected share link {0}: {1}"
LOGMSG_WAR_STORE_RETRY = "Transient store error in {0} (attempt {1}/{2}), retrying in {3:.2f}s: {4}"
LOGMSG_ERR_STORE_GAVE_UP = "Store operation {0} failed after {1} attempts: {2}"
LOGMSG_ERR_NOTIFY_FAILED = "Invitation delivery to {0} failed"
LOGMSG_ERR_UNEXPECTED = "Unexpected error on {0}"
