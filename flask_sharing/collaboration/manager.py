import datetime
import logging
from typing import Any, Callable, Dict, Optional

from ..const import (
    DEFAULT_BASE_URL,
    DEFAULT_EDITING_ACTIVITIES,
    DEFAULT_IDLE_WINDOW_SECONDS,
    DEFAULT_MAX_ACCESS_COUNT,
    DEFAULT_MAX_ACCESS_COUNT_LIMIT,
    DEFAULT_ONLINE_WINDOW_SECONDS,
    DEFAULT_SESSION_RETENTION_HOURS,
    DEFAULT_TOKEN_BYTES,
)
from ..permissions import can_manage_collaborators, has_capability, PermissionLevel
from ..repository import SharingRepository
from ..utils.transaction import RetryPolicy
from .access_log import AccessLog
from .conflict_detector import ConflictDetector
from .invitation_manager import InvitationManager
from .notifications import InvitationNotifier
from .session_manager import CollaborationSessionManager
from .share_link_manager import ShareLinkManager

log = logging.getLogger(__name__)


class SharingManager(object):
    """
    Wires the sharing components over one repository.

    Every component shares the same clock and retry policy, and reports
    to the same ``AccessLog``.
    """

    def __init__(
        self,
        session,
        notifier: Optional[InvitationNotifier] = None,
        clock: Optional[Callable[[], datetime.datetime]] = None,
        retry_policy: Optional[RetryPolicy] = None,
        base_url: str = DEFAULT_BASE_URL,
        token_bytes: int = DEFAULT_TOKEN_BYTES,
        default_max_access_count: int = DEFAULT_MAX_ACCESS_COUNT,
        max_access_count_limit: int = DEFAULT_MAX_ACCESS_COUNT_LIMIT,
        online_window_seconds: int = DEFAULT_ONLINE_WINDOW_SECONDS,
        idle_window_seconds: int = DEFAULT_IDLE_WINDOW_SECONDS,
        session_retention_hours: float = DEFAULT_SESSION_RETENTION_HOURS,
        editing_activities=DEFAULT_EDITING_ACTIVITIES,
        allow_reinvite: bool = True,
    ):
        self.repository = SharingRepository(session)
        common = {"clock": clock, "retry_policy": retry_policy or RetryPolicy()}
        self.access_log = AccessLog(self.repository, **common)
        # Denied reads of the log itself are logged too
        self.access_log.access_log = self.access_log
        self.invitations = InvitationManager(
            self.repository,
            self.access_log,
            notifier=notifier,
            allow_reinvite=allow_reinvite,
            **common,
        )
        self.links = ShareLinkManager(
            self.repository,
            self.access_log,
            base_url=base_url,
            token_bytes=token_bytes,
            default_max_access_count=default_max_access_count,
            max_access_count_limit=max_access_count_limit,
            **common,
        )
        self.sessions = CollaborationSessionManager(
            self.repository,
            self.access_log,
            online_window=datetime.timedelta(seconds=online_window_seconds),
            idle_window=datetime.timedelta(seconds=idle_window_seconds),
            retention=datetime.timedelta(hours=session_retention_hours),
            **common,
        )
        self.conflicts = ConflictDetector(self.sessions, editing_activities)

    @classmethod
    def from_config(cls, session, config, notifier=None, clock=None) -> "SharingManager":
        return cls(
            session,
            notifier=notifier or config.get("SHARING_NOTIFIER"),
            clock=clock,
            retry_policy=RetryPolicy.from_config(config),
            base_url=config.get("SHARING_BASE_URL", DEFAULT_BASE_URL),
            token_bytes=config.get("SHARING_TOKEN_BYTES", DEFAULT_TOKEN_BYTES),
            default_max_access_count=config.get(
                "SHARING_DEFAULT_MAX_ACCESS_COUNT", DEFAULT_MAX_ACCESS_COUNT
            ),
            max_access_count_limit=config.get(
                "SHARING_MAX_ACCESS_COUNT_LIMIT", DEFAULT_MAX_ACCESS_COUNT_LIMIT
            ),
            online_window_seconds=config.get(
                "SHARING_ONLINE_WINDOW_SECONDS", DEFAULT_ONLINE_WINDOW_SECONDS
            ),
            idle_window_seconds=config.get(
                "SHARING_IDLE_WINDOW_SECONDS", DEFAULT_IDLE_WINDOW_SECONDS
            ),
            session_retention_hours=config.get(
                "SHARING_SESSION_RETENTION_HOURS", DEFAULT_SESSION_RETENTION_HOURS
            ),
            editing_activities=config.get(
                "SHARING_EDITING_ACTIVITIES", DEFAULT_EDITING_ACTIVITIES
            ),
            allow_reinvite=config.get("SHARING_ALLOW_REINVITE", True),
        )

    def get_permission_level(self, project_id: int, user_id: Optional[int]):
        return self.invitations.get_permission_level(project_id, user_id)

    def summary(self, project_id: int, user_id: int) -> Dict[str, Any]:
        """
        What ``user_id`` may do on a project, with the collaborator list
        for managers and the current presence.
        """
        project = self.invitations.get_project(project_id)
        level = self.invitations.require_level(
            project_id, user_id, PermissionLevel.VIEWER, "project_view"
        )
        manager = can_manage_collaborators(level)
        return {
            "project_id": project.id,
            "permission_level": level.value,
            "is_owner": project.owner_id == user_id,
            "can_edit": has_capability(level, "project_edit"),
            "can_share": has_capability(level, "project_share"),
            "can_manage_collaborators": manager,
            "has_pending_invitation": self.invitations.has_pending_invitation(
                project_id, user_id
            ),
            "collaborators": (
                self.repository.list_collaborators(project_id) if manager else None
            ),
            "active_collaborators": self.sessions.list_active(project_id),
        }
