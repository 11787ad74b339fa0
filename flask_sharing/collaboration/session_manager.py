"""
Collaboration Session Manager

Tracks presence on a project from client heartbeats. A session is online
while ``now - last_activity`` is below the online window (five minutes by
default); nothing has to close a session for it to go offline. Presence
is computed per user as the OR over that user's sessions, so a user with
several devices stays online while any of them heartbeats.
"""

import datetime
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError

from ..basemanager import BaseManager
from ..const import (
    DEFAULT_IDLE_WINDOW_SECONDS,
    DEFAULT_ONLINE_WINDOW_SECONDS,
    DEFAULT_SESSION_RETENTION_HOURS,
    EVENT_SESSION_ENDED,
    LOGMSG_INF_SESSIONS_REAPED,
    RECENT_ACTIVITY_SECONDS,
)
from ..exceptions import SessionNotFound, Unauthorized, ValidationError
from ..models.sharing import CollaborationSession
from ..permissions import authorize, PermissionLevel
from ..utils.transaction import retry_on_transient

log = logging.getLogger(__name__)

MAX_TOKEN_LENGTH = 128
MAX_ACTIVITY_LENGTH = 200


@dataclass
class PresenceEntry:
    """Presence of one user, aggregated over all of their sessions."""

    user_id: int
    is_online: bool
    last_activity: datetime.datetime
    current_activity: Optional[str]
    session_count: int = 1
    devices: List[Dict[str, Any]] = field(default_factory=list)
    # labels of the online sessions, most recent first
    online_activities: List[Optional[str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "is_online": self.is_online,
            "last_activity": self.last_activity.isoformat(),
            "current_activity": self.current_activity,
            "session_count": self.session_count,
            "devices": self.devices,
        }


class CollaborationSessionManager(BaseManager):
    """
    :param online_window: idle time after which a session is offline
    :param idle_window: idle time after which an offline session counts as
        away rather than idle in statistics
    :param retention: sessions older than this are not listed and may be
        reaped
    """

    def __init__(
        self,
        repository,
        access_log=None,
        online_window: datetime.timedelta = datetime.timedelta(
            seconds=DEFAULT_ONLINE_WINDOW_SECONDS
        ),
        idle_window: datetime.timedelta = datetime.timedelta(
            seconds=DEFAULT_IDLE_WINDOW_SECONDS
        ),
        retention: datetime.timedelta = datetime.timedelta(
            hours=DEFAULT_SESSION_RETENTION_HOURS
        ),
        **kwargs,
    ):
        super().__init__(repository, access_log=access_log, **kwargs)
        self.online_window = online_window
        self.idle_window = idle_window
        self.retention = retention

    # ── Heartbeats ───────────────────────────────────────────────────────

    @retry_on_transient
    def heartbeat(
        self,
        project_id: int,
        user_id: int,
        session_token: str,
        activity_label: Optional[str] = None,
        device_info: Optional[Dict[str, Any]] = None,
        cursor_position: Optional[Any] = None,
        selection_data: Optional[Any] = None,
    ) -> CollaborationSession:
        """
        Create or refresh the session keyed by ``session_token``.
        Idempotent, clients call it about every thirty seconds.
        """
        self.get_project(project_id)
        if not authorize(
            self.get_permission_level(project_id, user_id), PermissionLevel.VIEWER
        ):
            raise Unauthorized("Access denied to this project")
        if not session_token or len(session_token) > MAX_TOKEN_LENGTH:
            raise ValidationError(
                f"Session token must be 1 to {MAX_TOKEN_LENGTH} characters",
                field_name="session_token",
            )
        if activity_label is not None and len(activity_label) > MAX_ACTIVITY_LENGTH:
            raise ValidationError(
                f"Activity must be at most {MAX_ACTIVITY_LENGTH} characters",
                field_name="activity",
            )

        now = self.now()
        values = {"last_activity": now, "current_activity": activity_label}
        if device_info is not None:
            values["device_info"] = device_info
        if cursor_position is not None:
            values["cursor_position"] = cursor_position
        if selection_data is not None:
            values["selection_data"] = selection_data

        if not self.repository.touch_session(session_token, project_id, user_id, **values):
            if self.repository.get_session_by_token(session_token) is not None:
                raise Unauthorized("Session token belongs to another session")
            try:
                self.repository.add_session(
                    session_token=session_token,
                    project_id=project_id,
                    user_id=user_id,
                    created_at=now,
                    **values,
                )
            except IntegrityError:
                # Same token inserted concurrently, refresh that row instead
                self.repository.rollback()
                if not self.repository.touch_session(
                    session_token, project_id, user_id, **values
                ):
                    raise Unauthorized("Session token belongs to another session")
        self.repository.commit()
        return self.repository.get_session_by_token(session_token)

    # ── Ending sessions ──────────────────────────────────────────────────

    @retry_on_transient
    def end_session(self, session_token: str) -> bool:
        """Remove a session immediately. Unknown tokens are a no-op."""
        collab_session = self.repository.get_session_by_token(session_token)
        if collab_session is None:
            return False
        removed = self.repository.delete_session(collab_session.id)
        self.repository.commit()
        return removed

    @retry_on_transient
    def end_user_sessions(self, project_id: int, user_id: int) -> int:
        """Remove every session of ``user_id`` on a project."""
        self.get_project(project_id)
        removed = self.repository.delete_user_sessions(project_id, user_id)
        self.repository.commit()
        return removed

    @retry_on_transient
    def end_session_by_id(
        self, project_id: int, actor_id: int, session_id: int
    ) -> int:
        """
        End a session by id. Users may end their own sessions, admins and
        the owner may end anyone's. Returns the id of the user whose
        session was ended.
        """
        self.get_project(project_id)
        collab_session = self.repository.get_collaboration_session(session_id)
        if collab_session is None or collab_session.project_id != project_id:
            raise SessionNotFound()
        if collab_session.user_id != actor_id:
            self.require_level(
                project_id,
                actor_id,
                PermissionLevel.ADMIN,
                EVENT_SESSION_ENDED,
                target=str(session_id),
            )
        ended_user_id = collab_session.user_id
        self.repository.delete_session(session_id)
        if self.access_log is not None and ended_user_id != actor_id:
            self.access_log.record(
                project_id,
                actor_id,
                EVENT_SESSION_ENDED,
                target=str(session_id),
                metadata={"user_id": ended_user_id},
            )
        self.repository.commit()
        return ended_user_id

    @retry_on_transient
    def reap_sessions(self, retention: Optional[datetime.timedelta] = None) -> int:
        """
        Delete sessions idle for longer than ``retention``. Storage hygiene
        only, presence never depends on this running.
        """
        cutoff = self.now() - (retention or self.retention)
        removed = self.repository.delete_sessions_before(cutoff)
        self.repository.commit()
        log.info(LOGMSG_INF_SESSIONS_REAPED.format(removed, cutoff.isoformat()))
        return removed

    # ── Presence ─────────────────────────────────────────────────────────

    def list_sessions(self, project_id: int) -> List[CollaborationSession]:
        """Sessions inside the retention horizon, most recent first."""
        return self.repository.list_sessions(project_id, since=self.now() - self.retention)

    def list_active(self, project_id: int) -> List[PresenceEntry]:
        """
        Per user presence on a project, online users first then by most
        recent activity.
        """
        self.get_project(project_id)
        now = self.now()
        entries: Dict[int, PresenceEntry] = {}
        for collab_session in self.list_sessions(project_id):
            online = collab_session.is_online(now, self.online_window)
            entry = entries.get(collab_session.user_id)
            if entry is None:
                entries[collab_session.user_id] = PresenceEntry(
                    user_id=collab_session.user_id,
                    is_online=online,
                    last_activity=collab_session.last_activity,
                    current_activity=collab_session.current_activity,
                    devices=[collab_session.device_info or {}],
                    online_activities=[collab_session.current_activity] if online else [],
                )
                continue
            entry.is_online = entry.is_online or online
            entry.session_count += 1
            entry.devices.append(collab_session.device_info or {})
            if online:
                entry.online_activities.append(collab_session.current_activity)
            if collab_session.last_activity > entry.last_activity:
                entry.last_activity = collab_session.last_activity
                entry.current_activity = collab_session.current_activity
        return sorted(
            entries.values(),
            key=lambda e: (not e.is_online, -e.last_activity.timestamp()),
        )

    def session_statistics(self, project_id: int) -> Dict[str, int]:
        now = self.now()
        sessions = self.list_sessions(project_id)
        online = idle = away = 0
        for collab_session in sessions:
            idle_for = now - collab_session.last_activity
            if idle_for < self.online_window:
                online += 1
            elif idle_for < self.idle_window:
                idle += 1
            else:
                away += 1
        recent = datetime.timedelta(seconds=RECENT_ACTIVITY_SECONDS)
        return {
            "total_sessions": len(sessions),
            "online": online,
            "idle": idle,
            "away": away,
            "users_with_activity": sum(1 for s in sessions if s.current_activity),
            "users_with_cursor": sum(1 for s in sessions if s.cursor_position),
            "recent_activity": sum(
                1 for s in sessions if now - s.last_activity < recent
            ),
        }
