"""
Database models for project sharing.

Defines users and projects as seen by the sharing core, collaborator rows,
share links, collaboration sessions and the append-only access log.
"""

import datetime
import enum

from flask_login import UserMixin
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    text,
)
from sqlalchemy.orm import relationship

from ..permissions import PermissionLevel
from .sqla import Model


class CollaboratorStatus(enum.Enum):
    """Collaborator lifecycle status"""

    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    REVOKED = "revoked"


TERMINAL_STATUSES = (CollaboratorStatus.DECLINED, CollaboratorStatus.REVOKED)
OPEN_STATUSES = (CollaboratorStatus.PENDING, CollaboratorStatus.ACCEPTED)

_open_status_clause = "status IN ('pending', 'accepted')"


class User(UserMixin, Model):
    __tablename__ = "sharing_user"

    id = Column(Integer, primary_key=True)
    email = Column(String(320), unique=True, nullable=False, index=True)
    full_name = Column(String(256))
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.datetime.utcnow, nullable=False)

    @property
    def is_active(self):
        return self.active

    @property
    def email_domain(self) -> str:
        return self.email.rsplit("@", 1)[-1].lower()

    def __repr__(self):
        return f"<User {self.email}>"


class Project(Model):
    """
    A shared project. Its owner is immutable and implicitly holds the
    ``owner`` level, it never appears as a collaborator row.
    """

    __tablename__ = "sharing_project"

    id = Column(Integer, primary_key=True)
    name = Column(String(256), nullable=False)
    description = Column(Text)
    owner_id = Column(Integer, ForeignKey("sharing_user.id"), nullable=False)
    created_at = Column(DateTime, default=datetime.datetime.utcnow, nullable=False)

    owner = relationship("User", foreign_keys=[owner_id])

    def __repr__(self):
        return f"<Project {self.name}>"


class Collaborator(Model):
    """
    A non owner user with a permission level and a lifecycle status.

    ``pending`` moves once to ``accepted`` or ``declined``; ``pending`` and
    ``accepted`` may move to ``revoked``. ``declined`` and ``revoked`` are
    terminal. At most one open (pending or accepted) row exists per
    project and user, enforced by a partial unique index.
    """

    __tablename__ = "collaborators"
    __table_args__ = (
        Index(
            "uq_collaborators_open_membership",
            "project_id",
            "user_id",
            unique=True,
            sqlite_where=text(_open_status_clause),
            postgresql_where=text(_open_status_clause),
        ),
        Index("ix_collaborators_user_status", "user_id", "status"),
    )

    id = Column(Integer, primary_key=True)
    project_id = Column(
        Integer, ForeignKey("sharing_project.id"), nullable=False, index=True
    )
    user_id = Column(Integer, ForeignKey("sharing_user.id"), nullable=False)
    permission_level = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default=CollaboratorStatus.PENDING.value)
    invited_by = Column(Integer, ForeignKey("sharing_user.id"), nullable=False)
    message = Column(Text)
    created_at = Column(DateTime, default=datetime.datetime.utcnow, nullable=False)
    expires_at = Column(DateTime)
    accepted_at = Column(DateTime)
    declined_at = Column(DateTime)
    revoked_at = Column(DateTime)
    updated_at = Column(DateTime)

    user = relationship("User", foreign_keys=[user_id])
    inviter = relationship("User", foreign_keys=[invited_by])
    project = relationship("Project")

    @property
    def level(self) -> PermissionLevel:
        return PermissionLevel(self.permission_level)

    @property
    def status_enum(self) -> CollaboratorStatus:
        return CollaboratorStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.status_enum in TERMINAL_STATUSES

    def is_expired(self, now: datetime.datetime) -> bool:
        return (
            self.status == CollaboratorStatus.PENDING.value
            and self.expires_at is not None
            and self.expires_at <= now
        )

    def __repr__(self):
        return f"<Collaborator {self.user_id}@{self.project_id} {self.status}>"


class ShareLink(Model):
    """
    A tokenized, quota and time bounded access grant.

    Expiry and quota exhaustion are derived at read time; only revocation is
    stored (``is_active = False``).
    """

    __tablename__ = "share_links"
    __table_args__ = (
        CheckConstraint("max_access_count >= 1", name="ck_share_links_quota_positive"),
        CheckConstraint(
            "current_access_count <= max_access_count",
            name="ck_share_links_quota_bounded",
        ),
        Index("ix_share_links_project", "project_id", "created_at"),
    )

    id = Column(Integer, primary_key=True)
    project_id = Column(Integer, ForeignKey("sharing_project.id"), nullable=False)
    created_by = Column(Integer, ForeignKey("sharing_user.id"), nullable=False)
    token = Column(String(128), unique=True, nullable=False, index=True)
    permission_level = Column(String(20), nullable=False)
    max_access_count = Column(Integer, nullable=False)
    current_access_count = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime)
    is_active = Column(Boolean, nullable=False, default=True)
    requires_login = Column(Boolean, nullable=False, default=False)
    allow_api_access = Column(Boolean, nullable=False, default=False)
    domain_restrictions = Column(JSON, default=lambda: [])
    link_metadata = Column("metadata", JSON, default=lambda: {})
    created_at = Column(DateTime, default=datetime.datetime.utcnow, nullable=False)
    revoked_at = Column(DateTime)
    last_accessed_at = Column(DateTime)

    project = relationship("Project")
    creator = relationship("User", foreign_keys=[created_by])

    @property
    def level(self) -> PermissionLevel:
        return PermissionLevel(self.permission_level)

    def is_expired(self, now: datetime.datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    @property
    def is_quota_exhausted(self) -> bool:
        return self.current_access_count >= self.max_access_count

    def is_usable(self, now: datetime.datetime) -> bool:
        return self.is_active and not self.is_expired(now) and not self.is_quota_exhausted

    def __repr__(self):
        return f"<ShareLink {self.id} of project {self.project_id}>"


class CollaborationSession(Model):
    """
    One client's presence on a project, keyed by ``session_token``.

    Sessions are refreshed by heartbeats and age out implicitly: a session is
    online while ``now - last_activity`` is inside the online window.
    """

    __tablename__ = "collaboration_sessions"
    __table_args__ = (
        Index("ix_collaboration_sessions_project_activity", "project_id", "last_activity"),
    )

    id = Column(Integer, primary_key=True)
    session_token = Column(String(128), unique=True, nullable=False)
    project_id = Column(Integer, ForeignKey("sharing_project.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("sharing_user.id"), nullable=False)
    last_activity = Column(DateTime, nullable=False, default=datetime.datetime.utcnow)
    current_activity = Column(String(200))
    device_info = Column(JSON, default=lambda: {})
    cursor_position = Column(JSON)
    selection_data = Column(JSON)
    created_at = Column(DateTime, default=datetime.datetime.utcnow, nullable=False)

    user = relationship("User")

    def is_online(self, now: datetime.datetime, window: datetime.timedelta) -> bool:
        return now - self.last_activity < window

    def __repr__(self):
        return f"<CollaborationSession {self.user_id}@{self.project_id}>"


class AccessEvent(Model):
    """
    Append-only audit record of permission relevant events, including
    denied attempts (``success = False``). Rows are never updated or deleted.
    """

    __tablename__ = "access_events"
    __table_args__ = (
        Index("ix_access_events_project_timestamp", "project_id", "timestamp"),
        Index("ix_access_events_event_type", "event_type"),
    )

    id = Column(Integer, primary_key=True)
    project_id = Column(Integer, ForeignKey("sharing_project.id"), nullable=True)
    actor_id = Column(Integer, ForeignKey("sharing_user.id"), nullable=True)
    event_type = Column(String(50), nullable=False)
    target = Column(String(256))
    success = Column(Boolean, nullable=False, default=True)
    timestamp = Column(DateTime, nullable=False, default=datetime.datetime.utcnow)
    event_metadata = Column("metadata", JSON, default=lambda: {})

    def __repr__(self):
        return f"<AccessEvent {self.event_type} on {self.project_id}>"
