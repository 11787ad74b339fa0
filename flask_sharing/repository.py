"""
Store access for the sharing core.

``SharingRepository`` is the only place issuing SQL. Every decision relevant
to correctness is re-read from the store, and every state change is a single
guarded UPDATE whose affected row count tells the caller whether the
expected prior state still held.
"""

import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, func, or_, select, update

from .models.sharing import (
    AccessEvent,
    CollaborationSession,
    Collaborator,
    CollaboratorStatus,
    OPEN_STATUSES,
    Project,
    ShareLink,
    User,
)


def _status_values(statuses: Iterable[CollaboratorStatus]) -> List[str]:
    return [status.value for status in statuses]


class SharingRepository:
    """
    SQLAlchemy backed store for collaborators, share links, sessions and
    access events.

    :param session: a SQLAlchemy session or scoped session (``db.session``)
    """

    def __init__(self, session):
        self.session = session

    # ── Transactions ─────────────────────────────────────────────────────

    def commit(self):
        self.session.commit()

    def rollback(self):
        self.session.rollback()

    def flush(self):
        self.session.flush()

    def _execute_guarded(self, statement) -> bool:
        result = self.session.execute(
            statement.execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # ── Users and projects ───────────────────────────────────────────────

    def get_user(self, user_id: int) -> Optional[User]:
        return self.session.get(User, user_id)

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self.session.execute(
            select(User).where(func.lower(User.email) == email.strip().lower())
        ).scalar_one_or_none()

    def add_user(self, email: str, full_name: Optional[str] = None) -> User:
        user = User(email=email.strip().lower(), full_name=full_name)
        self.session.add(user)
        self.session.flush()
        return user

    def get_project(self, project_id: int) -> Optional[Project]:
        return self.session.get(Project, project_id)

    def add_project(self, name: str, owner_id: int, description: str = None) -> Project:
        project = Project(name=name, owner_id=owner_id, description=description)
        self.session.add(project)
        self.session.flush()
        return project

    # ── Collaborators ────────────────────────────────────────────────────

    def get_collaborator(self, collaborator_id: int) -> Optional[Collaborator]:
        return self.session.get(Collaborator, collaborator_id)

    def get_open_collaborator(self, project_id: int, user_id: int) -> Optional[Collaborator]:
        return self.session.execute(
            select(Collaborator).where(
                Collaborator.project_id == project_id,
                Collaborator.user_id == user_id,
                Collaborator.status.in_(_status_values(OPEN_STATUSES)),
            )
        ).scalar_one_or_none()

    def get_latest_collaborator(self, project_id: int, user_id: int) -> Optional[Collaborator]:
        """Most recent row for the pair, whatever its status."""
        return (
            self.session.execute(
                select(Collaborator)
                .where(
                    Collaborator.project_id == project_id,
                    Collaborator.user_id == user_id,
                )
                .order_by(Collaborator.created_at.desc(), Collaborator.id.desc())
                .limit(1)
            )
            .scalars()
            .first()
        )

    def list_collaborators(
        self,
        project_id: int,
        statuses: Iterable[CollaboratorStatus] = OPEN_STATUSES,
    ) -> List[Collaborator]:
        return list(
            self.session.execute(
                select(Collaborator)
                .where(
                    Collaborator.project_id == project_id,
                    Collaborator.status.in_(_status_values(statuses)),
                )
                .order_by(Collaborator.created_at, Collaborator.id)
            ).scalars()
        )

    def list_pending_for_user(self, user_id: int) -> List[Collaborator]:
        return list(
            self.session.execute(
                select(Collaborator)
                .where(
                    Collaborator.user_id == user_id,
                    Collaborator.status == CollaboratorStatus.PENDING.value,
                )
                .order_by(Collaborator.created_at.desc())
            ).scalars()
        )

    def add_collaborator(self, **values) -> Collaborator:
        """Insert a row; the open membership index may raise IntegrityError."""
        collaborator = Collaborator(**values)
        self.session.add(collaborator)
        self.session.flush()
        return collaborator

    def transition_collaborator(
        self,
        collaborator_id: int,
        expected: Iterable[CollaboratorStatus],
        new_status: CollaboratorStatus,
        **values,
    ) -> bool:
        """
        Move a row to ``new_status`` only if it is still in one of the
        ``expected`` statuses. Returns False when another writer got there
        first or the row was never in that state.
        """
        values["status"] = new_status.value
        return self._execute_guarded(
            update(Collaborator)
            .where(
                Collaborator.id == collaborator_id,
                Collaborator.status.in_(_status_values(expected)),
            )
            .values(**values)
        )

    def update_collaborator_level(
        self,
        collaborator_id: int,
        expected_level: str,
        new_level: str,
        now: datetime.datetime,
    ) -> bool:
        return self._execute_guarded(
            update(Collaborator)
            .where(
                Collaborator.id == collaborator_id,
                Collaborator.status == CollaboratorStatus.ACCEPTED.value,
                Collaborator.permission_level == expected_level,
            )
            .values(permission_level=new_level, updated_at=now)
        )

    # ── Share links ──────────────────────────────────────────────────────

    def add_link(self, **values) -> ShareLink:
        link = ShareLink(**values)
        self.session.add(link)
        self.session.flush()
        return link

    def get_link(self, link_id: int) -> Optional[ShareLink]:
        return self.session.get(ShareLink, link_id)

    def get_link_by_token(self, token: str) -> Optional[ShareLink]:
        return self.session.execute(
            select(ShareLink).where(ShareLink.token == token)
        ).scalar_one_or_none()

    def list_links(self, project_id: int) -> List[ShareLink]:
        return list(
            self.session.execute(
                select(ShareLink)
                .where(ShareLink.project_id == project_id)
                .order_by(ShareLink.created_at.desc(), ShareLink.id.desc())
            ).scalars()
        )

    def increment_link_access(self, link_id: int, now: datetime.datetime) -> bool:
        """
        Consume one use of a link in a single statement. The WHERE clause
        repeats every usability condition so concurrent resolutions racing
        for the last slot cannot both succeed.
        """
        return self._execute_guarded(
            update(ShareLink)
            .where(
                ShareLink.id == link_id,
                ShareLink.is_active.is_(True),
                ShareLink.current_access_count < ShareLink.max_access_count,
                or_(ShareLink.expires_at.is_(None), ShareLink.expires_at > now),
            )
            .values(
                current_access_count=ShareLink.current_access_count + 1,
                last_accessed_at=now,
            )
        )

    def deactivate_link(self, link_id: int, now: datetime.datetime) -> bool:
        return self._execute_guarded(
            update(ShareLink)
            .where(ShareLink.id == link_id, ShareLink.is_active.is_(True))
            .values(is_active=False, revoked_at=now)
        )

    # ── Collaboration sessions ───────────────────────────────────────────

    def get_session_by_token(self, session_token: str) -> Optional[CollaborationSession]:
        return self.session.execute(
            select(CollaborationSession).where(
                CollaborationSession.session_token == session_token
            )
        ).scalar_one_or_none()

    def get_collaboration_session(self, session_id: int) -> Optional[CollaborationSession]:
        return self.session.get(CollaborationSession, session_id)

    def touch_session(
        self, session_token: str, project_id: int, user_id: int, **values
    ) -> bool:
        """Refresh an existing session owned by ``user_id`` on ``project_id``."""
        return self._execute_guarded(
            update(CollaborationSession)
            .where(
                CollaborationSession.session_token == session_token,
                CollaborationSession.project_id == project_id,
                CollaborationSession.user_id == user_id,
            )
            .values(**values)
        )

    def add_session(self, **values) -> CollaborationSession:
        collab_session = CollaborationSession(**values)
        self.session.add(collab_session)
        self.session.flush()
        return collab_session

    def delete_session(self, session_id: int) -> bool:
        result = self.session.execute(
            delete(CollaborationSession)
            .where(CollaborationSession.id == session_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def delete_user_sessions(self, project_id: int, user_id: int) -> int:
        result = self.session.execute(
            delete(CollaborationSession)
            .where(
                CollaborationSession.project_id == project_id,
                CollaborationSession.user_id == user_id,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def list_sessions(
        self, project_id: int, since: Optional[datetime.datetime] = None
    ) -> List[CollaborationSession]:
        query = select(CollaborationSession).where(
            CollaborationSession.project_id == project_id
        )
        if since is not None:
            query = query.where(CollaborationSession.last_activity >= since)
        return list(
            self.session.execute(
                query.order_by(CollaborationSession.last_activity.desc())
            ).scalars()
        )

    def delete_sessions_before(self, cutoff: datetime.datetime) -> int:
        result = self.session.execute(
            delete(CollaborationSession)
            .where(CollaborationSession.last_activity < cutoff)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # ── Access events ────────────────────────────────────────────────────

    def add_event(self, **values) -> AccessEvent:
        event = AccessEvent(**values)
        self.session.add(event)
        self.session.flush()
        return event

    def list_events(
        self,
        project_id: int,
        event_type: Optional[str] = None,
        actor_id: Optional[int] = None,
        success: Optional[bool] = None,
        since: Optional[datetime.datetime] = None,
        until: Optional[datetime.datetime] = None,
        limit: Optional[int] = None,
    ) -> List[AccessEvent]:
        query = select(AccessEvent).where(AccessEvent.project_id == project_id)
        filters: Dict[str, Any] = {
            "event_type": event_type,
            "actor_id": actor_id,
            "success": success,
        }
        for column, value in filters.items():
            if value is not None:
                query = query.where(getattr(AccessEvent, column) == value)
        if since is not None:
            query = query.where(AccessEvent.timestamp >= since)
        if until is not None:
            query = query.where(AccessEvent.timestamp <= until)
        query = query.order_by(AccessEvent.timestamp.desc(), AccessEvent.id.desc())
        if limit:
            query = query.limit(limit)
        return list(self.session.execute(query).scalars())
