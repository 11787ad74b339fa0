"""
Invitation Manager

Turns an email address into a collaborator row and drives the row through
its lifecycle::

    pending --accept--> accepted --revoke--> revoked
    pending --decline--> declined
    pending --revoke--> revoked

``declined`` and ``revoked`` are terminal. Every transition is a guarded
UPDATE asserting the expected prior status, so concurrent writers cannot
overwrite each other; the loser gets ``InvalidStateTransition``.
"""

import datetime
import logging
from typing import List, Optional, Union

from email_validator import EmailNotValidError, validate_email
from sqlalchemy.exc import IntegrityError

from ..basemanager import BaseManager
from ..const import (
    EVENT_COLLABORATOR_REMOVED,
    EVENT_INVITATION_ACCEPTED,
    EVENT_INVITATION_DECLINED,
    EVENT_INVITATION_RESENT,
    EVENT_INVITE_SENT,
    EVENT_PERMISSION_UPDATED,
    LOGMSG_ERR_NOTIFY_FAILED,
    LOGMSG_INF_COLLABORATOR_REVOKED,
    LOGMSG_INF_INVITATION_ACCEPTED,
    LOGMSG_INF_INVITATION_DECLINED,
    LOGMSG_INF_INVITATION_RESENT,
    LOGMSG_INF_INVITE_SENT,
    LOGMSG_INF_PERMISSION_UPDATED,
)
from ..exceptions import (
    AlreadyCollaborator,
    CollaboratorNotFound,
    InvalidPermissionLevel,
    InvalidStateTransition,
    InvitationExpired,
    NoChange,
    SharingError,
    UserNotFound,
    ValidationError,
)
from ..models.sharing import (
    Collaborator,
    CollaboratorStatus,
    OPEN_STATUSES,
    TERMINAL_STATUSES,
)
from ..permissions import ensure_assignable, PermissionLevel
from ..utils.transaction import retry_on_transient
from .notifications import InvitationNotifier, LogNotifier

log = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 1000


class InvitationManager(BaseManager):
    """
    Creates, accepts, declines, updates and revokes collaborator rows.

    :param notifier: ``InvitationNotifier`` used to deliver invitations
    :param allow_reinvite: whether a user whose latest row is terminal may
        be invited again (a new row is created, the old one is kept)
    """

    def __init__(
        self,
        repository,
        access_log,
        notifier: Optional[InvitationNotifier] = None,
        allow_reinvite: bool = True,
        **kwargs,
    ):
        super().__init__(repository, access_log=access_log, **kwargs)
        self.notifier = notifier or LogNotifier()
        self.allow_reinvite = allow_reinvite

    # ── Invite ───────────────────────────────────────────────────────────

    @retry_on_transient
    def invite(
        self,
        project_id: int,
        actor_id: int,
        email: str,
        permission_level: Union[str, PermissionLevel],
        message: Optional[str] = None,
        expires_at: Optional[datetime.datetime] = None,
    ) -> Collaborator:
        """
        Invite the account owning ``email`` to a project.

        :raises Unauthorized: actor is not admin or owner
        :raises InvalidPermissionLevel: level is owner or unknown
        :raises ValidationError: malformed email, message or expiry
        :raises UserNotFound: no account for this email
        :raises AlreadyCollaborator: an open row already exists
        """
        project = self.get_project(project_id)
        self.require_level(
            project_id, actor_id, PermissionLevel.ADMIN, EVENT_INVITE_SENT, target=email
        )
        level = ensure_assignable(permission_level)
        normalized_email = self._validate_email(email)
        if message is not None:
            message = message.strip() or None
            if message and len(message) > MAX_MESSAGE_LENGTH:
                raise ValidationError(
                    f"Message must be at most {MAX_MESSAGE_LENGTH} characters",
                    field_name="message",
                )
        now = self.now()
        if expires_at is not None and expires_at <= now:
            raise ValidationError(
                "Expiration date must be in the future", field_name="expires_at"
            )

        invitee = self.repository.get_user_by_email(normalized_email)
        if invitee is None:
            raise UserNotFound()
        if invitee.id == project.owner_id:
            raise ValidationError(
                "Cannot invite project owner as collaborator", field_name="email"
            )
        open_row = self.repository.get_open_collaborator(project_id, invitee.id)
        if open_row is not None and not open_row.is_expired(now):
            raise AlreadyCollaborator()
        if open_row is None and not self.allow_reinvite:
            latest = self.repository.get_latest_collaborator(project_id, invitee.id)
            if latest is not None and latest.is_terminal:
                raise InvalidStateTransition(
                    f"User has a {latest.status} invitation and re-invitation is disabled"
                )
        if open_row is not None:
            # An expired invitation is replaced by the new one
            self._transition(
                open_row,
                (CollaboratorStatus.PENDING,),
                CollaboratorStatus.REVOKED,
                actor_id=actor_id,
                revoked_at=now,
            )
            self.access_log.record(
                project_id,
                actor_id,
                EVENT_COLLABORATOR_REMOVED,
                target=str(invitee.id),
                metadata={"previous_status": "pending", "reason": "expired"},
            )

        try:
            collaborator = self.repository.add_collaborator(
                project_id=project_id,
                user_id=invitee.id,
                permission_level=level.value,
                status=CollaboratorStatus.PENDING.value,
                invited_by=actor_id,
                message=message,
                created_at=now,
                expires_at=expires_at,
            )
        except IntegrityError:
            # A concurrent invite created the open row first
            self.repository.rollback()
            raise AlreadyCollaborator()
        self.access_log.record(
            project_id,
            actor_id,
            EVENT_INVITE_SENT,
            target=str(invitee.id),
            metadata={"email": normalized_email, "permission_level": level.value},
        )
        self.repository.commit()
        log.info(LOGMSG_INF_INVITE_SENT.format(invitee.id, project_id, level.value))

        self._deliver(collaborator, message)
        return collaborator

    @retry_on_transient
    def resend(self, project_id: int, actor_id: int, target_user_id: int) -> Collaborator:
        """
        Deliver the invitation message again. The row is left untouched:
        ``created_at`` and ``expires_at`` keep their values.
        """
        self.get_project(project_id)
        self.require_level(
            project_id,
            actor_id,
            PermissionLevel.ADMIN,
            EVENT_INVITATION_RESENT,
            target=str(target_user_id),
        )
        collaborator = self._get_open_row(project_id, target_user_id)
        if collaborator.status != CollaboratorStatus.PENDING.value:
            raise InvalidStateTransition("Only pending invitations can be re-sent")
        self.access_log.record(
            project_id, actor_id, EVENT_INVITATION_RESENT, target=str(target_user_id)
        )
        self.repository.commit()
        log.info(LOGMSG_INF_INVITATION_RESENT.format(target_user_id, project_id))
        self._deliver(collaborator, collaborator.message)
        return collaborator

    # ── Invitee responses ────────────────────────────────────────────────

    @retry_on_transient
    def accept(self, project_id: int, user_id: int) -> Collaborator:
        """
        Accept a pending invitation addressed to ``user_id`` (the caller).

        :raises CollaboratorNotFound: the user was never invited
        :raises InvitationExpired: the invitation expired before acceptance
        :raises InvalidStateTransition: the row is not pending
        """
        self.get_project(project_id)
        collaborator = self._get_pending_row(project_id, user_id)
        now = self.now()
        if collaborator.is_expired(now):
            raise InvitationExpired()
        self._transition(
            collaborator,
            (CollaboratorStatus.PENDING,),
            CollaboratorStatus.ACCEPTED,
            accepted_at=now,
            updated_at=now,
        )
        self.access_log.record(
            project_id, user_id, EVENT_INVITATION_ACCEPTED, target=str(user_id)
        )
        self.repository.commit()
        log.info(LOGMSG_INF_INVITATION_ACCEPTED.format(user_id, project_id))
        return collaborator

    @retry_on_transient
    def decline(self, project_id: int, user_id: int) -> Collaborator:
        """Decline a pending invitation addressed to ``user_id`` (the caller)."""
        self.get_project(project_id)
        collaborator = self._get_pending_row(project_id, user_id)
        now = self.now()
        self._transition(
            collaborator,
            (CollaboratorStatus.PENDING,),
            CollaboratorStatus.DECLINED,
            declined_at=now,
            updated_at=now,
        )
        self.access_log.record(
            project_id, user_id, EVENT_INVITATION_DECLINED, target=str(user_id)
        )
        self.repository.commit()
        log.info(LOGMSG_INF_INVITATION_DECLINED.format(user_id, project_id))
        return collaborator

    # ── Administration ───────────────────────────────────────────────────

    @retry_on_transient
    def update_permission(
        self,
        project_id: int,
        actor_id: int,
        target_user_id: int,
        new_level: Union[str, PermissionLevel],
    ) -> Collaborator:
        """
        Change the level of an accepted collaborator.

        :raises NoChange: the collaborator already holds ``new_level``
        :raises InvalidStateTransition: the row is pending or terminal
        """
        project = self.get_project(project_id)
        self.require_level(
            project_id,
            actor_id,
            PermissionLevel.ADMIN,
            EVENT_PERMISSION_UPDATED,
            target=str(target_user_id),
        )
        level = ensure_assignable(new_level)
        if target_user_id == project.owner_id:
            raise InvalidPermissionLevel("The project owner's level cannot be changed")
        collaborator = self._get_open_row(project_id, target_user_id, actor_id=actor_id)
        if collaborator.status != CollaboratorStatus.ACCEPTED.value:
            self._deny(
                project_id,
                actor_id,
                EVENT_PERMISSION_UPDATED,
                target_user_id,
                InvalidStateTransition("Only accepted collaborators can change level"),
            )
        previous = collaborator.permission_level
        if previous == level.value:
            raise NoChange()
        updated = self.repository.update_collaborator_level(
            collaborator.id, previous, level.value, self.now()
        )
        if not updated:
            self.repository.rollback()
            raise InvalidStateTransition(
                "The collaborator changed concurrently, reload and try again"
            )
        self.access_log.record(
            project_id,
            actor_id,
            EVENT_PERMISSION_UPDATED,
            target=str(target_user_id),
            metadata={"from": previous, "to": level.value},
        )
        self.repository.commit()
        log.info(
            LOGMSG_INF_PERMISSION_UPDATED.format(
                target_user_id, project_id, previous, level.value
            )
        )
        return collaborator

    @retry_on_transient
    def revoke(self, project_id: int, actor_id: int, target_user_id: int) -> Collaborator:
        """
        Revoke a pending or accepted collaborator. ``revoked`` is terminal.
        """
        project = self.get_project(project_id)
        self.require_level(
            project_id,
            actor_id,
            PermissionLevel.ADMIN,
            EVENT_COLLABORATOR_REMOVED,
            target=str(target_user_id),
        )
        if target_user_id == project.owner_id:
            raise InvalidPermissionLevel("Cannot remove project owner")
        collaborator = self._get_open_row(project_id, target_user_id, actor_id=actor_id)
        previous = collaborator.status
        now = self.now()
        self._transition(
            collaborator,
            OPEN_STATUSES,
            CollaboratorStatus.REVOKED,
            actor_id=actor_id,
            revoked_at=now,
            updated_at=now,
        )
        self.access_log.record(
            project_id,
            actor_id,
            EVENT_COLLABORATOR_REMOVED,
            target=str(target_user_id),
            metadata={"previous_status": previous},
        )
        self.repository.commit()
        log.info(LOGMSG_INF_COLLABORATOR_REVOKED.format(target_user_id, project_id))
        return collaborator

    # ── Queries ──────────────────────────────────────────────────────────

    def list_collaborators(
        self, project_id: int, actor_id: int, include_terminal: bool = False
    ) -> List[Collaborator]:
        self.get_project(project_id)
        self.require_level(project_id, actor_id, PermissionLevel.VIEWER, "project_view")
        statuses = OPEN_STATUSES + TERMINAL_STATUSES if include_terminal else OPEN_STATUSES
        return self.repository.list_collaborators(project_id, statuses)

    def list_user_invitations(self, user_id: int) -> List[Collaborator]:
        """Pending invitations addressed to ``user_id``, newest first."""
        return self.repository.list_pending_for_user(user_id)

    def has_pending_invitation(self, project_id: int, user_id: int) -> bool:
        collaborator = self.repository.get_open_collaborator(project_id, user_id)
        return (
            collaborator is not None
            and collaborator.status == CollaboratorStatus.PENDING.value
        )

    # ── Internals ────────────────────────────────────────────────────────

    def _validate_email(self, email: str) -> str:
        if not email or not isinstance(email, str):
            raise ValidationError("Email is required", field_name="email")
        try:
            result = validate_email(email.strip(), check_deliverability=False)
        except EmailNotValidError as e:
            raise ValidationError(f"Invalid email format: {e}", field_name="email")
        return result.normalized.lower()

    def _get_open_row(
        self, project_id: int, user_id: int, actor_id: Optional[int] = None
    ) -> Collaborator:
        collaborator = self.repository.get_open_collaborator(project_id, user_id)
        if collaborator is not None:
            return collaborator
        latest = self.repository.get_latest_collaborator(project_id, user_id)
        if latest is None:
            raise CollaboratorNotFound()
        error = InvalidStateTransition(f"Collaborator is already {latest.status}")
        if actor_id is not None:
            self.record_denied(project_id, actor_id, "collaborator_update", str(user_id), error)
        raise error

    def _get_pending_row(self, project_id: int, user_id: int) -> Collaborator:
        collaborator = self._get_open_row(project_id, user_id)
        if collaborator.status != CollaboratorStatus.PENDING.value:
            raise InvalidStateTransition(
                f"Invitation was already {collaborator.status}"
            )
        return collaborator

    def _transition(
        self,
        collaborator: Collaborator,
        expected,
        new_status: CollaboratorStatus,
        actor_id: Optional[int] = None,
        **values,
    ) -> None:
        moved = self.repository.transition_collaborator(
            collaborator.id, expected, new_status, **values
        )
        if not moved:
            self.repository.rollback()
            error = InvalidStateTransition(
                f"Cannot move collaborator to {new_status.value} from its current state"
            )
            if actor_id is not None:
                self.record_denied(
                    collaborator.project_id,
                    actor_id,
                    "collaborator_" + new_status.value,
                    str(collaborator.user_id),
                    error,
                )
            raise error

    def _deny(self, project_id, actor_id, action, target_user_id, error: SharingError):
        self.record_denied(project_id, actor_id, action, str(target_user_id), error)
        raise error

    def _deliver(self, collaborator: Collaborator, message: Optional[str]) -> None:
        invitee = collaborator.user
        try:
            self.notifier.send_invitation(
                collaborator.project, invitee, collaborator.inviter, collaborator, message
            )
        except Exception:
            log.exception(LOGMSG_ERR_NOTIFY_FAILED.format(invitee.email))
