import datetime
from unittest.mock import patch

from flask_sharing.const import (
    EVENT_ACCESS_DENIED,
    EVENT_COLLABORATOR_REMOVED,
    EVENT_INVITATION_ACCEPTED,
    EVENT_INVITATION_RESENT,
    EVENT_INVITE_SENT,
    EVENT_PERMISSION_UPDATED,
)
from flask_sharing.exceptions import (
    AlreadyCollaborator,
    CollaboratorNotFound,
    InvalidPermissionLevel,
    InvalidStateTransition,
    InvitationExpired,
    NoChange,
    ProjectNotFound,
    Unauthorized,
    UserNotFound,
    ValidationError,
)
from flask_sharing.models.sharing import CollaboratorStatus
from flask_sharing.permissions import PermissionLevel
from sqlalchemy.exc import IntegrityError

from tests.base import SharingTestCase


class InvitationManagerTestCase(SharingTestCase):
    def setUp(self):
        super().setUp()
        self.newcomer = self.repository.add_user("newcomer@example.com", "Nina New")
        self.repository.commit()
        self.invitations = self.manager.invitations

    def invite_newcomer(self, level="viewer", **kwargs):
        return self.invitations.invite(
            self.project.id, self.admin.id, "newcomer@example.com", level, **kwargs
        )

    # ── invite ───────────────────────────────────────────────────────────

    def test_invite_creates_pending_row(self):
        collaborator = self.invite_newcomer(message="Welcome aboard")
        self.assertEqual(collaborator.status, CollaboratorStatus.PENDING.value)
        self.assertEqual(collaborator.permission_level, "viewer")
        self.assertEqual(collaborator.invited_by, self.admin.id)
        self.assertEqual(collaborator.created_at, self.clock())
        self.assertIsNone(collaborator.accepted_at)

        events = self.events(EVENT_INVITE_SENT)
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].actor_id, self.admin.id)
        self.assertEqual(events[0].target, str(self.newcomer.id))
        self.assertEqual(events[0].event_metadata["permission_level"], "viewer")

        self.notifier.send_invitation.assert_called_once()
        args = self.notifier.send_invitation.call_args[0]
        self.assertEqual(args[1].id, self.newcomer.id)
        self.assertEqual(args[4], "Welcome aboard")

    def test_invite_is_case_insensitive_on_email(self):
        collaborator = self.invitations.invite(
            self.project.id, self.owner.id, "  NewComer@Example.COM ", "editor"
        )
        self.assertEqual(collaborator.user_id, self.newcomer.id)

    def test_editor_cannot_invite(self):
        with self.assertRaises(Unauthorized):
            self.invitations.invite(
                self.project.id, self.editor.id, "newcomer@example.com", "viewer"
            )
        self.assertIsNone(
            self.repository.get_open_collaborator(self.project.id, self.newcomer.id)
        )
        denied = self.events(EVENT_ACCESS_DENIED, success=False)
        self.assertEqual(len(denied), 1)
        self.assertEqual(denied[0].actor_id, self.editor.id)
        self.assertEqual(denied[0].event_metadata["action"], EVENT_INVITE_SENT)
        self.assertEqual(denied[0].event_metadata["error_code"], "UNAUTHORIZED")
        self.notifier.send_invitation.assert_not_called()

    def test_outsider_cannot_invite(self):
        with self.assertRaises(Unauthorized):
            self.invitations.invite(
                self.project.id, self.outsider.id, "newcomer@example.com", "viewer"
            )

    def test_invite_unknown_project(self):
        with self.assertRaises(ProjectNotFound):
            self.invitations.invite(9999, self.owner.id, "newcomer@example.com", "viewer")

    def test_invite_unknown_email(self):
        with self.assertRaises(UserNotFound):
            self.invitations.invite(
                self.project.id, self.admin.id, "ghost@example.com", "viewer"
            )

    def test_invite_malformed_email(self):
        with self.assertRaises(ValidationError) as cm:
            self.invitations.invite(self.project.id, self.admin.id, "not-an-email", "viewer")
        self.assertEqual(cm.exception.details["field"], "email")

    def test_invite_as_owner_is_rejected(self):
        with self.assertRaises(InvalidPermissionLevel):
            self.invite_newcomer("owner")

    def test_invite_unknown_level(self):
        with self.assertRaises(InvalidPermissionLevel):
            self.invite_newcomer("superuser")

    def test_invite_expiry_must_be_in_future(self):
        with self.assertRaises(ValidationError):
            self.invite_newcomer(expires_at=self.clock())
        with self.assertRaises(ValidationError):
            self.invite_newcomer(expires_at=self.clock() - datetime.timedelta(days=1))

    def test_invite_message_too_long(self):
        with self.assertRaises(ValidationError):
            self.invite_newcomer(message="x" * 1001)

    def test_invite_project_owner(self):
        with self.assertRaises(ValidationError):
            self.invitations.invite(
                self.project.id, self.admin.id, "owner@example.com", "viewer"
            )

    def test_invite_existing_collaborator(self):
        self.invite_newcomer()
        with self.assertRaises(AlreadyCollaborator):
            self.invite_newcomer("editor")
        with self.assertRaises(AlreadyCollaborator):
            self.invitations.invite(
                self.project.id, self.owner.id, "editor@example.com", "admin"
            )

    def test_notifier_failure_keeps_invitation(self):
        self.notifier.send_invitation.side_effect = RuntimeError("smtp down")
        with self.assertLogs(
            "flask_sharing.collaboration.invitation_manager", level="ERROR"
        ):
            collaborator = self.invite_newcomer()
        self.assertEqual(collaborator.status, CollaboratorStatus.PENDING.value)
        self.assertIsNotNone(
            self.repository.get_open_collaborator(self.project.id, self.newcomer.id)
        )

    def test_store_rejects_second_open_row(self):
        self.invite_newcomer()
        with self.assertRaises(IntegrityError):
            self.repository.add_collaborator(
                project_id=self.project.id,
                user_id=self.newcomer.id,
                permission_level="viewer",
                status=CollaboratorStatus.ACCEPTED.value,
                invited_by=self.owner.id,
            )
        self.repository.rollback()

    # ── accept / decline ─────────────────────────────────────────────────

    def test_accept(self):
        self.invite_newcomer("editor")
        self.clock.advance(minutes=5)
        collaborator = self.invitations.accept(self.project.id, self.newcomer.id)
        self.assertEqual(collaborator.status, CollaboratorStatus.ACCEPTED.value)
        self.assertEqual(collaborator.accepted_at, self.clock())
        self.assertEqual(
            self.invitations.get_permission_level(self.project.id, self.newcomer.id),
            PermissionLevel.EDITOR,
        )
        self.assertEqual(len(self.events(EVENT_INVITATION_ACCEPTED)), 1)

    def test_accept_twice(self):
        self.invite_newcomer()
        self.invitations.accept(self.project.id, self.newcomer.id)
        with self.assertRaises(InvalidStateTransition):
            self.invitations.accept(self.project.id, self.newcomer.id)

    def test_accept_without_invitation(self):
        with self.assertRaises(CollaboratorNotFound):
            self.invitations.accept(self.project.id, self.newcomer.id)

    def test_accept_lost_race(self):
        self.invite_newcomer()
        with patch.object(self.repository, "transition_collaborator", return_value=False):
            with self.assertRaises(InvalidStateTransition):
                self.invitations.accept(self.project.id, self.newcomer.id)
        self.assertEqual(self.events(EVENT_INVITATION_ACCEPTED), [])

    def test_guarded_transition_checks_prior_status(self):
        collaborator = self.invite_newcomer()
        self.assertFalse(
            self.repository.transition_collaborator(
                collaborator.id,
                (CollaboratorStatus.ACCEPTED,),
                CollaboratorStatus.REVOKED,
            )
        )
        self.repository.rollback()

    def test_expired_invitation_cannot_be_accepted(self):
        self.invite_newcomer(expires_at=self.clock() + datetime.timedelta(hours=1))
        self.clock.advance(hours=2)
        with self.assertRaises(InvitationExpired) as cm:
            self.invitations.accept(self.project.id, self.newcomer.id)
        self.assertEqual(cm.exception.http_status, 409)
        collaborator = self.invitations.decline(self.project.id, self.newcomer.id)
        self.assertEqual(collaborator.status, CollaboratorStatus.DECLINED.value)

    def test_expired_invitation_is_replaced_on_reinvite(self):
        first_id = self.invite_newcomer(
            expires_at=self.clock() + datetime.timedelta(hours=1)
        ).id
        with self.assertRaises(AlreadyCollaborator):
            self.invite_newcomer("editor")
        self.clock.advance(hours=2)

        second = self.invite_newcomer("editor")
        self.assertNotEqual(second.id, first_id)
        self.assertEqual(second.status, CollaboratorStatus.PENDING.value)
        self.assertEqual(second.permission_level, "editor")
        first = self.repository.get_collaborator(first_id)
        self.assertEqual(first.status, CollaboratorStatus.REVOKED.value)
        self.assertEqual(first.revoked_at, self.clock())
        removed = self.events(EVENT_COLLABORATOR_REMOVED)[0]
        self.assertEqual(removed.event_metadata["reason"], "expired")
        self.invitations.accept(self.project.id, self.newcomer.id)

    def test_decline_then_reinvite_creates_new_row(self):
        first = self.invite_newcomer()
        first_id = first.id
        self.invitations.decline(self.project.id, self.newcomer.id)

        second = self.invite_newcomer("editor")
        self.assertNotEqual(second.id, first_id)
        self.assertEqual(second.status, CollaboratorStatus.PENDING.value)
        old = self.repository.get_collaborator(first_id)
        self.assertEqual(old.status, CollaboratorStatus.DECLINED.value)
        self.assertIsNotNone(old.declined_at)

    def test_reinvite_disabled(self):
        self.invite_newcomer()
        self.invitations.decline(self.project.id, self.newcomer.id)
        self.invitations.allow_reinvite = False
        with self.assertRaises(InvalidStateTransition):
            self.invite_newcomer()

    def test_declined_is_terminal(self):
        self.invite_newcomer()
        self.invitations.decline(self.project.id, self.newcomer.id)
        with self.assertRaises(InvalidStateTransition):
            self.invitations.accept(self.project.id, self.newcomer.id)
        with self.assertRaises(InvalidStateTransition):
            self.invitations.revoke(self.project.id, self.admin.id, self.newcomer.id)

    # ── update_permission ────────────────────────────────────────────────

    def test_update_permission(self):
        collaborator = self.invitations.update_permission(
            self.project.id, self.admin.id, self.viewer.id, "editor"
        )
        self.assertEqual(collaborator.permission_level, "editor")
        event = self.events(EVENT_PERMISSION_UPDATED)[0]
        self.assertEqual(event.event_metadata, {"from": "viewer", "to": "editor"})

    def test_update_permission_no_change(self):
        with self.assertRaises(NoChange):
            self.invitations.update_permission(
                self.project.id, self.owner.id, self.viewer.id, "viewer"
            )

    def test_update_permission_pending(self):
        self.invite_newcomer()
        with self.assertRaises(InvalidStateTransition):
            self.invitations.update_permission(
                self.project.id, self.owner.id, self.newcomer.id, "editor"
            )

    def test_update_permission_to_owner(self):
        with self.assertRaises(InvalidPermissionLevel):
            self.invitations.update_permission(
                self.project.id, self.owner.id, self.viewer.id, "owner"
            )

    def test_update_owner(self):
        with self.assertRaises(InvalidPermissionLevel):
            self.invitations.update_permission(
                self.project.id, self.admin.id, self.owner.id, "viewer"
            )

    def test_update_permission_by_editor(self):
        with self.assertRaises(Unauthorized):
            self.invitations.update_permission(
                self.project.id, self.editor.id, self.viewer.id, "admin"
            )

    def test_update_unknown_collaborator(self):
        with self.assertRaises(CollaboratorNotFound):
            self.invitations.update_permission(
                self.project.id, self.owner.id, self.outsider.id, "editor"
            )

    # ── revoke ───────────────────────────────────────────────────────────

    def test_revoke_accepted(self):
        collaborator = self.invitations.revoke(
            self.project.id, self.admin.id, self.editor.id
        )
        self.assertEqual(collaborator.status, CollaboratorStatus.REVOKED.value)
        self.assertEqual(collaborator.revoked_at, self.clock())
        self.assertIsNone(
            self.invitations.get_permission_level(self.project.id, self.editor.id)
        )
        event = self.events(EVENT_COLLABORATOR_REMOVED)[0]
        self.assertEqual(event.event_metadata["previous_status"], "accepted")

    def test_revoke_pending(self):
        self.invite_newcomer()
        collaborator = self.invitations.revoke(
            self.project.id, self.owner.id, self.newcomer.id
        )
        self.assertEqual(collaborator.status, CollaboratorStatus.REVOKED.value)
        with self.assertRaises(InvalidStateTransition):
            self.invitations.accept(self.project.id, self.newcomer.id)

    def test_update_after_revoke(self):
        self.invitations.revoke(self.project.id, self.admin.id, self.editor.id)
        with self.assertRaises(InvalidStateTransition):
            self.invitations.update_permission(
                self.project.id, self.admin.id, self.editor.id, "viewer"
            )
        denied = self.events(EVENT_ACCESS_DENIED)
        self.assertEqual(len(denied), 1)
        self.assertEqual(denied[0].event_metadata["error_code"], "INVALID_STATE_TRANSITION")

    def test_revoke_owner(self):
        with self.assertRaises(InvalidPermissionLevel):
            self.invitations.revoke(self.project.id, self.admin.id, self.owner.id)

    def test_unauthorized_revoke_is_logged(self):
        with self.assertRaises(Unauthorized):
            self.invitations.revoke(self.project.id, self.viewer.id, self.editor.id)
        self.assertEqual(
            self.invitations.get_permission_level(self.project.id, self.editor.id),
            PermissionLevel.EDITOR,
        )
        denied = self.events(EVENT_ACCESS_DENIED, success=False)
        self.assertEqual(denied[0].event_metadata["action"], EVENT_COLLABORATOR_REMOVED)
        self.assertEqual(denied[0].target, str(self.editor.id))

    def test_revoked_admin_loses_rights(self):
        self.invitations.revoke(self.project.id, self.owner.id, self.admin.id)
        with self.assertRaises(Unauthorized):
            self.invite_newcomer()

    # ── resend and queries ───────────────────────────────────────────────

    def test_resend_redelivers_only(self):
        collaborator = self.invite_newcomer(
            expires_at=self.clock() + datetime.timedelta(days=7)
        )
        created_at, expires_at = collaborator.created_at, collaborator.expires_at
        self.clock.advance(days=1)
        resent = self.invitations.resend(self.project.id, self.admin.id, self.newcomer.id)
        self.assertEqual(resent.id, collaborator.id)
        self.assertEqual(resent.created_at, created_at)
        self.assertEqual(resent.expires_at, expires_at)
        self.assertEqual(self.notifier.send_invitation.call_count, 2)
        self.assertEqual(len(self.events(EVENT_INVITATION_RESENT)), 1)

    def test_resend_accepted(self):
        with self.assertRaises(InvalidStateTransition):
            self.invitations.resend(self.project.id, self.admin.id, self.viewer.id)

    def test_list_collaborators(self):
        self.invite_newcomer()
        self.invitations.revoke(self.project.id, self.owner.id, self.editor.id)
        rows = self.invitations.list_collaborators(self.project.id, self.viewer.id)
        self.assertEqual(
            {row.user_id for row in rows},
            {self.admin.id, self.viewer.id, self.newcomer.id},
        )
        rows = self.invitations.list_collaborators(
            self.project.id, self.viewer.id, include_terminal=True
        )
        self.assertIn(self.editor.id, {row.user_id for row in rows})
        with self.assertRaises(Unauthorized):
            self.invitations.list_collaborators(self.project.id, self.outsider.id)

    def test_list_user_invitations(self):
        self.invite_newcomer()
        rows = self.invitations.list_user_invitations(self.newcomer.id)
        self.assertEqual([row.project_id for row in rows], [self.project.id])
        self.assertTrue(
            self.invitations.has_pending_invitation(self.project.id, self.newcomer.id)
        )
        self.invitations.accept(self.project.id, self.newcomer.id)
        self.assertEqual(self.invitations.list_user_invitations(self.newcomer.id), [])
