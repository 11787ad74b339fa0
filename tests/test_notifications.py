from flask_mail import Mail
from flask_sharing.collaboration.notifications import LogNotifier, MailNotifier

from tests.base import SharingTestCase


class MailNotifierTestCase(SharingTestCase):
    def extra_config(self):
        return {"MAIL_DEFAULT_SENDER": "sharing@example.com", "MAIL_SUPPRESS_SEND": True}

    def setUp(self):
        super().setUp()
        self.mail = Mail(self.app)
        self.newcomer = self.repository.add_user("newcomer@example.com")
        self.repository.commit()

    def test_invitation_mail(self):
        self.manager.invitations.notifier = MailNotifier()
        with self.mail.record_messages() as outbox:
            self.manager.invitations.invite(
                self.project.id,
                self.admin.id,
                "newcomer@example.com",
                "editor",
                message="We need your eyes on the landing page.",
            )
        self.assertEqual(len(outbox), 1)
        msg = outbox[0]
        self.assertEqual(msg.recipients, ["newcomer@example.com"])
        self.assertEqual(msg.sender, "sharing@example.com")
        self.assertEqual(
            msg.subject, "Adam Admin invited you to collaborate on Website redesign"
        )
        self.assertIn("as editor", msg.body)
        self.assertIn("landing page", msg.body)

    def test_message_without_note(self):
        collaborator = self.repository.get_open_collaborator(self.project.id, self.viewer.id)
        msg = MailNotifier(self.mail, sender="noreply@example.com").build_message(
            self.project, self.viewer, self.owner, collaborator
        )
        self.assertEqual(msg.sender, "noreply@example.com")
        self.assertNotIn("\n\n\n", msg.body)
        self.assertIn("as viewer", msg.body)

    def test_log_notifier(self):
        collaborator = self.repository.get_open_collaborator(self.project.id, self.viewer.id)
        with self.assertLogs("flask_sharing.collaboration.notifications", "INFO") as logs:
            LogNotifier().send_invitation(self.project, self.viewer, self.owner, collaborator)
        self.assertIn("viewer@example.com", logs.output[0])
