"""
Invitation delivery.

Delivery is a side effect of inviting: notifiers are called after the
invitation is committed, and a failing notifier never undoes it.
"""

import logging
from typing import Optional

from flask import current_app
from flask_mail import Message

from ..models.sharing import Collaborator, Project, User

log = logging.getLogger(__name__)


class InvitationNotifier(object):
    """Interface for invitation delivery"""

    def send_invitation(
        self,
        project: Project,
        invitee: User,
        inviter: User,
        collaborator: Collaborator,
        message: Optional[str] = None,
    ) -> None:
        raise NotImplementedError


class LogNotifier(InvitationNotifier):
    """Default notifier, only logs what would be delivered."""

    def send_invitation(self, project, invitee, inviter, collaborator, message=None):
        log.info(
            f"Invitation for {invitee.email} to project {project.id} "
            f"as {collaborator.permission_level} from {inviter.email}"
        )


class MailNotifier(InvitationNotifier):
    """
    Sends invitations with Flask-Mail.

    :param mail: Flask-Mail instance (defaults to the app's ``mail`` extension)
    :param sender: sender address (defaults to ``MAIL_DEFAULT_SENDER``)
    """

    subject_template = "{inviter} invited you to collaborate on {project}"
    body_template = (
        "Hello,\n\n"
        "{inviter} invited you to collaborate on \"{project}\" as {level}.\n"
        "{message}"
        "\nSign in to accept or decline the invitation.\n"
    )

    def __init__(self, mail=None, sender: Optional[str] = None):
        self._mail = mail
        self.sender = sender

    @property
    def mail(self):
        if self._mail is None:
            self._mail = current_app.extensions.get("mail")
        return self._mail

    def build_message(self, project, invitee, inviter, collaborator, message=None) -> Message:
        inviter_name = inviter.full_name or inviter.email
        return Message(
            subject=self.subject_template.format(inviter=inviter_name, project=project.name),
            sender=self.sender or current_app.config.get("MAIL_DEFAULT_SENDER"),
            recipients=[invitee.email],
            body=self.body_template.format(
                inviter=inviter_name,
                project=project.name,
                level=collaborator.permission_level,
                message=f"\n{message}\n" if message else "",
            ),
        )

    def send_invitation(self, project, invitee, inviter, collaborator, message=None):
        if self.mail is None:
            raise RuntimeError("Flask-Mail is not initialized on this application")
        self.mail.send(
            self.build_message(project, invitee, inviter, collaborator, message)
        )
        log.debug(f"Invitation mail sent to {invitee.email}")
