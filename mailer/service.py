"""
mailer/service.py -- Email address confirmation via fastapi-mail.

send_email_confirmation() mails a link carrying a short-lived JWT
(auth.tokens.create_email_token). GET /api/mailer/confirm-email hands the
token back to compare_mail_token(), which checks it against the stored user.

SMTP settings come from core.config (MAIL_*). When they are incomplete the
service logs a warning and skips delivery instead of failing registration.
"""

from __future__ import annotations

import logging

from aiosmtplib import SMTPException
from fastapi_mail import ConnectionConfig, FastMail, MessageSchema, MessageType
from fastapi_mail.errors import ConnectionErrors

from auth.models import User
from auth.tokens import create_email_token, decode_email_token
from core.config import Settings
from users.service import UserService

logger = logging.getLogger("lanterra.mailer")

_SUBJECT = "Confirm your email address for lanterra.ru"

_TEMPLATE = """
<html>
    <body>
        <h2>Email confirmation</h2>
        <p>Thank you for registering. Please confirm your address by following the link below:</p>
        <p><a href="{url}">{url}</a></p>
        <br>
        <p>If you did not create an account, please ignore this email.</p>
    </body>
</html>
"""


def get_mail_config(settings: Settings) -> ConnectionConfig | None:
    """Build the fastapi-mail connection config, or None if SMTP is not configured."""
    if not settings.mail_enabled:
        return None
    return ConnectionConfig(
        MAIL_USERNAME=settings.mail_username,
        MAIL_PASSWORD=settings.mail_password,
        MAIL_FROM=settings.mail_from,
        MAIL_PORT=settings.mail_port,
        MAIL_SERVER=settings.mail_server,
        MAIL_STARTTLS=settings.mail_starttls,
        MAIL_SSL_TLS=settings.mail_ssl_tls,
        USE_CREDENTIALS=True,
        VALIDATE_CERTS=True,
    )


class MailerService:
    def __init__(self, settings: Settings, users: UserService) -> None:
        self.users = users
        self.public_url = settings.public_url.rstrip("/")
        config = get_mail_config(settings)
        self.fast_mail: FastMail | None = FastMail(config) if config is not None else None

    def confirmation_url(self, token: str) -> str:
        return f"{self.public_url}/api/mailer/confirm-email?token={token}"

    async def send_email_confirmation(self, user: User) -> bool:
        """Mail the confirmation link to the user. Returns True if a message was sent.

        Delivery errors are logged and swallowed: a registered account must
        not be rolled back because the SMTP server is down.
        ConnectionErrors covers connection setup; SMTPException covers a
        refused recipient or a rejected message on an open session.
        """
        if self.fast_mail is None:
            logger.warning("SMTP configuration is incomplete. Skipping confirmation email to %s", user.email)
            return False
        url = self.confirmation_url(create_email_token(user))
        message = MessageSchema(
            subject=_SUBJECT,
            recipients=[user.email],
            body=_TEMPLATE.format(url=url),
            subtype=MessageType.html,
        )
        try:
            await self.fast_mail.send_message(message)
        except (ConnectionErrors, SMTPException):
            logger.exception("Failed to send confirmation email to %s", user.email)
            return False
        logger.info("Confirmation email sent to %s", user.email)
        return True

    def compare_mail_token(self, token: str) -> tuple[bool, User | None]:
        """Return (True, user) if token is a valid confirmation token for an existing user."""
        payload = decode_email_token(token)
        if payload is None or not payload.get("id"):
            return False, None
        user = self.users.find_one(payload["id"])
        if user is not None and user.id == payload["id"] and user.email == payload.get("email"):
            return True, user
        return False, None
