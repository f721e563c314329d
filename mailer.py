"""
Outgoing email over SMTP.

In development with placeholder credentials nothing is sent: the message is
logged and reported as delivered so sign-up and reset flows keep working.
"""
import logging
import re
import smtplib
import time
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Callable, Optional

from config import Settings

logger = logging.getLogger(__name__)

BUTTON_STYLE = (
    "display: inline-block; padding: 12px 24px; background: linear-gradient(to right, #6366f1, #8b5cf6); "
    "color: white; text-decoration: none; border-radius: 4px; font-weight: bold; margin: 16px 0;"
)


@dataclass
class SendResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


def _strip_tags(html: str) -> str:
    return re.sub(r"\s+", " ", re.sub(r"<[^>]*>", " ", html)).strip()


class Mailer:
    def __init__(self, settings: Settings, smtp_factory: Optional[Callable[..., smtplib.SMTP]] = None):
        self.settings = settings
        self._smtp_factory = smtp_factory

    @property
    def dev_mode(self) -> bool:
        return self.settings.is_development and self.settings.uses_placeholder_email

    def send(self, to: str, subject: str, html: str) -> SendResult:
        if self.dev_mode:
            logger.info("Development mode, email not sent. To: %s Subject: %s Content: %s...",
                        to, subject, _strip_tags(html)[:100])
            return SendResult(success=True, message_id=f"dev-{int(time.time() * 1000)}@portfoliohub.test")

        settings = self.settings
        message = EmailMessage()
        message["From"] = settings.email_from
        message["To"] = to
        message["Subject"] = subject
        message["Message-ID"] = make_msgid(domain="portfoliohub.com")
        message.set_content(_strip_tags(html))
        message.add_alternative(html, subtype="html")

        try:
            with self._connect() as smtp:
                if settings.email_server_port != 465:
                    smtp.starttls()
                if settings.email_server_user:
                    smtp.login(settings.email_server_user, settings.email_server_password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send email to %s: %s", to, e)
            return SendResult(success=False, error=str(e))

        return SendResult(success=True, message_id=message["Message-ID"])

    def _connect(self) -> smtplib.SMTP:
        settings = self.settings
        if self._smtp_factory is not None:
            return self._smtp_factory(settings.email_server_host, settings.email_server_port)
        if settings.email_server_port == 465:
            return smtplib.SMTP_SSL(settings.email_server_host, settings.email_server_port, timeout=30)
        return smtplib.SMTP(settings.email_server_host, settings.email_server_port, timeout=30)


def _action_email(heading: str, intro: str, link: str, label: str, expiry: str, ignore: str) -> str:
    return f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
      <h2 style="color: #6366f1;">{heading}</h2>
      <p>{intro}</p>
      <a href="{link}" style="{BUTTON_STYLE}">{label}</a>
      <p>If the button doesn't work, you can also copy and paste this link into your browser:</p>
      <p style="word-break: break-all; color: #6366f1;"><a href="{link}">{link}</a></p>
      <p>This link will expire in {expiry}.</p>
      <p>{ignore}</p>
    </div>
    """


def send_verification_email(mailer: Mailer, to: str, token: str) -> SendResult:
    link = f"{mailer.settings.app_url}/auth/verify?token={token}"
    html = _action_email(
        "Verify Your Email Address",
        "Thank you for signing up! Please verify your email address by clicking the button below:",
        link, "Verify Email", "24 hours",
        "If you didn't create an account, you can safely ignore this email.",
    )
    return mailer.send(to, "Verify Your Email Address", html)


def send_password_reset_email(mailer: Mailer, to: str, token: str) -> SendResult:
    link = f"{mailer.settings.app_url}/auth/reset-password?token={token}"
    html = _action_email(
        "Reset Your Password",
        "We received a request to reset your password. Click the button below to create a new password:",
        link, "Reset Password", "1 hour",
        "If you didn't request a password reset, you can safely ignore this email.",
    )
    return mailer.send(to, "Reset Your Password", html)
