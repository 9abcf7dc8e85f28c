"""
# Email Manager

Delivers account emails (verification links, password reset links) over SMTP.

When `SMTP_HOST` is not configured the message is logged instead of sent so
local development works without a mail server. Delivery problems are logged
and reported as `False`; they never fail the request that triggered them.
"""

from contextlib import contextmanager
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
import smtplib
from typing import Optional
from urllib.parse import urlencode

from starlette.concurrency import run_in_threadpool

from community_microhelp.config import Settings
from community_microhelp.managers.logging_manager import get_logger

logger = get_logger(prefix="[Email Manager]")


class EmailManager:
    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def enabled(self) -> bool:
        return bool(self.settings.SMTP_HOST)

    @contextmanager
    def _connection(self):
        """Context-managed SMTP connection."""
        settings = self.settings
        server = None
        try:
            if settings.SMTP_USE_SSL:
                server = smtplib.SMTP_SSL(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10)
            else:
                server = smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10)
                server.starttls()
            if settings.SMTP_USERNAME and settings.SMTP_PASSWORD:
                server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD.get_secret_value())
            yield server
        finally:
            if server is not None:
                try:
                    server.quit()
                except smtplib.SMTPException as e:
                    logger.warning("Error closing SMTP connection: %s", e)

    def _build_message(self, recipient: str, subject: str, text_body: str, html_body: Optional[str]) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["From"] = self.settings.SMTP_FROM
        msg["To"] = recipient
        msg["Subject"] = subject
        msg.attach(MIMEText(text_body, "plain"))
        if html_body:
            msg.attach(MIMEText(html_body, "html"))
        return msg

    def _send_sync(self, recipient: str, subject: str, text_body: str, html_body: Optional[str]) -> bool:
        msg = self._build_message(recipient, subject, text_body, html_body)
        try:
            with self._connection() as server:
                server.sendmail(self.settings.SMTP_FROM, [recipient], msg.as_string())
        except smtplib.SMTPAuthenticationError:
            logger.error("SMTP authentication failed, check SMTP_USERNAME/SMTP_PASSWORD")
            return False
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send '%s' to %s: %s", subject, recipient, e)
            return False
        logger.info("Email '%s' sent to %s", subject, recipient)
        return True

    async def send_email(self, recipient: str, subject: str, text_body: str, html_body: Optional[str] = None) -> bool:
        if not self.enabled:
            logger.info("SMTP not configured, email to %s not sent: %s | %s", recipient, subject, text_body)
            return False
        return await run_in_threadpool(self._send_sync, recipient, subject, text_body, html_body)

    def build_link(self, path: str, tenant_id: str, token: str) -> str:
        query = urlencode({"tenantId": tenant_id, "token": token})
        return f"{self.settings.APP_BASE_URL.rstrip('/')}{path}?{query}"

    async def send_verification_email(self, email: str, tenant_id: str, token: str) -> bool:
        link = self.build_link("/verify-email", tenant_id, token)
        hours = self.settings.EMAIL_VERIFICATION_TTL_HOURS
        text = (
            "Welcome to Community Microhelp!\n\n"
            f"Confirm your email address by opening this link within {hours} hours:\n{link}\n"
        )
        html = f'<p>Welcome to Community Microhelp!</p><p><a href="{link}">Confirm your email address</a></p>'
        return await self.send_email(email, "Verify your email address", text, html)

    async def send_password_reset_email(self, email: str, tenant_id: str, token: str) -> bool:
        link = self.build_link("/reset-password", tenant_id, token)
        minutes = self.settings.PASSWORD_RESET_TTL_MINUTES
        text = (
            "A password reset was requested for your account.\n\n"
            f"Choose a new password within {minutes} minutes:\n{link}\n\n"
            "If you did not request this, you can ignore this email.\n"
        )
        html = f'<p>A password reset was requested for your account.</p><p><a href="{link}">Choose a new password</a></p>'
        return await self.send_email(email, "Reset your password", text, html)
