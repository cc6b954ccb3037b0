"""
Email notifier for the back office.
Sends approval-workflow notifications over SMTP.
"""

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from backoffice.core.config import settings

logger = logging.getLogger(__name__)


class EmailService:
    """Email service for sending notifications"""

    def __init__(self, smtp_host: Optional[str] = None, smtp_port: int = 587):
        self.smtp_host = smtp_host or "localhost"
        self.smtp_port = smtp_port
        self.username = ""
        self.password = ""
        self.use_tls = True
        self.from_email = ""
        self.configured = False

    def configure(
        self,
        smtp_host: str,
        smtp_port: int,
        username: str,
        password: str,
        use_tls: bool = True,
        from_email: str = "noreply@backoffice.local",
    ) -> None:
        """Configure SMTP settings"""
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.from_email = from_email
        self.configured = True
        logger.info(f"Email service configured for {smtp_host}")

    def send(self, to: str, subject: str, body: str) -> bool:
        """
        Send a plain-text email.

        Returns:
            True if sent successfully
        """
        if not self.configured:
            logger.warning(f"Email not configured, would send to {to}: {subject}")
            return False

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_email
        msg["To"] = to
        msg.attach(MIMEText(body, "plain"))

        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
                if self.use_tls:
                    server.starttls()
                if self.username:
                    server.login(self.username, self.password)
                server.sendmail(self.from_email, to, msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {to}: {e}")
            return False

        logger.info(f"Email sent to {to}: {subject}")
        return True


# Global email service instance
_email_service = EmailService()


def configure_from_settings() -> None:
    """Configure the global service from SMTP settings, if any are present."""
    if settings.smtp_user and settings.smtp_from_email:
        _email_service.configure(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            username=settings.smtp_user,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            from_email=settings.smtp_from_email,
        )


def send_email(to: str, subject: str, body: str) -> bool:
    """Send an email using the global service"""
    return _email_service.send(to=to, subject=subject, body=body)
