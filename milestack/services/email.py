"""
Outgoing e-mail for Milestack.

Messages are sent through SMTP from FastAPI background tasks. When SMTP
is not configured the message is only logged.
"""

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from milestack.core.config import settings


logger = logging.getLogger(__name__)


class EmailService:
    """Thin SMTP wrapper configured from settings."""

    def send_email(self, to_email: str, subject: str, body: str, is_html: bool = False) -> bool:
        """
        Send a single message.

        Returns:
            bool: True when the message was handed to the SMTP server
        """
        if not settings.emails_enabled:
            logger.info(f"E-mail disabled, not sending '{subject}' to {to_email}")
            return False

        msg = MIMEMultipart("alternative" if is_html else "mixed")
        msg["Subject"] = subject
        msg["From"] = f"{settings.EMAILS_FROM_NAME} <{settings.EMAILS_FROM_EMAIL}>"
        msg["To"] = to_email
        msg.attach(MIMEText(body, "html" if is_html else "plain"))

        try:
            with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT) as server:
                if settings.SMTP_TLS:
                    server.starttls()
                if settings.SMTP_USER and settings.SMTP_PASSWORD:
                    server.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send '{subject}' to {to_email}: {e}")
            return False

        logger.info(f"Sent '{subject}' to {to_email}")
        return True

    def send_verification_email(self, email: str, name: str, token: str) -> bool:
        link = f"{settings.FRONTEND_URL}/verify-email/{token}"
        body = (
            f"Hi {name},\n\n"
            f"Welcome to {settings.PROJECT_NAME}! Confirm your e-mail address by opening:\n\n"
            f"{link}\n\n"
            f"The link expires in {settings.EMAIL_VERIFICATION_EXPIRE_HOURS} hours."
        )
        return self.send_email(email, f"Verify your {settings.PROJECT_NAME} account", body)

    def send_password_reset_email(self, email: str, name: str, token: str) -> bool:
        link = f"{settings.FRONTEND_URL}/reset-password?token={token}"
        body = (
            f"Hi {name},\n\n"
            f"Reset your password by opening:\n\n{link}\n\n"
            f"The link expires in {settings.PASSWORD_RESET_EXPIRE_HOURS} hour(s). "
            f"If you did not ask for a reset you can ignore this message."
        )
        return self.send_email(email, "Reset your password", body)

    def send_report_shared_email(self, instructor_email: str, student_name: str,
                                 assignment_title: str, report_url: str) -> bool:
        body = (
            f"{student_name} shared an academic integrity report for "
            f"'{assignment_title}' with you.\n\n"
            f"View it here: {report_url}"
        )
        return self.send_email(instructor_email, f"Integrity report from {student_name}", body)


email_service = EmailService()
