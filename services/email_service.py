"""
Email Service
Sends a single message over SMTP using the global configuration.
"""
import aiosmtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Optional
from core.config import Settings
from core.exceptions import NotificationDeliveryError
import logging

logger = logging.getLogger(__name__)


def smtp_configured(settings: Settings) -> bool:
    return bool(settings.SMTP_HOST and settings.SMTP_USERNAME and settings.SMTP_PASSWORD)


async def send_email(
    settings: Settings,
    to_email: str,
    subject: str,
    body_text: str,
    body_html: Optional[str] = None,
) -> None:
    """
    Send email using the configured SMTP server

    Args:
        settings: Settings holding the SMTP_* values
        to_email: Recipient email address
        subject: Email subject
        body_text: Plain text email body
        body_html: HTML email body (optional)

    Raises:
        NotificationDeliveryError if SMTP is not configured or the send fails
    """
    if not smtp_configured(settings):
        logger.warning(f"SMTP not configured, cannot send email to {to_email}")
        raise NotificationDeliveryError("SMTP not configured")

    # Create message
    message = MIMEMultipart("alternative")
    message["From"] = settings.SMTP_FROM_EMAIL or settings.SMTP_USERNAME
    message["To"] = to_email
    message["Subject"] = subject

    message.attach(MIMEText(body_text, "plain"))
    if body_html:
        message.attach(MIMEText(body_html, "html"))

    try:
        if settings.SMTP_USE_TLS:
            # Implicit TLS (port 465)
            await aiosmtplib.send(
                message,
                hostname=settings.SMTP_HOST,
                port=settings.SMTP_PORT,
                username=settings.SMTP_USERNAME,
                password=settings.SMTP_PASSWORD,
                use_tls=True,
            )
        else:
            # STARTTLS (port 587)
            await aiosmtplib.send(
                message,
                hostname=settings.SMTP_HOST,
                port=settings.SMTP_PORT,
                username=settings.SMTP_USERNAME,
                password=settings.SMTP_PASSWORD,
                start_tls=True,
            )
    except (aiosmtplib.SMTPException, OSError) as e:
        logger.error(f"❌ Error sending email to {to_email}: {e}")
        raise NotificationDeliveryError(f"Failed to send email to {to_email}: {e}") from e

    logger.info(f"✅ Email sent to {to_email}")
