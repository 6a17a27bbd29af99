"""
Email delivery through Resend

Notification content templating is handled elsewhere; this module only turns a
named notification plus its payload into a plain message and delivers it.
"""

import html
import logging
from typing import Optional, Union

import resend

from .config import EMAIL_FROM_ADDRESS, RESEND_API_KEY

logger = logging.getLogger(__name__)

resend.api_key = RESEND_API_KEY

NOTIFICATION_SUBJECTS = {
    "booking_confirmed": "Your rental unit booking is confirmed",
    "trial_reminder_7d": "Your trial ends in 7 days",
    "trial_reminder_3d": "Your trial ends in 3 days",
    "trial_reminder_1d": "Your trial ends tomorrow",
    "trial_expired": "Your trial has ended",
    "trial_converted": "Your trial is now an active rental",
    "operational_alert": "[Shelfrent] Operational alert",
}


def render_payload(kind: str, payload: dict) -> str:
    """Minimal HTML rendering of a notification payload"""
    rows = "".join(
        f"<tr><td>{html.escape(str(key))}</td><td>{html.escape(str(value))}</td></tr>"
        for key, value in sorted(payload.items())
    )
    return f"<p>{html.escape(NOTIFICATION_SUBJECTS.get(kind, kind))}</p><table>{rows}</table>"


def deliver_email(
    to: Union[str, list[str]], subject: str, html_content: str, from_address: Optional[str] = None
) -> dict:
    """Send an email via Resend; raises on failure"""
    if not RESEND_API_KEY:
        logger.error("❌ No email service configured - RESEND_API_KEY missing")
        raise Exception("Email service not configured")

    recipients = [to] if isinstance(to, str) else to
    try:
        logger.info(f"📧 Sending email via Resend to: {recipients}")
        response = resend.Emails.send(
            {
                "from": from_address or EMAIL_FROM_ADDRESS,
                "to": recipients,
                "subject": subject,
                "html": html_content,
            }
        )
        logger.info(f"✅ Email sent successfully via Resend: {response}")
        return response
    except Exception as e:
        logger.error(f"❌ Email send error to {recipients}: {e}")
        raise Exception(f"Failed to send email: {str(e)}") from e


async def send_notification_email(to: str, kind: str, payload: dict) -> dict:
    """Deliver a named notification to one recipient"""
    subject = NOTIFICATION_SUBJECTS.get(kind, kind.replace("_", " ").capitalize())
    return deliver_email(to=to, subject=subject, html_content=render_payload(kind, payload))
