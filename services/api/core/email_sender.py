# services/api/core/email_sender.py
from __future__ import annotations
import aiosmtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import List, Optional
import logging

logger = logging.getLogger(__name__)


def render_notification_html(
    *,
    title: str,
    message: str,
    action_url: Optional[str] = None,
    errors: Optional[List[str]] = None,
) -> str:
    """Small HTML body for split notifications."""
    parts = [f"<h2>{escape(title)}</h2>", f"<p>{escape(message)}</p>"]
    if errors:
        items = "".join(f"<li>{escape(e)}</li>" for e in errors)
        parts.append(f"<p>Pages with errors:</p><ul>{items}</ul>")
    if action_url:
        parts.append(f'<p><a href="{escape(action_url, quote=True)}">Open documents</a></p>')
    return "\n".join(parts)


def build_notification_message(
    *,
    to_email: str,
    subject: str,
    body_html: str,
    from_email: str,
    from_name: str,
) -> MIMEMultipart:
    msg = MIMEMultipart("alternative")
    msg["From"] = f"{from_name} <{from_email}>" if from_name else from_email
    msg["To"] = to_email
    msg["Subject"] = f"[Drawing Split] {subject}"
    msg.attach(MIMEText(body_html, "html", "utf-8"))
    return msg


async def send_notification_email(
    *,
    to_email: str,
    subject: str,
    body_html: str,
    smtp_host: str,
    smtp_port: int,
    smtp_user: str,
    smtp_password: str,
    from_email: str,
    from_name: str,
) -> bool:
    """
    Deliver one split notification over SMTP (STARTTLS).

    Delivery is best effort: the in-app notification is already stored, so
    SMTP failures are logged and reported as False rather than raised.
    """
    msg = build_notification_message(
        to_email=to_email,
        subject=subject,
        body_html=body_html,
        from_email=from_email,
        from_name=from_name,
    )
    try:
        await aiosmtplib.send(
            msg,
            hostname=smtp_host,
            port=smtp_port,
            username=smtp_user,
            password=smtp_password,
            start_tls=True,
        )
    except (aiosmtplib.SMTPException, OSError) as e:
        logger.error(f"[email] split notification to {to_email} failed: {e}")
        return False

    logger.info(f"[email] split notification sent to {to_email}: {subject}")
    return True
