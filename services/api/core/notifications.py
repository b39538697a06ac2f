# services/api/core/notifications.py
"""
In-app notifications for split results, with optional e-mail delivery.
"""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from adapters.base import StorageAdapter
from core.email_sender import render_notification_html, send_notification_email
from models import Notification

logger = logging.getLogger(__name__)

SPLIT_COMPLETE = "DOCUMENT_SPLIT_COMPLETE"
SPLIT_FAILED = "DOCUMENT_SPLIT_FAILED"


class Notifier:
    """
    Persists a notification row and, when SMTP is configured and the user id
    looks like an e-mail address, mails it too.

    Raises whatever the storage adapter raises; callers in the split
    pipeline catch and log.
    """

    def __init__(
        self,
        storage: StorageAdapter,
        settings: Any = None,
        *,
        email_sender: Callable[..., Awaitable[bool]] = send_notification_email,
    ):
        self.storage = storage
        self.settings = settings
        self.email_sender = email_sender

    def _smtp_enabled(self) -> bool:
        s = self.settings
        return bool(s and s.smtp_host and s.smtp_user and s.smtp_password and s.smtp_from_email)

    def _absolute_url(self, action_url: Optional[str]) -> Optional[str]:
        if not action_url:
            return None
        base = (getattr(self.settings, "app_base_url", None) or "").rstrip("/")
        return f"{base}{action_url}" if base else action_url

    async def create_notification(
        self,
        *,
        user_id: str,
        type: str,
        title: str,
        message: str,
        severity: str = "INFO",
        category: str = "DOCUMENT",
        action_url: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> Notification:
        notification = self.storage.create_notification(
            {
                "user_id": user_id,
                "type": type,
                "title": title,
                "message": message,
                "severity": severity,
                "category": category,
                "action_url": action_url,
                "data": data or {},
            }
        )
        logger.info("[notify] %s -> %s (%s)", type, user_id, severity)

        if self._smtp_enabled() and "@" in user_id:
            errors: List[str] = list((data or {}).get("errors") or [])
            s = self.settings
            await self.email_sender(
                to_email=user_id,
                subject=title,
                body_html=render_notification_html(
                    title=title,
                    message=message,
                    action_url=self._absolute_url(action_url),
                    errors=errors,
                ),
                smtp_host=s.smtp_host,
                smtp_port=s.smtp_port,
                smtp_user=s.smtp_user,
                smtp_password=s.smtp_password,
                from_email=s.smtp_from_email,
                from_name=s.smtp_from_name,
            )

        return notification
