"""
Notification Contract
=====================

The narrow "send" contract the ticket lifecycle and the alert engine depend
on. Every method is best-effort: implementations log delivery failures and
report them through the boolean result, they never raise.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict
from uuid import uuid4

from supportdesk.config import NotificationPriority


@dataclass
class ChannelNotification:
    """Structured event pushed to a broadcast channel."""

    type: str
    title: str
    message: str
    priority: NotificationPriority = NotificationPriority.NORMAL
    data: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        """Convert to a JSON-serialisable dict."""
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "priority": self.priority.value,
            "data": self.data,
            "created_at": self.created_at.isoformat(),
        }


class INotificationDispatcher(ABC):
    """Interface for multi-channel notification delivery."""

    @property
    @abstractmethod
    def email_enabled(self) -> bool:
        """Whether an email transport is configured."""

    @abstractmethod
    async def send_to_channel(self, channel: str, notification: ChannelNotification) -> bool:
        """Push a notification to every subscriber of a channel."""

    @abstractmethod
    async def send_email(self, address: str, subject: str, body: str) -> bool:
        """Send an HTML email."""

    @abstractmethod
    async def send_webhook(self, url: str, payload: Dict[str, Any]) -> bool:
        """POST a JSON payload to a webhook."""
