"""In-memory notification sender for testing."""

from __future__ import annotations

import asyncio
from typing import Iterable, List, Optional, Set

from .base import Notification, NotificationIntent, NotificationSender


class DeliveryError(RuntimeError):
    """Raised by the in-memory sender for recipients configured to fail."""


class InMemoryNotificationSender(NotificationSender):
    """Record every notification instead of delivering it."""

    def __init__(self, failing_recipients: Iterable[str] = ()) -> None:
        self.sent: List[Notification] = []
        self.failed: List[Notification] = []
        self._failing: Set[str] = set(failing_recipients)
        self._lock = asyncio.Lock()

    def fail_for(self, *user_ids: str) -> None:
        """Make delivery to ``user_ids`` raise ``DeliveryError``."""
        self._failing.update(user_ids)

    async def send(self, notification: Notification) -> None:
        async with self._lock:
            if notification.recipient.id in self._failing:
                self.failed.append(notification)
                raise DeliveryError(f"Delivery to {notification.recipient.email} failed")
            self.sent.append(notification)

    def of_intent(
        self, intent: NotificationIntent, recipient_id: Optional[str] = None
    ) -> List[Notification]:
        return [
            n
            for n in self.sent
            if n.intent == intent
            and (recipient_id is None or n.recipient.id == recipient_id)
        ]

    def clear(self) -> None:
        self.sent.clear()
        self.failed.clear()
