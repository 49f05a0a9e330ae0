"""Notification sender that writes messages to the log."""

from __future__ import annotations

import logging

from .base import Notification, NotificationSender

logger = logging.getLogger(__name__)


class LoggingNotificationSender(NotificationSender):
    """Default sender when no delivery service is configured."""

    async def send(self, notification: Notification) -> None:
        logger.info(
            f"Sending {notification.intent.value} notification to "
            f"{notification.recipient.email}: {notification.subject}"
        )
        logger.debug(notification.body)
