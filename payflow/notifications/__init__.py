"""Notification sender factory and dispatcher."""

from __future__ import annotations

import os
from typing import Optional

from ..config import PayflowConfig, load_config
from .base import FinalStatus, Notification, NotificationIntent, NotificationSender
from .dispatcher import DeliveryReport, NotificationDispatcher
from .inmemory import DeliveryError, InMemoryNotificationSender
from .log import LoggingNotificationSender


def get_sender(
    backend: Optional[str] = None, config: Optional[PayflowConfig] = None
) -> NotificationSender:
    """Factory function to get the configured notification sender."""

    config = config or load_config()
    backend = (
        backend
        or os.getenv("PAYFLOW_NOTIFIER")
        or config.notifications.backend
    ).lower()

    if backend == "log":
        return LoggingNotificationSender()
    elif backend == "inmemory":
        return InMemoryNotificationSender()
    else:
        raise ValueError(f"Unsupported notification backend: {backend}")


__all__ = [
    "DeliveryError",
    "DeliveryReport",
    "FinalStatus",
    "InMemoryNotificationSender",
    "LoggingNotificationSender",
    "Notification",
    "NotificationDispatcher",
    "NotificationIntent",
    "NotificationSender",
    "get_sender",
]
