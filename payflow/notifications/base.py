"""Base notification sender interface."""

from __future__ import annotations

import abc
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field

from ..contracts import User, utcnow


class NotificationIntent(str, Enum):
    APPROVAL_REQUEST = "approval_request"
    APPROVAL_UPDATE = "approval_update"
    REMINDER = "reminder"
    FINAL_STATUS = "final_status"
    CUSTOM = "custom"


class FinalStatus(str, Enum):
    PROCESSED = "PROCESSED"
    FAILED = "FAILED"
    REJECTED = "REJECTED"


class Notification(BaseModel):
    """A rendered message addressed to a single recipient."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    intent: NotificationIntent
    recipient: User
    subject: str
    body: str
    context: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class NotificationSender(metaclass=abc.ABCMeta):
    """Abstract delivery channel for notifications."""

    @abc.abstractmethod
    async def send(self, notification: Notification) -> None:
        """Deliver ``notification``.

        Raises:
            Exception: Delivery failed. The dispatcher records the failure and
                carries on.
        """
        raise NotImplementedError
