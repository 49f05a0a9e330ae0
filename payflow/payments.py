"""Payment processor collaborator."""

from __future__ import annotations

import abc
import asyncio
import logging
import random
import time
import uuid
from typing import List, Optional

from pydantic import BaseModel

from .contracts import PaymentRequest

logger = logging.getLogger(__name__)


class PaymentResult(BaseModel):
    success: bool
    transaction_id: Optional[str] = None
    error: Optional[str] = None


def new_transaction_id() -> str:
    return f"txn_{int(time.time() * 1000)}_{uuid.uuid4().hex[:10]}"


class PaymentProcessor(metaclass=abc.ABCMeta):
    """Moves funds for an approved payment request."""

    @abc.abstractmethod
    async def process(self, payment_request: PaymentRequest) -> PaymentResult:
        """Attempt the payment and report the outcome.

        Implementations may also raise; the engine treats an exception as a
        failed payment.
        """
        raise NotImplementedError


class SimulatedPaymentProcessor(PaymentProcessor):
    """Succeeds with probability ``success_rate`` after ``delay`` seconds."""

    def __init__(
        self,
        success_rate: float = 0.95,
        delay: float = 0.0,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.success_rate = success_rate
        self.delay = delay
        self._rng = rng or random.Random()

    async def process(self, payment_request: PaymentRequest) -> PaymentResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self._rng.random() < self.success_rate:
            return PaymentResult(success=True, transaction_id=new_transaction_id())
        logger.info(f"Simulated payment failure for request {payment_request.id}")
        return PaymentResult(success=False, error="Payment declined")


class StaticPaymentProcessor(PaymentProcessor):
    """Always returns the same outcome and records every call."""

    def __init__(self, succeed: bool = True, error: str = "Payment declined") -> None:
        self.succeed = succeed
        self.error = error
        self.calls: List[PaymentRequest] = []

    async def process(self, payment_request: PaymentRequest) -> PaymentResult:
        self.calls.append(payment_request)
        if self.succeed:
            return PaymentResult(success=True, transaction_id=new_transaction_id())
        return PaymentResult(success=False, error=self.error)
