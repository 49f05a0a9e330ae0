"""Repository abstraction for workflow state persistence."""

from __future__ import annotations

from typing import Optional, Protocol

from ..contracts import InstanceStatus, PaymentRequest, PaymentStatus, WorkflowInstance


class WorkflowRepository(Protocol):
    """Protocol for durable document stores used by the engine."""

    async def save_instance(self, instance: WorkflowInstance) -> None:
        """Insert or replace a workflow instance."""

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        """Retrieve the workflow instance by id."""

    async def list_instances(
        self,
        *,
        org_id: Optional[str] = None,
        status: Optional[InstanceStatus] = None,
        payment_request_id: Optional[str] = None,
    ) -> list[WorkflowInstance]:
        """Return persisted instances matching every given field."""

    async def save_payment_request(self, payment_request: PaymentRequest) -> None:
        """Insert or replace a payment request record."""

    async def get_payment_request(self, request_id: str) -> PaymentRequest | None:
        """Retrieve a payment request by id."""

    async def update_payment_request_status(
        self, request_id: str, status: PaymentStatus
    ) -> PaymentRequest | None:
        """Set the status of a payment request and return the updated record."""
