"""In-memory implementation of the workflow repository."""

from __future__ import annotations

from typing import Dict, Optional

from ..contracts import InstanceStatus, PaymentRequest, PaymentStatus, WorkflowInstance
from .repository import WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Records are copied on the way in and
    out, so callers only ever hold snapshots.
    """

    def __init__(self) -> None:
        self._instances: Dict[str, WorkflowInstance] = {}
        self._requests: Dict[str, PaymentRequest] = {}

    # ------------------------------------------------------------------
    async def save_instance(self, instance: WorkflowInstance) -> None:
        self._instances[instance.id] = instance.model_copy(deep=True)

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        instance = self._instances.get(instance_id)
        return instance.model_copy(deep=True) if instance else None

    async def list_instances(
        self,
        *,
        org_id: Optional[str] = None,
        status: Optional[InstanceStatus] = None,
        payment_request_id: Optional[str] = None,
    ) -> list[WorkflowInstance]:
        return [
            wf.model_copy(deep=True)
            for wf in self._instances.values()
            if (org_id is None or wf.org_id == org_id)
            and (status is None or wf.status == status)
            and (payment_request_id is None or wf.payment_request_id == payment_request_id)
        ]

    # ------------------------------------------------------------------
    async def save_payment_request(self, payment_request: PaymentRequest) -> None:
        self._requests[payment_request.id] = payment_request.model_copy(deep=True)

    async def get_payment_request(self, request_id: str) -> PaymentRequest | None:
        request = self._requests.get(request_id)
        return request.model_copy(deep=True) if request else None

    async def update_payment_request_status(
        self, request_id: str, status: PaymentStatus
    ) -> PaymentRequest | None:
        request = self._requests.get(request_id)
        if request is None:
            return None
        request.status = status
        return request.model_copy(deep=True)
