"""Translate workflow events into notification sender calls."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from ..constants import DEFAULT_BASE_URL
from ..contracts import ApprovalNode, User, WorkflowInstance, utcnow
from .base import FinalStatus, Notification, NotificationIntent, NotificationSender
from .templates import build_message

logger = logging.getLogger(__name__)


class DeliveryReport(BaseModel):
    """Outcome of one fan-out."""

    intent: NotificationIntent
    delivered: List[str] = Field(default_factory=list)
    failed: Dict[str, str] = Field(default_factory=dict)

    @property
    def attempted(self) -> int:
        return len(self.delivered) + len(self.failed)

    def as_result(self) -> Dict[str, Any]:
        return {"notified": len(self.delivered), "failed": len(self.failed)}


class NotificationDispatcher:
    """Fans workflow events out to recipients.

    Delivery is best-effort: every failure is logged and reported in the
    returned ``DeliveryReport``, but never raised to the caller.
    """

    def __init__(self, sender: NotificationSender, base_url: str = DEFAULT_BASE_URL) -> None:
        self._sender = sender
        self._base_url = base_url.rstrip("/")

    @property
    def sender(self) -> NotificationSender:
        return self._sender

    def base_context(self, instance: WorkflowInstance) -> Dict[str, Any]:
        meta = instance.metadata
        return {
            "organization": meta.organization_name,
            "request_title": meta.title,
            "description": meta.description,
            "amount": f"{meta.currency} {meta.amount:,.2f}",
            "requester": meta.requester_name or meta.requester_id,
            "category": meta.category,
            "urgency": meta.urgency.value,
            "instance_id": instance.id,
            "payment_request_id": instance.payment_request_id,
            "approval_url": f"{self._base_url}/org/approvals/review/{instance.payment_request_id}",
            "status_url": f"{self._base_url}/org/payments/{instance.payment_request_id}",
        }

    async def dispatch(
        self,
        intent: NotificationIntent,
        recipients: Sequence[User],
        context: Dict[str, Any],
        template: Optional[str] = None,
    ) -> DeliveryReport:
        """Send one notification per recipient concurrently."""
        report = DeliveryReport(intent=intent)
        if not recipients:
            logger.info(f"No recipients for {intent.value} notification")
            return report

        notifications = []
        for user in recipients:
            variables = {**context, "recipient_name": user.name or user.email}
            subject, body = build_message(intent, variables, template)
            notifications.append(
                Notification(
                    intent=intent,
                    recipient=user,
                    subject=subject,
                    body=body,
                    context=variables,
                )
            )

        outcomes = await asyncio.gather(
            *(self._sender.send(n) for n in notifications), return_exceptions=True
        )
        for notification, outcome in zip(notifications, outcomes):
            user_id = notification.recipient.id
            if isinstance(outcome, BaseException):
                logger.warning(
                    f"Failed to deliver {intent.value} notification to {user_id}: {outcome}"
                )
                report.failed[user_id] = str(outcome)
            else:
                report.delivered.append(user_id)
        return report

    # ------------------------------------------------------------------
    # Workflow events

    def _step_context(self, instance: WorkflowInstance, node: ApprovalNode) -> Dict[str, Any]:
        return {
            **self.base_context(instance),
            "step_name": node.display_name,
            "step_number": node.data.step_order,
            "approver": str(node.data.approver),
            "timeout_hours": node.data.timeout_hours,
        }

    async def approval_requested(
        self, instance: WorkflowInstance, node: ApprovalNode, approvers: Sequence[User]
    ) -> DeliveryReport:
        return await self.dispatch(
            NotificationIntent.APPROVAL_REQUEST,
            approvers,
            self._step_context(instance, node),
            node.data.message_template,
        )

    async def approval_resolved(
        self,
        instance: WorkflowInstance,
        node: ApprovalNode,
        requester: Optional[User],
        approved: bool,
        decided_by: str,
        comments: Optional[str] = None,
    ) -> DeliveryReport:
        context = {
            **self._step_context(instance, node),
            "approved": approved,
            "status": "APPROVED" if approved else "REJECTED",
            "decided_by": decided_by,
            "comments": comments or "",
        }
        recipients = [requester] if requester is not None else []
        return await self.dispatch(NotificationIntent.APPROVAL_UPDATE, recipients, context)

    async def reminder_due(
        self,
        instance: WorkflowInstance,
        node: ApprovalNode,
        approvers: Sequence[User],
        reminder_number: int,
        interval_hours: float,
    ) -> DeliveryReport:
        context = {
            **self._step_context(instance, node),
            "reminder_number": reminder_number,
            "timeout_hours": interval_hours,
            "hours_waiting": round(interval_hours * reminder_number, 2),
        }
        return await self.dispatch(
            NotificationIntent.REMINDER, approvers, context, node.data.message_template
        )

    async def final_status(
        self,
        instance: WorkflowInstance,
        stakeholders: Sequence[User],
        status: FinalStatus,
    ) -> DeliveryReport:
        context = {
            **self.base_context(instance),
            "status": status.value,
            "processed_date": utcnow().date().isoformat(),
        }
        return await self.dispatch(NotificationIntent.FINAL_STATUS, stakeholders, context)

    async def custom(
        self,
        instance: WorkflowInstance,
        step_name: str,
        recipients: Sequence[User],
        template: Optional[str] = None,
    ) -> DeliveryReport:
        context = {**self.base_context(instance), "step_name": step_name}
        return await self.dispatch(NotificationIntent.CUSTOM, recipients, context, template)
