"""Node-kind specific execution for payflow workflow instances."""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

from .approvers import ApproverResolver
from .conditions import evaluate
from .config import EngineConfig
from .contracts import (
    ApprovalNode,
    ConditionNode,
    EndNode,
    InstanceStatus,
    Node,
    NodeKind,
    NodeStatus,
    NotifyNode,
    PaymentNode,
    PaymentStatus,
    StartNode,
    WorkflowInstance,
)
from .errors import NoApproversError, WorkflowError
from .notifications import FinalStatus, NotificationDispatcher
from .payments import PaymentProcessor, PaymentResult
from .persistence import WorkflowRepository
from .scheduler import BaseScheduler

logger = logging.getLogger(__name__)

TimerHandler = Callable[[str, str], Awaitable[None]]


@dataclass(frozen=True)
class NodeOutcome:
    """What the controller should do after a node ran."""

    status: NodeStatus

    @property
    def completed(self) -> bool:
        return self.status == NodeStatus.COMPLETED


class NodeExecutor:
    """Performs the entry action of each node kind.

    Every kind except Approval finishes within the call. Approval nodes are
    left Running with their reminder or auto-approve timer armed; the
    controller resolves them when a decision or timeout arrives.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        approvers: ApproverResolver,
        dispatcher: NotificationDispatcher,
        payments: PaymentProcessor,
        scheduler: BaseScheduler,
        on_reminder: TimerHandler,
        on_timeout: TimerHandler,
        config: Optional[EngineConfig] = None,
    ) -> None:
        self._repository = repository
        self._approvers = approvers
        self._dispatcher = dispatcher
        self._payments = payments
        self._scheduler = scheduler
        self._on_reminder = on_reminder
        self._on_timeout = on_timeout
        self._config = config or EngineConfig()
        self._handlers: Dict[NodeKind, Callable[[WorkflowInstance, Node], Awaitable[NodeOutcome]]] = {
            NodeKind.START: self._execute_start,
            NodeKind.APPROVAL: self._execute_approval,
            NodeKind.CONDITION: self._execute_condition,
            NodeKind.NOTIFY: self._execute_notify,
            NodeKind.PAYMENT: self._execute_payment,
            NodeKind.END: self._execute_end,
        }
        missing = set(NodeKind) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No executor for node kinds: {sorted(k.value for k in missing)}")

    def timeout_for(self, node: ApprovalNode) -> float:
        if node.data.timeout_hours is None:
            return self._config.default_timeout_hours
        return node.data.timeout_hours

    async def _persist(self, instance: WorkflowInstance) -> None:
        await self._repository.save_instance(instance)

    async def execute(self, instance: WorkflowInstance, node: Node) -> NodeOutcome:
        """Run ``node``, which must be Pending.

        Any exception raised while the node runs fails both the node and the
        instance; the error is recorded on the instance rather than raised.
        """
        instance.start_node(node.id)
        await self._persist(instance)
        logger.info(
            f"Executing node {node.display_name} ({node.kind}) for instance={instance.id}"
        )

        handler = self._handlers[NodeKind(node.kind)]
        try:
            return await handler(instance, node)
        except Exception as exc:
            logger.error(f"Node {node.id} failed for instance={instance.id}: {exc}")
            await self.fail(instance, node.id, str(exc))
            return NodeOutcome(NodeStatus.FAILED)

    async def fail(self, instance: WorkflowInstance, node_id: str, error: str) -> None:
        """Fail ``node_id`` and the whole instance."""
        if instance.is_terminal:
            return
        instance.resolve_node(node_id, NodeStatus.FAILED, error=error)
        self._scheduler.cancel(instance.id, node_id)
        await self.finish(
            instance, InstanceStatus.FAILED, error=error, final_status=FinalStatus.FAILED
        )

    async def finish(
        self,
        instance: WorkflowInstance,
        status: InstanceStatus,
        *,
        error: Optional[str] = None,
        final_status: Optional[FinalStatus] = None,
    ) -> None:
        """Move the instance to a terminal status and tell the stakeholders.

        On completion every node that never ran is marked Skipped. On failure
        nodes are left where they stopped.
        """
        if status == InstanceStatus.COMPLETED:
            for node_id, state in instance.node_states.items():
                if not state.is_terminal:
                    instance.skip_node(node_id)
        instance.finish(status, error)
        self._scheduler.cancel_instance(instance.id)
        await self._persist(instance)

        if final_status is not None:
            try:
                stakeholders = await self._approvers.stakeholders(instance)
                await self._dispatcher.final_status(instance, stakeholders, final_status)
            except Exception as exc:
                logger.warning(
                    f"Could not send final status for instance={instance.id}: {exc}"
                )

    def arm_timers(self, instance: WorkflowInstance, node: ApprovalNode) -> None:
        timeout = self.timeout_for(node)
        if node.data.auto_approve_on_timeout:
            self._scheduler.schedule(
                instance.id,
                node.id,
                timeout,
                functools.partial(self._on_timeout, instance.id, node.id),
                kind="auto_approve",
            )
        else:
            self._scheduler.schedule(
                instance.id,
                node.id,
                timeout,
                functools.partial(self._on_reminder, instance.id, node.id),
                repeat=True,
                kind="reminder",
            )

    # ------------------------------------------------------------------
    # Per-kind handlers

    async def _execute_start(self, instance: WorkflowInstance, node: StartNode) -> NodeOutcome:
        instance.resolve_node(node.id, NodeStatus.COMPLETED, result={"message": "Workflow started"})
        await self._persist(instance)
        return NodeOutcome(NodeStatus.COMPLETED)

    async def _execute_approval(
        self, instance: WorkflowInstance, node: ApprovalNode
    ) -> NodeOutcome:
        approvers = await self._approvers.resolve(node.data.approver, instance.org_id)
        if not approvers:
            raise NoApproversError(node.id, str(node.data.approver))

        state = instance.state(node.id)
        state.assignees = [u.id for u in approvers]
        report = await self._dispatcher.approval_requested(instance, node, approvers)
        state.result = {"requested": report.as_result()}
        self.arm_timers(instance, node)
        await self._persist(instance)
        logger.info(
            f"Approval requests sent to {len(approvers)} approver(s) for node {node.id} "
            f"of instance={instance.id}"
        )
        return NodeOutcome(NodeStatus.RUNNING)

    async def _execute_condition(
        self, instance: WorkflowInstance, node: ConditionNode
    ) -> NodeOutcome:
        met = evaluate(node.data.predicate, instance.metadata)
        instance.resolve_node(node.id, NodeStatus.COMPLETED, result={"condition_met": met})
        await self._persist(instance)
        return NodeOutcome(NodeStatus.COMPLETED)

    async def _execute_notify(self, instance: WorkflowInstance, node: NotifyNode) -> NodeOutcome:
        recipients = await self._approvers.recipients(
            node.data.recipients, instance, node.data.role
        )
        report = await self._dispatcher.custom(
            instance, node.display_name, recipients, node.data.message_template
        )
        instance.resolve_node(node.id, NodeStatus.COMPLETED, result=report.as_result())
        await self._persist(instance)
        return NodeOutcome(NodeStatus.COMPLETED)

    async def _execute_payment(
        self, instance: WorkflowInstance, node: PaymentNode
    ) -> NodeOutcome:
        request = await self._repository.get_payment_request(instance.payment_request_id)
        if request is None:
            raise WorkflowError(f"Payment request {instance.payment_request_id} not found")

        logger.info(f"Triggering payment processing for request {request.id}")
        try:
            result = await self._payments.process(request)
        except Exception as exc:
            logger.warning(f"Payment processor raised for request {request.id}: {exc}")
            result = PaymentResult(success=False, error=str(exc))

        if result.success:
            instance.resolve_node(node.id, NodeStatus.COMPLETED, result=result.model_dump())
            await self._repository.update_payment_request_status(request.id, PaymentStatus.PAID)
            await self._persist(instance)
            logger.info(f"Payment processed for request {request.id}")
            return NodeOutcome(NodeStatus.COMPLETED)

        error = f"Payment failed: {result.error or 'unknown error'}"
        instance.resolve_node(node.id, NodeStatus.FAILED, result=result.model_dump(), error=error)
        await self.finish(
            instance, InstanceStatus.FAILED, error=error, final_status=FinalStatus.FAILED
        )
        logger.warning(f"Payment failed for request {request.id}: {result.error}")
        return NodeOutcome(NodeStatus.FAILED)

    async def _execute_end(self, instance: WorkflowInstance, node: EndNode) -> NodeOutcome:
        instance.resolve_node(
            node.id, NodeStatus.COMPLETED, result={"message": "Workflow completed successfully"}
        )
        await self.finish(
            instance, InstanceStatus.COMPLETED, final_status=FinalStatus.PROCESSED
        )
        return NodeOutcome(NodeStatus.COMPLETED)
