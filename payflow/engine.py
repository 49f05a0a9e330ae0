"""Graph traversal controller for payment-approval workflows."""

from __future__ import annotations

import asyncio
import logging
import weakref
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from .approvers import ApproverResolver
from .config import PayflowConfig, load_config
from .contracts import (
    ApprovalNode,
    Branch,
    InstanceStatus,
    NodeKind,
    NodeStatus,
    Organization,
    PaymentRequest,
    PaymentStatus,
    User,
    WorkflowGraph,
    WorkflowInstance,
)
from .errors import (
    DeadEndError,
    InstanceNotFoundError,
    InstanceTerminalError,
    NodeAlreadyResolvedError,
    NodeNotActiveError,
    NodeNotApprovalError,
)
from .executor import NodeExecutor
from .identity import IdentityResolver
from .notifications import (
    FinalStatus,
    NotificationDispatcher,
    NotificationSender,
    get_sender,
)
from .payments import PaymentProcessor
from .persistence import WorkflowRepository, get_repository
from .scheduler import BaseScheduler, get_scheduler

logger = logging.getLogger(__name__)


class PendingApproval(BaseModel):
    """An approval node waiting for a decision."""

    instance_id: str
    payment_request_id: str
    org_id: str
    node_id: str
    label: str
    assignees: List[str]
    started_at: Optional[datetime] = None
    reminders_sent: int = 0


class WorkflowEngine:
    """Owns workflow instances and drives them through their graphs.

    All mutation of one instance happens under that instance's lock: start,
    approval decisions and timer callbacks alike. Instances are persisted
    after every state transition and callers only ever receive copies.
    """

    def __init__(
        self,
        *,
        repository: WorkflowRepository,
        identity: IdentityResolver,
        payments: PaymentProcessor,
        sender: Optional[NotificationSender] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        scheduler: Optional[BaseScheduler] = None,
        config: Optional[PayflowConfig] = None,
    ) -> None:
        self._config = config or PayflowConfig()
        engine_config = self._config.engine
        self._repository = repository
        self._identity = identity
        self._payments = payments
        self._scheduler = scheduler or get_scheduler(config=self._config)
        if dispatcher is None:
            dispatcher = NotificationDispatcher(
                sender or get_sender(config=self._config),
                base_url=self._config.notifications.base_url,
            )
        elif sender is not None:
            raise ValueError("Pass either a sender or a dispatcher, not both")
        self._dispatcher = dispatcher
        self._approvers = ApproverResolver(
            identity,
            admin_role=engine_config.admin_role,
            system_actor=engine_config.system_actor,
        )
        self._executor = NodeExecutor(
            repository=repository,
            approvers=self._approvers,
            dispatcher=self._dispatcher,
            payments=payments,
            scheduler=self._scheduler,
            on_reminder=self._handle_reminder,
            on_timeout=self._handle_timeout,
            config=engine_config,
        )
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    @classmethod
    def from_config(
        cls,
        identity: IdentityResolver,
        payments: PaymentProcessor,
        config: Optional[PayflowConfig] = None,
    ) -> "WorkflowEngine":
        """Build an engine whose store, sender and scheduler come from config."""
        config = config or load_config()
        return cls(
            repository=get_repository(config=config),
            identity=identity,
            payments=payments,
            sender=get_sender(config=config),
            scheduler=get_scheduler(config=config),
            config=config,
        )

    @property
    def scheduler(self) -> BaseScheduler:
        return self._scheduler

    @property
    def repository(self) -> WorkflowRepository:
        return self._repository

    def _lock_for(self, instance_id: str) -> asyncio.Lock:
        lock = self._locks.get(instance_id)
        if lock is None:
            lock = self._locks[instance_id] = asyncio.Lock()
        return lock

    # ------------------------------------------------------------------
    # Public operations

    async def start_workflow(
        self,
        graph: WorkflowGraph,
        payment_request: PaymentRequest,
        requester: User,
        organization: Organization,
    ) -> WorkflowInstance:
        """Validate ``graph``, create an instance and run it from Start.

        Traversal continues synchronously until every branch is either
        waiting on an approval node or the instance has finished.

        Raises:
            NoStartNodeError: The graph has no Start node.
            InvalidGraphError: The graph violates a structural invariant.
        """
        graph.validate_structure()

        if await self._repository.get_payment_request(payment_request.id) is None:
            await self._repository.save_payment_request(payment_request)

        instance = WorkflowInstance.create(graph, payment_request, requester, organization)
        async with self._lock_for(instance.id):
            await self._repository.save_instance(instance)
            logger.info(
                f"Workflow instance {instance.id} started for payment request "
                f"{payment_request.id}"
            )
            await self._run_node(instance, graph.start_node().id)
            return instance.model_copy(deep=True)

    async def process_approval_decision(
        self,
        instance_id: str,
        node_id: str,
        approved: bool,
        decided_by: str,
        comments: Optional[str] = None,
    ) -> WorkflowInstance:
        """Apply a human decision to an approval node.

        The first decision for a node wins; any later one is rejected.

        Raises:
            InstanceNotFoundError: No instance with ``instance_id``.
            NodeNotApprovalError: ``node_id`` is unknown or not an approval node.
            NodeAlreadyResolvedError: The node was already decided.
            InstanceTerminalError: The instance finished while the node was open.
            NodeNotActiveError: The traversal has not reached the node yet.
        """
        async with self._lock_for(instance_id):
            instance = await self._repository.get_instance(instance_id)
            if instance is None:
                raise InstanceNotFoundError(instance_id)

            node = instance.graph.node(node_id)
            if node is None or node.kind != NodeKind.APPROVAL:
                raise NodeNotApprovalError(instance_id, node_id)

            state = instance.state(node_id)
            if state.is_terminal:
                raise NodeAlreadyResolvedError(instance_id, node_id, state.status.value)
            if instance.is_terminal:
                raise InstanceTerminalError(instance_id, instance.status.value)
            if state.status != NodeStatus.RUNNING:
                raise NodeNotActiveError(instance_id, node_id)

            await self._resolve_approval(instance, node, approved, decided_by, comments)
            return instance.model_copy(deep=True)

    async def get_instance(self, instance_id: str) -> WorkflowInstance:
        """Return a read-only snapshot of an instance."""
        instance = await self._repository.get_instance(instance_id)
        if instance is None:
            raise InstanceNotFoundError(instance_id)
        return instance

    async def list_instances(
        self,
        *,
        org_id: Optional[str] = None,
        status: Optional[InstanceStatus] = None,
        payment_request_id: Optional[str] = None,
    ) -> List[WorkflowInstance]:
        return await self._repository.list_instances(
            org_id=org_id, status=status, payment_request_id=payment_request_id
        )

    async def pending_approvals(self, org_id: Optional[str] = None) -> List[PendingApproval]:
        """Every approval node currently waiting for a decision."""
        pending = []
        for instance in await self.list_instances(org_id=org_id, status=InstanceStatus.RUNNING):
            for node_id in instance.open_approvals():
                node = instance.graph.node(node_id)
                state = instance.state(node_id)
                pending.append(
                    PendingApproval(
                        instance_id=instance.id,
                        payment_request_id=instance.payment_request_id,
                        org_id=instance.org_id,
                        node_id=node_id,
                        label=node.display_name,
                        assignees=list(state.assignees),
                        started_at=state.started_at,
                        reminders_sent=state.reminders_sent,
                    )
                )
        return pending

    async def shutdown(self) -> None:
        await self._scheduler.shutdown()

    # ------------------------------------------------------------------
    # Traversal

    async def _run_node(self, instance: WorkflowInstance, node_id: str) -> None:
        node = instance.graph.node(node_id)
        outcome = await self._executor.execute(instance, node)
        if outcome.completed and not instance.is_terminal:
            await self.advance(instance, node_id)

    async def advance(self, instance: WorkflowInstance, from_node_id: str) -> None:
        """Execute the targets of every edge leaving a completed node.

        Must be called with the instance lock held, exactly once per source
        node, right after that node completed. Condition nodes only follow
        the edges of the branch they evaluated to. Targets that already ran
        (a join reached through another branch) are not run again.
        """
        if instance.is_terminal:
            return
        graph = instance.graph
        node = graph.node(from_node_id)
        edges = graph.outgoing(from_node_id)

        if node.kind == NodeKind.CONDITION:
            result = instance.state(from_node_id).result or {}
            branch = Branch.MATCHED if result.get("condition_met", True) else Branch.UNMATCHED
            edges = [e for e in edges if e.branch == branch]

        if not edges:
            if node.kind == NodeKind.END:
                return
            error = DeadEndError(node.id, node.kind)
            logger.error(f"Instance {instance.id} stopped: {error}")
            await self._executor.finish(
                instance,
                InstanceStatus.FAILED,
                error=str(error),
                final_status=FinalStatus.FAILED,
            )
            return

        for edge in edges:
            if instance.is_terminal:
                logger.info(
                    f"Instance {instance.id} finished; not following edge {edge.id}"
                )
                return
            if instance.state(edge.target).status != NodeStatus.PENDING:
                logger.debug(
                    f"Node {edge.target} of instance {instance.id} already visited; "
                    f"ignoring edge {edge.id}"
                )
                continue
            await self._run_node(instance, edge.target)

    async def _resolve_approval(
        self,
        instance: WorkflowInstance,
        node: ApprovalNode,
        approved: bool,
        decided_by: str,
        comments: Optional[str],
    ) -> bool:
        """Compare-and-set an approval node and carry out the consequences.

        Returns ``False`` when the node was no longer Running.
        """
        state = instance.state(node.id)
        result = {**(state.result or {}), "approved": approved}
        status = NodeStatus.COMPLETED if approved else NodeStatus.FAILED
        if not instance.resolve_node(
            node.id, status, result=result, decided_by=decided_by, comments=comments
        ):
            return False
        self._scheduler.cancel(instance.id, node.id)
        await self._repository.save_instance(instance)
        logger.info(
            f"Node {node.id} of instance {instance.id} "
            f"{'approved' if approved else 'rejected'} by {decided_by}"
        )

        try:
            requester = await self._identity.get_user(instance.metadata.requester_id)
            await self._dispatcher.approval_resolved(
                instance, node, requester, approved, decided_by, comments
            )
        except Exception as exc:
            logger.warning(
                f"Could not notify requester about node {node.id} of instance {instance.id}: {exc}"
            )

        try:
            if not approved:
                await self._repository.update_payment_request_status(
                    instance.payment_request_id, PaymentStatus.REJECTED
                )
                await self._executor.finish(
                    instance,
                    InstanceStatus.FAILED,
                    error=f"Rejected at node {node.id} by {decided_by}",
                    final_status=FinalStatus.REJECTED,
                )
                return True

            if node.data.is_payment_trigger:
                await self._repository.update_payment_request_status(
                    instance.payment_request_id, PaymentStatus.APPROVED
                )
            await self.advance(instance, node.id)
        except Exception as exc:
            logger.error(f"Instance {instance.id} failed after node {node.id} was decided: {exc}")
            await self._executor.fail(instance, node.id, str(exc))
        return True

    # ------------------------------------------------------------------
    # Timer callbacks

    async def _handle_timeout(self, instance_id: str, node_id: str) -> None:
        async with self._lock_for(instance_id):
            instance = await self._repository.get_instance(instance_id)
            if instance is None:
                logger.warning(f"Auto-approval timer fired for unknown instance {instance_id}")
                return
            if instance.is_terminal or instance.state(node_id).status != NodeStatus.RUNNING:
                logger.info(
                    f"Ignoring auto-approval timer for resolved node {node_id} "
                    f"of instance {instance_id}"
                )
                return

            node = instance.graph.node(node_id)
            timeout = self._executor.timeout_for(node)
            logger.info(f"Auto-approving node {node_id} of instance {instance_id} after {timeout}h")
            await self._resolve_approval(
                instance,
                node,
                True,
                self._config.engine.system_actor,
                f"Automatically approved after {timeout} hours without a decision",
            )

    async def _handle_reminder(self, instance_id: str, node_id: str) -> None:
        async with self._lock_for(instance_id):
            instance = await self._repository.get_instance(instance_id)
            if instance is None:
                logger.warning(f"Reminder timer fired for unknown instance {instance_id}")
                self._scheduler.cancel(instance_id, node_id)
                return
            state = instance.state(node_id)
            if instance.is_terminal or state.status != NodeStatus.RUNNING:
                logger.info(
                    f"Ignoring reminder for resolved node {node_id} of instance {instance_id}"
                )
                self._scheduler.cancel(instance_id, node_id)
                return

            node = instance.graph.node(node_id)
            state.reminders_sent += 1
            await self._repository.save_instance(instance)
            approvers = await self._approvers.users_by_id(state.assignees)
            await self._dispatcher.reminder_due(
                instance,
                node,
                approvers,
                state.reminders_sent,
                self._executor.timeout_for(node),
            )
            logger.info(
                f"Reminder {state.reminders_sent} sent for node {node_id} of instance {instance_id}"
            )
