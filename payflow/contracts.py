"""Core data contracts for payflow workflow graphs and instances."""

from __future__ import annotations

import json
import logging
import uuid
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .errors import (
    InstanceTerminalError,
    InvalidGraphError,
    InvalidTransitionError,
    NoStartNodeError,
)

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NodeKind(str, Enum):
    START = "start"
    APPROVAL = "approval"
    CONDITION = "condition"
    NOTIFY = "notify"
    PAYMENT = "payment"
    END = "end"


class NodeStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_NODE_STATUSES = frozenset(
    {NodeStatus.COMPLETED, NodeStatus.FAILED, NodeStatus.SKIPPED}
)

_NODE_TRANSITIONS = {
    NodeStatus.PENDING: {NodeStatus.RUNNING, NodeStatus.SKIPPED},
    NodeStatus.RUNNING: {NodeStatus.COMPLETED, NodeStatus.FAILED, NodeStatus.SKIPPED},
    NodeStatus.COMPLETED: set(),
    NodeStatus.FAILED: set(),
    NodeStatus.SKIPPED: set(),
}


class InstanceStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PAID = "PAID"


class Urgency(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class ApproverType(str, Enum):
    ROLE = "ROLE"
    USER = "USER"


class Branch(str, Enum):
    """Outcome label carried by the edges leaving a Condition node."""

    MATCHED = "matched"
    UNMATCHED = "unmatched"


class RecipientScope(str, Enum):
    STAKEHOLDERS = "stakeholders"
    REQUESTER = "requester"
    APPROVERS = "approvers"
    ORG_ADMINS = "org_admins"
    ROLE = "role"


# ----------------------------------------------------------------------
# Collaborator records


class User(BaseModel):
    id: str
    email: str
    name: str = ""
    role: str = "ORG_USER"
    org_id: Optional[str] = None
    active: bool = True


class Organization(BaseModel):
    id: str
    name: str
    currency: str = "USD"


class PaymentRequest(BaseModel):
    """A request to move funds, as held by the surrounding application."""

    id: str
    org_id: str
    title: str = ""
    description: str = ""
    amount: float
    currency: str = "USD"
    requested_by: str
    category: str = ""
    urgency: Urgency = Urgency.MEDIUM
    status: PaymentStatus = PaymentStatus.PENDING
    metadata: Dict[str, Any] = Field(default_factory=dict)


# ----------------------------------------------------------------------
# Graph definition


class ApproverSpec(BaseModel):
    type: ApproverType = ApproverType.ROLE
    value: str

    def __str__(self) -> str:
        return f"{self.type.value}:{self.value}"


class Predicate(BaseModel):
    """Comparison of one payment request attribute against a threshold."""

    field: str
    operator: str = "gte"
    threshold: Any = None


class ApprovalData(BaseModel):
    approver: ApproverSpec
    # None falls back to the engine's configured default.
    timeout_hours: Optional[float] = None
    auto_approve_on_timeout: bool = False
    is_payment_trigger: bool = False
    message_template: Optional[str] = None
    step_order: int = 1


class ConditionData(BaseModel):
    predicate: Optional[Predicate] = None

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_conditions(cls, data: Any) -> Any:
        """Translate ``{"amountThreshold": N}`` / ``{"category": C}`` shorthands."""
        if not isinstance(data, dict) or "predicate" in data:
            return data
        legacy = data.get("conditions", data)
        if not isinstance(legacy, dict):
            return {"predicate": None}
        threshold = legacy.get("amountThreshold", legacy.get("amount_threshold"))
        if threshold is not None:
            return {"predicate": {"field": "amount", "operator": "gte", "threshold": threshold}}
        if legacy.get("category") is not None:
            return {
                "predicate": {"field": "category", "operator": "eq", "threshold": legacy["category"]}
            }
        return {"predicate": None}


class NotifyData(BaseModel):
    message_template: Optional[str] = None
    recipients: RecipientScope = RecipientScope.STAKEHOLDERS
    role: Optional[str] = None


class _NodeBase(BaseModel):
    id: str
    label: str = ""

    @property
    def display_name(self) -> str:
        return self.label or self.id


class StartNode(_NodeBase):
    kind: Literal["start"] = "start"
    data: Dict[str, Any] = Field(default_factory=dict)


class ApprovalNode(_NodeBase):
    kind: Literal["approval"] = "approval"
    data: ApprovalData


class ConditionNode(_NodeBase):
    kind: Literal["condition"] = "condition"
    data: ConditionData = Field(default_factory=ConditionData)


class NotifyNode(_NodeBase):
    kind: Literal["notify"] = "notify"
    data: NotifyData = Field(default_factory=NotifyData)


class PaymentNode(_NodeBase):
    kind: Literal["payment"] = "payment"
    data: Dict[str, Any] = Field(default_factory=dict)


class EndNode(_NodeBase):
    kind: Literal["end"] = "end"
    data: Dict[str, Any] = Field(default_factory=dict)


Node = Annotated[
    Union[StartNode, ApprovalNode, ConditionNode, NotifyNode, PaymentNode, EndNode],
    Field(discriminator="kind"),
]


class Edge(BaseModel):
    id: str
    source: str
    target: str
    branch: Optional[Branch] = None

    @field_validator("branch", mode="before")
    @classmethod
    def _coerce_branch(cls, value: Any) -> Any:
        if isinstance(value, bool):
            return Branch.MATCHED if value else Branch.UNMATCHED
        if isinstance(value, str) and value.lower() in {"true", "yes"}:
            return Branch.MATCHED
        if isinstance(value, str) and value.lower() in {"false", "no"}:
            return Branch.UNMATCHED
        return value


class WorkflowGraph(BaseModel):
    """Immutable node/edge definition shared by every instance started from it."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"graph-{uuid.uuid4().hex[:12]}")
    name: str = ""
    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)

    @classmethod
    def from_file(cls, path: str | Path) -> "WorkflowGraph":
        """Load a graph definition from a JSON or YAML file."""
        path = Path(path)
        text = path.read_text()
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text) or {}
        return cls.model_validate(data)

    def node(self, node_id: str) -> Optional[Node]:
        return next((n for n in self.nodes if n.id == node_id), None)

    def start_node(self) -> Optional[Node]:
        return next((n for n in self.nodes if n.kind == NodeKind.START), None)

    def outgoing(self, node_id: str) -> List[Edge]:
        return [e for e in self.edges if e.source == node_id]

    def incoming(self, node_id: str) -> List[Edge]:
        return [e for e in self.edges if e.target == node_id]

    def validate_structure(self) -> None:
        """Check the graph invariants.

        Raises:
            NoStartNodeError: The graph has no Start node.
            InvalidGraphError: Any other invariant is violated. All problems
                found are reported together.
        """
        problems: List[str] = []

        node_ids = [n.id for n in self.nodes]
        duplicates = sorted({i for i in node_ids if node_ids.count(i) > 1})
        if duplicates:
            problems.append(f"duplicate node ids: {', '.join(duplicates)}")
        edge_ids = [e.id for e in self.edges]
        duplicates = sorted({i for i in edge_ids if edge_ids.count(i) > 1})
        if duplicates:
            problems.append(f"duplicate edge ids: {', '.join(duplicates)}")

        starts = [n for n in self.nodes if n.kind == NodeKind.START]
        if not starts:
            raise NoStartNodeError(self.id)
        if len(starts) > 1:
            problems.append(
                f"expected exactly one start node, found {len(starts)}: "
                + ", ".join(n.id for n in starts)
            )

        known = set(node_ids)
        for edge in self.edges:
            if edge.source not in known:
                problems.append(f"edge {edge.id} references unknown source {edge.source}")
            if edge.target not in known:
                problems.append(f"edge {edge.id} references unknown target {edge.target}")

        start = starts[0]
        if self.incoming(start.id):
            problems.append(f"start node {start.id} has incoming edges")

        if not any(n.kind == NodeKind.END for n in self.nodes):
            problems.append("graph has no end node")

        for node in self.nodes:
            outgoing = self.outgoing(node.id)
            if node.kind == NodeKind.END:
                if outgoing:
                    problems.append(f"end node {node.id} has outgoing edges")
                continue
            if not outgoing:
                problems.append(f"{node.kind} node {node.id} has no outgoing edges")
                continue
            if node.kind == NodeKind.CONDITION:
                branches = {e.branch for e in outgoing}
                if None in branches:
                    problems.append(f"condition node {node.id} has an edge without a branch")
                missing = {Branch.MATCHED, Branch.UNMATCHED} - branches
                for branch in sorted(missing, key=lambda b: b.value):
                    problems.append(f"condition node {node.id} has no {branch.value} edge")
            elif any(e.branch is not None for e in outgoing):
                problems.append(f"{node.kind} node {node.id} has a branch-labelled edge")

        reachable = {start.id}
        queue = deque([start.id])
        while queue:
            current = queue.popleft()
            for edge in self.outgoing(current):
                if edge.target in known and edge.target not in reachable:
                    reachable.add(edge.target)
                    queue.append(edge.target)
        unreachable = [n.id for n in self.nodes if n.id not in reachable]
        if unreachable:
            problems.append(f"nodes unreachable from start: {', '.join(unreachable)}")

        if problems:
            raise InvalidGraphError(problems, self.id)


# ----------------------------------------------------------------------
# Runtime state


class NodeState(BaseModel):
    """Execution state of one node within an instance."""

    status: NodeStatus = NodeStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    decided_by: Optional[str] = None
    comments: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    assignees: List[str] = Field(default_factory=list)
    reminders_sent: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_NODE_STATUSES

    def transition(self, node_id: str, target: NodeStatus) -> None:
        """Move to ``target``, enforcing the monotone node lifecycle."""
        if target not in _NODE_TRANSITIONS[self.status]:
            raise InvalidTransitionError(node_id, self.status.value, target.value)
        self.status = target
        if target == NodeStatus.RUNNING:
            self.started_at = utcnow()
        else:
            self.completed_at = utcnow()


class InstanceMetadata(BaseModel):
    """Snapshot of request details taken when the instance starts."""

    model_config = ConfigDict(frozen=True)

    requester_id: str
    requester_name: str = ""
    requester_email: str = ""
    organization_name: str = ""
    title: str = ""
    description: str = ""
    amount: float
    currency: str
    category: str = ""
    urgency: Urgency = Urgency.MEDIUM


class WorkflowInstance(BaseModel):
    """One execution of a graph against one payment request."""

    id: str = Field(default_factory=lambda: f"visual-workflow-{uuid.uuid4().hex}")
    graph: WorkflowGraph
    payment_request_id: str
    org_id: str
    status: InstanceStatus = InstanceStatus.RUNNING
    node_states: Dict[str, NodeState] = Field(default_factory=dict)
    active_node_ids: List[str] = Field(default_factory=list)
    metadata: InstanceMetadata
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    @classmethod
    def create(
        cls,
        graph: WorkflowGraph,
        payment_request: PaymentRequest,
        requester: User,
        organization: Organization,
    ) -> "WorkflowInstance":
        """Build a fresh instance with every node Pending."""
        metadata = InstanceMetadata(
            requester_id=requester.id,
            requester_name=requester.name,
            requester_email=requester.email,
            organization_name=organization.name,
            title=payment_request.title,
            description=payment_request.description,
            amount=payment_request.amount,
            currency=payment_request.currency,
            category=payment_request.category,
            urgency=payment_request.urgency,
        )
        return cls(
            graph=graph,
            payment_request_id=payment_request.id,
            org_id=payment_request.org_id,
            node_states={node.id: NodeState() for node in graph.nodes},
            metadata=metadata,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status != InstanceStatus.RUNNING

    def ensure_mutable(self) -> None:
        if self.is_terminal:
            raise InstanceTerminalError(self.id, self.status.value)

    def state(self, node_id: str) -> NodeState:
        return self.node_states[node_id]

    def start_node(self, node_id: str) -> None:
        self.ensure_mutable()
        self.state(node_id).transition(node_id, NodeStatus.RUNNING)
        if node_id not in self.active_node_ids:
            self.active_node_ids.append(node_id)

    def resolve_node(
        self,
        node_id: str,
        status: NodeStatus,
        *,
        result: Optional[Dict[str, Any]] = None,
        decided_by: Optional[str] = None,
        comments: Optional[str] = None,
        error: Optional[str] = None,
    ) -> bool:
        """Compare-and-set a Running node to a terminal ``status``.

        Returns ``False`` without touching the node when it is no longer
        Running, so that the loser of a resolution race is a no-op.
        """
        self.ensure_mutable()
        state = self.state(node_id)
        if state.status != NodeStatus.RUNNING:
            return False
        state.transition(node_id, status)
        state.result = result
        state.decided_by = decided_by
        state.comments = comments
        state.error = error
        if node_id in self.active_node_ids:
            self.active_node_ids.remove(node_id)
        return True

    def skip_node(self, node_id: str) -> None:
        self.ensure_mutable()
        self.state(node_id).transition(node_id, NodeStatus.SKIPPED)
        if node_id in self.active_node_ids:
            self.active_node_ids.remove(node_id)

    def finish(self, status: InstanceStatus, error: Optional[str] = None) -> None:
        """Move the instance to a terminal status. Allowed exactly once."""
        if status == InstanceStatus.RUNNING:
            raise ValueError("finish() requires a terminal status")
        self.ensure_mutable()
        self.status = status
        self.completed_at = utcnow()
        if error is not None:
            self.error = error
        logger.info(f"Workflow instance {self.id} finished with status {status.value}")

    def decided_by_users(self) -> List[str]:
        """Ids of the humans who resolved approval nodes, in decision order."""
        decided = [
            s for s in self.node_states.values() if s.decided_by and s.completed_at
        ]
        decided.sort(key=lambda s: s.completed_at)
        seen: List[str] = []
        for state in decided:
            if state.decided_by not in seen:
                seen.append(state.decided_by)
        return seen

    def open_approvals(self) -> List[str]:
        """Approval nodes currently awaiting a decision."""
        approvals = {n.id for n in self.graph.nodes if n.kind == NodeKind.APPROVAL}
        return [node_id for node_id in self.active_node_ids if node_id in approvals]
