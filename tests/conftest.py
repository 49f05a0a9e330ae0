"""Shared fixtures for payflow tests."""

from typing import Any, Dict, List, Optional

import pytest

from payflow import (
    InMemoryDirectory,
    InMemoryWorkflowRepository,
    ManualScheduler,
    Organization,
    PaymentRequest,
    StaticPaymentProcessor,
    User,
    WorkflowEngine,
    WorkflowGraph,
)
from payflow.config import PayflowConfig
from payflow.notifications import InMemoryNotificationSender

ORG_ID = "org-1"


def approval(
    node_id: str,
    role: str = "FINANCE",
    *,
    user: Optional[str] = None,
    timeout_hours: Optional[float] = 24,
    auto_approve: bool = False,
    payment_trigger: bool = False,
) -> Dict[str, Any]:
    approver = {"type": "USER", "value": user} if user else {"type": "ROLE", "value": role}
    return {
        "id": node_id,
        "kind": "approval",
        "label": node_id.replace("_", " ").title(),
        "data": {
            "approver": approver,
            "timeout_hours": timeout_hours,
            "auto_approve_on_timeout": auto_approve,
            "is_payment_trigger": payment_trigger,
        },
    }


def chain(*nodes: Dict[str, Any]) -> WorkflowGraph:
    """Start -> nodes... -> End, connected in order."""
    all_nodes = [{"id": "start", "kind": "start"}, *nodes, {"id": "end", "kind": "end"}]
    edges = [
        {"id": f"e{i}", "source": a["id"], "target": b["id"]}
        for i, (a, b) in enumerate(zip(all_nodes, all_nodes[1:]))
    ]
    return WorkflowGraph(id="chain", nodes=all_nodes, edges=edges)


def threshold_graph(threshold: float = 1000) -> WorkflowGraph:
    """Manager approval, then an extra finance approval above ``threshold``."""
    return WorkflowGraph.model_validate(
        {
            "id": "threshold",
            "nodes": [
                {"id": "start", "kind": "start"},
                approval("manager", "MANAGER"),
                {"id": "big", "kind": "condition", "data": {"amountThreshold": threshold}},
                approval("finance", "FINANCE", payment_trigger=True),
                {"id": "pay", "kind": "payment"},
                {"id": "end", "kind": "end"},
            ],
            "edges": [
                {"id": "e1", "source": "start", "target": "manager"},
                {"id": "e2", "source": "manager", "target": "big"},
                {"id": "e3", "source": "big", "target": "finance", "branch": "matched"},
                {"id": "e4", "source": "big", "target": "pay", "branch": "unmatched"},
                {"id": "e5", "source": "finance", "target": "pay"},
                {"id": "e6", "source": "pay", "target": "end"},
            ],
        }
    )


@pytest.fixture
def users() -> List[User]:
    return [
        User(id="u-req", email="req@example.com", name="Rita Requester", org_id=ORG_ID),
        User(id="u-mgr", email="mgr@example.com", name="Max Manager", role="MANAGER", org_id=ORG_ID),
        User(id="u-fin1", email="fin1@example.com", name="Fay Finance", role="FINANCE", org_id=ORG_ID),
        User(id="u-fin2", email="fin2@example.com", name="Finn Finance", role="FINANCE", org_id=ORG_ID),
        User(id="u-admin", email="admin@example.com", name="Ada Admin", role="ORG_ADMIN", org_id=ORG_ID),
        User(id="u-other", email="other@example.com", name="Other Org", role="FINANCE", org_id="org-2"),
    ]


@pytest.fixture
def directory(users) -> InMemoryDirectory:
    return InMemoryDirectory(users)


@pytest.fixture
def requester(users) -> User:
    return users[0]


@pytest.fixture
def organization() -> Organization:
    return Organization(id=ORG_ID, name="Acme")


@pytest.fixture
def make_request(requester):
    counter = iter(range(1, 1_000_000))

    def _make(amount: float = 500, category: str = "travel") -> PaymentRequest:
        return PaymentRequest(
            id=f"pr-{next(counter)}",
            org_id=ORG_ID,
            title="Conference travel",
            amount=amount,
            requested_by=requester.id,
            category=category,
        )

    return _make


@pytest.fixture
def sender() -> InMemoryNotificationSender:
    return InMemoryNotificationSender()


@pytest.fixture
def payments() -> StaticPaymentProcessor:
    return StaticPaymentProcessor()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def repository() -> InMemoryWorkflowRepository:
    return InMemoryWorkflowRepository()


@pytest.fixture
def engine(repository, directory, payments, sender, scheduler) -> WorkflowEngine:
    return WorkflowEngine(
        repository=repository,
        identity=directory,
        payments=payments,
        sender=sender,
        scheduler=scheduler,
        config=PayflowConfig(),
    )


@pytest.fixture
def start(engine, make_request, requester, organization):
    """Start ``graph`` for a fresh payment request of ``amount``."""

    async def _start(graph: WorkflowGraph, amount: float = 500, category: str = "travel"):
        request = make_request(amount, category)
        return await engine.start_workflow(graph, request, requester, organization)

    return _start


@pytest.fixture
def approval_node():
    return approval


@pytest.fixture
def chain_graph():
    return chain


@pytest.fixture
def condition_graph():
    return threshold_graph
