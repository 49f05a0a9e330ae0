"""payflow: graph-driven payment approval workflows."""

from .config import PayflowConfig, load_config
from .contracts import (
    NodeKind,
    NodeStatus,
    InstanceStatus,
    Organization,
    PaymentRequest,
    PaymentStatus,
    User,
    WorkflowGraph,
    WorkflowInstance,
)
from .engine import PendingApproval, WorkflowEngine
from .identity import IdentityResolver, InMemoryDirectory
from .notifications import get_sender
from .payments import PaymentProcessor, SimulatedPaymentProcessor, StaticPaymentProcessor
from .persistence import InMemoryWorkflowRepository, get_repository
from .scheduler import AsyncioScheduler, ManualScheduler, get_scheduler

__version__ = "0.1.0"
__all__ = [
    "WorkflowEngine",
    "PendingApproval",
    "WorkflowGraph",
    "WorkflowInstance",
    "NodeKind",
    "NodeStatus",
    "InstanceStatus",
    "PaymentRequest",
    "PaymentStatus",
    "Organization",
    "User",
    "IdentityResolver",
    "InMemoryDirectory",
    "PaymentProcessor",
    "SimulatedPaymentProcessor",
    "StaticPaymentProcessor",
    "InMemoryWorkflowRepository",
    "AsyncioScheduler",
    "ManualScheduler",
    "PayflowConfig",
    "load_config",
    "get_repository",
    "get_scheduler",
    "get_sender",
]
