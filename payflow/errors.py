"""Exception hierarchy raised by the payflow engine."""

from __future__ import annotations

from typing import Iterable, Optional


class WorkflowError(Exception):
    """Base class for every error raised by the engine."""


class NoStartNodeError(WorkflowError):
    """The graph has no Start node."""

    def __init__(self, graph_id: Optional[str] = None) -> None:
        self.graph_id = graph_id
        super().__init__(f"No start node found in workflow graph {graph_id or ''}".strip())


class InvalidGraphError(WorkflowError):
    """The graph violates one or more structural invariants."""

    def __init__(self, problems: Iterable[str], graph_id: Optional[str] = None) -> None:
        self.problems = list(problems)
        self.graph_id = graph_id
        super().__init__("Invalid workflow graph: " + "; ".join(self.problems))


class InstanceNotFoundError(WorkflowError):
    def __init__(self, instance_id: str) -> None:
        self.instance_id = instance_id
        super().__init__(f"Workflow instance {instance_id} not found")


class NodeNotApprovalError(WorkflowError):
    def __init__(self, instance_id: str, node_id: str) -> None:
        self.instance_id = instance_id
        self.node_id = node_id
        super().__init__(f"Node {node_id} of instance {instance_id} is not an approval node")


class NodeNotActiveError(WorkflowError):
    """A decision arrived for an approval node the traversal has not reached."""

    def __init__(self, instance_id: str, node_id: str) -> None:
        self.instance_id = instance_id
        self.node_id = node_id
        super().__init__(f"Node {node_id} of instance {instance_id} is not awaiting a decision")


class NodeAlreadyResolvedError(WorkflowError):
    def __init__(self, instance_id: str, node_id: str, status: str) -> None:
        self.instance_id = instance_id
        self.node_id = node_id
        self.status = status
        super().__init__(
            f"Node {node_id} of instance {instance_id} was already resolved ({status})"
        )


class InstanceTerminalError(WorkflowError):
    def __init__(self, instance_id: str, status: str) -> None:
        self.instance_id = instance_id
        self.status = status
        super().__init__(f"Workflow instance {instance_id} is {status} and can no longer change")


class InvalidTransitionError(WorkflowError):
    def __init__(self, node_id: str, current: str, target: str) -> None:
        self.node_id = node_id
        self.current = current
        self.target = target
        super().__init__(f"Node {node_id} cannot move from {current} to {target}")


class ConfigurationError(WorkflowError):
    """The graph definition is unusable at execution time."""


class NoApproversError(ConfigurationError):
    def __init__(self, node_id: str, approver: str) -> None:
        self.node_id = node_id
        self.approver = approver
        super().__init__(f"No approvers found for node {node_id} ({approver})")


class DeadEndError(ConfigurationError):
    def __init__(self, node_id: str, kind: str) -> None:
        self.node_id = node_id
        self.kind = kind
        super().__init__(f"Node {node_id} ({kind}) has no outgoing edge to follow")


__all__ = [
    "WorkflowError",
    "NoStartNodeError",
    "InvalidGraphError",
    "InstanceNotFoundError",
    "NodeNotApprovalError",
    "NodeNotActiveError",
    "NodeAlreadyResolvedError",
    "InstanceTerminalError",
    "InvalidTransitionError",
    "ConfigurationError",
    "NoApproversError",
    "DeadEndError",
]
