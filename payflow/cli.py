"""Command line interface for payflow workflow graphs and instances."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

import typer
from pydantic import ValidationError

from payflow import (
    InMemoryDirectory,
    InMemoryWorkflowRepository,
    ManualScheduler,
    StaticPaymentProcessor,
    WorkflowEngine,
    get_repository,
)
from payflow.config import PayflowConfig
from payflow.contracts import (
    ApproverType,
    InstanceStatus,
    NodeKind,
    Organization,
    PaymentRequest,
    User,
    WorkflowGraph,
    WorkflowInstance,
)
from payflow.errors import InvalidGraphError, NoStartNodeError, WorkflowError
from payflow.notifications import InMemoryNotificationSender

app = typer.Typer(help="CLI for payflow approval workflows")

# Command groups
graph_app = typer.Typer(help="Commands for workflow graph definitions")
instance_app = typer.Typer(help="Commands for inspecting workflow instances")

app.add_typer(graph_app, name="graph")
app.add_typer(instance_app, name="instance")

SIMULATION_ORG = "sim-org"


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log engine activity"),
) -> None:
    """payflow CLI entry point."""
    if verbose:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


def _load_graph(path: Path) -> WorkflowGraph:
    if not path.exists():
        typer.secho(f"Graph file not found: {path}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    try:
        return WorkflowGraph.from_file(path)
    except ValidationError as exc:
        typer.secho(f"Malformed graph definition: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


def _echo_trail(instance: WorkflowInstance) -> None:
    for node in instance.graph.nodes:
        state = instance.state(node.id)
        line = f"- {node.display_name} [{node.kind}]: {state.status.value}"
        if state.decided_by:
            line += f" by {state.decided_by}"
        if state.error:
            line += f" ({state.error})"
        typer.echo(line)


@graph_app.command("validate")
def graph_validate(path: Path) -> None:
    """
    Check a JSON or YAML graph definition for structural problems.

    Args:
        path: Graph file to validate

    Example:
        payflow graph validate ./graphs/two_step.yaml
        # Output: Graph two-step is valid (6 nodes, 6 edges)
    """
    graph = _load_graph(path)
    try:
        graph.validate_structure()
    except NoStartNodeError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    except InvalidGraphError as exc:
        typer.secho(f"Graph {graph.id} is invalid:", fg=typer.colors.RED)
        for problem in exc.problems:
            typer.echo(f"- {problem}")
        raise typer.Exit(code=1)
    typer.echo(
        f"Graph {graph.id} is valid ({len(graph.nodes)} nodes, {len(graph.edges)} edges)"
    )


@instance_app.command("list")
def instance_list(
    status: Optional[InstanceStatus] = typer.Option(None, help="Only show this status"),
    org: Optional[str] = typer.Option(None, help="Only show this organization"),
) -> None:
    """
    List workflow instances from the configured repository.

    Example:
        payflow instance list --status running
        # Output: visual-workflow-3f2a...    running    pr-1
    """
    repo = get_repository()
    instances = asyncio.run(repo.list_instances(org_id=org, status=status))
    if not instances:
        typer.echo("No workflow instances found")
        return
    for instance in instances:
        typer.echo(
            f"{instance.id}\t{instance.status.value}\t{instance.payment_request_id}"
        )


@instance_app.command("show")
def instance_show(instance_id: str) -> None:
    """Show the status and node trail of one workflow instance."""
    repo = get_repository()
    instance = asyncio.run(repo.get_instance(instance_id))
    if instance is None:
        typer.echo("Workflow instance not found")
        raise typer.Exit(code=1)
    typer.echo(f"Workflow instance {instance.id}: {instance.status.value}")
    meta = instance.metadata
    typer.echo(
        f"Payment request {instance.payment_request_id}: "
        f"{meta.title or '(untitled)'} {meta.currency} {meta.amount:,.2f}"
    )
    if instance.error:
        typer.echo(f"Error: {instance.error}")
    _echo_trail(instance)


def _simulation_users(graph: WorkflowGraph, requester: User, admin_role: str) -> List[User]:
    users = [
        requester,
        User(id="sim-admin", email="admin@example.com", name="Org Admin",
             role=admin_role, org_id=SIMULATION_ORG),
    ]
    for node in graph.nodes:
        if node.kind != NodeKind.APPROVAL:
            continue
        spec = node.data.approver
        if spec.type == ApproverType.USER:
            users.append(
                User(id=spec.value, email=f"{spec.value}@example.com", name=spec.value,
                     org_id=SIMULATION_ORG)
            )
        else:
            user_id = f"sim-{spec.value.lower()}"
            users.append(
                User(id=user_id, email=f"{user_id}@example.com", name=spec.value,
                     role=spec.value, org_id=SIMULATION_ORG)
            )
    return users


async def _simulate(
    graph: WorkflowGraph,
    amount: float,
    category: str,
    approve: bool,
    payment_succeeds: bool,
) -> WorkflowInstance:
    config = PayflowConfig()
    requester = User(id="sim-requester", email="requester@example.com", name="Requester",
                     org_id=SIMULATION_ORG)
    engine = WorkflowEngine(
        repository=InMemoryWorkflowRepository(),
        identity=InMemoryDirectory(
            _simulation_users(graph, requester, config.engine.admin_role)
        ),
        payments=StaticPaymentProcessor(succeed=payment_succeeds),
        sender=InMemoryNotificationSender(),
        scheduler=ManualScheduler(),
        config=config,
    )
    request = PaymentRequest(
        id="sim-request",
        org_id=SIMULATION_ORG,
        title="Simulated payment",
        amount=amount,
        requested_by=requester.id,
        category=category,
    )
    organization = Organization(id=SIMULATION_ORG, name="Simulation")
    try:
        instance = await engine.start_workflow(graph, request, requester, organization)
        while not instance.is_terminal and instance.open_approvals():
            node_id = instance.open_approvals()[0]
            decider = instance.state(node_id).assignees[0]
            instance = await engine.process_approval_decision(
                instance.id, node_id, approve, decider, comments="simulated decision"
            )
        return instance
    finally:
        await engine.shutdown()


@app.command("simulate")
def simulate(
    path: Path,
    amount: float = typer.Option(..., help="Payment request amount"),
    category: str = typer.Option("", help="Payment request category"),
    approve: bool = typer.Option(True, "--approve/--reject", help="Decision for every approval"),
    payment_succeeds: bool = typer.Option(
        True, "--payment-succeeds/--payment-fails", help="Outcome of the payment node"
    ),
) -> None:
    """
    Run a graph end to end against in-memory collaborators.

    Every approval node is decided the same way, in the order the traversal
    reaches them. Nothing is written to the configured repository.

    Example:
        payflow simulate ./graphs/two_step.yaml --amount 1500 --category travel
        payflow simulate ./graphs/two_step.yaml --amount 500 --reject
    """
    graph = _load_graph(path)
    try:
        instance = asyncio.run(_simulate(graph, amount, category, approve, payment_succeeds))
    except WorkflowError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Workflow instance {instance.id}: {instance.status.value}")
    _echo_trail(instance)
    if instance.status != InstanceStatus.COMPLETED:
        raise typer.Exit(code=2)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
