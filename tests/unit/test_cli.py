import asyncio
import json

import pytest
from typer.testing import CliRunner

from payflow import InstanceStatus, WorkflowInstance
from payflow.cli import app
from payflow.persistence import SQLiteWorkflowRepository

runner = CliRunner()


@pytest.fixture
def graph_file(tmp_path, condition_graph):
    path = tmp_path / "graph.json"
    path.write_text(json.dumps(condition_graph().model_dump(mode="json")))
    return path


@pytest.fixture
def database(tmp_path, monkeypatch):
    db_path = tmp_path / "cli.db"
    monkeypatch.setenv("PAYFLOW_CONFIG", str(tmp_path / "absent.yaml"))
    monkeypatch.setenv("PAYFLOW_DATABASE_URL", f"sqlite://{db_path}")
    return SQLiteWorkflowRepository(db_path)


def test_graph_validate_accepts_valid_graph(graph_file):
    result = runner.invoke(app, ["graph", "validate", str(graph_file)])
    assert result.exit_code == 0, result.stdout
    assert "Graph threshold is valid (6 nodes, 6 edges)" in result.stdout


def test_graph_validate_lists_problems(tmp_path):
    path = tmp_path / "broken.yaml"
    path.write_text(
        """
id: broken
nodes:
  - {id: start, kind: start}
  - {id: pay, kind: payment}
edges:
  - {id: e1, source: start, target: pay}
"""
    )
    result = runner.invoke(app, ["graph", "validate", str(path)])
    assert result.exit_code == 1
    assert "Graph broken is invalid" in result.stdout
    assert "- graph has no end node" in result.stdout

    missing = runner.invoke(app, ["graph", "validate", str(tmp_path / "nope.yaml")])
    assert missing.exit_code == 1
    assert "Graph file not found" in missing.stdout


def test_instance_list_and_show(
    database, condition_graph, make_request, requester, organization
):
    running = WorkflowInstance.create(condition_graph(), make_request(), requester, organization)
    failed = WorkflowInstance.create(condition_graph(), make_request(), requester, organization)
    failed.finish(InstanceStatus.FAILED, "Rejected at node manager by u-mgr")
    asyncio.run(database.save_instance(running))
    asyncio.run(database.save_instance(failed))

    result = runner.invoke(app, ["instance", "list"])
    assert result.exit_code == 0, result.stdout
    assert running.id in result.stdout
    assert failed.id in result.stdout

    result = runner.invoke(app, ["instance", "list", "--status", "failed"])
    assert running.id not in result.stdout
    assert f"{failed.id}\tfailed" in result.stdout

    result = runner.invoke(app, ["instance", "show", failed.id])
    assert result.exit_code == 0, result.stdout
    assert f"Workflow instance {failed.id}: failed" in result.stdout
    assert "Error: Rejected at node manager by u-mgr" in result.stdout
    assert "- Manager [approval]: pending" in result.stdout

    missing = runner.invoke(app, ["instance", "show", "missing-id"])
    assert missing.exit_code == 1
    assert "Workflow instance not found" in missing.stdout


def test_instance_list_empty(database):
    result = runner.invoke(app, ["instance", "list"])
    assert result.exit_code == 0
    assert "No workflow instances found" in result.stdout


def test_simulate_approves_through_condition(graph_file):
    result = runner.invoke(app, ["simulate", str(graph_file), "--amount", "1500"])
    assert result.exit_code == 0, result.stdout
    assert ": completed" in result.stdout
    assert "- Manager [approval]: completed by sim-manager" in result.stdout
    assert "- Finance [approval]: completed by sim-finance" in result.stdout
    assert "- pay [payment]: completed" in result.stdout


def test_simulate_small_amount_skips_finance(graph_file):
    result = runner.invoke(app, ["simulate", str(graph_file), "--amount", "200"])
    assert result.exit_code == 0, result.stdout
    assert "- Finance [approval]: skipped" in result.stdout


def test_simulate_rejection_exits_non_zero(graph_file):
    result = runner.invoke(app, ["-v", "simulate", str(graph_file), "--amount", "200", "--reject"])
    assert result.exit_code == 2
    assert ": failed" in result.stdout
    assert "- Manager [approval]: failed by sim-manager" in result.stdout
    assert "- pay [payment]: pending" in result.stdout


def test_simulate_payment_failure(graph_file):
    result = runner.invoke(
        app, ["simulate", str(graph_file), "--amount", "200", "--payment-fails"]
    )
    assert result.exit_code == 2
    assert "- pay [payment]: failed (Payment failed: Payment declined)" in result.stdout
