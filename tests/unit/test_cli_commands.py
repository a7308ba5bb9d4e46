import asyncio
import json

from typer.testing import CliRunner

import stepwright.persistence as persistence
from stepwright.cli import app
from stepwright.persistence import (
    InMemoryRunRepository,
    RunRecord,
    RunStatus,
    SQLiteRunRepository,
    StepStatus,
)

runner = CliRunner()

WORKFLOW_YAML = """
id: wf-cli
name: CLI demo
trigger:
  type: manual
nodes:
  - id: notify
    type: custom-notify
  - id: check
    type: logicIf
    config:
      condition:
        left: "{{trigger.payload.amount}}"
        op: gt
        right: "100"
  - id: big
    type: custom-big
  - id: small
    type: custom-small
edges:
  - from: notify
    to: check
  - from: check
    to: big
    branch: "yes"
  - from: check
    to: small
    branch: "no"
"""


def _setup_repo() -> InMemoryRunRepository:
    repo = InMemoryRunRepository()
    persistence._repository_instance = repo
    return repo


def _write_workflow(tmp_path, name="workflow.yaml", text=WORKFLOW_YAML):
    path = tmp_path / name
    path.write_text(text)
    return path


def test_workflow_plan(tmp_path):
    result = runner.invoke(app, ["workflow", "plan", str(_write_workflow(tmp_path))])
    assert result.exit_code == 0, result.output
    assert result.output.splitlines() == ["1. notify", "2. check", "3. big", "4. small"]


def test_workflow_plan_rejects_missing_and_invalid_files(tmp_path):
    missing = runner.invoke(app, ["workflow", "plan", str(tmp_path / "nope.yaml")])
    assert missing.exit_code == 1
    assert "does not exist" in missing.output

    broken = _write_workflow(
        tmp_path, "broken.yaml", "nodes:\n  - id: a\n    type: x\nedges:\n  - from: a\n    to: ghost\n"
    )
    invalid = runner.invoke(app, ["workflow", "plan", str(broken)])
    assert invalid.exit_code == 1
    assert "Invalid workflow definition" in invalid.output


def test_workflow_run_persists_run(tmp_path):
    repo = _setup_repo()
    path = _write_workflow(tmp_path)

    result = runner.invoke(
        app, ["workflow", "run", str(path), "--payload", json.dumps({"amount": 150})]
    )

    assert result.exit_code == 0, result.output
    assert "completed" in result.output
    assert "Visited: notify -> check -> big" in result.output
    (run,) = asyncio.run(repo.list_runs())
    assert run.workflow_id == "wf-cli"
    assert run.status == RunStatus.COMPLETED


def test_workflow_run_rejects_bad_payload(tmp_path):
    result = runner.invoke(
        app, ["workflow", "run", str(_write_workflow(tmp_path)), "--payload", "{not json"]
    )
    assert result.exit_code != 0


def test_workflow_list(tmp_path):
    directory = tmp_path / "workflows"
    directory.mkdir()
    _write_workflow(directory)
    (directory / "paused.json").write_text(
        json.dumps({"id": "wf-paused", "status": "paused", "definition": {"nodes": []}})
    )

    result = runner.invoke(app, ["workflow", "list", str(directory)])
    assert result.exit_code == 0, result.output
    assert result.output.splitlines() == ["wf-cli\tactive\tmanual\tCLI demo"]

    paused = runner.invoke(app, ["workflow", "list", str(directory), "--status", "paused"])
    assert "wf-paused" in paused.output

    empty = runner.invoke(app, ["workflow", "list", str(directory), "--company-id", "acme"])
    assert "No workflows found" in empty.output


def test_run_list_and_show():
    repo = _setup_repo()
    run = RunRecord(workflow_id="wf-1", trigger_payload={"foo": "bar"})
    asyncio.run(repo.create_run(run))
    asyncio.run(repo.create_steps(run.id, ["A", "B"]))
    asyncio.run(repo.update_step(run.id, "A", status=StepStatus.COMPLETED, attempt=1))

    listing = runner.invoke(app, ["run", "list"])
    assert listing.exit_code == 0, listing.output
    assert f"{run.id}\twf-1\tqueued" in listing.output

    shown = runner.invoke(app, ["run", "show", run.id])
    assert shown.exit_code == 0, shown.output
    assert '{"foo": "bar"}' in shown.output
    assert "- A: completed attempt=1" in shown.output
    assert "- B: pending attempt=0" in shown.output

    missing = runner.invoke(app, ["run", "show", "missing-id"])
    assert missing.exit_code == 1
    assert "Run not found" in missing.output


def test_run_list_empty():
    _setup_repo()
    result = runner.invoke(app, ["run", "list", "--workflow-id", "nothing"])
    assert result.exit_code == 0
    assert "No runs found" in result.output


def test_wait_complete_unknown_token():
    result = runner.invoke(app, ["wait", "complete", "waitpoint_missing", "--output", "{}"])
    assert result.exit_code == 1
    assert "Unknown wait token" in result.output


def test_config_option_selects_repository(tmp_path):
    db_path = tmp_path / "runs.db"
    config_path = tmp_path / "stepwright.yaml"
    config_path.write_text(f"database_url: sqlite://{db_path}\nlog_level: WARNING\n")
    workflow = _write_workflow(tmp_path)

    result = runner.invoke(
        app,
        ["--config", str(config_path), "workflow", "run", str(workflow), "--payload", '{"amount": 5}'],
    )
    assert result.exit_code == 0, result.output

    (run,) = asyncio.run(SQLiteRunRepository(str(db_path)).list_runs())
    assert run.workflow_id == "wf-cli"
    assert run.status == RunStatus.COMPLETED

    listing = runner.invoke(app, ["--config", str(config_path), "run", "list"])
    assert f"{run.id}\twf-cli\tcompleted" in listing.output

    shown = runner.invoke(app, ["--config", str(config_path), "run", "show", run.id])
    assert shown.exit_code == 0, shown.output
    assert "- small: completed attempt=1" in shown.output
