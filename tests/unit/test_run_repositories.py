import pytest

from stepwright.config import StepwrightConfig
from stepwright.errors import RunNotFound
from stepwright.persistence import (
    InMemoryRunRepository,
    RunRecord,
    RunStatus,
    SQLiteRunRepository,
    StepStatus,
    get_repository,
    repository_for_url,
    reset_repository,
)


@pytest.fixture(params=["inmemory", "sqlite"])
def repository(request, tmp_path):
    if request.param == "inmemory":
        return InMemoryRunRepository()
    return SQLiteRunRepository(tmp_path / "runs.db")


@pytest.mark.asyncio
async def test_run_round_trip(repository):
    run = RunRecord(
        workflow_id="wf-1",
        company_id="acme",
        trigger_type="manual",
        trigger_payload={"amount": 150, "tags": ["a", "b"]},
    )
    await repository.create_run(run)

    stored = await repository.get_run(run.id)
    assert stored.status == RunStatus.QUEUED
    assert stored.trigger_payload == {"amount": 150, "tags": ["a", "b"]}
    assert stored.created_at == run.created_at

    updated = await repository.update_run(
        run.id, status=RunStatus.FAILED, error={"message": "boom", "kind": "ExecutorError"}
    )
    assert updated.status == RunStatus.FAILED
    assert (await repository.get_run(run.id)).error["message"] == "boom"


@pytest.mark.asyncio
async def test_create_steps_is_idempotent(repository):
    run = await repository.create_run(RunRecord(workflow_id="wf"))
    await repository.create_steps(run.id, ["A", "B"])
    await repository.update_step(run.id, "A", status=StepStatus.COMPLETED, attempt=1, output={"x": 1})
    await repository.create_steps(run.id, ["A", "B", "C"])

    steps = await repository.list_steps(run.id)
    assert [s.node_id for s in steps] == ["A", "B", "C"]
    assert steps[0].status == StepStatus.COMPLETED
    assert steps[0].output == {"x": 1}
    assert steps[1].status == StepStatus.PENDING
    assert steps[1].attempt == 0


@pytest.mark.asyncio
async def test_update_step_upserts_missing_row(repository):
    run = await repository.create_run(RunRecord(workflow_id="wf"))
    step = await repository.update_step(run.id, "late", status=StepStatus.RUNNING, attempt=2)
    assert step.node_id == "late"
    assert step.attempt == 2
    assert (await repository.get_step(run.id, "late")).status == StepStatus.RUNNING
    assert await repository.get_step(run.id, "other") is None


@pytest.mark.asyncio
async def test_unknown_fields_are_rejected(repository):
    run = await repository.create_run(RunRecord(workflow_id="wf"))
    with pytest.raises(ValueError):
        await repository.update_run(run.id, colour="blue")
    with pytest.raises(ValueError):
        await repository.update_step(run.id, "A", colour="blue")


@pytest.mark.asyncio
async def test_missing_run(repository):
    assert await repository.get_run("nope") is None
    with pytest.raises(RunNotFound):
        await repository.update_run("nope", status=RunStatus.RUNNING)


@pytest.mark.asyncio
async def test_list_runs_filters_by_workflow(repository):
    first = await repository.create_run(RunRecord(workflow_id="wf-1"))
    await repository.create_run(RunRecord(workflow_id="wf-2"))
    assert len(await repository.list_runs()) == 2
    assert [r.id for r in await repository.list_runs("wf-1")] == [first.id]


@pytest.mark.asyncio
async def test_returned_records_are_copies():
    repository = InMemoryRunRepository()
    run = await repository.create_run(RunRecord(workflow_id="wf", trigger_payload={"a": 1}))
    fetched = await repository.get_run(run.id)
    fetched.trigger_payload["a"] = 2
    assert (await repository.get_run(run.id)).trigger_payload == {"a": 1}


@pytest.mark.asyncio
async def test_sqlite_state_survives_reopen(tmp_path):
    path = tmp_path / "runs.db"
    first = SQLiteRunRepository(path)
    run = await first.create_run(RunRecord(workflow_id="wf"))
    await first.create_steps(run.id, ["A"])

    second = SQLiteRunRepository(path)
    assert (await second.get_run(run.id)).workflow_id == "wf"
    assert [s.node_id for s in await second.list_steps(run.id)] == ["A"]


def test_repository_for_url(tmp_path):
    assert isinstance(repository_for_url(None), InMemoryRunRepository)
    sqlite_repo = repository_for_url(f"sqlite://{tmp_path / 'x.db'}")
    assert isinstance(sqlite_repo, SQLiteRunRepository)
    with pytest.raises(ValueError):
        repository_for_url("mysql://localhost/db")


def test_get_repository_is_cached_per_url(tmp_path, monkeypatch):
    default = get_repository(config=StepwrightConfig())
    assert isinstance(default, InMemoryRunRepository)
    assert get_repository(config=StepwrightConfig()) is default

    monkeypatch.setenv("STEPWRIGHT_DATABASE_URL", f"sqlite://{tmp_path / 'env.db'}")
    from_env = get_repository()
    assert isinstance(from_env, SQLiteRunRepository)
    assert get_repository() is from_env

    reset_repository()
    assert get_repository() is not from_env


def test_get_repository_reads_config_url(tmp_path):
    config = StepwrightConfig(database_url=f"sqlite://{tmp_path / 'cfg.db'}")
    assert isinstance(get_repository(config=config), SQLiteRunRepository)
