import pytest

from stepwright.config import StepwrightConfig
from stepwright.dispatch import StepDispatcher
from stepwright.execute import RunExecutor
from stepwright.executors import ExecutorRegistry
from stepwright.persistence import InMemoryRunRepository, reset_repository
from stepwright.waits import InMemoryWaitCoordinator

ENV_VARS = (
    "STEPWRIGHT_CONFIG",
    "STEPWRIGHT_DATABASE_URL",
    "DATABASE_URL",
    "STEPWRIGHT_LOG_LEVEL",
    "STEPWRIGHT_WAIT_BACKEND",
    "STEPWRIGHT_APP_URL",
    "STEPWRIGHT_MAIL_API_KEY",
)


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep host configuration and cached repositories out of every test."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    reset_repository()
    yield
    reset_repository()


@pytest.fixture
def repo():
    return InMemoryRunRepository()


@pytest.fixture
def waits():
    return InMemoryWaitCoordinator()


@pytest.fixture
def registry():
    return ExecutorRegistry()


@pytest.fixture
def engine(repo, waits, registry):
    return RunExecutor(
        repository=repo,
        dispatcher=StepDispatcher(registry, waits),
        config=StepwrightConfig(),
    )
