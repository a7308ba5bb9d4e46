"""Persistence layer for workflow runs and their step ledger."""

from __future__ import annotations

import os
from typing import Optional

from ..config import StepwrightConfig, load_config
from .inmemory import InMemoryRunRepository
from .models import RunRecord, RunStatus, StepRecord, StepStatus
from .repository import RunRepository
from .sqlite import SQLiteRunRepository

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresRunRepository
except ImportError:  # pragma: no cover - optional dependency
    PostgresRunRepository = None  # type: ignore

_repository_instance: RunRepository | None = None
_repository_url: str | None = None


def repository_for_url(database_url: Optional[str]) -> RunRepository:
    """Build a repository for ``database_url``; no URL means in-memory."""
    if not database_url:
        return InMemoryRunRepository()
    if database_url.startswith("sqlite://"):
        return SQLiteRunRepository(database_url.replace("sqlite://", "", 1))
    if database_url.startswith(("postgres://", "postgresql://")):
        if PostgresRunRepository is None:
            raise RuntimeError("Postgres support not available")
        return PostgresRunRepository(database_url)
    raise ValueError(f"Unsupported database backend: {database_url}")


def get_repository(
    database_url: Optional[str] = None, config: Optional[StepwrightConfig] = None
) -> RunRepository:
    """Return the process-wide run repository.

    The URL comes from ``database_url``, else ``STEPWRIGHT_DATABASE_URL`` or
    ``DATABASE_URL``, else the loaded configuration. The instance is cached
    and reused for as long as the resolved URL does not change.
    """

    global _repository_instance, _repository_url
    if database_url is None:
        config = config or load_config()
        database_url = (
            os.getenv("STEPWRIGHT_DATABASE_URL")
            or os.getenv("DATABASE_URL")
            or config.database_url
        )

    if _repository_instance is None or database_url != _repository_url:
        _repository_instance = repository_for_url(database_url)
        _repository_url = database_url
    return _repository_instance


def reset_repository() -> None:
    """Forget the cached repository."""
    global _repository_instance, _repository_url
    _repository_instance = None
    _repository_url = None


__all__ = [
    "RunRecord",
    "RunStatus",
    "StepRecord",
    "StepStatus",
    "RunRepository",
    "InMemoryRunRepository",
    "SQLiteRunRepository",
    "PostgresRunRepository",
    "get_repository",
    "repository_for_url",
    "reset_repository",
]
