"""Repository abstraction for run and step persistence."""

from __future__ import annotations

from typing import Any, Iterable, Protocol

from .models import RunRecord, StepRecord


class RunRepository(Protocol):
    """Protocol for run/step persistence backends.

    Step writes are keyed by ``(run_id, node_id)`` and behave as upserts.
    """

    async def create_run(self, run: RunRecord) -> RunRecord:
        """Persist a new run."""

    async def update_run(self, run_id: str, **fields: Any) -> RunRecord:
        """Apply ``fields`` to the run and return the updated record."""

    async def create_steps(self, run_id: str, node_ids: Iterable[str]) -> None:
        """Create pending ledger rows; existing rows are left untouched."""

    async def update_step(self, run_id: str, node_id: str, **fields: Any) -> StepRecord:
        """Apply ``fields`` to the ledger row, creating it when missing."""

    async def get_run(self, run_id: str) -> RunRecord | None:
        """Retrieve the run by id."""

    async def get_step(self, run_id: str, node_id: str) -> StepRecord | None:
        """Retrieve one ledger row."""

    async def list_steps(self, run_id: str) -> list[StepRecord]:
        """Return the ledger rows of a run in creation order."""

    async def list_runs(self, workflow_id: str | None = None) -> list[RunRecord]:
        """Return persisted runs, optionally filtered by workflow."""
