"""In-memory implementation of the run repository."""

from __future__ import annotations

from typing import Any, Dict, Iterable

from ..errors import RunNotFound
from .models import RUN_FIELDS, STEP_FIELDS, RunRecord, StepRecord


class InMemoryRunRepository:
    """Store run state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._runs: Dict[str, RunRecord] = {}
        self._steps: Dict[str, Dict[str, StepRecord]] = {}
        self._step_id = 0

    # ------------------------------------------------------------------
    async def create_run(self, run: RunRecord) -> RunRecord:
        self._runs[run.id] = run.model_copy(deep=True)
        self._steps.setdefault(run.id, {})
        return run

    async def update_run(self, run_id: str, **fields: Any) -> RunRecord:
        run = self._runs.get(run_id)
        if run is None:
            raise RunNotFound(run_id)
        unknown = set(fields) - RUN_FIELDS
        if unknown:
            raise ValueError(f"Unknown run fields: {sorted(unknown)}")
        updated = run.model_copy(update=fields)
        self._runs[run_id] = updated
        return updated.model_copy(deep=True)

    async def create_steps(self, run_id: str, node_ids: Iterable[str]) -> None:
        steps = self._steps.setdefault(run_id, {})
        for node_id in node_ids:
            if node_id not in steps:
                steps[node_id] = self._new_step(run_id, node_id)

    async def update_step(self, run_id: str, node_id: str, **fields: Any) -> StepRecord:
        unknown = set(fields) - STEP_FIELDS
        if unknown:
            raise ValueError(f"Unknown step fields: {sorted(unknown)}")
        steps = self._steps.setdefault(run_id, {})
        step = steps.get(node_id) or self._new_step(run_id, node_id)
        updated = step.model_copy(update=fields)
        steps[node_id] = updated
        return updated.model_copy(deep=True)

    async def get_run(self, run_id: str) -> RunRecord | None:
        run = self._runs.get(run_id)
        return run.model_copy(deep=True) if run else None

    async def get_step(self, run_id: str, node_id: str) -> StepRecord | None:
        step = self._steps.get(run_id, {}).get(node_id)
        return step.model_copy(deep=True) if step else None

    async def list_steps(self, run_id: str) -> list[StepRecord]:
        steps = self._steps.get(run_id, {}).values()
        return [step.model_copy(deep=True) for step in sorted(steps, key=lambda s: s.id)]

    async def list_runs(self, workflow_id: str | None = None) -> list[RunRecord]:
        return [
            run.model_copy(deep=True)
            for run in self._runs.values()
            if workflow_id is None or run.workflow_id == workflow_id
        ]

    def _new_step(self, run_id: str, node_id: str) -> StepRecord:
        self._step_id += 1
        return StepRecord(id=self._step_id, run_id=run_id, node_id=node_id)
