"""Per-run step ledger: one persisted row per node, updated in place."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from .errors import error_payload
from .persistence import RunRepository, StepRecord, StepStatus
from .persistence.models import utc_now

logger = logging.getLogger(__name__)


class StepLedger:
    """Records the progress of each node of a single run."""

    def __init__(self, repository: RunRepository, run_id: str) -> None:
        self._repository = repository
        self.run_id = run_id

    async def create_pending(self, node_ids: Iterable[str]) -> None:
        await self._repository.create_steps(self.run_id, list(node_ids))

    async def mark_running(self, node_id: str, attempt: int) -> StepRecord:
        logger.debug(f"Run {self.run_id}: node {node_id} attempt {attempt} running")
        return await self._repository.update_step(
            self.run_id,
            node_id,
            status=StepStatus.RUNNING,
            attempt=attempt,
            started_at=utc_now(),
            finished_at=None,
            error=None,
        )

    async def mark_waiting(self, node_id: str, output: Any) -> StepRecord:
        return await self._repository.update_step(
            self.run_id, node_id, status=StepStatus.WAITING, output=output
        )

    async def mark_completed(self, node_id: str, output: Any) -> StepRecord:
        return await self._repository.update_step(
            self.run_id,
            node_id,
            status=StepStatus.COMPLETED,
            output=output,
            finished_at=utc_now(),
        )

    async def mark_failed(
        self, node_id: str, exc: BaseException, output: Optional[Any] = None
    ) -> StepRecord:
        fields: dict[str, Any] = {
            "status": StepStatus.FAILED,
            "error": error_payload(exc),
            "finished_at": utc_now(),
        }
        if output is not None:
            fields["output"] = output
        return await self._repository.update_step(self.run_id, node_id, **fields)

    async def steps(self) -> list[StepRecord]:
        return await self._repository.list_steps(self.run_id)
