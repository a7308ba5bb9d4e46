"""Run state machine driving a workflow run to completion."""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from .config import StepwrightConfig, load_config
from .contracts import NodeResult, RetryPolicy, RunResult, WorkflowDefinition
from .definitions import DefinitionSource
from .dispatch import RunState, StepDispatcher
from .errors import (
    InvalidRunTransition,
    RunAlreadyActive,
    RunNotFound,
    StepBudgetExceeded,
    WorkflowNotFound,
    error_payload,
)
from .ledger import StepLedger
from .persistence import RunRecord, RunRepository, RunStatus, get_repository
from .persistence.models import utc_now
from .planner import follow_edge, plan
from .utils.retry import attempts, schedule_retry

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = frozenset(
    {
        (RunStatus.QUEUED, RunStatus.RUNNING),
        (RunStatus.QUEUED, RunStatus.FAILED),
        (RunStatus.RUNNING, RunStatus.WAITING),
        (RunStatus.WAITING, RunStatus.RUNNING),
        (RunStatus.RUNNING, RunStatus.COMPLETED),
        (RunStatus.RUNNING, RunStatus.FAILED),
        (RunStatus.WAITING, RunStatus.FAILED),
    }
)


def check_transition(current: RunStatus, target: RunStatus) -> None:
    """Raise ``InvalidRunTransition`` unless ``current -> target`` is allowed."""
    if (RunStatus(current), RunStatus(target)) not in ALLOWED_TRANSITIONS:
        raise InvalidRunTransition(f"Cannot move run from {current} to {target}")


class RunExecutor:
    """Executes workflow runs node by node, persisting progress as it goes."""

    def __init__(
        self,
        repository: RunRepository | None = None,
        dispatcher: StepDispatcher | None = None,
        definitions: DefinitionSource | None = None,
        config: StepwrightConfig | None = None,
    ) -> None:
        self.config = config or load_config()
        self._repository = repository or get_repository(config=self.config)
        self._dispatcher = dispatcher or StepDispatcher()
        self._definitions = definitions
        self._active: set[str] = set()

    @property
    def repository(self) -> RunRepository:
        return self._repository

    @property
    def default_retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.config.retry.max_attempts,
            backoff_seconds=self.config.retry.backoff_seconds,
        )

    def is_active(self, run_id: str) -> bool:
        return run_id in self._active

    async def start_run(
        self,
        definition: WorkflowDefinition,
        trigger_payload: Any = None,
        *,
        workflow_id: Optional[str] = None,
        company_id: Optional[str] = None,
        trigger_type: Optional[str] = None,
    ) -> RunRecord:
        """Create a queued run and its pending ledger rows."""
        run = RunRecord(
            workflow_id=workflow_id or definition.id,
            company_id=company_id,
            trigger_type=trigger_type or definition.trigger.type,
            trigger_payload=trigger_payload if trigger_payload is not None else {},
        )
        await self._repository.create_run(run)
        await StepLedger(self._repository, run.id).create_pending(plan(definition))
        logger.info(f"Run {run.id} queued for workflow {run.workflow_id}")
        return run

    async def execute_run(
        self, run_id: str, definition: Optional[WorkflowDefinition] = None
    ) -> RunResult:
        """Drive the run until it completes, fails or exhausts its step budget."""
        if run_id in self._active:
            raise RunAlreadyActive(f"Run {run_id} is already executing")
        self._active.add(run_id)
        try:
            run = await self._repository.get_run(run_id)
            if run is None:
                raise RunNotFound(run_id)
            if run.status.is_terminal:
                raise InvalidRunTransition(f"Run {run_id} is already {run.status.value}")
            definition = definition or await self._load_definition(run)
            return await self._drive(run, definition)
        finally:
            self._active.discard(run_id)

    async def run(
        self,
        definition: WorkflowDefinition,
        trigger_payload: Any = None,
        **kwargs: Any,
    ) -> RunResult:
        """Start and execute a run in one call."""
        run = await self.start_run(definition, trigger_payload, **kwargs)
        return await self.execute_run(run.id, definition)

    # ------------------------------------------------------------------
    async def _load_definition(self, run: RunRecord) -> WorkflowDefinition:
        if self._definitions is None or not run.workflow_id:
            raise WorkflowNotFound(f"No definition available for run {run.id}")
        stored = await self._definitions.get_workflow(run.workflow_id)
        if stored is None:
            raise WorkflowNotFound(run.workflow_id)
        return stored.definition

    async def _transition(self, state: RunState, target: RunStatus, **fields: Any) -> None:
        current = state.run.status
        if current != target:
            check_transition(current, target)
        elif not fields:
            return
        state.run = await self._repository.update_run(state.run.id, status=target, **fields)

    async def _fail_run(self, state: RunState, exc: BaseException, node_id: Optional[str] = None) -> None:
        error = error_payload(exc, node_id=node_id)
        logger.error(f"Run {state.run.id} failed: {error['message']}")
        await self._transition(state, RunStatus.FAILED, finished_at=utc_now(), error=error)

    async def _drive(self, run: RunRecord, definition: WorkflowDefinition) -> RunResult:
        ledger = StepLedger(self._repository, run.id)

        state = RunState(
            run,
            definition,
            ledger,
            set_status=lambda status: self._transition(state, status),
            default_wait_timeout=self.config.waits.default_timeout,
        )
        policy = definition.retry_policy_or(self.default_retry_policy)
        budget = definition.step_budget
        visited: List[str] = []

        await self._transition(state, RunStatus.RUNNING, started_at=run.started_at or utc_now())
        logger.info(f"Run {run.id} started")

        order = plan(definition)
        current = order[0] if order else None
        while current is not None:
            if len(visited) >= budget:
                await self._fail_run(state, StepBudgetExceeded(budget))
                return self._result(state, visited)
            visited.append(current)
            result = await self._run_node(state, current, policy)
            if result is None:
                return self._result(state, visited)
            current = follow_edge(current, definition.edges, result.branch)

        await self._transition(state, RunStatus.COMPLETED, finished_at=utc_now())
        logger.info(f"Run {run.id} completed after {len(visited)} steps")
        return self._result(state, visited)

    async def _run_node(
        self, state: RunState, node_id: str, policy: RetryPolicy
    ) -> Optional[NodeResult]:
        for attempt in attempts(policy):
            if state.run.status == RunStatus.WAITING:
                await self._transition(state, RunStatus.RUNNING)
            await state.ledger.mark_running(node_id, attempt)
            try:
                result = await self._dispatcher.dispatch(node_id, state)
            except Exception as exc:
                logger.warning(
                    f"Run {state.run.id}: node {node_id} attempt {attempt}/"
                    f"{policy.max_attempts} failed: {exc}"
                )
                if attempt >= policy.max_attempts:
                    await state.ledger.mark_failed(node_id, exc)
                    await self._fail_run(state, exc, node_id=node_id)
                    return None
                await schedule_retry(policy)
                continue

            state.context.step_outputs[node_id] = result.output
            await state.ledger.mark_completed(node_id, result.ledger_output)
            logger.info(f"Run {state.run.id}: node {node_id} completed")
            return result
        return None

    @staticmethod
    def _result(state: RunState, visited: List[str]) -> RunResult:
        return RunResult(
            run=state.run, visited=list(visited), step_outputs=dict(state.context.step_outputs)
        )
