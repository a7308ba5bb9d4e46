"""Node dispatch: one handler per node kind."""

from __future__ import annotations

import abc
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from .constants import (
    BRANCH_LOOP,
    BRANCH_NEXT,
    BRANCH_NO,
    BRANCH_YES,
    DEFAULT_WAIT_TIMEOUT,
)
from .conditions import evaluate
from .contracts import NodeResult, RunContext, WorkflowDefinition, WorkflowNode
from .errors import StepConfigurationError
from .executors import ExecutorContext, ExecutorRegistry, default_registry
from .ledger import StepLedger
from .persistence import RunRecord, RunStatus
from .templating import resolve_settings
from .waits import BaseWaitCoordinator, InMemoryWaitCoordinator

logger = logging.getLogger(__name__)

StatusSetter = Callable[[RunStatus], Awaitable[None]]


class RunState:
    """Mutable state owned by a single run traversal."""

    def __init__(
        self,
        run: RunRecord,
        definition: WorkflowDefinition,
        ledger: StepLedger,
        set_status: StatusSetter,
        default_wait_timeout: str = DEFAULT_WAIT_TIMEOUT,
    ) -> None:
        self.run = run
        self.definition = definition
        self.ledger = ledger
        self.set_status = set_status
        self.default_wait_timeout = default_wait_timeout
        self.context = RunContext.for_run(run)
        self.loop_counters: Dict[str, int] = {}


class NodeHandler(metaclass=abc.ABCMeta):
    """Executes one kind of node."""

    @abc.abstractmethod
    async def execute(self, node: WorkflowNode, state: RunState) -> NodeResult:
        raise NotImplementedError


class ActionHandler(NodeHandler):
    """Resolves ``config.settings`` and calls the executor registered for the node type."""

    def __init__(self, registry: ExecutorRegistry) -> None:
        self.registry = registry

    async def execute(self, node: WorkflowNode, state: RunState) -> NodeResult:
        raw_settings = node.config.get("settings") or {}
        if not isinstance(raw_settings, dict):
            raise StepConfigurationError(f"Settings of node {node.id} must be a mapping")
        settings = resolve_settings(raw_settings, state.context)
        context = ExecutorContext(
            run_id=state.run.id,
            node_id=node.id,
            node_type=node.type,
            company_id=state.run.company_id,
            trigger_payload=state.context.trigger_payload,
            step_outputs=dict(state.context.step_outputs),
        )
        executor = self.registry.get(node.type)
        output = executor(settings, context)
        if inspect.isawaitable(output):
            output = await output
        return NodeResult(output=output)


class ConditionalHandler(NodeHandler):
    async def execute(self, node: WorkflowNode, state: RunState) -> NodeResult:
        result = evaluate(node.config.get("condition"), state.context)
        return NodeResult(
            output={"result": result}, branch=BRANCH_YES if result else BRANCH_NO
        )


def _iterations(value: Any) -> int:
    try:
        count = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(count, 0)


class LoopHandler(NodeHandler):
    """``while`` loops re-evaluate a condition; ``for`` loops count down in memory."""

    async def execute(self, node: WorkflowNode, state: RunState) -> NodeResult:
        mode = node.config.get("mode") or "for"
        if mode == "while":
            should_loop = evaluate(node.config.get("condition"), state.context)
            iterations_left = 0
        else:
            counters = state.loop_counters
            if node.id not in counters:
                counters[node.id] = _iterations(node.config.get("iterations"))
            iterations_left = counters[node.id]
            should_loop = iterations_left > 0
            if should_loop:
                iterations_left -= 1
                counters[node.id] = iterations_left
            else:
                # Exhausted; the next entry starts a fresh countdown.
                del counters[node.id]

        return NodeResult(
            output={"shouldLoop": should_loop, "iterationsLeft": iterations_left},
            branch=BRANCH_LOOP if should_loop else BRANCH_NEXT,
        )


class WaitHandler(NodeHandler):
    """Suspends the run until its wait token is completed or times out."""

    def __init__(self, waits: BaseWaitCoordinator) -> None:
        self.waits = waits

    async def execute(self, node: WorkflowNode, state: RunState) -> NodeResult:
        timeout = node.config.get("timeout")
        if timeout is None or timeout == "":
            timeout = state.default_wait_timeout
        token = await self.waits.create_token(timeout, tags=[state.run.id, node.id])
        await state.ledger.mark_waiting(node.id, {"waitpointId": token.id, "url": token.url})
        await state.set_status(RunStatus.WAITING)
        logger.info(f"Run {state.run.id}: node {node.id} waiting on {token.id}")

        resolution = await self.waits.await_token(token.id)

        await state.set_status(RunStatus.RUNNING)
        result = resolution.as_result()
        return NodeResult(output=result, record={"waitpointId": token.id, "result": result})


CONDITIONAL_TYPES = ("logicIf", "if", "conditional")
LOOP_TYPES = ("logicLoop", "loop")
WAIT_TYPES = ("wait",)


class StepDispatcher:
    """Routes a node to the handler for its kind; everything else is an action."""

    def __init__(
        self,
        registry: Optional[ExecutorRegistry] = None,
        waits: Optional[BaseWaitCoordinator] = None,
    ) -> None:
        self.registry = registry if registry is not None else default_registry()
        self.waits = waits if waits is not None else InMemoryWaitCoordinator()
        self.action = ActionHandler(self.registry)
        self.handlers: Dict[str, NodeHandler] = {}
        for types, handler in (
            (CONDITIONAL_TYPES, ConditionalHandler()),
            (LOOP_TYPES, LoopHandler()),
            (WAIT_TYPES, WaitHandler(self.waits)),
        ):
            for node_type in types:
                self.handlers[node_type] = handler

    def handler_for(self, node_type: str) -> NodeHandler:
        return self.handlers.get(node_type, self.action)

    async def dispatch(self, node_id: str, state: RunState) -> NodeResult:
        node = state.definition.get_node(node_id)
        if node is None:
            raise StepConfigurationError(f"Workflow node {node_id} not found")
        return await self.handler_for(node.type).execute(node, state)
