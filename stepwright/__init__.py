"""Stepwright: an async execution engine for declarative workflows."""

from .contracts import (
    Condition,
    NodeResult,
    RetryPolicy,
    RunContext,
    RunResult,
    WorkflowDefinition,
    WorkflowEdge,
    WorkflowNode,
)
from .definitions import (
    FileDefinitionSource,
    InMemoryDefinitionSource,
    StoredWorkflow,
    load_definition,
)
from .dispatch import StepDispatcher
from .execute import RunExecutor
from .executors import ExecutorRegistry, StepExecutor, default_registry
from .persistence import get_repository
from .planner import follow_edge, plan
from .templating import interpolate
from .conditions import evaluate
from .triggers import TriggerIntake
from .waits import get_wait_coordinator

__version__ = "0.1.0"
__all__ = [
    "Condition",
    "ExecutorRegistry",
    "FileDefinitionSource",
    "InMemoryDefinitionSource",
    "NodeResult",
    "RetryPolicy",
    "RunContext",
    "RunExecutor",
    "RunResult",
    "StepDispatcher",
    "StepExecutor",
    "StoredWorkflow",
    "TriggerIntake",
    "WorkflowDefinition",
    "WorkflowEdge",
    "WorkflowNode",
    "default_registry",
    "evaluate",
    "follow_edge",
    "get_repository",
    "get_wait_coordinator",
    "interpolate",
    "load_definition",
    "plan",
]
