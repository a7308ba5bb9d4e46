"""Workflow definition and run-time contracts for the stepwright engine."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from .constants import (
    DEFAULT_BACKOFF_SECONDS,
    DEFAULT_MAX_ATTEMPTS,
    MIN_STEP_BUDGET,
    STEP_BUDGET_PER_NODE,
)
from .persistence.models import RunRecord


class Trigger(BaseModel):
    """Trigger declaration; opaque to the engine apart from its type."""

    type: str = "manual"
    config: Dict[str, Any] = Field(default_factory=dict)


class WorkflowNode(BaseModel):
    """One unit of work in a workflow graph."""

    id: str
    type: str
    config: Dict[str, Any] = Field(default_factory=dict)


class WorkflowEdge(BaseModel):
    """Directed connection between two nodes, optionally labelled with a branch."""

    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(alias="from")
    to: str
    branch: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _lift_condition_branch(cls, data: Any) -> Any:
        # Editor-produced edges carry the label as {"condition": {"branch": ...}}
        if isinstance(data, dict) and data.get("branch") is None:
            condition = data.get("condition")
            if isinstance(condition, dict) and condition.get("branch"):
                data = {**data, "branch": condition["branch"]}
        return data

    @field_validator("branch", mode="before")
    @classmethod
    def _blank_branch_is_unlabelled(cls, value: Any) -> Any:
        return value or None


class Condition(BaseModel):
    """Comparison evaluated by conditional and while-loop nodes."""

    left: str = ""
    op: str = Field(default="eq", validation_alias=AliasChoices("op", "operator"))
    right: str = ""

    @field_validator("left", "right", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, bool):
            return "true" if value else "false"
        return value if isinstance(value, str) else str(value)


class RetryPolicy(BaseModel):
    """How many times a failing node is attempted and how long to wait between."""

    model_config = ConfigDict(populate_by_name=True)

    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, alias="maxAttempts", ge=1)
    backoff_seconds: float = Field(
        default=DEFAULT_BACKOFF_SECONDS, alias="backoffSeconds", ge=0
    )


class WorkflowSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    retry_policy: Optional[RetryPolicy] = Field(default=None, alias="retryPolicy")


class WorkflowDefinition(BaseModel):
    """Trigger plus a directed graph of typed nodes."""

    id: Optional[str] = None
    name: Optional[str] = None
    trigger: Trigger = Field(default_factory=Trigger)
    nodes: List[WorkflowNode] = Field(default_factory=list)
    edges: List[WorkflowEdge] = Field(default_factory=list)
    settings: WorkflowSettings = Field(default_factory=WorkflowSettings)

    @model_validator(mode="after")
    def _check_graph(self) -> "WorkflowDefinition":
        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                raise ValueError(f"Duplicate node id: {node.id}")
            seen.add(node.id)
        for edge in self.edges:
            for endpoint in (edge.from_, edge.to):
                if endpoint not in seen:
                    raise ValueError(
                        f"Edge {edge.from_} -> {edge.to} references unknown node {endpoint}"
                    )
        return self

    def get_node(self, node_id: str) -> Optional[WorkflowNode]:
        return next((node for node in self.nodes if node.id == node_id), None)

    @property
    def step_budget(self) -> int:
        """Maximum number of node visits a single run may perform."""
        return max(MIN_STEP_BUDGET, len(self.nodes) * STEP_BUDGET_PER_NODE)

    def retry_policy_or(self, default: RetryPolicy) -> RetryPolicy:
        return self.settings.retry_policy or default


class RunContext(BaseModel):
    """Values visible to templates and conditions while a run executes."""

    trigger_payload: Any = None
    step_outputs: Dict[str, Any] = Field(default_factory=dict)
    trigger_type: Optional[str] = None
    run_id: Optional[str] = None
    workflow_id: Optional[str] = None
    company_id: Optional[str] = None

    @classmethod
    def for_run(cls, run: RunRecord) -> "RunContext":
        return cls(
            trigger_payload=run.trigger_payload,
            trigger_type=run.trigger_type,
            run_id=run.id,
            workflow_id=run.workflow_id,
            company_id=run.company_id,
        )

    def scope(self) -> Dict[str, Any]:
        """Return the lookup root used by ``{{path}}`` tokens."""
        return {
            "trigger": {"payload": self.trigger_payload, "type": self.trigger_type},
            "steps": {
                node_id: {"output": output}
                for node_id, output in self.step_outputs.items()
            },
            "run": {
                "id": self.run_id,
                "workflowId": self.workflow_id,
                "companyId": self.company_id,
            },
        }


class NodeResult(BaseModel):
    """Outcome of executing one node.

    ``output`` becomes visible to later nodes; ``record`` overrides what is
    written to the step ledger when the two differ.
    """

    output: Any = None
    branch: Optional[str] = None
    record: Any = None

    @property
    def ledger_output(self) -> Any:
        return self.record if self.record is not None else self.output


class RunResult(BaseModel):
    """Final state of a run plus the traversal that produced it."""

    run: RunRecord
    visited: List[str] = Field(default_factory=list)
    step_outputs: Dict[str, Any] = Field(default_factory=dict)

    @property
    def status(self) -> str:
        return self.run.status
