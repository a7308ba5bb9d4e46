import pytest
from pydantic import ValidationError

from stepwright.contracts import RetryPolicy, RunContext, WorkflowDefinition, WorkflowEdge
from stepwright.persistence import RunRecord


def test_duplicate_node_ids_are_rejected():
    with pytest.raises(ValidationError):
        WorkflowDefinition(nodes=[{"id": "A", "type": "x"}, {"id": "A", "type": "y"}])


def test_edges_must_reference_existing_nodes():
    with pytest.raises(ValidationError):
        WorkflowDefinition(
            nodes=[{"id": "A", "type": "x"}], edges=[{"from": "A", "to": "ghost"}]
        )


def test_legacy_condition_branch_is_lifted():
    edge = WorkflowEdge.model_validate({"from": "A", "to": "B", "condition": {"branch": "yes"}})
    assert edge.branch == "yes"
    assert WorkflowEdge.model_validate({"from": "A", "to": "B", "branch": ""}).branch is None


def test_retry_policy_wire_names_and_bounds():
    definition = WorkflowDefinition.model_validate(
        {"settings": {"retryPolicy": {"maxAttempts": 5, "backoffSeconds": 0}}}
    )
    policy = definition.retry_policy_or(RetryPolicy())
    assert policy.max_attempts == 5
    assert policy.backoff_seconds == 0

    with pytest.raises(ValidationError):
        RetryPolicy(maxAttempts=0)
    with pytest.raises(ValidationError):
        RetryPolicy(backoffSeconds=-1)


def test_missing_retry_policy_uses_default():
    default = RetryPolicy(max_attempts=2, backoff_seconds=1)
    assert WorkflowDefinition().retry_policy_or(default) is default


def test_step_budget():
    small = WorkflowDefinition(nodes=[{"id": "A", "type": "x"}])
    big = WorkflowDefinition(nodes=[{"id": f"n{i}", "type": "x"} for i in range(20)])
    assert small.step_budget == 50
    assert big.step_budget == 100


def test_run_context_scope():
    run = RunRecord(workflow_id="wf", company_id="acme", trigger_payload={"a": 1}, trigger_type="manual")
    ctx = RunContext.for_run(run)
    ctx.step_outputs["A"] = {"ok": True}
    scope = ctx.scope()
    assert scope["trigger"] == {"payload": {"a": 1}, "type": "manual"}
    assert scope["steps"]["A"]["output"] == {"ok": True}
    assert scope["run"] == {"id": run.id, "workflowId": "wf", "companyId": "acme"}
