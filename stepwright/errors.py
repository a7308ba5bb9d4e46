"""Exception hierarchy for the workflow engine."""

from __future__ import annotations

from typing import Any, Optional


class StepwrightError(Exception):
    """Base exception for all engine errors."""


class StepConfigurationError(StepwrightError):
    """A node is misconfigured; retrying will not help."""


class ExecutorError(StepwrightError):
    """An external system called by a step executor failed."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class StepBudgetExceeded(StepwrightError):
    """The run visited more steps than its budget allows."""

    def __init__(self, budget: int) -> None:
        super().__init__(f"Step budget of {budget} visits exhausted")
        self.budget = budget


class InvalidRunTransition(StepwrightError):
    """A run status change is not allowed from its current status."""


class RunAlreadyActive(StepwrightError):
    """The run is already being executed."""


class RunNotFound(StepwrightError):
    """No run exists with the requested id."""


class WorkflowNotFound(StepwrightError):
    """No workflow definition exists with the requested id."""


class UnknownWaitToken(StepwrightError):
    """The wait token id is not known to the coordinator."""


def error_payload(exc: BaseException, **extra: Any) -> dict[str, Any]:
    """Serialise ``exc`` into the shape stored on run and step records."""
    payload: dict[str, Any] = {
        "message": str(exc) or exc.__class__.__name__,
        "kind": exc.__class__.__name__,
    }
    payload.update({k: v for k, v in extra.items() if v is not None})
    return payload
