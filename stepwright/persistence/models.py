"""Data models for persisted run state."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RunStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    WAITING = "waiting"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    WAITING = "waiting"
    COMPLETED = "completed"
    FAILED = "failed"


class RunRecord(BaseModel):
    """One execution of a workflow definition against a trigger payload."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    workflow_id: Optional[str] = None
    company_id: Optional[str] = None
    status: RunStatus = RunStatus.QUEUED
    trigger_type: Optional[str] = None
    trigger_payload: Any = None
    created_at: datetime = Field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error: Optional[dict[str, Any]] = None


class StepRecord(BaseModel):
    """Ledger row for one node within one run, updated in place."""

    id: Optional[int] = None
    run_id: str
    node_id: str
    status: StepStatus = StepStatus.PENDING
    attempt: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error: Optional[dict[str, Any]] = None
    output: Any = None


RUN_FIELDS = frozenset(RunRecord.model_fields) - {"id"}
STEP_FIELDS = frozenset(StepRecord.model_fields) - {"id", "run_id", "node_id"}
