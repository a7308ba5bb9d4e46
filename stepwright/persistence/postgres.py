"""PostgreSQL implementation of the run repository."""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Iterable

import asyncpg

from ..errors import RunNotFound
from .models import RUN_FIELDS, STEP_FIELDS, RunRecord, StepRecord

JSON_COLUMNS = frozenset({"trigger_payload", "output", "error"})

RUN_COLUMNS = (
    "id, workflow_id, company_id, status, trigger_type, trigger_payload, "
    "created_at, started_at, finished_at, error"
)
STEP_COLUMNS = "id, run_id, node_id, status, attempt, started_at, finished_at, error, output"


def _encode(name: str, value: Any) -> Any:
    if value is None:
        return None
    if name in JSON_COLUMNS:
        return json.dumps(value, default=str)
    if isinstance(value, Enum):
        return value.value
    return value


def _decode(record: asyncpg.Record) -> dict[str, Any]:
    data = dict(record)
    for key in JSON_COLUMNS & data.keys():
        if isinstance(data[key], str):
            data[key] = json.loads(data[key])
    return data


class PostgresRunRepository:
    """Persist run state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_runs (
                id TEXT PRIMARY KEY,
                workflow_id TEXT,
                company_id TEXT,
                status TEXT NOT NULL,
                trigger_type TEXT,
                trigger_payload JSONB,
                created_at TIMESTAMPTZ NOT NULL,
                started_at TIMESTAMPTZ,
                finished_at TIMESTAMPTZ,
                error JSONB
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_run_steps (
                id SERIAL PRIMARY KEY,
                run_id TEXT NOT NULL,
                node_id TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                attempt INTEGER NOT NULL DEFAULT 0,
                started_at TIMESTAMPTZ,
                finished_at TIMESTAMPTZ,
                error JSONB,
                output JSONB,
                UNIQUE (run_id, node_id)
            )
            """
        )

    # ------------------------------------------------------------------
    async def create_run(self, run: RunRecord) -> RunRecord:
        data = run.model_dump()
        names = RUN_COLUMNS.split(", ")
        placeholders = ", ".join(f"${i}" for i in range(1, len(names) + 1))
        conn = await self._connect()
        try:
            await conn.execute(
                f"INSERT INTO workflow_runs ({RUN_COLUMNS}) VALUES ({placeholders})",
                *(_encode(name, data[name]) for name in names),
            )
        finally:
            await conn.close()
        return run

    async def update_run(self, run_id: str, **fields: Any) -> RunRecord:
        unknown = set(fields) - RUN_FIELDS
        if unknown:
            raise ValueError(f"Unknown run fields: {sorted(unknown)}")
        if not fields:
            run = await self.get_run(run_id)
            if run is None:
                raise RunNotFound(run_id)
            return run
        assignments = ", ".join(f"{name} = ${i}" for i, name in enumerate(fields, start=1))
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"UPDATE workflow_runs SET {assignments} WHERE id = ${len(fields) + 1} "
                f"RETURNING {RUN_COLUMNS}",
                *(_encode(name, value) for name, value in fields.items()),
                run_id,
            )
        finally:
            await conn.close()
        if row is None:
            raise RunNotFound(run_id)
        return RunRecord(**_decode(row))

    async def create_steps(self, run_id: str, node_ids: Iterable[str]) -> None:
        rows = [(run_id, node_id) for node_id in node_ids]
        if not rows:
            return
        conn = await self._connect()
        try:
            await conn.executemany(
                "INSERT INTO workflow_run_steps (run_id, node_id) VALUES ($1, $2) "
                "ON CONFLICT (run_id, node_id) DO NOTHING",
                rows,
            )
        finally:
            await conn.close()

    async def update_step(self, run_id: str, node_id: str, **fields: Any) -> StepRecord:
        unknown = set(fields) - STEP_FIELDS
        if unknown:
            raise ValueError(f"Unknown step fields: {sorted(unknown)}")
        await self.create_steps(run_id, [node_id])
        if not fields:
            return await self.get_step(run_id, node_id)
        assignments = ", ".join(f"{name} = ${i}" for i, name in enumerate(fields, start=1))
        n = len(fields)
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"UPDATE workflow_run_steps SET {assignments} "
                f"WHERE run_id = ${n + 1} AND node_id = ${n + 2} RETURNING {STEP_COLUMNS}",
                *(_encode(name, value) for name, value in fields.items()),
                run_id,
                node_id,
            )
        finally:
            await conn.close()
        return StepRecord(**_decode(row))

    async def get_run(self, run_id: str) -> RunRecord | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"SELECT {RUN_COLUMNS} FROM workflow_runs WHERE id = $1", run_id
            )
        finally:
            await conn.close()
        return RunRecord(**_decode(row)) if row else None

    async def get_step(self, run_id: str, node_id: str) -> StepRecord | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"SELECT {STEP_COLUMNS} FROM workflow_run_steps WHERE run_id = $1 AND node_id = $2",
                run_id,
                node_id,
            )
        finally:
            await conn.close()
        return StepRecord(**_decode(row)) if row else None

    async def list_steps(self, run_id: str) -> list[StepRecord]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"SELECT {STEP_COLUMNS} FROM workflow_run_steps WHERE run_id = $1 ORDER BY id",
                run_id,
            )
        finally:
            await conn.close()
        return [StepRecord(**_decode(r)) for r in rows]

    async def list_runs(self, workflow_id: str | None = None) -> list[RunRecord]:
        conn = await self._connect()
        try:
            if workflow_id is None:
                rows = await conn.fetch(
                    f"SELECT {RUN_COLUMNS} FROM workflow_runs ORDER BY created_at"
                )
            else:
                rows = await conn.fetch(
                    f"SELECT {RUN_COLUMNS} FROM workflow_runs WHERE workflow_id = $1 "
                    "ORDER BY created_at",
                    workflow_id,
                )
        finally:
            await conn.close()
        return [RunRecord(**_decode(r)) for r in rows]
