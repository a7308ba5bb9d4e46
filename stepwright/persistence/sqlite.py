"""SQLite implementation of the run repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Iterable

from ..errors import RunNotFound
from .models import RUN_FIELDS, STEP_FIELDS, RunRecord, StepRecord

JSON_COLUMNS = frozenset({"trigger_payload", "output", "error"})
DATETIME_COLUMNS = frozenset({"created_at", "started_at", "finished_at"})

RUN_COLUMNS = (
    "id, workflow_id, company_id, status, trigger_type, trigger_payload, "
    "created_at, started_at, finished_at, error"
)
STEP_COLUMNS = "id, run_id, node_id, status, attempt, started_at, finished_at, error, output"


def encode_column(name: str, value: Any) -> Any:
    """Convert a record value into what SQLite stores for ``name``."""
    if value is None:
        return None
    if name in JSON_COLUMNS:
        return json.dumps(value, default=str)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def decode_row(row: sqlite3.Row) -> dict[str, Any]:
    data: dict[str, Any] = {}
    for key in row.keys():
        value = row[key]
        if value is not None and key in JSON_COLUMNS:
            value = json.loads(value)
        elif value is not None and key in DATETIME_COLUMNS:
            value = datetime.fromisoformat(value)
        data[key] = value
    return data


class SQLiteRunRepository:
    """Persist run state using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_runs (
                id TEXT PRIMARY KEY,
                workflow_id TEXT,
                company_id TEXT,
                status TEXT NOT NULL,
                trigger_type TEXT,
                trigger_payload TEXT,
                created_at TEXT NOT NULL,
                started_at TEXT,
                finished_at TEXT,
                error TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_run_steps (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                run_id TEXT NOT NULL,
                node_id TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                attempt INTEGER NOT NULL DEFAULT 0,
                started_at TEXT,
                finished_at TEXT,
                error TEXT,
                output TEXT,
                UNIQUE (run_id, node_id)
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()

    def _executemany(self, query: str, rows: list[tuple]) -> None:
        cur = self._conn.cursor()
        cur.executemany(query, rows)
        self._conn.commit()

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    def _update(self, table: str, where: str, fields: dict[str, Any], *keys: Any) -> None:
        if not fields:
            return
        assignments = ", ".join(f"{name} = ?" for name in fields)
        values = [encode_column(name, value) for name, value in fields.items()]
        self._execute(f"UPDATE {table} SET {assignments} WHERE {where}", *values, *keys)

    # ------------------------------------------------------------------
    # Repository API
    async def create_run(self, run: RunRecord) -> RunRecord:
        data = run.model_dump()
        await asyncio.to_thread(
            self._execute,
            f"INSERT INTO workflow_runs ({RUN_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            *(encode_column(name, data[name]) for name in RUN_COLUMNS.split(", ")),
        )
        return run

    async def update_run(self, run_id: str, **fields: Any) -> RunRecord:
        unknown = set(fields) - RUN_FIELDS
        if unknown:
            raise ValueError(f"Unknown run fields: {sorted(unknown)}")
        await asyncio.to_thread(self._update, "workflow_runs", "id = ?", fields, run_id)
        run = await self.get_run(run_id)
        if run is None:
            raise RunNotFound(run_id)
        return run

    async def create_steps(self, run_id: str, node_ids: Iterable[str]) -> None:
        rows = [(run_id, node_id) for node_id in node_ids]
        if not rows:
            return
        await asyncio.to_thread(
            self._executemany,
            "INSERT OR IGNORE INTO workflow_run_steps (run_id, node_id) VALUES (?, ?)",
            rows,
        )

    async def update_step(self, run_id: str, node_id: str, **fields: Any) -> StepRecord:
        unknown = set(fields) - STEP_FIELDS
        if unknown:
            raise ValueError(f"Unknown step fields: {sorted(unknown)}")
        await self.create_steps(run_id, [node_id])
        await asyncio.to_thread(
            self._update,
            "workflow_run_steps",
            "run_id = ? AND node_id = ?",
            fields,
            run_id,
            node_id,
        )
        return await self.get_step(run_id, node_id)

    async def get_run(self, run_id: str) -> RunRecord | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {RUN_COLUMNS} FROM workflow_runs WHERE id = ?",
            run_id,
        )
        return RunRecord(**decode_row(row)) if row else None

    async def get_step(self, run_id: str, node_id: str) -> StepRecord | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {STEP_COLUMNS} FROM workflow_run_steps WHERE run_id = ? AND node_id = ?",
            run_id,
            node_id,
        )
        return StepRecord(**decode_row(row)) if row else None

    async def list_steps(self, run_id: str) -> list[StepRecord]:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {STEP_COLUMNS} FROM workflow_run_steps WHERE run_id = ? ORDER BY id",
            run_id,
        )
        return [StepRecord(**decode_row(r)) for r in rows]

    async def list_runs(self, workflow_id: str | None = None) -> list[RunRecord]:
        if workflow_id is None:
            rows = await asyncio.to_thread(
                self._fetchall,
                f"SELECT {RUN_COLUMNS} FROM workflow_runs ORDER BY created_at",
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                f"SELECT {RUN_COLUMNS} FROM workflow_runs WHERE workflow_id = ? ORDER BY created_at",
                workflow_id,
            )
        return [RunRecord(**decode_row(r)) for r in rows]
