"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .models import FailureRecord, InstanceStatus, LoopState, StepRecord, WorkflowInstance
from .repository import WorkflowRepository


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflow state using SQLite."""

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
            CREATE TABLE IF NOT EXISTS instances (
                instance_id TEXT PRIMARY KEY,
                step_ids TEXT NOT NULL,
                payload TEXT NOT NULL,
                status TEXT NOT NULL,
                loop TEXT NOT NULL,
                failure TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS instance_state (
                instance_id TEXT NOT NULL,
                key TEXT NOT NULL,
                value TEXT NOT NULL,
                PRIMARY KEY (instance_id, key)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS step_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                instance_id TEXT NOT NULL,
                step_name TEXT NOT NULL,
                started_at TEXT,
                completed_at TEXT,
                status TEXT,
                error TEXT
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

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    def _mark_step_started(self, instance_id: str, step_name: str) -> None:
        open_row = self._fetchone(
            "SELECT id FROM step_history WHERE instance_id = ? AND step_name = ? AND completed_at IS NULL",
            instance_id,
            step_name,
        )
        if open_row is not None:
            return
        self._execute(
            "INSERT INTO step_history (instance_id, step_name, started_at) VALUES (?, ?, ?)",
            instance_id,
            step_name,
            datetime.now(timezone.utc).isoformat(),
        )

    def _load(self, row: sqlite3.Row, with_details: bool) -> WorkflowInstance:
        instance_id = row["instance_id"]
        state: dict[str, Any] = {}
        steps: list[StepRecord] = []
        if with_details:
            for r in self._fetchall(
                "SELECT key, value FROM instance_state WHERE instance_id = ?", instance_id
            ):
                state[r["key"]] = json.loads(r["value"])
            steps = [
                StepRecord(
                    id=r["id"],
                    instance_id=r["instance_id"],
                    step_name=r["step_name"],
                    started_at=datetime.fromisoformat(r["started_at"]) if r["started_at"] else None,
                    completed_at=datetime.fromisoformat(r["completed_at"]) if r["completed_at"] else None,
                    status=r["status"],
                    error=r["error"],
                )
                for r in self._fetchall(
                    "SELECT id, instance_id, step_name, started_at, completed_at, status, error FROM step_history WHERE instance_id = ? ORDER BY id",
                    instance_id,
                )
            ]
        return WorkflowInstance(
            instance_id=instance_id,
            step_ids=json.loads(row["step_ids"]),
            payload=json.loads(row["payload"]),
            state=state,
            status=InstanceStatus(row["status"]),
            loop=LoopState.model_validate_json(row["loop"]),
            failure=FailureRecord.model_validate_json(row["failure"]) if row["failure"] else None,
            steps=steps,
        )

    # ------------------------------------------------------------------
    # Repository API
    async def create_instance(
        self, instance_id: str, step_ids: list[str], payload: dict | None = None
    ) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT INTO instances (instance_id, step_ids, payload, status, loop) VALUES (?, ?, ?, ?, ?)",
            instance_id,
            json.dumps(list(step_ids)),
            json.dumps(payload or {}),
            InstanceStatus.RUNNING.value,
            LoopState().model_dump_json(),
        )

    async def set_state_key(self, instance_id: str, key: str, value: Any) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT OR REPLACE INTO instance_state (instance_id, key, value) VALUES (?, ?, ?)",
            instance_id,
            key,
            json.dumps(value),
        )

    async def save_loop(self, instance_id: str, loop: LoopState) -> None:
        await asyncio.to_thread(
            self._execute,
            "UPDATE instances SET loop = ? WHERE instance_id = ?",
            loop.model_dump_json(),
            instance_id,
        )

    async def mark_step_started(self, instance_id: str, step_name: str) -> None:
        await asyncio.to_thread(self._mark_step_started, instance_id, step_name)

    async def mark_step_completed(
        self,
        instance_id: str,
        step_name: str,
        status: str,
        error: str | None = None,
    ) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            UPDATE step_history
            SET completed_at = ?, status = ?, error = ?
            WHERE instance_id = ? AND step_name = ? AND completed_at IS NULL
            """,
            datetime.now(timezone.utc).isoformat(),
            status,
            error,
            instance_id,
            step_name,
        )

    async def mark_instance_status(
        self,
        instance_id: str,
        status: InstanceStatus,
        failure: FailureRecord | None = None,
    ) -> None:
        if failure is None:
            await asyncio.to_thread(
                self._execute,
                "UPDATE instances SET status = ? WHERE instance_id = ?",
                status.value,
                instance_id,
            )
            return
        await asyncio.to_thread(
            self._execute,
            "UPDATE instances SET status = ?, failure = ? WHERE instance_id = ?",
            status.value,
            failure.model_dump_json(),
            instance_id,
        )

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT instance_id, step_ids, payload, status, loop, failure FROM instances WHERE instance_id = ?",
            instance_id,
        )
        if not row:
            return None
        return await asyncio.to_thread(self._load, row, True)

    async def list_instances(self) -> list[WorkflowInstance]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT instance_id, step_ids, payload, status, loop, failure FROM instances",
        )
        return [self._load(row, False) for row in rows]
