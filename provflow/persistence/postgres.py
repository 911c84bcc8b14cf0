"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

import asyncpg

from .models import FailureRecord, InstanceStatus, LoopState, StepRecord, WorkflowInstance
from .repository import WorkflowRepository


def _json(value: Any) -> Any:
    # asyncpg hands JSONB back as text unless a codec is registered
    return json.loads(value) if isinstance(value, str) else value


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist workflow state using PostgreSQL."""

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
            CREATE TABLE IF NOT EXISTS instances (
                instance_id TEXT PRIMARY KEY,
                step_ids JSONB NOT NULL,
                payload JSONB NOT NULL,
                status TEXT NOT NULL,
                loop JSONB NOT NULL,
                failure JSONB
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS instance_state (
                instance_id TEXT NOT NULL,
                key TEXT NOT NULL,
                value JSONB NOT NULL,
                PRIMARY KEY (instance_id, key)
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS step_history (
                id SERIAL PRIMARY KEY,
                instance_id TEXT NOT NULL,
                step_name TEXT NOT NULL,
                started_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ,
                status TEXT,
                error TEXT
            )
            """
        )

    # ------------------------------------------------------------------
    async def create_instance(
        self, instance_id: str, step_ids: list[str], payload: dict | None = None
    ) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                "INSERT INTO instances (instance_id, step_ids, payload, status, loop) VALUES ($1, $2, $3, $4, $5)",
                instance_id,
                json.dumps(list(step_ids)),
                json.dumps(payload or {}),
                InstanceStatus.RUNNING.value,
                LoopState().model_dump_json(),
            )
        finally:
            await conn.close()

    async def set_state_key(self, instance_id: str, key: str, value: Any) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO instance_state (instance_id, key, value) VALUES ($1, $2, $3)
                ON CONFLICT (instance_id, key) DO UPDATE SET value = EXCLUDED.value
                """,
                instance_id,
                key,
                json.dumps(value),
            )
        finally:
            await conn.close()

    async def save_loop(self, instance_id: str, loop: LoopState) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                "UPDATE instances SET loop = $1 WHERE instance_id = $2",
                loop.model_dump_json(),
                instance_id,
            )
        finally:
            await conn.close()

    async def mark_step_started(self, instance_id: str, step_name: str) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO step_history (instance_id, step_name, started_at)
                SELECT $1, $2, $3
                WHERE NOT EXISTS (
                    SELECT 1 FROM step_history
                    WHERE instance_id = $1 AND step_name = $2 AND completed_at IS NULL
                )
                """,
                instance_id,
                step_name,
                datetime.now(timezone.utc),
            )
        finally:
            await conn.close()

    async def mark_step_completed(
        self,
        instance_id: str,
        step_name: str,
        status: str,
        error: str | None = None,
    ) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                UPDATE step_history
                SET completed_at = $1, status = $2, error = $3
                WHERE instance_id = $4 AND step_name = $5 AND completed_at IS NULL
                """,
                datetime.now(timezone.utc),
                status,
                error,
                instance_id,
                step_name,
            )
        finally:
            await conn.close()

    async def mark_instance_status(
        self,
        instance_id: str,
        status: InstanceStatus,
        failure: FailureRecord | None = None,
    ) -> None:
        conn = await self._connect()
        try:
            if failure is None:
                await conn.execute(
                    "UPDATE instances SET status = $1 WHERE instance_id = $2",
                    status.value,
                    instance_id,
                )
            else:
                await conn.execute(
                    "UPDATE instances SET status = $1, failure = $2 WHERE instance_id = $3",
                    status.value,
                    failure.model_dump_json(),
                    instance_id,
                )
        finally:
            await conn.close()

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT instance_id, step_ids, payload, status, loop, failure FROM instances WHERE instance_id = $1",
                instance_id,
            )
            if not row:
                return None
            state_rows = await conn.fetch(
                "SELECT key, value FROM instance_state WHERE instance_id = $1",
                instance_id,
            )
            steps_rows = await conn.fetch(
                "SELECT id, instance_id, step_name, started_at, completed_at, status, error FROM step_history WHERE instance_id = $1 ORDER BY id",
                instance_id,
            )
        finally:
            await conn.close()
        steps = [
            StepRecord(
                id=r["id"],
                instance_id=r["instance_id"],
                step_name=r["step_name"],
                started_at=r["started_at"],
                completed_at=r["completed_at"],
                status=r["status"],
                error=r["error"],
            )
            for r in steps_rows
        ]
        instance = self._from_row(row)
        instance.state = {r["key"]: _json(r["value"]) for r in state_rows}
        instance.steps = steps
        return instance

    async def list_instances(self) -> list[WorkflowInstance]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT instance_id, step_ids, payload, status, loop, failure FROM instances"
            )
        finally:
            await conn.close()
        return [self._from_row(r) for r in rows]

    @staticmethod
    def _from_row(row: Any) -> WorkflowInstance:
        failure = _json(row["failure"]) if row["failure"] is not None else None
        return WorkflowInstance(
            instance_id=row["instance_id"],
            step_ids=_json(row["step_ids"]),
            payload=_json(row["payload"]),
            status=InstanceStatus(row["status"]),
            loop=LoopState.model_validate(_json(row["loop"])),
            failure=FailureRecord.model_validate(failure) if failure else None,
        )
