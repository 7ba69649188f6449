"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

from typing import Any, Optional

import asyncpg

from ..contracts import (
    DEFINITION_ADAPTER,
    InstanceQuery,
    TaskStatus,
    WorkflowInstance,
    WorkflowTask,
)
from ..errors import InstanceNotFoundError, TaskNotFoundError
from .repository import StoredDefinition, WorkflowRepository


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist workflow state using PostgreSQL JSONB documents."""

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
            CREATE TABLE IF NOT EXISTS workflow_definitions (
                id TEXT NOT NULL,
                version TEXT NOT NULL,
                kind TEXT NOT NULL,
                document JSONB NOT NULL,
                saved_at TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp(),
                PRIMARY KEY (id, version)
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_instances (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                status TEXT NOT NULL,
                started_by TEXT,
                created_at TIMESTAMPTZ NOT NULL,
                document JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_tasks (
                id TEXT PRIMARY KEY,
                instance_id TEXT,
                status TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                document JSONB NOT NULL
            )
            """
        )

    async def _execute(self, query: str, *params: Any) -> str:
        conn = await self._connect()
        try:
            return await conn.execute(query, *params)
        finally:
            await conn.close()

    async def _fetch(self, query: str, *params: Any) -> list[asyncpg.Record]:
        conn = await self._connect()
        try:
            return await conn.fetch(query, *params)
        finally:
            await conn.close()

    async def _fetchrow(self, query: str, *params: Any) -> asyncpg.Record | None:
        conn = await self._connect()
        try:
            return await conn.fetchrow(query, *params)
        finally:
            await conn.close()

    # ------------------------------------------------------------------
    async def save_definition(self, definition: StoredDefinition) -> None:
        await self._execute(
            """
            INSERT INTO workflow_definitions (id, version, kind, document)
            VALUES ($1, $2, $3, $4)
            ON CONFLICT (id, version) DO UPDATE
            SET kind = EXCLUDED.kind, document = EXCLUDED.document,
                saved_at = clock_timestamp()
            """,
            definition.id,
            definition.version,
            definition.kind,
            definition.model_dump_json(),
        )

    async def get_definition(
        self, definition_id: str, version: Optional[str] = None
    ) -> StoredDefinition | None:
        if version is None:
            row = await self._fetchrow(
                "SELECT document FROM workflow_definitions WHERE id = $1 "
                "ORDER BY saved_at DESC LIMIT 1",
                definition_id,
            )
        else:
            row = await self._fetchrow(
                "SELECT document FROM workflow_definitions WHERE id = $1 AND version = $2",
                definition_id,
                version,
            )
        if not row:
            return None
        return DEFINITION_ADAPTER.validate_json(row["document"])

    async def list_definitions(self) -> list[StoredDefinition]:
        rows = await self._fetch(
            "SELECT DISTINCT ON (id) document FROM workflow_definitions "
            "ORDER BY id, saved_at DESC"
        )
        return [DEFINITION_ADAPTER.validate_json(r["document"]) for r in rows]

    # ------------------------------------------------------------------
    async def save_instance(self, instance: WorkflowInstance) -> None:
        await self._execute(
            """
            INSERT INTO workflow_instances
                (id, workflow_id, status, started_by, created_at, document)
            VALUES ($1, $2, $3, $4, $5, $6)
            ON CONFLICT (id) DO UPDATE
            SET status = EXCLUDED.status, started_by = EXCLUDED.started_by,
                document = EXCLUDED.document
            """,
            instance.id,
            instance.workflow_id,
            instance.status.value,
            instance.started_by,
            instance.created_at,
            instance.model_dump_json(),
        )

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        row = await self._fetchrow(
            "SELECT document FROM workflow_instances WHERE id = $1", instance_id
        )
        if not row:
            return None
        return WorkflowInstance.model_validate_json(row["document"])

    async def update_instance(self, instance: WorkflowInstance) -> None:
        status = await self._execute(
            "UPDATE workflow_instances SET status = $1, started_by = $2, document = $3 "
            "WHERE id = $4",
            instance.status.value,
            instance.started_by,
            instance.model_dump_json(),
            instance.id,
        )
        if status == "UPDATE 0":
            raise InstanceNotFoundError(f"Workflow instance not found: {instance.id}")

    async def query_instances(self, query: InstanceQuery) -> list[WorkflowInstance]:
        clauses: list[str] = []
        params: list[Any] = []
        if query.workflow_id:
            params.append(query.workflow_id)
            clauses.append(f"workflow_id = ${len(params)}")
        statuses = query.statuses()
        if statuses:
            params.append([s.value for s in statuses])
            clauses.append(f"status = ANY(${len(params)}::text[])")
        if query.started_by:
            params.append(query.started_by)
            clauses.append(f"started_by = ${len(params)}")

        sql = "SELECT document FROM workflow_instances"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at, id"

        rows = await self._fetch(sql, *params)
        return query.apply([WorkflowInstance.model_validate_json(r["document"]) for r in rows])

    # ------------------------------------------------------------------
    async def save_task(self, task: WorkflowTask) -> None:
        await self._execute(
            """
            INSERT INTO workflow_tasks (id, instance_id, status, created_at, document)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (id) DO UPDATE
            SET instance_id = EXCLUDED.instance_id, status = EXCLUDED.status,
                document = EXCLUDED.document
            """,
            task.id,
            task.instance_id,
            task.status.value,
            task.created_at,
            task.model_dump_json(),
        )

    async def get_task(self, task_id: str) -> WorkflowTask | None:
        row = await self._fetchrow("SELECT document FROM workflow_tasks WHERE id = $1", task_id)
        if not row:
            return None
        return WorkflowTask.model_validate_json(row["document"])

    async def update_task(self, task: WorkflowTask) -> None:
        status = await self._execute(
            "UPDATE workflow_tasks SET instance_id = $1, status = $2, document = $3 "
            "WHERE id = $4",
            task.instance_id,
            task.status.value,
            task.model_dump_json(),
            task.id,
        )
        if status == "UPDATE 0":
            raise TaskNotFoundError(task.id)

    async def get_instance_tasks(self, instance_id: str) -> list[WorkflowTask]:
        rows = await self._fetch(
            "SELECT document FROM workflow_tasks WHERE instance_id = $1 ORDER BY created_at",
            instance_id,
        )
        return [WorkflowTask.model_validate_json(r["document"]) for r in rows]

    async def list_tasks(self, status: Optional[TaskStatus] = None) -> list[WorkflowTask]:
        if status is None:
            rows = await self._fetch("SELECT document FROM workflow_tasks ORDER BY created_at")
        else:
            rows = await self._fetch(
                "SELECT document FROM workflow_tasks WHERE status = $1 ORDER BY created_at",
                TaskStatus(status).value,
            )
        return [WorkflowTask.model_validate_json(r["document"]) for r in rows]
