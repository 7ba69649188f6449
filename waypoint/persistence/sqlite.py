"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import sqlite3
from pathlib import Path
from typing import Any, Optional

from ..contracts import (
    DEFINITION_ADAPTER,
    InstanceQuery,
    TaskStatus,
    WorkflowInstance,
    WorkflowTask,
)
from ..errors import InstanceNotFoundError, TaskNotFoundError
from .repository import StoredDefinition, WorkflowRepository


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflow state using SQLite.

    Each record is stored as a JSON document next to the columns used for
    lookups and filtering.
    """

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
            CREATE TABLE IF NOT EXISTS workflow_definitions (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL,
                version TEXT NOT NULL,
                kind TEXT NOT NULL,
                document TEXT NOT NULL,
                UNIQUE (id, version)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_instances (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                status TEXT NOT NULL,
                started_by TEXT,
                created_at TEXT NOT NULL,
                document TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_tasks (
                id TEXT PRIMARY KEY,
                instance_id TEXT,
                status TEXT NOT NULL,
                created_at TEXT NOT NULL,
                document TEXT NOT NULL
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS ix_workflow_instances_workflow_id "
            "ON workflow_instances (workflow_id)"
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS ix_workflow_tasks_instance_id "
            "ON workflow_tasks (instance_id)"
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()
        return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Definitions
    async def save_definition(self, definition: StoredDefinition) -> None:
        # REPLACE re-inserts the row, so ``seq`` always tracks the latest save.
        await asyncio.to_thread(
            self._execute,
            "INSERT OR REPLACE INTO workflow_definitions (id, version, kind, document) "
            "VALUES (?, ?, ?, ?)",
            definition.id,
            definition.version,
            definition.kind,
            definition.model_dump_json(),
        )

    async def get_definition(
        self, definition_id: str, version: Optional[str] = None
    ) -> StoredDefinition | None:
        if version is None:
            row = await asyncio.to_thread(
                self._fetchone,
                "SELECT document FROM workflow_definitions WHERE id = ? "
                "ORDER BY seq DESC LIMIT 1",
                definition_id,
            )
        else:
            row = await asyncio.to_thread(
                self._fetchone,
                "SELECT document FROM workflow_definitions WHERE id = ? AND version = ?",
                definition_id,
                version,
            )
        if not row:
            return None
        return DEFINITION_ADAPTER.validate_json(row["document"])

    async def list_definitions(self) -> list[StoredDefinition]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT id, document FROM workflow_definitions ORDER BY seq",
        )
        latest: dict[str, str] = {}
        for row in rows:
            latest.pop(row["id"], None)
            latest[row["id"]] = row["document"]
        return [DEFINITION_ADAPTER.validate_json(doc) for doc in latest.values()]

    # ------------------------------------------------------------------
    # Instances
    async def save_instance(self, instance: WorkflowInstance) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT OR REPLACE INTO workflow_instances "
            "(id, workflow_id, status, started_by, created_at, document) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            instance.id,
            instance.workflow_id,
            instance.status.value,
            instance.started_by,
            instance.created_at.isoformat(),
            instance.model_dump_json(),
        )

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT document FROM workflow_instances WHERE id = ?",
            instance_id,
        )
        if not row:
            return None
        return WorkflowInstance.model_validate_json(row["document"])

    async def update_instance(self, instance: WorkflowInstance) -> None:
        updated = await asyncio.to_thread(
            self._execute,
            "UPDATE workflow_instances SET status = ?, started_by = ?, document = ? "
            "WHERE id = ?",
            instance.status.value,
            instance.started_by,
            instance.model_dump_json(),
            instance.id,
        )
        if not updated:
            raise InstanceNotFoundError(f"Workflow instance not found: {instance.id}")

    async def query_instances(self, query: InstanceQuery) -> list[WorkflowInstance]:
        clauses: list[str] = []
        params: list[Any] = []
        if query.workflow_id:
            clauses.append("workflow_id = ?")
            params.append(query.workflow_id)
        statuses = query.statuses()
        if statuses:
            clauses.append(f"status IN ({', '.join('?' for _ in statuses)})")
            params.extend(s.value for s in statuses)
        if query.started_by:
            clauses.append("started_by = ?")
            params.append(query.started_by)

        sql = "SELECT document FROM workflow_instances"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at, id"

        rows = await asyncio.to_thread(self._fetchall, sql, *params)
        instances = [WorkflowInstance.model_validate_json(r["document"]) for r in rows]
        # Sorting and pagination share one implementation with the other backends.
        return query.apply(instances)

    # ------------------------------------------------------------------
    # Tasks
    async def save_task(self, task: WorkflowTask) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT OR REPLACE INTO workflow_tasks "
            "(id, instance_id, status, created_at, document) VALUES (?, ?, ?, ?, ?)",
            task.id,
            task.instance_id,
            task.status.value,
            task.created_at.isoformat(),
            task.model_dump_json(),
        )

    async def get_task(self, task_id: str) -> WorkflowTask | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT document FROM workflow_tasks WHERE id = ?",
            task_id,
        )
        if not row:
            return None
        return WorkflowTask.model_validate_json(row["document"])

    async def update_task(self, task: WorkflowTask) -> None:
        updated = await asyncio.to_thread(
            self._execute,
            "UPDATE workflow_tasks SET instance_id = ?, status = ?, document = ? WHERE id = ?",
            task.instance_id,
            task.status.value,
            task.model_dump_json(),
            task.id,
        )
        if not updated:
            raise TaskNotFoundError(task.id)

    async def get_instance_tasks(self, instance_id: str) -> list[WorkflowTask]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT document FROM workflow_tasks WHERE instance_id = ? "
            "ORDER BY created_at, rowid",
            instance_id,
        )
        return [WorkflowTask.model_validate_json(r["document"]) for r in rows]

    async def list_tasks(self, status: Optional[TaskStatus] = None) -> list[WorkflowTask]:
        if status is None:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT document FROM workflow_tasks ORDER BY created_at, rowid",
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT document FROM workflow_tasks WHERE status = ? "
                "ORDER BY created_at, rowid",
                TaskStatus(status).value,
            )
        return [WorkflowTask.model_validate_json(r["document"]) for r in rows]
