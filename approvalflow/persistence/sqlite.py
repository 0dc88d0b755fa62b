"""SQLite implementation of the approval repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

from ..contracts import WorkflowDefinition, WorkflowSnapshot
from ..exceptions import ConflictError, RepositoryError
from .models import ApprovalAction, ApprovalInstance, InstanceStatus
from .repository import ApprovalRepository

_INSTANCE_COLUMNS = (
    "id, tenant_id, document_id, workflow_id, workflow_snapshot, current_step_index, "
    "status, submitted_by, submitted_at, decided_at, decided_by, notes, auto_approved, version"
)
_WORKFLOW_COLUMNS = (
    "id, tenant_id, name, description, steps, require_all_approvers, "
    "auto_approve_threshold, is_active, revision, created_at, updated_at"
)


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SQLiteApprovalRepository(ApprovalRepository):
    """Persist approval state using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                tenant_id TEXT NOT NULL,
                name TEXT NOT NULL,
                description TEXT,
                steps TEXT NOT NULL,
                require_all_approvers INTEGER NOT NULL,
                auto_approve_threshold TEXT,
                is_active INTEGER NOT NULL,
                revision INTEGER NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS approval_instances (
                id TEXT PRIMARY KEY,
                tenant_id TEXT NOT NULL,
                document_id TEXT NOT NULL,
                workflow_id TEXT NOT NULL,
                workflow_snapshot TEXT NOT NULL,
                current_step_index INTEGER NOT NULL,
                status TEXT NOT NULL,
                submitted_by TEXT NOT NULL,
                submitted_at TEXT NOT NULL,
                decided_at TEXT,
                decided_by TEXT,
                notes TEXT,
                auto_approved INTEGER NOT NULL,
                version INTEGER NOT NULL
            )
            """
        )
        # one open approval per document
        cur.execute(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS idx_instances_open_document
            ON approval_instances (document_id) WHERE status = 'pending'
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS approval_actions (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                instance_id TEXT NOT NULL,
                step_index INTEGER NOT NULL,
                actor_id TEXT NOT NULL,
                decision TEXT NOT NULL,
                comments TEXT,
                acted_at TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        with self._lock:
            try:
                with self._conn:
                    cur = self._conn.execute(query, params)
                    return cur.rowcount
            except sqlite3.Error as exc:
                raise RepositoryError(f"SQLite write failed: {exc}") from exc

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            try:
                return self._conn.execute(query, params).fetchone()
            except sqlite3.Error as exc:
                raise RepositoryError(f"SQLite read failed: {exc}") from exc

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(query, params).fetchall()
            except sqlite3.Error as exc:
                raise RepositoryError(f"SQLite read failed: {exc}") from exc

    @staticmethod
    def _workflow_params(definition: WorkflowDefinition) -> tuple:
        data = definition.model_dump(mode="json")
        return (
            definition.tenant_id,
            definition.name,
            definition.description,
            json.dumps(data["steps"]),
            int(definition.require_all_approvers),
            data["auto_approve_threshold"],
            int(definition.is_active),
            definition.revision,
            _ts(definition.created_at),
            _ts(definition.updated_at),
        )

    @staticmethod
    def _row_to_workflow(row: sqlite3.Row) -> WorkflowDefinition:
        threshold = row["auto_approve_threshold"]
        return WorkflowDefinition(
            id=row["id"],
            tenant_id=row["tenant_id"],
            name=row["name"],
            description=row["description"] or "",
            steps=json.loads(row["steps"]),
            require_all_approvers=bool(row["require_all_approvers"]),
            auto_approve_threshold=Decimal(threshold) if threshold is not None else None,
            is_active=bool(row["is_active"]),
            revision=row["revision"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    @staticmethod
    def _row_to_instance(row: sqlite3.Row) -> ApprovalInstance:
        return ApprovalInstance(
            id=row["id"],
            tenant_id=row["tenant_id"],
            document_id=row["document_id"],
            workflow_id=row["workflow_id"],
            workflow_snapshot=WorkflowSnapshot.model_validate_json(row["workflow_snapshot"]),
            current_step_index=row["current_step_index"],
            status=InstanceStatus(row["status"]),
            submitted_by=row["submitted_by"],
            submitted_at=_parse_ts(row["submitted_at"]),
            decided_at=_parse_ts(row["decided_at"]),
            decided_by=row["decided_by"],
            notes=row["notes"] or "",
            auto_approved=bool(row["auto_approved"]),
            version=row["version"],
        )

    @staticmethod
    def _row_to_action(row: sqlite3.Row) -> ApprovalAction:
        return ApprovalAction(
            id=row["id"],
            instance_id=row["instance_id"],
            step_index=row["step_index"],
            actor_id=row["actor_id"],
            decision=row["decision"],
            comments=row["comments"] or "",
            acted_at=_parse_ts(row["acted_at"]),
        )

    def _insert_instance(self, instance: ApprovalInstance) -> None:
        with self._lock:
            try:
                with self._conn:
                    cur = self._conn.execute(
                        f"INSERT INTO approval_instances ({_INSTANCE_COLUMNS}) "
                        "SELECT ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ? "
                        "WHERE NOT EXISTS (SELECT 1 FROM approval_instances "
                        "WHERE document_id = ? AND status = 'pending')",
                        (
                            instance.id,
                            instance.tenant_id,
                            instance.document_id,
                            instance.workflow_id,
                            instance.workflow_snapshot.model_dump_json(),
                            instance.current_step_index,
                            instance.status.value,
                            instance.submitted_by,
                            _ts(instance.submitted_at),
                            _ts(instance.decided_at),
                            instance.decided_by,
                            instance.notes,
                            int(instance.auto_approved),
                            instance.version,
                            instance.document_id,
                        ),
                    )
                    inserted = cur.rowcount
            except sqlite3.IntegrityError as exc:
                if "approval_instances.document_id" not in str(exc):
                    raise ConflictError(
                        f"Approval {instance.id} already exists",
                        details={"instance_id": instance.id},
                    ) from exc
                inserted = 0
            except sqlite3.Error as exc:
                raise RepositoryError(f"SQLite write failed: {exc}") from exc
        if not inserted:
            raise ConflictError(
                f"Document {instance.document_id} already has a pending approval",
                details={"document_id": instance.document_id},
            )

    def _guarded_update(
        self,
        instance: ApprovalInstance,
        expected_version: int,
        action: ApprovalAction | None,
    ) -> bool:
        with self._lock:
            try:
                with self._conn:
                    cur = self._conn.execute(
                        """
                        UPDATE approval_instances
                        SET current_step_index = ?, status = ?, decided_at = ?,
                            decided_by = ?, notes = ?, version = ?
                        WHERE id = ? AND version = ?
                        """,
                        (
                            instance.current_step_index,
                            instance.status.value,
                            _ts(instance.decided_at),
                            instance.decided_by,
                            instance.notes,
                            instance.version,
                            instance.id,
                            expected_version,
                        ),
                    )
                    if cur.rowcount == 0:
                        return False
                    if action is not None:
                        self._conn.execute(
                            """
                            INSERT INTO approval_actions
                                (id, instance_id, step_index, actor_id, decision, comments, acted_at)
                            VALUES (?, ?, ?, ?, ?, ?, ?)
                            """,
                            (
                                action.id,
                                action.instance_id,
                                action.step_index,
                                action.actor_id,
                                action.decision.value,
                                action.comments,
                                _ts(action.acted_at),
                            ),
                        )
                    return True
            except sqlite3.Error as exc:
                raise RepositoryError(f"SQLite write failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Repository API
    async def create_workflow(self, definition: WorkflowDefinition) -> None:
        try:
            await asyncio.to_thread(
                self._execute,
                f"INSERT INTO workflows ({_WORKFLOW_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                definition.id,
                *self._workflow_params(definition),
            )
        except RepositoryError as exc:
            if isinstance(exc.__cause__, sqlite3.IntegrityError):
                raise ConflictError(
                    f"Workflow {definition.id} already exists",
                    details={"workflow_id": definition.id},
                ) from exc
            raise

    async def get_workflow(self, workflow_id: str) -> WorkflowDefinition | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_WORKFLOW_COLUMNS} FROM workflows WHERE id = ?",
            workflow_id,
        )
        return self._row_to_workflow(row) if row else None

    async def list_workflows(
        self, tenant_id: str | None = None, active_only: bool = False
    ) -> list[WorkflowDefinition]:
        query = f"SELECT {_WORKFLOW_COLUMNS} FROM workflows WHERE 1 = 1"
        params: list[Any] = []
        if tenant_id is not None:
            query += " AND tenant_id = ?"
            params.append(tenant_id)
        if active_only:
            query += " AND is_active = 1"
        query += " ORDER BY created_at DESC"
        rows = await asyncio.to_thread(self._fetchall, query, *params)
        return [self._row_to_workflow(r) for r in rows]

    async def update_workflow(self, definition: WorkflowDefinition) -> None:
        params = self._workflow_params(definition)
        await asyncio.to_thread(
            self._execute,
            """
            UPDATE workflows
            SET tenant_id = ?, name = ?, description = ?, steps = ?,
                require_all_approvers = ?, auto_approve_threshold = ?, is_active = ?,
                revision = ?, created_at = ?, updated_at = ?
            WHERE id = ?
            """,
            *params,
            definition.id,
        )

    async def delete_workflow(self, workflow_id: str) -> bool:
        deleted = await asyncio.to_thread(
            self._execute, "DELETE FROM workflows WHERE id = ?", workflow_id
        )
        return deleted > 0

    async def create_instance(self, instance: ApprovalInstance) -> None:
        await asyncio.to_thread(self._insert_instance, instance)

    async def discard_instance(self, instance_id: str) -> None:
        await asyncio.to_thread(
            self._execute, "DELETE FROM approval_instances WHERE id = ?", instance_id
        )
        await asyncio.to_thread(
            self._execute, "DELETE FROM approval_actions WHERE instance_id = ?", instance_id
        )

    async def get_instance(self, instance_id: str) -> ApprovalInstance | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_INSTANCE_COLUMNS} FROM approval_instances WHERE id = ?",
            instance_id,
        )
        return self._row_to_instance(row) if row else None

    async def list_instances(
        self,
        *,
        tenant_id: str | None = None,
        status: InstanceStatus | None = None,
        document_id: str | None = None,
        workflow_id: str | None = None,
    ) -> list[ApprovalInstance]:
        query = f"SELECT {_INSTANCE_COLUMNS} FROM approval_instances WHERE 1 = 1"
        params: list[Any] = []
        for column, value in (
            ("tenant_id", tenant_id),
            ("status", status.value if status else None),
            ("document_id", document_id),
            ("workflow_id", workflow_id),
        ):
            if value is not None:
                query += f" AND {column} = ?"
                params.append(value)
        query += " ORDER BY submitted_at"
        rows = await asyncio.to_thread(self._fetchall, query, *params)
        return [self._row_to_instance(r) for r in rows]

    async def save_instance(
        self,
        instance: ApprovalInstance,
        expected_version: int,
        action: ApprovalAction | None = None,
    ) -> bool:
        return await asyncio.to_thread(
            self._guarded_update, instance, expected_version, action
        )

    async def list_actions(
        self, instance_id: str, step_index: int | None = None
    ) -> list[ApprovalAction]:
        query = (
            "SELECT id, instance_id, step_index, actor_id, decision, comments, acted_at "
            "FROM approval_actions WHERE instance_id = ?"
        )
        params: list[Any] = [instance_id]
        if step_index is not None:
            query += " AND step_index = ?"
            params.append(step_index)
        query += " ORDER BY seq"
        rows = await asyncio.to_thread(self._fetchall, query, *params)
        return [self._row_to_action(r) for r in rows]
