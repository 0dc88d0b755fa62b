"""PostgreSQL implementation of the approval repository."""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import asyncpg

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


def _json(value: Any) -> Any:
    return json.loads(value) if isinstance(value, str) else value


class PostgresApprovalRepository(ApprovalRepository):
    """Persist approval state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            try:
                await self._ensure_schema(conn)
            except BaseException:
                await conn.close()
                raise
            self._initialized = True
        return conn

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        try:
            conn = await self._connect()
        except (OSError, asyncpg.PostgresError) as exc:
            raise RepositoryError(f"PostgreSQL connection failed: {exc}") from exc
        try:
            yield conn
        except asyncpg.UniqueViolationError:
            raise
        except (OSError, asyncpg.PostgresError) as exc:
            raise RepositoryError(f"PostgreSQL query failed: {exc}") from exc
        finally:
            await conn.close()

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                tenant_id TEXT NOT NULL,
                name TEXT NOT NULL,
                description TEXT,
                steps JSONB NOT NULL,
                require_all_approvers BOOLEAN NOT NULL,
                auto_approve_threshold NUMERIC,
                is_active BOOLEAN NOT NULL,
                revision INTEGER NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS approval_instances (
                id TEXT PRIMARY KEY,
                tenant_id TEXT NOT NULL,
                document_id TEXT NOT NULL,
                workflow_id TEXT NOT NULL,
                workflow_snapshot JSONB NOT NULL,
                current_step_index INTEGER NOT NULL,
                status TEXT NOT NULL,
                submitted_by TEXT NOT NULL,
                submitted_at TIMESTAMPTZ NOT NULL,
                decided_at TIMESTAMPTZ,
                decided_by TEXT,
                notes TEXT,
                auto_approved BOOLEAN NOT NULL,
                version INTEGER NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS idx_instances_open_document
            ON approval_instances (document_id) WHERE status = 'pending'
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS approval_actions (
                seq SERIAL PRIMARY KEY,
                id TEXT NOT NULL UNIQUE,
                instance_id TEXT NOT NULL,
                step_index INTEGER NOT NULL,
                actor_id TEXT NOT NULL,
                decision TEXT NOT NULL,
                comments TEXT,
                acted_at TIMESTAMPTZ NOT NULL
            )
            """
        )

    # ------------------------------------------------------------------
    @staticmethod
    def _workflow_params(definition: WorkflowDefinition) -> tuple:
        return (
            definition.tenant_id,
            definition.name,
            definition.description,
            json.dumps(definition.model_dump(mode="json")["steps"]),
            definition.require_all_approvers,
            definition.auto_approve_threshold,
            definition.is_active,
            definition.revision,
            definition.created_at,
            definition.updated_at,
        )

    @staticmethod
    def _row_to_workflow(row: asyncpg.Record) -> WorkflowDefinition:
        return WorkflowDefinition(
            id=row["id"],
            tenant_id=row["tenant_id"],
            name=row["name"],
            description=row["description"] or "",
            steps=_json(row["steps"]),
            require_all_approvers=row["require_all_approvers"],
            auto_approve_threshold=row["auto_approve_threshold"],
            is_active=row["is_active"],
            revision=row["revision"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_instance(row: asyncpg.Record) -> ApprovalInstance:
        return ApprovalInstance(
            id=row["id"],
            tenant_id=row["tenant_id"],
            document_id=row["document_id"],
            workflow_id=row["workflow_id"],
            workflow_snapshot=WorkflowSnapshot.model_validate(_json(row["workflow_snapshot"])),
            current_step_index=row["current_step_index"],
            status=InstanceStatus(row["status"]),
            submitted_by=row["submitted_by"],
            submitted_at=row["submitted_at"],
            decided_at=row["decided_at"],
            decided_by=row["decided_by"],
            notes=row["notes"] or "",
            auto_approved=row["auto_approved"],
            version=row["version"],
        )

    @staticmethod
    def _row_to_action(row: asyncpg.Record) -> ApprovalAction:
        return ApprovalAction(
            id=row["id"],
            instance_id=row["instance_id"],
            step_index=row["step_index"],
            actor_id=row["actor_id"],
            decision=row["decision"],
            comments=row["comments"] or "",
            acted_at=row["acted_at"],
        )

    # ------------------------------------------------------------------
    async def create_workflow(self, definition: WorkflowDefinition) -> None:
        try:
            async with self._connection() as conn:
                await conn.execute(
                    f"INSERT INTO workflows ({_WORKFLOW_COLUMNS}) "
                    "VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)",
                    definition.id,
                    *self._workflow_params(definition),
                )
        except asyncpg.UniqueViolationError as exc:
            raise ConflictError(
                f"Workflow {definition.id} already exists",
                details={"workflow_id": definition.id},
            ) from exc

    async def get_workflow(self, workflow_id: str) -> WorkflowDefinition | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"SELECT {_WORKFLOW_COLUMNS} FROM workflows WHERE id = $1", workflow_id
            )
        return self._row_to_workflow(row) if row else None

    async def list_workflows(
        self, tenant_id: str | None = None, active_only: bool = False
    ) -> list[WorkflowDefinition]:
        query = f"SELECT {_WORKFLOW_COLUMNS} FROM workflows WHERE TRUE"
        params: list[Any] = []
        if tenant_id is not None:
            params.append(tenant_id)
            query += f" AND tenant_id = ${len(params)}"
        if active_only:
            query += " AND is_active"
        query += " ORDER BY created_at DESC"
        async with self._connection() as conn:
            rows = await conn.fetch(query, *params)
        return [self._row_to_workflow(r) for r in rows]

    async def update_workflow(self, definition: WorkflowDefinition) -> None:
        async with self._connection() as conn:
            await conn.execute(
                """
                UPDATE workflows
                SET tenant_id = $1, name = $2, description = $3, steps = $4,
                    require_all_approvers = $5, auto_approve_threshold = $6,
                    is_active = $7, revision = $8, created_at = $9, updated_at = $10
                WHERE id = $11
                """,
                *self._workflow_params(definition),
                definition.id,
            )

    async def delete_workflow(self, workflow_id: str) -> bool:
        async with self._connection() as conn:
            result = await conn.execute("DELETE FROM workflows WHERE id = $1", workflow_id)
        return result != "DELETE 0"

    async def create_instance(self, instance: ApprovalInstance) -> None:
        try:
            async with self._connection() as conn:
                result = await conn.execute(
                    f"INSERT INTO approval_instances ({_INSTANCE_COLUMNS}) "
                    "SELECT $1::text, $2::text, $3::text, $4::text, $5::jsonb, $6::integer, $7::text, "
                    "$8::text, $9::timestamptz, $10::timestamptz, $11::text, $12::text, "
                    "$13::boolean, $14::integer "
                    "WHERE NOT EXISTS (SELECT 1 FROM approval_instances "
                    "WHERE document_id = $3 AND status = 'pending')",
                    instance.id,
                    instance.tenant_id,
                    instance.document_id,
                    instance.workflow_id,
                    instance.workflow_snapshot.model_dump_json(),
                    instance.current_step_index,
                    instance.status.value,
                    instance.submitted_by,
                    instance.submitted_at,
                    instance.decided_at,
                    instance.decided_by,
                    instance.notes,
                    instance.auto_approved,
                    instance.version,
                )
        except asyncpg.UniqueViolationError as exc:
            if exc.constraint_name != "idx_instances_open_document":
                raise ConflictError(
                    f"Approval {instance.id} already exists",
                    details={"instance_id": instance.id},
                ) from exc
            result = "INSERT 0 0"
        if result == "INSERT 0 0":
            raise ConflictError(
                f"Document {instance.document_id} already has a pending approval",
                details={"document_id": instance.document_id},
            )

    async def discard_instance(self, instance_id: str) -> None:
        async with self._connection() as conn:
            async with conn.transaction():
                await conn.execute("DELETE FROM approval_actions WHERE instance_id = $1", instance_id)
                await conn.execute("DELETE FROM approval_instances WHERE id = $1", instance_id)

    async def get_instance(self, instance_id: str) -> ApprovalInstance | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"SELECT {_INSTANCE_COLUMNS} FROM approval_instances WHERE id = $1",
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
        query = f"SELECT {_INSTANCE_COLUMNS} FROM approval_instances WHERE TRUE"
        params: list[Any] = []
        for column, value in (
            ("tenant_id", tenant_id),
            ("status", status.value if status else None),
            ("document_id", document_id),
            ("workflow_id", workflow_id),
        ):
            if value is not None:
                params.append(value)
                query += f" AND {column} = ${len(params)}"
        query += " ORDER BY submitted_at"
        async with self._connection() as conn:
            rows = await conn.fetch(query, *params)
        return [self._row_to_instance(r) for r in rows]

    async def save_instance(
        self,
        instance: ApprovalInstance,
        expected_version: int,
        action: ApprovalAction | None = None,
    ) -> bool:
        async with self._connection() as conn:
            async with conn.transaction():
                result = await conn.execute(
                    """
                    UPDATE approval_instances
                    SET current_step_index = $1, status = $2, decided_at = $3,
                        decided_by = $4, notes = $5, version = $6
                    WHERE id = $7 AND version = $8
                    """,
                    instance.current_step_index,
                    instance.status.value,
                    instance.decided_at,
                    instance.decided_by,
                    instance.notes,
                    instance.version,
                    instance.id,
                    expected_version,
                )
                if result == "UPDATE 0":
                    return False
                if action is not None:
                    await conn.execute(
                        """
                        INSERT INTO approval_actions
                            (id, instance_id, step_index, actor_id, decision, comments, acted_at)
                        VALUES ($1, $2, $3, $4, $5, $6, $7)
                        """,
                        action.id,
                        action.instance_id,
                        action.step_index,
                        action.actor_id,
                        action.decision.value,
                        action.comments,
                        action.acted_at,
                    )
        return True

    async def list_actions(
        self, instance_id: str, step_index: int | None = None
    ) -> list[ApprovalAction]:
        query = (
            "SELECT id, instance_id, step_index, actor_id, decision, comments, acted_at "
            "FROM approval_actions WHERE instance_id = $1"
        )
        params: list[Any] = [instance_id]
        if step_index is not None:
            params.append(step_index)
            query += " AND step_index = $2"
        query += " ORDER BY seq"
        async with self._connection() as conn:
            rows = await conn.fetch(query, *params)
        return [self._row_to_action(r) for r in rows]
