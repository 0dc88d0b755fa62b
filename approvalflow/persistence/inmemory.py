"""In-memory implementation of the approval repository."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Dict, List

from ..contracts import WorkflowDefinition
from ..exceptions import ConflictError
from .models import ApprovalAction, ApprovalInstance, InstanceStatus
from .repository import ApprovalRepository


class InMemoryApprovalRepository(ApprovalRepository):
    """Store approval state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Stored records are copied on the way
    in and out so callers never share mutable state with the store.
    """

    def __init__(self) -> None:
        self._workflows: Dict[str, WorkflowDefinition] = {}
        self._instances: Dict[str, ApprovalInstance] = {}
        self._actions: Dict[str, List[ApprovalAction]] = defaultdict(list)
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Workflows
    async def create_workflow(self, definition: WorkflowDefinition) -> None:
        async with self._lock:
            if definition.id in self._workflows:
                raise ConflictError(
                    f"Workflow {definition.id} already exists",
                    details={"workflow_id": definition.id},
                )
            self._workflows[definition.id] = definition.model_copy(deep=True)

    async def get_workflow(self, workflow_id: str) -> WorkflowDefinition | None:
        wf = self._workflows.get(workflow_id)
        return wf.model_copy(deep=True) if wf else None

    async def list_workflows(
        self, tenant_id: str | None = None, active_only: bool = False
    ) -> list[WorkflowDefinition]:
        workflows = [
            wf.model_copy(deep=True)
            for wf in self._workflows.values()
            if (tenant_id is None or wf.tenant_id == tenant_id)
            and (not active_only or wf.is_active)
        ]
        return sorted(workflows, key=lambda wf: wf.created_at, reverse=True)

    async def update_workflow(self, definition: WorkflowDefinition) -> None:
        async with self._lock:
            if definition.id in self._workflows:
                self._workflows[definition.id] = definition.model_copy(deep=True)

    async def delete_workflow(self, workflow_id: str) -> bool:
        async with self._lock:
            return self._workflows.pop(workflow_id, None) is not None

    # ------------------------------------------------------------------
    # Instances
    async def create_instance(self, instance: ApprovalInstance) -> None:
        async with self._lock:
            if instance.id in self._instances:
                raise ConflictError(
                    f"Approval {instance.id} already exists",
                    details={"instance_id": instance.id},
                )
            for existing in self._instances.values():
                if existing.document_id == instance.document_id and existing.is_pending:
                    raise ConflictError(
                        f"Document {instance.document_id} already has a pending approval",
                        details={
                            "document_id": instance.document_id,
                            "instance_id": existing.id,
                        },
                    )
            self._instances[instance.id] = instance.model_copy(deep=True)

    async def discard_instance(self, instance_id: str) -> None:
        async with self._lock:
            self._instances.pop(instance_id, None)
            self._actions.pop(instance_id, None)

    async def get_instance(self, instance_id: str) -> ApprovalInstance | None:
        instance = self._instances.get(instance_id)
        return instance.model_copy(deep=True) if instance else None

    async def list_instances(
        self,
        *,
        tenant_id: str | None = None,
        status: InstanceStatus | None = None,
        document_id: str | None = None,
        workflow_id: str | None = None,
    ) -> list[ApprovalInstance]:
        matches = [
            instance.model_copy(deep=True)
            for instance in self._instances.values()
            if (tenant_id is None or instance.tenant_id == tenant_id)
            and (status is None or instance.status is status)
            and (document_id is None or instance.document_id == document_id)
            and (workflow_id is None or instance.workflow_id == workflow_id)
        ]
        return sorted(matches, key=lambda i: i.submitted_at)

    async def save_instance(
        self,
        instance: ApprovalInstance,
        expected_version: int,
        action: ApprovalAction | None = None,
    ) -> bool:
        async with self._lock:
            stored = self._instances.get(instance.id)
            if stored is None or stored.version != expected_version:
                return False
            self._instances[instance.id] = instance.model_copy(deep=True)
            if action is not None:
                self._actions[instance.id].append(action.model_copy(deep=True))
            return True

    async def list_actions(
        self, instance_id: str, step_index: int | None = None
    ) -> list[ApprovalAction]:
        return [
            action.model_copy(deep=True)
            for action in self._actions.get(instance_id, [])
            if step_index is None or action.step_index == step_index
        ]
