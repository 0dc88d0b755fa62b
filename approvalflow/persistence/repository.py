"""Repository abstraction for approval state persistence."""

from __future__ import annotations

from typing import Protocol

from ..contracts import WorkflowDefinition
from .models import ApprovalAction, ApprovalInstance, InstanceStatus


class ApprovalRepository(Protocol):
    """Protocol for approval state persistence backends.

    Backends raise :class:`~approvalflow.exceptions.RepositoryError` when the
    underlying store fails. ``save_instance`` is the only way an existing
    instance changes, and it is guarded by the instance version.
    """

    async def create_workflow(self, definition: WorkflowDefinition) -> None:
        """Persist a new workflow definition."""

    async def get_workflow(self, workflow_id: str) -> WorkflowDefinition | None:
        """Retrieve a workflow definition by id."""

    async def list_workflows(
        self, tenant_id: str | None = None, active_only: bool = False
    ) -> list[WorkflowDefinition]:
        """Return workflow definitions, newest first."""

    async def update_workflow(self, definition: WorkflowDefinition) -> None:
        """Replace a stored workflow definition."""

    async def delete_workflow(self, workflow_id: str) -> bool:
        """Remove a workflow definition. Returns ``False`` if it was absent."""

    async def create_instance(self, instance: ApprovalInstance) -> None:
        """Insert a new instance.

        Raises ``ConflictError`` if the document already has a pending
        instance, whatever the status of ``instance``, or if the id is taken.
        """

    async def discard_instance(self, instance_id: str) -> None:
        """Remove an instance that was created but never acted upon."""

    async def get_instance(self, instance_id: str) -> ApprovalInstance | None:
        """Retrieve an instance by id."""

    async def list_instances(
        self,
        *,
        tenant_id: str | None = None,
        status: InstanceStatus | None = None,
        document_id: str | None = None,
        workflow_id: str | None = None,
    ) -> list[ApprovalInstance]:
        """Return instances matching all given filters, oldest first."""

    async def save_instance(
        self,
        instance: ApprovalInstance,
        expected_version: int,
        action: ApprovalAction | None = None,
    ) -> bool:
        """Atomically replace ``instance`` and append ``action``.

        The write only happens if the stored version equals
        ``expected_version``; otherwise nothing is written and ``False`` is
        returned.
        """

    async def list_actions(
        self, instance_id: str, step_index: int | None = None
    ) -> list[ApprovalAction]:
        """Return recorded actions in recording order."""
