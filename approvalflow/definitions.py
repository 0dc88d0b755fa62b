"""Workflow definition store."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from .config import RetryConfig
from .contracts import WorkflowDefinition, utcnow
from .exceptions import ConflictError, NotFoundError, ValidationError
from .persistence.models import InstanceStatus
from .persistence.repository import ApprovalRepository
from .utils.retry import retry_once

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "name",
    "description",
    "steps",
    "require_all_approvers",
    "auto_approve_threshold",
    "is_active",
)

DefinitionInput = Union[WorkflowDefinition, Mapping[str, Any]]


def _error_details(exc: PydanticValidationError) -> List[Dict[str, Any]]:
    return [
        {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]


def parse_definition(data: DefinitionInput) -> WorkflowDefinition:
    """Validate ``data`` into a ``WorkflowDefinition``.

    Model instances are validated again, since their step list is a plain
    mutable list.

    Raises:
        ValidationError: With one entry per offending field in ``details``.
    """
    payload = data.model_dump() if isinstance(data, WorkflowDefinition) else dict(data)
    try:
        return WorkflowDefinition.model_validate(payload)
    except PydanticValidationError as exc:
        errors = _error_details(exc)
        summary = "; ".join(f"{e['field']}: {e['message']}" for e in errors)
        raise ValidationError(
            f"Invalid workflow definition: {summary}", details={"errors": errors}
        ) from exc


class WorkflowDefinitionStore:
    """Create, read and edit workflow definitions.

    Edits never reach in-flight approvals because every instance carries
    its own snapshot.
    """

    def __init__(
        self, repository: ApprovalRepository, retry: Optional[RetryConfig] = None
    ) -> None:
        self._repository = repository
        self._retry = retry

    async def create(self, definition: DefinitionInput) -> WorkflowDefinition:
        workflow = parse_definition(definition)
        await retry_once(self._repository.create_workflow, workflow, policy=self._retry)
        logger.info(f"Created workflow {workflow.id} ({workflow.name}) for tenant {workflow.tenant_id}")
        return workflow

    async def get(self, workflow_id: str) -> WorkflowDefinition:
        workflow = await retry_once(
            self._repository.get_workflow, workflow_id, policy=self._retry
        )
        if workflow is None:
            raise NotFoundError(
                f"Workflow {workflow_id} not found", details={"workflow_id": workflow_id}
            )
        return workflow

    async def list(self, tenant_id: Optional[str] = None) -> List[WorkflowDefinition]:
        return await retry_once(
            self._repository.list_workflows, tenant_id, policy=self._retry
        )

    async def list_active(self, tenant_id: Optional[str] = None) -> List[WorkflowDefinition]:
        return await retry_once(
            self._repository.list_workflows, tenant_id, True, policy=self._retry
        )

    async def update(self, workflow_id: str, definition: DefinitionInput) -> WorkflowDefinition:
        """Replace the editable fields of a workflow.

        A mapping may carry any subset of the editable fields; a
        ``WorkflowDefinition`` replaces all of them. ``steps`` is always
        replaced as a whole.
        """
        current = await self.get(workflow_id)
        if isinstance(definition, WorkflowDefinition):
            changes = definition.model_dump(include=set(EDITABLE_FIELDS))
        else:
            changes = {k: v for k, v in definition.items() if k in EDITABLE_FIELDS}

        payload = current.model_dump()
        payload.update(changes)
        payload["revision"] = current.revision + 1
        payload["updated_at"] = utcnow()
        updated = parse_definition(payload)
        await retry_once(self._repository.update_workflow, updated, policy=self._retry)
        logger.info(f"Updated workflow {workflow_id} to revision {updated.revision}")
        return updated

    async def deactivate(self, workflow_id: str) -> WorkflowDefinition:
        return await self.update(workflow_id, {"is_active": False})

    async def delete(self, workflow_id: str) -> None:
        """Remove a workflow that no pending approval is using."""
        await self.get(workflow_id)
        pending = await retry_once(
            self._repository.list_instances,
            workflow_id=workflow_id,
            status=InstanceStatus.PENDING,
            policy=self._retry,
        )
        if pending:
            raise ConflictError(
                "Cannot delete workflow with pending approvals",
                details={"workflow_id": workflow_id, "pending": [i.id for i in pending]},
            )
        await retry_once(self._repository.delete_workflow, workflow_id, policy=self._retry)
        logger.info(f"Deleted workflow {workflow_id}")
