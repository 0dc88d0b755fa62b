"""Approval engine facade wiring the components to their collaborators."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Union

from .actions import ActionProcessor, BulkActionResult
from .collaborators import DocumentStore, IdentityResolver, StepMembershipResolver
from .config import ApprovalflowConfig, load_config
from .contracts import ApprovalEvent, Decision, EventKind, WorkflowDefinition
from .definitions import DefinitionInput, WorkflowDefinitionStore
from .notifications import NotificationDispatcher, get_dispatcher, safe_send
from .persistence import ApprovalRepository, get_repository
from .persistence.models import ApprovalAction, ApprovalInstance
from .queries import ApprovalHistoryEntry, ApprovalStats, QueryService, StatsPeriod
from .submission import SubmissionCoordinator

logger = logging.getLogger(__name__)


class ApprovalEngine:
    """Entry point for the approval operations.

    Args:
        documents: Store that owns the documents being approved.
        repository: Persistence backend. Defaults to ``get_repository``.
        notifier: Notification sink. Defaults to ``get_dispatcher``.
        identity: Authorization source. Defaults to step membership.
        config: Loaded configuration. Defaults to ``load_config``.
    """

    def __init__(
        self,
        documents: DocumentStore,
        repository: Optional[ApprovalRepository] = None,
        notifier: Optional[NotificationDispatcher] = None,
        identity: Optional[IdentityResolver] = None,
        config: Optional[ApprovalflowConfig] = None,
    ) -> None:
        self.config = config or load_config()
        self.repository = repository or get_repository(config=self.config)
        self.notifier = notifier or get_dispatcher(config=self.config)
        self.identity = identity or StepMembershipResolver()
        self.documents = documents

        retry = self.config.retry
        self.workflows = WorkflowDefinitionStore(self.repository, retry=retry)
        self.submissions = SubmissionCoordinator(
            self.repository, documents, self.notifier, retry=retry
        )
        self.actions = ActionProcessor(
            self.repository, documents, self.notifier, self.identity, retry=retry
        )
        self.queries = QueryService(self.repository, self.identity, retry=retry)

    # ------------------------------------------------------------------
    # Workflow definitions
    async def create_workflow(self, definition: DefinitionInput) -> WorkflowDefinition:
        return await self.workflows.create(definition)

    async def get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        return await self.workflows.get(workflow_id)

    async def list_active_workflows(self, tenant_id: Optional[str] = None) -> List[WorkflowDefinition]:
        return await self.workflows.list_active(tenant_id)

    async def update_workflow(
        self, workflow_id: str, definition: DefinitionInput
    ) -> WorkflowDefinition:
        return await self.workflows.update(workflow_id, definition)

    async def deactivate_workflow(self, workflow_id: str) -> WorkflowDefinition:
        return await self.workflows.deactivate(workflow_id)

    async def delete_workflow(self, workflow_id: str) -> None:
        await self.workflows.delete(workflow_id)

    # ------------------------------------------------------------------
    # Decisions
    async def submit_for_approval(
        self, document_id: str, workflow_id: str, submitted_by: str, notes: str = ""
    ) -> ApprovalInstance:
        return await self.submissions.submit(document_id, workflow_id, submitted_by, notes)

    async def act(
        self,
        instance_id: str,
        actor_id: str,
        decision: Union[Decision, str],
        comments: str = "",
        expected_version: Optional[int] = None,
    ) -> ApprovalInstance:
        return await self.actions.act(
            instance_id, actor_id, decision, comments, expected_version
        )

    async def cancel(
        self,
        instance_id: str,
        actor_id: str,
        reason: str = "",
        expected_version: Optional[int] = None,
    ) -> ApprovalInstance:
        return await self.actions.cancel(instance_id, actor_id, reason, expected_version)

    async def bulk_approve(
        self, instance_ids: Iterable[str], actor_id: str, comments: str = ""
    ) -> BulkActionResult:
        return await self.actions.bulk_approve(instance_ids, actor_id, comments)

    # ------------------------------------------------------------------
    # Queries
    async def get_instance(self, instance_id: str) -> ApprovalInstance:
        return await self.queries.get_instance(instance_id)

    async def list_actions(self, instance_id: str) -> List[ApprovalAction]:
        return await self.queries.list_actions(instance_id)

    async def list_pending_for(
        self, actor_id: str, tenant_id: Optional[str] = None
    ) -> List[ApprovalInstance]:
        return await self.queries.list_pending_for(actor_id, tenant_id)

    async def get_history(self, document_id: str) -> List[ApprovalHistoryEntry]:
        return await self.queries.get_history(document_id)

    async def get_stats(
        self, tenant_id: Optional[str] = None, period: Optional[StatsPeriod] = None
    ) -> ApprovalStats:
        return await self.queries.get_stats(tenant_id, period)

    async def send_reminders(self, tenant_id: Optional[str] = None) -> int:
        """Nudge the outstanding approvers of every pending instance.

        Returns the number of instances for which a reminder went out.
        """
        reminded = 0
        for instance in await self.queries.list_pending(tenant_id):
            outstanding = await self.queries.outstanding_approvers(instance)
            event = ApprovalEvent(
                kind=EventKind.REMINDER,
                instance_id=instance.id,
                document_id=instance.document_id,
                tenant_id=instance.tenant_id,
                step_index=instance.current_step_index,
            )
            if await safe_send(self.notifier, event, outstanding):
                reminded += 1
        logger.info(f"Sent approval reminders for {reminded} pending instances")
        return reminded
