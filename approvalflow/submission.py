"""Submission coordinator: opens an approval instance for a document."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from .collaborators import DocumentStatus, DocumentStore
from .config import RetryConfig
from .contracts import (
    SYSTEM_ACTOR,
    ApprovalEvent,
    EventKind,
    WorkflowSnapshot,
    utcnow,
)
from .exceptions import ConfigurationError, ConflictError
from .notifications import NotificationDispatcher, safe_send
from .persistence.models import ApprovalInstance, InstanceStatus
from .persistence.repository import ApprovalRepository
from .utils.retry import retry_once

logger = logging.getLogger(__name__)

AUTO_APPROVAL_REASON = "Auto-approved based on amount threshold"


def qualifies_for_auto_approval(snapshot: WorkflowSnapshot, amount: Decimal) -> bool:
    threshold = snapshot.auto_approve_threshold
    return threshold is not None and amount <= threshold


class SubmissionCoordinator:
    """Creates approval instances, applying the auto-approval shortcut."""

    def __init__(
        self,
        repository: ApprovalRepository,
        documents: DocumentStore,
        notifier: Optional[NotificationDispatcher] = None,
        retry: Optional[RetryConfig] = None,
    ) -> None:
        self._repository = repository
        self._documents = documents
        self._notifier = notifier
        self._retry = retry

    async def submit(
        self,
        document_id: str,
        workflow_id: str,
        submitted_by: str,
        notes: str = "",
    ) -> ApprovalInstance:
        """Submit ``document_id`` for approval under ``workflow_id``.

        Args:
            document_id: Document (invoice) to gate.
            workflow_id: Workflow to run; there is no implicit default.
            submitted_by: Principal submitting the document.
            notes: Free text kept on the instance.

        Returns:
            The new instance, either ``pending`` at step 0 or already
            ``approved`` when the amount is within the auto-approve threshold.

        Raises:
            ConfigurationError: The workflow is missing or inactive.
            ConflictError: The document already has a pending approval.
            NotFoundError: The document store does not know the document.
        """
        workflow = await retry_once(
            self._repository.get_workflow, workflow_id, policy=self._retry
        )
        if workflow is None:
            raise ConfigurationError(
                f"Workflow {workflow_id} does not exist",
                details={"workflow_id": workflow_id},
            )
        if not workflow.is_active:
            raise ConfigurationError(
                f"Workflow {workflow_id} is inactive",
                details={"workflow_id": workflow_id},
            )

        open_instances = await retry_once(
            self._repository.list_instances,
            document_id=document_id,
            status=InstanceStatus.PENDING,
            policy=self._retry,
        )
        if open_instances:
            raise ConflictError(
                f"Document {document_id} already has a pending approval",
                details={"document_id": document_id, "instance_id": open_instances[0].id},
            )

        amount = await self._documents.get_amount(document_id)
        snapshot = workflow.snapshot()

        if qualifies_for_auto_approval(snapshot, amount):
            now = utcnow()
            instance = ApprovalInstance(
                tenant_id=workflow.tenant_id,
                document_id=document_id,
                workflow_id=workflow.id,
                workflow_snapshot=snapshot,
                current_step_index=snapshot.step_count,
                status=InstanceStatus.APPROVED,
                submitted_by=submitted_by,
                submitted_at=now,
                decided_at=now,
                decided_by=SYSTEM_ACTOR,
                notes=notes,
                auto_approved=True,
            )
            document_status = DocumentStatus.APPROVED
            event_kind = EventKind.AUTO_APPROVED
            recipients = {submitted_by}
            comments = AUTO_APPROVAL_REASON
        else:
            instance = ApprovalInstance(
                tenant_id=workflow.tenant_id,
                document_id=document_id,
                workflow_id=workflow.id,
                workflow_snapshot=snapshot,
                submitted_by=submitted_by,
                notes=notes,
            )
            document_status = DocumentStatus.PENDING_APPROVAL
            event_kind = EventKind.SUBMITTED
            recipients = set(snapshot.steps[0].approvers)
            comments = notes

        await retry_once(self._repository.create_instance, instance, policy=self._retry)
        try:
            await self._documents.set_status(document_id, document_status)
        except Exception as e:
            logger.error(
                f"Failed to mark document {document_id} as {document_status.value}: {e}. "
                f"Discarding instance {instance.id}."
            )
            await retry_once(
                self._repository.discard_instance, instance.id, policy=self._retry
            )
            raise

        logger.info(
            f"Document {document_id} submitted by {submitted_by} under workflow {workflow.id}: "
            f"instance {instance.id} is {instance.status.value}"
        )
        await safe_send(
            self._notifier,
            ApprovalEvent(
                kind=event_kind,
                instance_id=instance.id,
                document_id=document_id,
                tenant_id=instance.tenant_id,
                step_index=None if instance.auto_approved else 0,
                actor_id=submitted_by,
                comments=comments,
            ),
            recipients,
        )
        return instance
