"""Action processor: the approval state machine.

Every mutation follows the same discipline. The instance is read once, the
new state is computed from that read, and the write is conditioned on the
version that was read. A caller that loses the race gets ``ConflictError``
and must re-fetch before trying again.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Set, Union

from pydantic import BaseModel, Field

from . import resolver
from .collaborators import DocumentStatus, DocumentStore, IdentityResolver, StepMembershipResolver
from .config import RetryConfig
from .contracts import ApprovalEvent, Decision, EventKind, utcnow
from .exceptions import (
    AlreadyDecidedError,
    ApprovalflowError,
    AuthorizationError,
    ConflictError,
    DocumentSyncError,
    NotFoundError,
    ValidationError,
)
from .notifications import NotificationDispatcher, safe_send
from .persistence.models import ApprovalAction, ApprovalInstance, InstanceStatus
from .persistence.repository import ApprovalRepository
from .utils.retry import retry_once

logger = logging.getLogger(__name__)


class BulkActionFailure(BaseModel):
    instance_id: str
    error: str
    message: str


class BulkActionResult(BaseModel):
    """Outcome of approving several instances in one request."""

    successful: List[ApprovalInstance] = Field(default_factory=list)
    failed: List[BulkActionFailure] = Field(default_factory=list)

    @property
    def total_processed(self) -> int:
        return len(self.successful) + len(self.failed)

    @property
    def success_count(self) -> int:
        return len(self.successful)

    @property
    def error_count(self) -> int:
        return len(self.failed)


def _parse_decision(decision: Union[Decision, str]) -> Decision:
    try:
        return Decision(decision)
    except ValueError:
        raise ValidationError(
            f"Invalid decision {decision!r}. Must be 'approve' or 'reject'",
            details={"decision": str(decision)},
        ) from None


class ActionProcessor:
    """Applies approve, reject and cancel decisions to approval instances."""

    def __init__(
        self,
        repository: ApprovalRepository,
        documents: DocumentStore,
        notifier: Optional[NotificationDispatcher] = None,
        identity: Optional[IdentityResolver] = None,
        retry: Optional[RetryConfig] = None,
    ) -> None:
        self._repository = repository
        self._documents = documents
        self._notifier = notifier
        self._identity = identity or StepMembershipResolver()
        self._retry = retry

    # ------------------------------------------------------------------
    async def _load(self, instance_id: str) -> ApprovalInstance:
        instance = await retry_once(
            self._repository.get_instance, instance_id, policy=self._retry
        )
        if instance is None:
            raise NotFoundError(
                f"Approval {instance_id} not found", details={"instance_id": instance_id}
            )
        return instance

    @staticmethod
    def _ensure_pending(instance: ApprovalInstance) -> None:
        if instance.status.is_terminal:
            raise AlreadyDecidedError(
                f"Approval {instance.id} is already {instance.status.value}",
                details={"instance_id": instance.id, "status": instance.status.value},
            )

    @staticmethod
    def _ensure_fresh(instance: ApprovalInstance, expected_version: Optional[int]) -> None:
        if expected_version is not None and expected_version != instance.version:
            raise ConflictError(
                f"Approval {instance.id} has moved on (version {instance.version}, "
                f"expected {expected_version}); re-fetch and retry",
                details={
                    "instance_id": instance.id,
                    "expected_version": expected_version,
                    "current_version": instance.version,
                    "current_step_index": instance.current_step_index,
                },
            )

    async def _commit(
        self,
        original: ApprovalInstance,
        updated: ApprovalInstance,
        action: Optional[ApprovalAction] = None,
    ) -> None:
        saved = await retry_once(
            self._repository.save_instance,
            updated,
            original.version,
            action,
            policy=self._retry,
        )
        if not saved:
            raise ConflictError(
                f"Approval {original.id} was changed concurrently; re-fetch and retry",
                details={"instance_id": original.id, "expected_version": original.version},
            )

    async def _propagate(self, instance: ApprovalInstance, status: DocumentStatus) -> None:
        try:
            await self._documents.set_status(instance.document_id, status)
        except Exception as e:
            logger.error(
                f"Failed to mark document {instance.document_id} as {status.value} "
                f"after instance {instance.id} became {instance.status.value}: {e}. "
                "Instance state is already committed; document status may be inconsistent."
            )
            raise DocumentSyncError(
                f"Approval {instance.id} is {instance.status.value} but document "
                f"{instance.document_id} could not be marked {status.value}: {e}",
                details={
                    "instance_id": instance.id,
                    "document_id": instance.document_id,
                    "document_status": status.value,
                    "instance": instance,
                },
            ) from e

    async def _notify(
        self,
        kind: EventKind,
        instance: ApprovalInstance,
        recipients: Iterable[str],
        actor_id: Optional[str],
        comments: str = "",
        step_index: Optional[int] = None,
    ) -> None:
        event = ApprovalEvent(
            kind=kind,
            instance_id=instance.id,
            document_id=instance.document_id,
            tenant_id=instance.tenant_id,
            step_index=step_index,
            actor_id=actor_id,
            comments=comments,
        )
        await safe_send(self._notifier, event, recipients)

    # ------------------------------------------------------------------
    async def act(
        self,
        instance_id: str,
        actor_id: str,
        decision: Union[Decision, str],
        comments: str = "",
        expected_version: Optional[int] = None,
    ) -> ApprovalInstance:
        """Record ``actor_id``'s decision at the current step.

        Args:
            instance_id: Approval instance to act on.
            actor_id: Principal deciding.
            decision: ``approve`` or ``reject``.
            comments: Free text kept on the action.
            expected_version: Version the caller last saw. When given, a
                mismatch is reported as ``ConflictError`` before anything
                else is attempted.

        Returns:
            The instance after the decision.

        Raises:
            NotFoundError: Unknown instance.
            AlreadyDecidedError: Instance is terminal, or the actor already
                approved this step.
            ConflictError: ``expected_version`` is stale, or another decision
                won the conditional write.
            AuthorizationError: Actor is not an approver of the current step.
            ValidationError: ``decision`` is not a known decision.
            DocumentSyncError: The decision committed and was announced, but
                the document status update failed.
        """
        decision = _parse_decision(decision)
        instance = await self._load(instance_id)
        self._ensure_pending(instance)

        snapshot = instance.workflow_snapshot
        step_index = instance.current_step_index
        step_actions = await retry_once(
            self._repository.list_actions, instance.id, step_index, policy=self._retry
        )
        if decision is Decision.APPROVE and actor_id in resolver.approved_by(
            snapshot, step_index, step_actions
        ):
            raise AlreadyDecidedError(
                f"{actor_id} already approved step {step_index} of approval {instance.id}",
                details={"instance_id": instance.id, "step_index": step_index, "actor_id": actor_id},
            )

        self._ensure_fresh(instance, expected_version)

        step = snapshot.steps[step_index]
        if not await self._identity.is_approver(actor_id, step):
            raise AuthorizationError(
                f"{actor_id} is not authorized to decide at step {step_index} ({step.name})",
                details={"instance_id": instance.id, "step_index": step_index, "actor_id": actor_id},
            )

        action = ApprovalAction(
            instance_id=instance.id,
            step_index=step_index,
            actor_id=actor_id,
            decision=decision,
            comments=comments,
        )
        next_version = instance.version + 1
        document_status: Optional[DocumentStatus] = None
        recipients: Set[str] = {instance.submitted_by}

        if decision is Decision.REJECT:
            updated = instance.transition(
                status=InstanceStatus.REJECTED,
                decided_at=action.acted_at,
                decided_by=actor_id,
                version=next_version,
            )
            kind = EventKind.REJECTED
            document_status = DocumentStatus.REJECTED
        elif not resolver.is_step_satisfied(snapshot, step_index, [*step_actions, action]):
            updated = instance.transition(version=next_version)
            kind = EventKind.APPROVAL_RECORDED
        elif resolver.is_last_step(snapshot, step_index):
            updated = instance.transition(
                status=InstanceStatus.APPROVED,
                current_step_index=snapshot.step_count,
                decided_at=action.acted_at,
                decided_by=actor_id,
                version=next_version,
            )
            kind = EventKind.APPROVED
            document_status = DocumentStatus.APPROVED
        else:
            updated = instance.transition(
                current_step_index=step_index + 1, version=next_version
            )
            kind = EventKind.STEP_ADVANCED
            recipients = set(resolver.approvers_for(snapshot, step_index + 1))

        await self._commit(instance, updated, action)
        logger.info(
            f"{actor_id} recorded {decision.value} at step {step_index} of approval {instance.id}: "
            f"status={updated.status.value} step={updated.current_step_index} version={updated.version}"
        )

        try:
            if document_status is not None:
                await self._propagate(updated, document_status)
        finally:
            await self._notify(
                kind,
                updated,
                recipients,
                actor_id,
                comments,
                step_index=updated.current_step_index if kind is EventKind.STEP_ADVANCED else step_index,
            )
        return updated

    async def cancel(
        self,
        instance_id: str,
        actor_id: str,
        reason: str = "",
        expected_version: Optional[int] = None,
    ) -> ApprovalInstance:
        """Withdraw a pending approval. Only the submitter may cancel."""
        instance = await self._load(instance_id)
        self._ensure_pending(instance)
        self._ensure_fresh(instance, expected_version)
        if actor_id != instance.submitted_by:
            raise AuthorizationError(
                f"Only the submitter may cancel approval {instance.id}",
                details={"instance_id": instance.id, "actor_id": actor_id},
            )

        updated = instance.transition(
            status=InstanceStatus.CANCELLED,
            decided_at=utcnow(),
            decided_by=actor_id,
            version=instance.version + 1,
        )
        await self._commit(instance, updated)
        logger.info(f"Approval {instance.id} cancelled by {actor_id}")

        try:
            await self._propagate(updated, DocumentStatus.DRAFT)
        finally:
            await self._notify(
                EventKind.CANCELLED,
                updated,
                instance.current_step.approvers if instance.current_step else (),
                actor_id,
                reason,
                step_index=instance.current_step_index,
            )
        return updated

    async def bulk_approve(
        self, instance_ids: Iterable[str], actor_id: str, comments: str = ""
    ) -> BulkActionResult:
        """Approve each instance against its freshest version.

        A failure on one instance is recorded and never stops the rest.
        """
        result = BulkActionResult()
        for instance_id in instance_ids:
            try:
                instance = await self.act(instance_id, actor_id, Decision.APPROVE, comments)
            except ApprovalflowError as exc:
                logger.warning(f"Bulk approval of {instance_id} by {actor_id} failed: {exc}")
                result.failed.append(
                    BulkActionFailure(
                        instance_id=instance_id, error=exc.error_code, message=exc.message
                    )
                )
            else:
                result.successful.append(instance)
        return result
