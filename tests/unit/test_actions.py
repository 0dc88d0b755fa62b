"""Tests for approve, reject and cancel decisions."""

import pytest

from approvalflow.actions import ActionProcessor
from approvalflow.collaborators import DocumentStatus, InMemoryDocumentStore
from approvalflow.contracts import Decision, EventKind, WorkflowDefinition
from approvalflow.exceptions import (
    AlreadyDecidedError,
    AuthorizationError,
    ConflictError,
    DocumentSyncError,
    NotFoundError,
    ValidationError,
)
from approvalflow.notifications import InMemoryNotificationDispatcher
from approvalflow.persistence import InMemoryApprovalRepository, InstanceStatus
from approvalflow.submission import SubmissionCoordinator


async def _submit(steps, require_all=False):
    repository = InMemoryApprovalRepository()
    documents = InMemoryDocumentStore({"inv-1": 500})
    notifier = InMemoryNotificationDispatcher()
    workflow = WorkflowDefinition(name="Invoices", steps=steps, require_all_approvers=require_all)
    await repository.create_workflow(workflow)
    instance = await SubmissionCoordinator(repository, documents, notifier).submit(
        "inv-1", workflow.id, "clerk"
    )
    processor = ActionProcessor(repository, documents, notifier)
    return processor, instance, repository, documents, notifier


TWO_STEPS = [
    {"name": "Manager", "approvers": ["mgr"]},
    {"name": "Finance", "approvers": ["cfo"]},
]


@pytest.mark.asyncio
async def test_approvals_advance_then_complete():
    processor, instance, repository, documents, notifier = await _submit(TWO_STEPS)

    after_first = await processor.act(instance.id, "mgr", "approve", "looks fine")
    assert after_first.status is InstanceStatus.PENDING
    assert after_first.current_step_index == 1
    assert after_first.version == 1
    assert notifier.events_for("cfo")[-1].kind is EventKind.STEP_ADVANCED

    final = await processor.act(instance.id, "cfo", Decision.APPROVE, expected_version=1)
    assert final.status is InstanceStatus.APPROVED
    assert final.current_step_index == 2
    assert final.decided_by == "cfo"
    assert final.decided_at is not None
    assert documents.status_of("inv-1") is DocumentStatus.APPROVED

    actions = await repository.list_actions(instance.id)
    assert [(a.step_index, a.actor_id) for a in actions] == [(0, "mgr"), (1, "cfo")]
    assert actions[0].comments == "looks fine"
    assert notifier.events_for("clerk")[-1].kind is EventKind.APPROVED


@pytest.mark.asyncio
async def test_rejection_is_terminal():
    processor, instance, repository, documents, notifier = await _submit(TWO_STEPS)

    rejected = await processor.act(instance.id, "mgr", "reject", "wrong cost center")
    assert rejected.status is InstanceStatus.REJECTED
    assert rejected.current_step_index == 0
    assert rejected.decided_by == "mgr"
    assert documents.status_of("inv-1") is DocumentStatus.REJECTED
    assert notifier.events_for("clerk")[-1].kind is EventKind.REJECTED

    with pytest.raises(AlreadyDecidedError):
        await processor.act(instance.id, "cfo", "approve")
    with pytest.raises(AlreadyDecidedError):
        await processor.act(instance.id, "mgr", "approve")
    assert len(await repository.list_actions(instance.id)) == 1


@pytest.mark.asyncio
async def test_all_approvers_rule_waits_for_every_principal():
    processor, instance, repository, _, notifier = await _submit(
        [{"name": "Partners", "approvers": ["alice", "bob"]}], require_all=True
    )

    partial = await processor.act(instance.id, "alice", "approve")
    assert partial.status is InstanceStatus.PENDING
    assert partial.current_step_index == 0
    assert partial.version == 1
    assert notifier.kinds()[-1] is EventKind.APPROVAL_RECORDED

    with pytest.raises(AlreadyDecidedError):
        await processor.act(instance.id, "alice", "approve")

    done = await processor.act(instance.id, "bob", "approve", expected_version=1)
    assert done.status is InstanceStatus.APPROVED
    assert done.version == 2
    assert len(await repository.list_actions(instance.id)) == 2


@pytest.mark.asyncio
async def test_actor_outside_current_step_is_refused():
    processor, instance, repository, _, _ = await _submit(TWO_STEPS)

    with pytest.raises(AuthorizationError):
        await processor.act(instance.id, "cfo", "approve")
    with pytest.raises(AuthorizationError):
        await processor.act(instance.id, "stranger", "reject")

    stored = await repository.get_instance(instance.id)
    assert stored.version == 0
    assert await repository.list_actions(instance.id) == []


@pytest.mark.asyncio
async def test_stale_expected_version_conflicts():
    processor, instance, repository, _, _ = await _submit(TWO_STEPS)
    await processor.act(instance.id, "mgr", "approve")

    with pytest.raises(ConflictError) as exc_info:
        await processor.act(instance.id, "cfo", "approve", expected_version=0)
    assert exc_info.value.retryable
    assert exc_info.value.details["current_version"] == 1
    assert (await repository.get_instance(instance.id)).current_step_index == 1


@pytest.mark.asyncio
async def test_unknown_instance_and_decision():
    processor, instance, _, _, _ = await _submit(TWO_STEPS)
    with pytest.raises(NotFoundError):
        await processor.act("missing", "mgr", "approve")
    with pytest.raises(ValidationError):
        await processor.act(instance.id, "mgr", "maybe")


@pytest.mark.asyncio
async def test_only_submitter_may_cancel():
    processor, instance, repository, documents, notifier = await _submit(TWO_STEPS)

    with pytest.raises(AuthorizationError):
        await processor.cancel(instance.id, "mgr")

    cancelled = await processor.cancel(instance.id, "clerk", reason="duplicate invoice")
    assert cancelled.status is InstanceStatus.CANCELLED
    assert cancelled.decided_by == "clerk"
    assert documents.status_of("inv-1") is DocumentStatus.DRAFT
    assert notifier.events_for("mgr")[-1].kind is EventKind.CANCELLED

    with pytest.raises(AlreadyDecidedError):
        await processor.cancel(instance.id, "clerk")
    with pytest.raises(AlreadyDecidedError):
        await processor.act(instance.id, "mgr", "approve")


@pytest.mark.asyncio
async def test_bulk_approve_collects_failures():
    processor, instance, _, _, _ = await _submit(TWO_STEPS)

    result = await processor.bulk_approve([instance.id, "missing", instance.id], "mgr")

    assert result.success_count == 1
    assert result.error_count == 2
    assert result.total_processed == 3
    assert [f.error for f in result.failed] == ["NotFoundError", "AuthorizationError"]


class UnreachableDocumentStore(InMemoryDocumentStore):
    """Accepts the submission, then fails every later status update."""

    def __init__(self, amounts):
        super().__init__(amounts)
        self.available = True

    async def set_status(self, document_id, status):
        if not self.available:
            raise RuntimeError("document service down")
        await super().set_status(document_id, status)


async def _submit_with_flaky_documents():
    repository = InMemoryApprovalRepository()
    documents = UnreachableDocumentStore({"inv-1": 500})
    notifier = InMemoryNotificationDispatcher()
    workflow = WorkflowDefinition(name="Invoices", steps=TWO_STEPS)
    await repository.create_workflow(workflow)
    instance = await SubmissionCoordinator(repository, documents, notifier).submit(
        "inv-1", workflow.id, "clerk"
    )
    documents.available = False
    return ActionProcessor(repository, documents, notifier), instance, repository, notifier


@pytest.mark.asyncio
async def test_rejection_is_announced_when_document_update_fails():
    processor, instance, repository, notifier = await _submit_with_flaky_documents()

    with pytest.raises(DocumentSyncError) as exc_info:
        await processor.act(instance.id, "mgr", "reject", expected_version=0)

    committed = exc_info.value.details["instance"]
    assert committed.status is InstanceStatus.REJECTED
    assert exc_info.value.details["document_status"] == "rejected"
    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert (await repository.get_instance(instance.id)).status is InstanceStatus.REJECTED
    assert notifier.kinds() == [EventKind.SUBMITTED, EventKind.REJECTED]


@pytest.mark.asyncio
async def test_cancellation_is_announced_when_document_update_fails():
    processor, instance, repository, notifier = await _submit_with_flaky_documents()

    with pytest.raises(DocumentSyncError) as exc_info:
        await processor.cancel(instance.id, "clerk", reason="duplicate")

    assert exc_info.value.details["instance"].status is InstanceStatus.CANCELLED
    assert (await repository.get_instance(instance.id)).status is InstanceStatus.CANCELLED
    assert notifier.kinds() == [EventKind.SUBMITTED, EventKind.CANCELLED]
    assert notifier.events_for("mgr")[-1].kind is EventKind.CANCELLED
