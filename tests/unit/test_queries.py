"""Tests for pending lists, history and statistics."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from approvalflow.actions import ActionProcessor
from approvalflow.collaborators import InMemoryDocumentStore
from approvalflow.contracts import WorkflowDefinition
from approvalflow.exceptions import NotFoundError
from approvalflow.persistence import ApprovalInstance, InMemoryApprovalRepository, InstanceStatus
from approvalflow.queries import QueryService, StatsPeriod
from approvalflow.submission import SubmissionCoordinator

START = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def _workflow(require_all=False) -> WorkflowDefinition:
    return WorkflowDefinition(
        name="Invoices",
        steps=[
            {"name": "Managers", "approvers": ["mgr1", "mgr2"]},
            {"name": "Finance", "approvers": ["cfo"]},
        ],
        require_all_approvers=require_all,
    )


def _decided(workflow, document_id, status, minutes, auto=False) -> ApprovalInstance:
    return ApprovalInstance(
        document_id=document_id,
        workflow_id=workflow.id,
        workflow_snapshot=workflow.snapshot(),
        current_step_index=2 if status is InstanceStatus.APPROVED else 0,
        status=status,
        submitted_by="clerk",
        submitted_at=START,
        decided_at=START + timedelta(minutes=minutes),
        decided_by="system" if auto else "cfo",
        auto_approved=auto,
    )


@pytest.mark.asyncio
async def test_pending_for_lists_only_outstanding_approvers():
    repository = InMemoryApprovalRepository()
    documents = InMemoryDocumentStore({"inv-1": 100, "inv-2": 200})
    workflow = _workflow(require_all=True)
    await repository.create_workflow(workflow)
    submissions = SubmissionCoordinator(repository, documents)
    first = await submissions.submit("inv-1", workflow.id, "clerk")
    second = await submissions.submit("inv-2", workflow.id, "clerk")
    await ActionProcessor(repository, documents).act(first.id, "mgr1", "approve")

    queries = QueryService(repository)
    assert [i.id for i in await queries.list_pending_for("mgr1")] == [second.id]
    assert [i.id for i in await queries.list_pending_for("mgr2")] == [first.id, second.id]
    assert await queries.list_pending_for("cfo") == []
    assert await queries.list_pending_for("mgr2", tenant_id="other") == []


@pytest.mark.asyncio
async def test_history_is_newest_first_with_actions():
    repository = InMemoryApprovalRepository()
    documents = InMemoryDocumentStore({"inv-1": 100})
    workflow = _workflow()
    await repository.create_workflow(workflow)
    submissions = SubmissionCoordinator(repository, documents)
    processor = ActionProcessor(repository, documents)

    rejected = await submissions.submit("inv-1", workflow.id, "clerk")
    await processor.act(rejected.id, "mgr2", "reject", "missing PO")
    resubmitted = await submissions.submit("inv-1", workflow.id, "clerk")

    history = await QueryService(repository).get_history("inv-1")
    assert [entry.instance.id for entry in history] == [resubmitted.id, rejected.id]
    assert history[0].actions == []
    assert history[1].actions[0].comments == "missing PO"
    assert await QueryService(repository).get_history("inv-404") == []

    with pytest.raises(NotFoundError):
        await QueryService(repository).get_instance("missing")


@pytest.mark.asyncio
async def test_stats_latency_ignores_auto_approved_and_cancelled():
    repository = InMemoryApprovalRepository()
    workflow = _workflow()
    for instance in (
        _decided(workflow, "inv-1", InstanceStatus.APPROVED, minutes=60),
        _decided(workflow, "inv-2", InstanceStatus.REJECTED, minutes=120),
        _decided(workflow, "inv-3", InstanceStatus.APPROVED, minutes=0, auto=True),
        _decided(workflow, "inv-4", InstanceStatus.CANCELLED, minutes=600),
        ApprovalInstance(
            document_id="inv-5",
            workflow_id=workflow.id,
            workflow_snapshot=workflow.snapshot(),
            submitted_by="clerk",
            submitted_at=START,
        ),
    ):
        await repository.create_instance(instance)

    stats = await QueryService(repository).get_stats()
    assert stats.total_count == 5
    assert stats.pending_count == 1
    assert stats.approved_count == 2
    assert stats.auto_approved_count == 1
    assert stats.rejected_count == 1
    assert stats.cancelled_count == 1
    assert stats.average_decision_latency == timedelta(minutes=90)

    later = StatsPeriod(start=datetime(2024, 4, 1))
    empty = await QueryService(repository).get_stats(period=later)
    assert empty.total_count == 0
    assert empty.average_decision_latency is None


def test_stats_period_rejects_inverted_range():
    with pytest.raises(PydanticValidationError):
        StatsPeriod(start=START, end=START - timedelta(days=1))
    assert StatsPeriod(end=datetime(2024, 3, 2)).contains(START)
