"""Concurrent decisions on the same instance."""

import asyncio

import pytest

from approvalflow.actions import ActionProcessor
from approvalflow.collaborators import InMemoryDocumentStore
from approvalflow.contracts import WorkflowDefinition
from approvalflow.exceptions import ConflictError
from approvalflow.persistence import InMemoryApprovalRepository, InstanceStatus
from approvalflow.submission import SubmissionCoordinator


class InterleavingRepository(InMemoryApprovalRepository):
    """Yields after every read so concurrent callers see the same version."""

    async def get_instance(self, instance_id):
        instance = await super().get_instance(instance_id)
        await asyncio.sleep(0)
        return instance


async def _submit(steps, require_all=False):
    repository = InterleavingRepository()
    documents = InMemoryDocumentStore({"inv-1": 500})
    workflow = WorkflowDefinition(name="Invoices", steps=steps, require_all_approvers=require_all)
    await repository.create_workflow(workflow)
    instance = await SubmissionCoordinator(repository, documents).submit(
        "inv-1", workflow.id, "clerk"
    )
    return ActionProcessor(repository, documents), instance, repository


@pytest.mark.asyncio
async def test_concurrent_approve_and_reject_has_one_winner():
    processor, instance, repository = await _submit(
        [{"name": "Managers", "approvers": ["mgr1", "mgr2"]}]
    )

    results = await asyncio.gather(
        processor.act(instance.id, "mgr1", "approve", expected_version=0),
        processor.act(instance.id, "mgr2", "reject", expected_version=0),
        return_exceptions=True,
    )

    winners = [r for r in results if not isinstance(r, Exception)]
    losers = [r for r in results if isinstance(r, Exception)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0], ConflictError)

    stored = await repository.get_instance(instance.id)
    assert stored.status is winners[0].status
    assert stored.version == 1
    assert len(await repository.list_actions(instance.id)) == 1


@pytest.mark.asyncio
async def test_concurrent_approvals_under_all_approvers_rule_never_stall():
    processor, instance, repository = await _submit(
        [{"name": "Partners", "approvers": ["alice", "bob"]}], require_all=True
    )

    results = await asyncio.gather(
        processor.act(instance.id, "alice", "approve"),
        processor.act(instance.id, "bob", "approve"),
        return_exceptions=True,
    )
    conflicts = [r for r in results if isinstance(r, ConflictError)]
    assert len(conflicts) == 1

    stored = await repository.get_instance(instance.id)
    assert stored.status is InstanceStatus.PENDING
    assert stored.version == 1

    loser = "bob" if isinstance(results[1], ConflictError) else "alice"
    final = await processor.act(instance.id, loser, "approve", expected_version=stored.version)
    assert final.status is InstanceStatus.APPROVED
    assert len(await repository.list_actions(instance.id)) == 2


@pytest.mark.asyncio
async def test_concurrent_approvals_with_same_version_advance_once():
    processor, instance, repository = await _submit(
        [
            {"name": "Managers", "approvers": ["mgr1", "mgr2"]},
            {"name": "Finance", "approvers": ["cfo"]},
        ]
    )

    results = await asyncio.gather(
        processor.act(instance.id, "mgr1", "approve", expected_version=0),
        processor.act(instance.id, "mgr2", "approve", expected_version=0),
        return_exceptions=True,
    )

    assert [type(r).__name__ for r in results] == ["ApprovalInstance", "ConflictError"]
    stored = await repository.get_instance(instance.id)
    assert stored.status is InstanceStatus.PENDING
    assert stored.current_step_index == 1
    assert stored.version == 1
    actions = await repository.list_actions(instance.id)
    assert [a.actor_id for a in actions] == ["mgr1"]
