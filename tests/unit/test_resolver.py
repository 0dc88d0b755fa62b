"""Tests for step resolution."""

import pytest

from approvalflow import resolver
from approvalflow.contracts import Decision, WorkflowDefinition
from approvalflow.persistence.models import ApprovalAction


def _snapshot(require_all: bool = False):
    return WorkflowDefinition(
        name="Invoices",
        steps=[
            {"name": "Managers", "approvers": ["mgr1", "mgr2"]},
            {"name": "Finance", "approvers": ["cfo"]},
        ],
        require_all_approvers=require_all,
    ).snapshot()


def _action(actor: str, step: int = 0, decision: Decision = Decision.APPROVE) -> ApprovalAction:
    return ApprovalAction(instance_id="i-1", step_index=step, actor_id=actor, decision=decision)


def test_approvers_for_out_of_range_raises():
    snapshot = _snapshot()
    assert resolver.approvers_for(snapshot, 1) == frozenset({"cfo"})
    with pytest.raises(IndexError):
        resolver.approvers_for(snapshot, 2)
    assert resolver.is_last_step(snapshot, 1)
    assert not resolver.is_last_step(snapshot, 0)


def test_any_approver_satisfies_step():
    snapshot = _snapshot()
    assert not resolver.is_step_satisfied(snapshot, 0, [])
    assert resolver.is_step_satisfied(snapshot, 0, [_action("mgr2")])


def test_all_approvers_rule_counts_distinct_eligible_principals():
    snapshot = _snapshot(require_all=True)
    actions = [_action("mgr1"), _action("mgr1"), _action("outsider"), _action("mgr2", step=1)]
    assert not resolver.is_step_satisfied(snapshot, 0, actions)
    assert resolver.outstanding_approvers(snapshot, 0, actions) == frozenset({"mgr2"})

    actions.append(_action("mgr2"))
    assert resolver.is_step_satisfied(snapshot, 0, actions)
    assert resolver.outstanding_approvers(snapshot, 0, actions) == frozenset()


def test_rejection_blocks_satisfaction():
    snapshot = _snapshot()
    actions = [_action("mgr1"), _action("mgr2", decision=Decision.REJECT)]
    assert resolver.has_rejection(snapshot, 0, actions)
    assert not resolver.is_step_satisfied(snapshot, 0, actions)
    assert not resolver.has_rejection(snapshot, 0, [_action("outsider", decision=Decision.REJECT)])
