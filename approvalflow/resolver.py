"""Step resolution: who may decide at a step and whether it is satisfied.

All functions are pure. They read a workflow snapshot and the actions
recorded against it and never touch storage.
"""

from __future__ import annotations

from typing import FrozenSet, Iterable

from .contracts import Decision, WorkflowSnapshot
from .persistence.models import ApprovalAction


def approvers_for(snapshot: WorkflowSnapshot, step_index: int) -> FrozenSet[str]:
    """Return the approver set of ``step_index``.

    Raises:
        IndexError: If ``step_index`` is not a step of ``snapshot``.
    """
    if not 0 <= step_index < snapshot.step_count:
        raise IndexError(
            f"step {step_index} outside workflow with {snapshot.step_count} steps"
        )
    return snapshot.steps[step_index].approvers


def is_last_step(snapshot: WorkflowSnapshot, step_index: int) -> bool:
    return step_index == snapshot.step_count - 1


def _eligible(
    snapshot: WorkflowSnapshot,
    step_index: int,
    actions: Iterable[ApprovalAction],
    decision: Decision,
) -> FrozenSet[str]:
    approvers = approvers_for(snapshot, step_index)
    return frozenset(
        action.actor_id
        for action in actions
        if action.step_index == step_index
        and action.decision is decision
        and action.actor_id in approvers
    )


def approved_by(
    snapshot: WorkflowSnapshot, step_index: int, actions: Iterable[ApprovalAction]
) -> FrozenSet[str]:
    """Distinct eligible principals that approved at ``step_index``."""
    return _eligible(snapshot, step_index, actions, Decision.APPROVE)


def has_rejection(
    snapshot: WorkflowSnapshot, step_index: int, actions: Iterable[ApprovalAction]
) -> bool:
    """``True`` if an eligible approver rejected at ``step_index``."""
    return bool(_eligible(snapshot, step_index, actions, Decision.REJECT))


def is_step_satisfied(
    snapshot: WorkflowSnapshot, step_index: int, actions: Iterable[ApprovalAction]
) -> bool:
    """Decide whether the approvals recorded at ``step_index`` satisfy it.

    With ``require_all_approvers`` every distinct approver of the step must
    have approved; otherwise one eligible approval is enough. Actions for
    other steps and from principals outside the step are ignored, and a
    rejection means the step can never be satisfied.
    """
    actions = list(actions)
    if has_rejection(snapshot, step_index, actions):
        return False
    approved = approved_by(snapshot, step_index, actions)
    if snapshot.require_all_approvers:
        return approved == approvers_for(snapshot, step_index)
    return bool(approved)


def outstanding_approvers(
    snapshot: WorkflowSnapshot, step_index: int, actions: Iterable[ApprovalAction]
) -> FrozenSet[str]:
    """Approvers of ``step_index`` that have not approved yet."""
    return approvers_for(snapshot, step_index) - approved_by(snapshot, step_index, actions)
