"""Tests for workflow, step and instance models."""

from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError

from approvalflow.contracts import ApprovalEvent, EventKind, Step, WorkflowDefinition
from approvalflow.persistence.models import ApprovalInstance, InstanceStatus


def _definition(**overrides) -> WorkflowDefinition:
    data = {
        "name": "Invoices",
        "steps": [
            {"name": "Manager", "approvers": ["mgr"]},
            {"name": "Finance", "approvers": ["cfo", "controller"]},
        ],
    }
    data.update(overrides)
    return WorkflowDefinition(**data)


def test_step_rejects_empty_and_duplicate_approvers():
    with pytest.raises(PydanticValidationError):
        Step(name="Manager", approvers=[])
    with pytest.raises(PydanticValidationError, match="duplicate approvers: mgr"):
        Step(name="Manager", approvers=["mgr", "mgr"])
    with pytest.raises(PydanticValidationError):
        Step(name="Manager", approvers="mgr")


def test_step_is_frozen_and_serializes_sorted_approvers():
    step = Step(name="Finance", approvers=["cfo", "ap-lead"])
    with pytest.raises(PydanticValidationError):
        step.name = "Other"
    assert step.model_dump()["approvers"] == ["ap-lead", "cfo"]
    assert Step.model_validate(step.model_dump()).approvers == step.approvers


def test_definition_requires_steps_and_non_negative_threshold():
    with pytest.raises(PydanticValidationError):
        _definition(steps=[])
    with pytest.raises(PydanticValidationError):
        _definition(auto_approve_threshold=Decimal("-1"))
    with pytest.raises(PydanticValidationError):
        _definition(name="  ")


def test_snapshot_is_detached_from_later_edits():
    definition = _definition(auto_approve_threshold=Decimal("100"))
    snapshot = definition.snapshot()

    definition.steps.append(Step(name="CEO", approvers=["ceo"]))
    definition.auto_approve_threshold = None

    assert snapshot.step_count == 2
    assert snapshot.auto_approve_threshold == Decimal("100")
    assert snapshot.workflow_id == definition.id
    assert definition.involves("controller")
    assert not definition.involves("ceo-assistant")


def test_instance_invariants_are_enforced():
    snapshot = _definition().snapshot()
    base = {"document_id": "inv-1", "workflow_id": snapshot.workflow_id, "workflow_snapshot": snapshot, "submitted_by": "clerk"}

    pending = ApprovalInstance(**base)
    assert pending.current_step.name == "Manager"

    with pytest.raises(PydanticValidationError):
        ApprovalInstance(**base, current_step_index=2)
    with pytest.raises(PydanticValidationError):
        ApprovalInstance(**base, current_step_index=3, status=InstanceStatus.APPROVED)
    with pytest.raises(PydanticValidationError):
        ApprovalInstance(**base, status=InstanceStatus.REJECTED)

    approved = pending.transition(
        status=InstanceStatus.APPROVED, current_step_index=2, decided_at=pending.submitted_at
    )
    assert approved.current_step is None
    assert approved.status.is_terminal
    with pytest.raises(PydanticValidationError):
        pending.transition(
            status=InstanceStatus.REJECTED, current_step_index=2, decided_at=pending.submitted_at
        )


def test_event_json_round_trip():
    event = ApprovalEvent(
        kind=EventKind.STEP_ADVANCED, instance_id="i-1", document_id="inv-1", step_index=1
    )
    assert ApprovalEvent.from_json(event.to_json()).model_dump() == event.model_dump()
