"""Tests for built-in workflow templates."""

from decimal import Decimal

import pytest

from approvalflow.exceptions import NotFoundError, ValidationError
from approvalflow.templates import build_from_template, get_template, list_templates


def test_builtin_templates_are_listed():
    ids = [template.id for template in list_templates()]
    assert ids == ["single_approver", "dual_approval", "amount_based"]
    assert get_template("dual_approval").require_all_approvers
    with pytest.raises(NotFoundError):
        get_template("quadruple")


def test_build_from_template_fills_approvers():
    workflow = build_from_template(
        "amount_based", "Small spend", [["mgr"], ["vp", "cfo"]], tenant_id="acme"
    )
    assert workflow.tenant_id == "acme"
    assert workflow.auto_approve_threshold == Decimal("1000")
    assert [step.name for step in workflow.steps] == ["Department Manager", "Senior Manager"]
    assert workflow.steps[1].approvers == frozenset({"vp", "cfo"})


def test_build_from_template_checks_step_count_and_approvers():
    with pytest.raises(ValidationError):
        build_from_template("dual_approval", "Pair", [["a"]])
    with pytest.raises(ValidationError):
        build_from_template("single_approver", "Solo", [[]])
