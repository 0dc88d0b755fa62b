"""Built-in workflow presets offered when a business sets up approvals."""

from __future__ import annotations

from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, Field

from .contracts import WorkflowDefinition
from .definitions import parse_definition
from .exceptions import NotFoundError, ValidationError


class TemplateStep(BaseModel):
    name: str
    description: str = ""


class WorkflowTemplate(BaseModel):
    """Workflow shape without approvers."""

    id: str
    name: str
    description: str = ""
    steps: List[TemplateStep] = Field(default_factory=list)
    require_all_approvers: bool = False
    auto_approve_threshold: Optional[Decimal] = None


BUILTIN_TEMPLATES: Dict[str, WorkflowTemplate] = {
    template.id: template
    for template in (
        WorkflowTemplate(
            id="single_approver",
            name="Single Approver",
            description="Simple workflow with one approval step",
            steps=[
                TemplateStep(
                    name="Manager Approval",
                    description="Requires approval from designated manager",
                )
            ],
        ),
        WorkflowTemplate(
            id="dual_approval",
            name="Dual Approval",
            description="Requires approval from two different people",
            steps=[
                TemplateStep(name="First Approver", description="Initial approval step"),
                TemplateStep(name="Final Approver", description="Final approval step"),
            ],
            require_all_approvers=True,
        ),
        WorkflowTemplate(
            id="amount_based",
            name="Amount-Based Approval",
            description="Small invoices skip review; larger ones go through two levels",
            steps=[
                TemplateStep(
                    name="Department Manager",
                    description="Department manager approval for all amounts",
                ),
                TemplateStep(
                    name="Senior Manager",
                    description="Senior manager approval for high amounts",
                ),
            ],
            auto_approve_threshold=Decimal("1000"),
        ),
    )
}


def list_templates() -> List[WorkflowTemplate]:
    return list(BUILTIN_TEMPLATES.values())


def get_template(template_id: str) -> WorkflowTemplate:
    try:
        return BUILTIN_TEMPLATES[template_id]
    except KeyError:
        raise NotFoundError(
            f"Workflow template {template_id} not found",
            details={"template_id": template_id, "available": sorted(BUILTIN_TEMPLATES)},
        ) from None


def build_from_template(
    template_id: str,
    name: str,
    approvers: Sequence[Iterable[str]],
    tenant_id: str = "default",
    description: Optional[str] = None,
) -> WorkflowDefinition:
    """Fill a template's steps with approvers, one approver list per step.

    Raises:
        NotFoundError: Unknown template.
        ValidationError: Wrong number of approver lists, or an invalid step.
    """
    template = get_template(template_id)
    if len(approvers) != len(template.steps):
        raise ValidationError(
            f"Template {template_id} has {len(template.steps)} steps "
            f"but {len(approvers)} approver lists were given",
            details={"template_id": template_id, "expected_steps": len(template.steps)},
        )
    return parse_definition(
        {
            "tenant_id": tenant_id,
            "name": name,
            "description": template.description if description is None else description,
            "steps": [
                {"name": step.name, "description": step.description, "approvers": list(step_approvers)}
                for step, step_approvers in zip(template.steps, approvers)
            ],
            "require_all_approvers": template.require_all_approvers,
            "auto_approve_threshold": template.auto_approve_threshold,
        }
    )
