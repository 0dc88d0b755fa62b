"""Records persisted for approval instances and their audit trail."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator

from ..contracts import Decision, Step, WorkflowSnapshot, new_id, utcnow


class InstanceStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not InstanceStatus.PENDING


class ApprovalAction(BaseModel):
    """Append-only record of one approver's decision at one step."""

    id: str = Field(default_factory=new_id)
    instance_id: str
    step_index: int = Field(ge=0)
    actor_id: str
    decision: Decision
    comments: str = ""
    acted_at: datetime = Field(default_factory=utcnow)


class ApprovalInstance(BaseModel):
    """One run of a workflow snapshot against a single document."""

    id: str = Field(default_factory=new_id)
    tenant_id: str = "default"
    document_id: str
    workflow_id: str
    workflow_snapshot: WorkflowSnapshot
    current_step_index: int = 0
    status: InstanceStatus = InstanceStatus.PENDING
    submitted_by: str
    submitted_at: datetime = Field(default_factory=utcnow)
    decided_at: Optional[datetime] = None
    decided_by: Optional[str] = None
    notes: str = ""
    auto_approved: bool = False
    version: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _check_invariants(self) -> "ApprovalInstance":
        step_count = self.workflow_snapshot.step_count
        index = self.current_step_index
        if not 0 <= index <= step_count:
            raise ValueError(
                f"current_step_index {index} outside 0..{step_count}"
            )
        if self.status is InstanceStatus.PENDING:
            if index == step_count:
                raise ValueError("pending instance must point at an existing step")
            if self.decided_at is not None:
                raise ValueError("pending instance cannot have a decision time")
        else:
            if index == step_count and self.status is not InstanceStatus.APPROVED:
                raise ValueError("only approved instances may move past the last step")
            if self.decided_at is None:
                raise ValueError(f"{self.status.value} instance requires decided_at")
        return self

    @property
    def is_pending(self) -> bool:
        return self.status is InstanceStatus.PENDING

    @property
    def current_step(self) -> Optional[Step]:
        """Step awaiting decisions, or ``None`` once past the end."""
        steps = self.workflow_snapshot.steps
        if self.current_step_index < len(steps):
            return steps[self.current_step_index]
        return None

    def transition(self, **changes: Any) -> "ApprovalInstance":
        """Return a validated copy with ``changes`` applied."""
        data = self.model_dump(exclude={"workflow_snapshot"})
        data.update(changes)
        data.setdefault("workflow_snapshot", self.workflow_snapshot)
        return ApprovalInstance.model_validate(data)
