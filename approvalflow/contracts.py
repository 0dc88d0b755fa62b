"""Core contracts for approval workflows."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

SYSTEM_ACTOR = "system"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class Decision(str, Enum):
    """Outcome an approver records at a step."""

    APPROVE = "approve"
    REJECT = "reject"


class Step(BaseModel):
    """One ordered stage of a workflow with its own approver set.

    Steps are value objects: the approver set is bound when the step is
    built and cannot be edited afterwards. Editing a workflow replaces its
    steps wholesale.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    approvers: FrozenSet[str]

    @field_validator("name")
    @classmethod
    def _ensure_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("step name must be a non-empty string")
        return v.strip()

    @field_validator("approvers", mode="before")
    @classmethod
    def _ensure_approvers(cls, v: Any) -> Any:
        if v is None or isinstance(v, (str, bytes)):
            raise ValueError("approvers must be a collection of principal ids")
        principals = [p.strip() if isinstance(p, str) else p for p in v]
        if not principals:
            raise ValueError("step requires at least one approver")
        if any(not isinstance(p, str) or not p for p in principals):
            raise ValueError("approver ids must be non-empty strings")
        duplicates = sorted({p for p in principals if principals.count(p) > 1})
        if duplicates:
            raise ValueError(f"duplicate approvers: {', '.join(duplicates)}")
        return frozenset(principals)

    @field_serializer("approvers")
    def _serialize_approvers(self, approvers: FrozenSet[str]) -> List[str]:
        return sorted(approvers)


class WorkflowSnapshot(BaseModel):
    """Immutable copy of a workflow taken when a document is submitted."""

    model_config = ConfigDict(frozen=True)

    workflow_id: str
    name: str
    revision: int = 1
    steps: Tuple[Step, ...]
    require_all_approvers: bool = False
    auto_approve_threshold: Optional[Decimal] = None

    @property
    def step_count(self) -> int:
        return len(self.steps)


class WorkflowDefinition(BaseModel):
    """Named, reusable template of ordered approval steps."""

    id: str = Field(default_factory=new_id)
    tenant_id: str = "default"
    name: str
    description: str = ""
    steps: List[Step]
    require_all_approvers: bool = False
    auto_approve_threshold: Optional[Decimal] = None
    is_active: bool = True
    revision: int = 1
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("name")
    @classmethod
    def _ensure_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("workflow name is required")
        return v.strip()

    @field_validator("steps")
    @classmethod
    def _ensure_steps(cls, v: List[Step]) -> List[Step]:
        if not v:
            raise ValueError("at least one approval step is required")
        return v

    @field_validator("auto_approve_threshold")
    @classmethod
    def _ensure_threshold(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        if v is not None and v < 0:
            raise ValueError("auto-approve threshold cannot be negative")
        return v

    def snapshot(self) -> WorkflowSnapshot:
        """Freeze the steps and rules as they are right now."""
        return WorkflowSnapshot(
            workflow_id=self.id,
            name=self.name,
            revision=self.revision,
            steps=tuple(self.steps),
            require_all_approvers=self.require_all_approvers,
            auto_approve_threshold=self.auto_approve_threshold,
        )

    def involves(self, principal: str) -> bool:
        """Return ``True`` if ``principal`` approves at any step."""
        return any(principal in step.approvers for step in self.steps)


class EventKind(str, Enum):
    SUBMITTED = "submitted"
    AUTO_APPROVED = "auto_approved"
    APPROVAL_RECORDED = "approval_recorded"
    STEP_ADVANCED = "step_advanced"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    REMINDER = "reminder"


class ApprovalEvent(BaseModel):
    """Notification payload emitted on every state change."""

    event_id: str = Field(default_factory=new_id)
    kind: EventKind
    instance_id: str
    document_id: str
    tenant_id: str = "default"
    step_index: Optional[int] = None
    actor_id: Optional[str] = None
    comments: str = ""
    occurred_at: datetime = Field(default_factory=utcnow)

    def to_json(self) -> str:
        """Serialize event to JSON."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "ApprovalEvent":
        """Deserialize event from JSON."""
        return cls.model_validate_json(data)
