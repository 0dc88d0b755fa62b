"""Read-only queries and statistics over approval instances."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import FrozenSet, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from . import resolver
from .collaborators import IdentityResolver, StepMembershipResolver
from .config import RetryConfig
from .exceptions import NotFoundError
from .persistence.models import ApprovalAction, ApprovalInstance, InstanceStatus
from .persistence.repository import ApprovalRepository
from .utils.retry import retry_once


class StatsPeriod(BaseModel):
    """Submission window for statistics. Open ends are unbounded."""

    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @field_validator("start", "end")
    @classmethod
    def _assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @model_validator(mode="after")
    def _check_order(self) -> "StatsPeriod":
        if self.start and self.end and self.start > self.end:
            raise ValueError("period start must not be after its end")
        return self

    def contains(self, moment: datetime) -> bool:
        if self.start and moment < self.start:
            return False
        if self.end and moment > self.end:
            return False
        return True


class ApprovalStats(BaseModel):
    total_count: int = 0
    pending_count: int = 0
    approved_count: int = 0
    rejected_count: int = 0
    cancelled_count: int = 0
    auto_approved_count: int = 0
    average_decision_latency: Optional[timedelta] = None


class ApprovalHistoryEntry(BaseModel):
    """One submission of a document together with its audit trail."""

    instance: ApprovalInstance
    actions: List[ApprovalAction] = Field(default_factory=list)


class QueryService:
    """Answers questions about approvals without changing them."""

    def __init__(
        self,
        repository: ApprovalRepository,
        identity: Optional[IdentityResolver] = None,
        retry: Optional[RetryConfig] = None,
    ) -> None:
        self._repository = repository
        self._identity = identity or StepMembershipResolver()
        self._retry = retry

    async def get_instance(self, instance_id: str) -> ApprovalInstance:
        instance = await retry_once(
            self._repository.get_instance, instance_id, policy=self._retry
        )
        if instance is None:
            raise NotFoundError(
                f"Approval {instance_id} not found", details={"instance_id": instance_id}
            )
        return instance

    async def list_actions(self, instance_id: str) -> List[ApprovalAction]:
        return await retry_once(
            self._repository.list_actions, instance_id, policy=self._retry
        )

    async def list_pending(self, tenant_id: Optional[str] = None) -> List[ApprovalInstance]:
        return await retry_once(
            self._repository.list_instances,
            tenant_id=tenant_id,
            status=InstanceStatus.PENDING,
            policy=self._retry,
        )

    async def outstanding_approvers(self, instance: ApprovalInstance) -> FrozenSet[str]:
        """Approvers of the current step that have not approved yet."""
        if not instance.is_pending:
            return frozenset()
        actions = await retry_once(
            self._repository.list_actions,
            instance.id,
            instance.current_step_index,
            policy=self._retry,
        )
        return resolver.outstanding_approvers(
            instance.workflow_snapshot, instance.current_step_index, actions
        )

    async def list_pending_for(
        self, actor_id: str, tenant_id: Optional[str] = None
    ) -> List[ApprovalInstance]:
        """Pending instances waiting on a decision from ``actor_id``."""
        waiting = []
        for instance in await self.list_pending(tenant_id):
            if not await self._identity.is_approver(actor_id, instance.current_step):
                continue
            if actor_id not in await self.outstanding_approvers(instance):
                continue
            waiting.append(instance)
        return waiting

    async def get_history(self, document_id: str) -> List[ApprovalHistoryEntry]:
        """Every submission of ``document_id``, newest first."""
        instances = await retry_once(
            self._repository.list_instances, document_id=document_id, policy=self._retry
        )
        history = []
        for instance in sorted(instances, key=lambda i: i.submitted_at, reverse=True):
            history.append(
                ApprovalHistoryEntry(
                    instance=instance, actions=await self.list_actions(instance.id)
                )
            )
        return history

    async def get_stats(
        self, tenant_id: Optional[str] = None, period: Optional[StatsPeriod] = None
    ) -> ApprovalStats:
        """Count instances submitted in ``period`` and average decision latency.

        Latency covers instances a person decided, so auto-approvals and
        cancellations are left out of the average.
        """
        period = period or StatsPeriod()
        instances = [
            instance
            for instance in await retry_once(
                self._repository.list_instances, tenant_id=tenant_id, policy=self._retry
            )
            if period.contains(instance.submitted_at)
        ]

        stats = ApprovalStats(total_count=len(instances))
        latencies: List[timedelta] = []
        for instance in instances:
            if instance.status is InstanceStatus.PENDING:
                stats.pending_count += 1
            elif instance.status is InstanceStatus.APPROVED:
                stats.approved_count += 1
            elif instance.status is InstanceStatus.REJECTED:
                stats.rejected_count += 1
            else:
                stats.cancelled_count += 1

            if instance.auto_approved:
                stats.auto_approved_count += 1
            elif instance.status in (InstanceStatus.APPROVED, InstanceStatus.REJECTED):
                latencies.append(instance.decided_at - instance.submitted_at)

        if latencies:
            stats.average_decision_latency = sum(latencies, timedelta()) / len(latencies)
        return stats
