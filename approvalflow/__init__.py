"""Approvalflow: multi-step approval workflows for invoices."""

from .collaborators import DocumentStatus, InMemoryDocumentStore, StepMembershipResolver
from .contracts import ApprovalEvent, Decision, EventKind, Step, WorkflowDefinition
from .engine import ApprovalEngine
from .exceptions import (
    AlreadyDecidedError,
    ApprovalflowError,
    AuthorizationError,
    ConfigurationError,
    ConflictError,
    DocumentSyncError,
    NotFoundError,
    RepositoryError,
    ValidationError,
)
from .notifications import get_dispatcher
from .persistence import ApprovalInstance, InstanceStatus, get_repository

__version__ = "0.1.0"
__all__ = [
    "ApprovalEngine",
    "ApprovalEvent",
    "ApprovalInstance",
    "Decision",
    "DocumentStatus",
    "EventKind",
    "InMemoryDocumentStore",
    "InstanceStatus",
    "Step",
    "StepMembershipResolver",
    "WorkflowDefinition",
    "get_dispatcher",
    "get_repository",
    "ApprovalflowError",
    "AlreadyDecidedError",
    "AuthorizationError",
    "ConfigurationError",
    "ConflictError",
    "DocumentSyncError",
    "NotFoundError",
    "RepositoryError",
    "ValidationError",
]
