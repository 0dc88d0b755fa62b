"""Error taxonomy for the approval engine."""

from __future__ import annotations

from typing import Any, Dict, Optional


class ApprovalflowError(Exception):
    """Base class for all errors raised by approvalflow.

    Attributes:
        message: Human readable description of the failure.
        details: Structured context that lets the caller correct the request.
        error_code: Stable identifier, defaults to the class name.
    """

    retryable: bool = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.error_code = self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
            "retryable": self.retryable,
        }


class ValidationError(ApprovalflowError):
    """A workflow or step definition is malformed."""


class ConfigurationError(ApprovalflowError):
    """The requested workflow is missing, inactive or unusable."""


class AuthorizationError(ApprovalflowError):
    """The actor may not perform the action at the current step."""


class AlreadyDecidedError(ApprovalflowError):
    """The instance is terminal, or the actor already decided this step."""


class ConflictError(ApprovalflowError):
    """The instance moved on underneath the caller.

    The caller must re-fetch the instance before trying again.
    """

    retryable = True


class NotFoundError(ApprovalflowError):
    """An instance, workflow, template or document does not exist."""


class RepositoryError(ApprovalflowError):
    """The persistence backend failed."""


class DocumentSyncError(ApprovalflowError):
    """The instance committed but the document status could not be updated.

    ``details["instance"]`` holds the committed instance; the caller should
    retry the document update rather than the decision.
    """


__all__ = [
    "ApprovalflowError",
    "ValidationError",
    "ConfigurationError",
    "AuthorizationError",
    "AlreadyDecidedError",
    "ConflictError",
    "NotFoundError",
    "RepositoryError",
    "DocumentSyncError",
]
