"""Interfaces of the systems the engine talks to, plus reference implementations."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Dict, List, Mapping, Optional, Protocol, Tuple, Union

from .contracts import Step
from .exceptions import NotFoundError

Amount = Union[Decimal, int, str]


class DocumentStatus(str, Enum):
    """Status the engine writes back onto a document."""

    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"


class DocumentStore(Protocol):
    """Owner of the documents (invoices) being approved."""

    async def get_amount(self, document_id: str) -> Decimal:
        """Return the document total. Raise ``NotFoundError`` if unknown."""

    async def set_status(self, document_id: str, status: DocumentStatus) -> None:
        """Record the approval status on the document."""


class IdentityResolver(Protocol):
    """Decides whether a principal may act at a step."""

    async def is_approver(self, actor_id: str, step: Step) -> bool:
        """Return ``True`` if ``actor_id`` may decide at ``step``."""


class StepMembershipResolver(IdentityResolver):
    """Authorize exactly the principals listed on the step."""

    async def is_approver(self, actor_id: str, step: Step) -> bool:
        return actor_id in step.approvers


class InMemoryDocumentStore(DocumentStore):
    """Keeps document amounts and statuses in a dict.

    Status updates for unknown documents are recorded, since the engine
    only needs the amount at submission time.
    """

    def __init__(self, amounts: Optional[Mapping[str, Amount]] = None) -> None:
        self._amounts: Dict[str, Decimal] = {
            doc: Decimal(str(amount)) for doc, amount in (amounts or {}).items()
        }
        self._statuses: Dict[str, DocumentStatus] = {}
        self.history: List[Tuple[str, DocumentStatus]] = []

    def add_document(
        self,
        document_id: str,
        amount: Amount,
        status: DocumentStatus = DocumentStatus.DRAFT,
    ) -> None:
        self._amounts[document_id] = Decimal(str(amount))
        self._statuses[document_id] = status

    def status_of(self, document_id: str) -> Optional[DocumentStatus]:
        return self._statuses.get(document_id)

    async def get_amount(self, document_id: str) -> Decimal:
        try:
            return self._amounts[document_id]
        except KeyError:
            raise NotFoundError(
                f"Document {document_id} not found",
                details={"document_id": document_id},
            ) from None

    async def set_status(self, document_id: str, status: DocumentStatus) -> None:
        self._statuses[document_id] = status
        self.history.append((document_id, status))
