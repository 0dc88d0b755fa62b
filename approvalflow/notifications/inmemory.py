"""In-memory notification dispatcher for testing."""

from __future__ import annotations

import asyncio
from typing import Iterable, List, Tuple

from ..contracts import ApprovalEvent, EventKind
from .base import NotificationDispatcher


class InMemoryNotificationDispatcher(NotificationDispatcher):
    """Collects sent events in a list."""

    def __init__(self) -> None:
        self.sent: List[Tuple[ApprovalEvent, Tuple[str, ...]]] = []
        self._lock = asyncio.Lock()

    async def send(self, event: ApprovalEvent, recipients: Iterable[str]) -> None:
        async with self._lock:
            self.sent.append((event, tuple(recipients)))

    def kinds(self) -> List[EventKind]:
        return [event.kind for event, _ in self.sent]

    def events_for(self, recipient: str) -> List[ApprovalEvent]:
        return [event for event, recipients in self.sent if recipient in recipients]
