"""Base interface for approval notifications."""

from __future__ import annotations

import abc
import logging
from typing import Iterable

from ..contracts import ApprovalEvent

logger = logging.getLogger(__name__)


class NotificationDispatcher(metaclass=abc.ABCMeta):
    """Abstract fire-and-forget sink for approval events."""

    async def connect(self) -> None:
        """Open connection to the backend (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to the backend (no-op by default)."""
        pass

    @abc.abstractmethod
    async def send(self, event: ApprovalEvent, recipients: Iterable[str]) -> None:
        """Deliver ``event`` to each recipient."""
        raise NotImplementedError


async def safe_send(
    dispatcher: NotificationDispatcher | None,
    event: ApprovalEvent,
    recipients: Iterable[str],
) -> bool:
    """Send ``event`` without letting delivery failures escape.

    Returns ``True`` when the dispatcher accepted the event.
    """
    recipients = sorted(set(recipients))
    if dispatcher is None or not recipients:
        return False
    try:
        await dispatcher.send(event, recipients)
    except Exception as e:
        logger.error(
            f"Failed to send {event.kind.value} notification for instance_id={event.instance_id} "
            f"to {recipients}: {e}"
        )
        return False
    return True
