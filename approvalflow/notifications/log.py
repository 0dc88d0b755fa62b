"""Dispatcher that only writes events to the log."""

from __future__ import annotations

import logging
from typing import Iterable

from ..contracts import ApprovalEvent
from .base import NotificationDispatcher

logger = logging.getLogger(__name__)


class LoggingNotificationDispatcher(NotificationDispatcher):
    async def send(self, event: ApprovalEvent, recipients: Iterable[str]) -> None:
        logger.info(
            f"Notification {event.kind.value} for instance_id={event.instance_id} "
            f"document_id={event.document_id} -> {', '.join(recipients)}"
        )
