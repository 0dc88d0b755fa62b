"""Redis dispatcher that queues events per recipient."""

from __future__ import annotations

from typing import Any, Iterable, List, Optional

import redis.asyncio as redis

from ..contracts import ApprovalEvent
from .base import NotificationDispatcher


class RedisNotificationDispatcher(NotificationDispatcher):
    """Push JSON events onto one Redis list per recipient.

    A mailer or websocket worker drains ``<queue_prefix>:<recipient>``.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        queue_prefix: str = "approvalflow:notifications",
        client: Optional[Any] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.queue_prefix = queue_prefix
        self._redis: Optional[Any] = client

    def queue_name(self, recipient: str) -> str:
        return f"{self.queue_prefix}:{recipient}"

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await self._redis.ping()

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def send(self, event: ApprovalEvent, recipients: Iterable[str]) -> None:
        if not self._redis:
            await self.connect()

        payload = event.to_json()
        for recipient in recipients:
            await self._redis.lpush(self.queue_name(recipient), payload)

    async def drain(self, recipient: str, limit: int = 100) -> List[ApprovalEvent]:
        """Pop up to ``limit`` queued events for ``recipient``, oldest first."""
        if not self._redis:
            await self.connect()

        events: List[ApprovalEvent] = []
        for _ in range(limit):
            raw = await self._redis.rpop(self.queue_name(recipient))
            if raw is None:
                break
            events.append(ApprovalEvent.from_json(raw))
        return events
