"""Notification dispatcher factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import ApprovalflowConfig, load_config
from .base import NotificationDispatcher, safe_send
from .inmemory import InMemoryNotificationDispatcher
from .log import LoggingNotificationDispatcher


def get_dispatcher(
    backend: Optional[str] = None, config: Optional[ApprovalflowConfig] = None
) -> NotificationDispatcher:
    """Factory function to get the configured notification dispatcher."""

    config = config or load_config()
    backend = (
        backend
        or os.getenv("APPROVALFLOW_NOTIFIER")
        or config.notifications.backend
    ).lower()

    if backend == "inmemory":
        return InMemoryNotificationDispatcher()
    elif backend == "logging":
        return LoggingNotificationDispatcher()
    elif backend == "redis":
        from .redis import RedisNotificationDispatcher

        redis_conf = config.notifications.redis
        return RedisNotificationDispatcher(
            host=redis_conf.host,
            port=redis_conf.port,
            db=redis_conf.db,
            password=redis_conf.password,
            queue_prefix=redis_conf.queue_prefix,
        )
    else:
        raise ValueError(f"Unsupported notification backend: {backend}")


__all__ = [
    "NotificationDispatcher",
    "InMemoryNotificationDispatcher",
    "LoggingNotificationDispatcher",
    "get_dispatcher",
    "safe_send",
]
