from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Optional, TypeVar

from ..config import RetryConfig
from ..exceptions import RepositoryError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def compute_backoff(attempt: int, base: float = 0.05, jitter: float = 0.05) -> float:
    """Compute exponential backoff with jitter."""
    delay = base * (2 ** (attempt - 1))
    return delay + random.uniform(0, jitter)


async def schedule_retry(attempt: int, policy: Optional[RetryConfig] = None) -> None:
    """Sleep for computed backoff delay before retrying."""
    policy = policy or RetryConfig()
    await asyncio.sleep(compute_backoff(attempt, policy.backoff_base, policy.jitter))


async def retry_once(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    policy: Optional[RetryConfig] = None,
    **kwargs: Any,
) -> T:
    """Await ``func(*args, **kwargs)``, retrying a single time on ``RepositoryError``.

    Domain errors such as ``ConflictError`` propagate immediately. When the
    retry fails too, its ``RepositoryError`` is raised to the caller.
    """
    try:
        return await func(*args, **kwargs)
    except RepositoryError as exc:
        name = getattr(func, "__name__", repr(func))
        logger.warning(f"Repository call {name} failed ({exc}); retrying once")
        await schedule_retry(1, policy)
        try:
            return await func(*args, **kwargs)
        except RepositoryError as retry_exc:
            logger.error(f"Repository call {name} failed after retry: {retry_exc}")
            raise
