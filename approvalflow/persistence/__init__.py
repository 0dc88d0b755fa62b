"""Persistence layer for approval workflows."""

from __future__ import annotations

import os
from typing import Optional

from ..config import ApprovalflowConfig, load_config
from .inmemory import InMemoryApprovalRepository
from .models import ApprovalAction, ApprovalInstance, InstanceStatus
from .repository import ApprovalRepository
from .sqlite import SQLiteApprovalRepository

_repository_instance: ApprovalRepository | None = None


def get_repository(
    database_url: Optional[str] = None, config: Optional[ApprovalflowConfig] = None
) -> ApprovalRepository:
    """Factory function to obtain an approval repository.

    The repository backend is selected based on ``database_url`` which can be
    provided explicitly, via environment variable ``APPROVALFLOW_DATABASE_URL``
    or ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory repository is returned.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("APPROVALFLOW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or getattr(config, "database_url", None)
    )

    if not database_url:
        _repository_instance = InMemoryApprovalRepository()
        return _repository_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _repository_instance = SQLiteApprovalRepository(path)
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        from .postgres import PostgresApprovalRepository

        _repository_instance = PostgresApprovalRepository(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _repository_instance


__all__ = [
    "ApprovalAction",
    "ApprovalInstance",
    "InstanceStatus",
    "ApprovalRepository",
    "InMemoryApprovalRepository",
    "SQLiteApprovalRepository",
    "get_repository",
]
