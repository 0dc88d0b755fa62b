from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel


class RedisConfig(BaseModel):
    """Configuration for the Redis notification dispatcher."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    queue_prefix: str = "approvalflow:notifications"


class NotificationConfig(BaseModel):
    """Notification dispatcher settings."""

    backend: Literal["inmemory", "logging", "redis"] = "logging"
    redis: RedisConfig = RedisConfig()


class RetryConfig(BaseModel):
    """Backoff applied before the single retry of a failed repository call."""

    backoff_base: float = 0.05
    jitter: float = 0.05


class ApprovalflowConfig(BaseModel):
    """Top-level configuration model."""

    notifications: NotificationConfig = NotificationConfig()
    retry: RetryConfig = RetryConfig()
    database_url: Optional[str] = None
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> ApprovalflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to APPROVALFLOW_CONFIG env
            variable or 'approvalflow.yaml' in the current directory.
    """

    config_path = path or os.getenv("APPROVALFLOW_CONFIG", "approvalflow.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = ApprovalflowConfig(**data)
    else:
        config = ApprovalflowConfig()

    env_db_url = os.getenv("APPROVALFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_notifier = os.getenv("APPROVALFLOW_NOTIFIER")
    if env_notifier:
        config.notifications = config.notifications.model_copy(
            update={"backend": env_notifier.lower()}
        )
    return config
