from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel

from .constants import (
    DEFAULT_ADMIN_ROLE,
    DEFAULT_BASE_URL,
    DEFAULT_SYSTEM_ACTOR,
    DEFAULT_TIMEOUT_HOURS,
    SECONDS_PER_HOUR,
)


class EngineConfig(BaseModel):
    """Behavioural settings for the workflow engine."""

    default_timeout_hours: float = DEFAULT_TIMEOUT_HOURS
    system_actor: str = DEFAULT_SYSTEM_ACTOR
    admin_role: str = DEFAULT_ADMIN_ROLE


class SchedulerConfig(BaseModel):
    """Timer backend configuration."""

    backend: Literal["asyncio", "manual"] = "asyncio"
    seconds_per_hour: float = SECONDS_PER_HOUR


class NotificationConfig(BaseModel):
    """Notification sender configuration."""

    backend: Literal["log", "inmemory"] = "log"
    base_url: str = DEFAULT_BASE_URL


class PayflowConfig(BaseModel):
    """Top-level configuration model."""

    engine: EngineConfig = EngineConfig()
    scheduler: SchedulerConfig = SchedulerConfig()
    notifications: NotificationConfig = NotificationConfig()
    database_url: Optional[str] = None


def load_config(path: Optional[str] = None) -> PayflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to PAYFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("PAYFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = PayflowConfig(**data)
    else:
        config = PayflowConfig()

    env_db_url = os.getenv("PAYFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
