from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel

from .constants import DEFAULT_FUZZ_BAND, DEFAULT_LOCK_EXPIRES_IN, DEFAULT_TICK_TOPIC


class RedisConfig(BaseModel):
    """Configuration for Redis connections."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class TransportConfig(BaseModel):
    """Transport configuration settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()


class LockConfig(BaseModel):
    """Lock service configuration."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    expires_in: int = DEFAULT_LOCK_EXPIRES_IN
    redis: RedisConfig = RedisConfig()


class SchedulerConfig(BaseModel):
    """Wait decision interpretation settings."""

    fuzz_band: float = DEFAULT_FUZZ_BAND
    tick_topic: str = DEFAULT_TICK_TOPIC


class StepSettings(BaseModel):
    """Deployment settings read by provisioning steps."""

    artifacts_bucket_name: str = "provflow-artifacts"
    study_data_bucket_name: str = "provflow-studydata"
    study_data_kms_key_alias: str = "alias/provflow-studydata"
    study_data_kms_policy_workspace_sid: str = "Allow workspace access"
    launch_constraint_role_prefix: str = "*"
    launch_constraint_policy_prefix: str = "*"
    enable_flow_logs: bool = False
    is_app_stream_enabled: bool = False
    domain_name: str = ""
    environment_instance_files: str = ""

    @property
    def kms_key_alias(self) -> str:
        alias = self.study_data_kms_key_alias
        return alias if alias.startswith("alias/") else f"alias/{alias}"


class ProvflowConfig(BaseModel):
    """Top-level configuration model."""

    transport: TransportConfig = TransportConfig()
    locks: LockConfig = LockConfig()
    scheduler: SchedulerConfig = SchedulerConfig()
    settings: StepSettings = StepSettings()
    database_url: Optional[str] = None


def load_config(path: Optional[str] = None) -> ProvflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to PROVFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("PROVFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = ProvflowConfig(**data)
    else:
        config = ProvflowConfig()

    env_db_url = os.getenv("PROVFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
