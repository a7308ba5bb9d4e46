from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel

from .constants import DEFAULT_BACKOFF_SECONDS, DEFAULT_MAX_ATTEMPTS, DEFAULT_WAIT_TIMEOUT


class RedisConfig(BaseModel):
    """Configuration for the Redis wait backend."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class WaitConfig(BaseModel):
    """Wait coordination settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()
    default_timeout: str = DEFAULT_WAIT_TIMEOUT


class RetryDefaults(BaseModel):
    """Retry policy applied when a definition does not declare one."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_seconds: float = DEFAULT_BACKOFF_SECONDS


class IntegrationConfig(BaseModel):
    """Endpoints used by the reference step executors."""

    slack_api_url: str = "https://slack.com/api"
    invoice_api_url: str = "https://api-v2.fattureincloud.it"
    mail_api_url: str = "https://api.resend.com"
    mail_api_key: Optional[str] = None
    mail_default_sender: str = "noreply@localhost"
    mail_sender_name: str = "Stepwright"
    request_timeout: float = 30.0


class StepwrightConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    log_level: str = "INFO"
    app_base_url: str = "http://localhost:3000"
    retry: RetryDefaults = RetryDefaults()
    waits: WaitConfig = WaitConfig()
    integrations: IntegrationConfig = IntegrationConfig()


def load_config(path: Optional[str] = None) -> StepwrightConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to STEPWRIGHT_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("STEPWRIGHT_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = StepwrightConfig(**data)
    else:
        config = StepwrightConfig()

    env_db_url = os.getenv("STEPWRIGHT_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_log_level = os.getenv("STEPWRIGHT_LOG_LEVEL")
    if env_log_level:
        config.log_level = env_log_level.upper()
    env_wait_backend = os.getenv("STEPWRIGHT_WAIT_BACKEND")
    if env_wait_backend:
        config.waits.backend = env_wait_backend.lower()
    env_mail_key = os.getenv("STEPWRIGHT_MAIL_API_KEY")
    if env_mail_key:
        config.integrations.mail_api_key = env_mail_key
    env_app_url = os.getenv("STEPWRIGHT_APP_URL")
    if env_app_url:
        config.app_base_url = env_app_url
    return config
