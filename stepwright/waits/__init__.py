"""Wait coordinator factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import StepwrightConfig, load_config
from .base import BaseWaitCoordinator, WaitResolution, WaitToken, parse_duration
from .inmemory import InMemoryWaitCoordinator


def get_wait_coordinator(
    backend: Optional[str] = None, config: Optional[StepwrightConfig] = None
) -> BaseWaitCoordinator:
    """Factory function to get the configured wait coordinator."""

    config = config or load_config()
    backend = (
        backend
        or os.getenv("STEPWRIGHT_WAIT_BACKEND")
        or config.waits.backend
    ).lower()

    if backend == "inmemory":
        return InMemoryWaitCoordinator(base_url=config.app_base_url)
    elif backend == "redis":
        from .redis import RedisWaitCoordinator

        redis_conf = config.waits.redis
        return RedisWaitCoordinator(
            host=redis_conf.host,
            port=redis_conf.port,
            db=redis_conf.db,
            password=redis_conf.password,
            base_url=config.app_base_url,
        )
    else:
        raise ValueError(f"Unsupported wait backend: {backend}")


__all__ = [
    "BaseWaitCoordinator",
    "InMemoryWaitCoordinator",
    "WaitResolution",
    "WaitToken",
    "get_wait_coordinator",
    "parse_duration",
]
