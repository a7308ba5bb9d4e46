from __future__ import annotations

import asyncio

from ..contracts import RetryPolicy


def attempts(policy: RetryPolicy) -> range:
    """Attempt numbers for one node visit, starting at 1."""
    return range(1, policy.max_attempts + 1)


async def schedule_retry(policy: RetryPolicy) -> None:
    """Sleep for the policy's fixed backoff before retrying."""
    if policy.backoff_seconds > 0:
        await asyncio.sleep(policy.backoff_seconds)
