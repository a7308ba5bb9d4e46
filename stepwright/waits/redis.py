"""Redis wait coordination so tokens can be completed from another process."""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from typing import Any, List, Optional, Union

try:
    import redis.asyncio as redis
except ImportError:
    redis = None

from ..errors import UnknownWaitToken
from .base import BaseWaitCoordinator, WaitResolution, WaitToken, parse_duration

logger = logging.getLogger(__name__)

KEY_PREFIX = "stepwright:wait"


class RedisWaitCoordinator(BaseWaitCoordinator):
    """Token metadata in a key, the completion payload pushed onto a list."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        base_url: str = "http://localhost:3000",
    ) -> None:
        if redis is None:
            raise ImportError("redis package is required for RedisWaitCoordinator")

        super().__init__(base_url)
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self._redis: Optional[Any] = None

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

    @staticmethod
    def _meta_key(token_id: str) -> str:
        return f"{KEY_PREFIX}:{token_id}"

    @staticmethod
    def _done_key(token_id: str) -> str:
        return f"{KEY_PREFIX}:{token_id}:done"

    @staticmethod
    def _result_key(token_id: str) -> str:
        return f"{KEY_PREFIX}:{token_id}:result"

    async def create_token(
        self, timeout: Union[str, int, float], tags: Optional[List[str]] = None
    ) -> WaitToken:
        if not self._redis:
            await self.connect()

        token_id = f"waitpoint_{uuid.uuid4().hex}"
        token = WaitToken(
            id=token_id,
            url=self.token_url(token_id),
            timeout_seconds=parse_duration(timeout),
            tags=list(tags or []),
        )
        meta = {**token.model_dump(), "deadline": time.time() + token.timeout_seconds}
        ttl = max(1, int(token.timeout_seconds) + 60)
        await self._redis.set(self._meta_key(token_id), json.dumps(meta), ex=ttl)
        return token

    async def await_token(self, token_id: str) -> WaitResolution:
        if not self._redis:
            await self.connect()

        raw_meta = await self._redis.get(self._meta_key(token_id))
        if raw_meta is None:
            raise UnknownWaitToken(token_id)
        deadline = json.loads(raw_meta)["deadline"]

        try:
            while True:
                remaining = deadline - time.time()
                if remaining <= 0:
                    logger.info(f"Wait token {token_id} timed out")
                    return WaitResolution.timeout()

                # Blocking pop with timeout
                result = await self._redis.blpop(
                    self._result_key(token_id), timeout=max(1, min(5, int(remaining)))
                )
                if result:
                    _, payload = result
                    return WaitResolution.completed(json.loads(payload))

                await asyncio.sleep(0.01)
        finally:
            await self._redis.delete(
                self._meta_key(token_id),
                self._result_key(token_id),
                self._done_key(token_id),
            )

    async def complete_token(self, token_id: str, output: Any = None) -> None:
        if not self._redis:
            await self.connect()

        ttl = await self._redis.ttl(self._meta_key(token_id))
        if ttl is None or ttl < 0:
            raise UnknownWaitToken(token_id)
        # First completion wins
        if not await self._redis.set(self._done_key(token_id), 1, nx=True, ex=ttl or 1):
            raise UnknownWaitToken(token_id)
        await self._redis.rpush(self._result_key(token_id), json.dumps(output, default=str))
        logger.info(f"Wait token {token_id} completed")
