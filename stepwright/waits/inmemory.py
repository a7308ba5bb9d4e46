"""In-process wait coordination backed by asyncio futures."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Dict, List, Optional, Union

from ..errors import UnknownWaitToken
from .base import BaseWaitCoordinator, WaitResolution, WaitToken, parse_duration

logger = logging.getLogger(__name__)


class InMemoryWaitCoordinator(BaseWaitCoordinator):
    """Tokens live in this process; a run suspends on a future until completed."""

    def __init__(self, base_url: str = "http://localhost:3000") -> None:
        super().__init__(base_url)
        self._tokens: Dict[str, WaitToken] = {}
        self._futures: Dict[str, asyncio.Future] = {}

    async def create_token(
        self, timeout: Union[str, int, float], tags: Optional[List[str]] = None
    ) -> WaitToken:
        token_id = f"waitpoint_{uuid.uuid4().hex}"
        token = WaitToken(
            id=token_id,
            url=self.token_url(token_id),
            timeout_seconds=parse_duration(timeout),
            tags=list(tags or []),
        )
        self._tokens[token_id] = token
        self._futures[token_id] = asyncio.get_running_loop().create_future()
        return token

    def get_token(self, token_id: str) -> Optional[WaitToken]:
        return self._tokens.get(token_id)

    def pending_tokens(self) -> List[WaitToken]:
        return [
            self._tokens[token_id]
            for token_id, future in self._futures.items()
            if not future.done()
        ]

    async def await_token(self, token_id: str) -> WaitResolution:
        token = self._tokens.get(token_id)
        future = self._futures.get(token_id)
        if token is None or future is None:
            raise UnknownWaitToken(token_id)
        try:
            output = await asyncio.wait_for(
                asyncio.shield(future), timeout=token.timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.info(f"Wait token {token_id} timed out")
            if not future.done():
                future.cancel()
            return WaitResolution.timeout()
        finally:
            self._tokens.pop(token_id, None)
            self._futures.pop(token_id, None)
        return WaitResolution.completed(output)

    async def complete_token(self, token_id: str, output: Any = None) -> None:
        future = self._futures.get(token_id)
        if future is None or future.done():
            raise UnknownWaitToken(token_id)
        future.set_result(output)
        logger.info(f"Wait token {token_id} completed")
