"""Base interface for wait coordination."""

from __future__ import annotations

import abc
import re
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..errors import StepConfigurationError

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h|d)?\s*$")
_UNIT_SECONDS = {"ms": 0.001, "s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: Union[str, int, float]) -> float:
    """Convert ``"90s"``, ``"15m"``, ``"24h"``, ``"7d"``, ``"500ms"`` or a bare number to seconds."""
    if isinstance(value, bool):
        raise StepConfigurationError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise StepConfigurationError(f"Invalid duration: {value!r}")
        return float(value)
    match = _DURATION_RE.match(str(value))
    if not match:
        raise StepConfigurationError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    return float(amount) * _UNIT_SECONDS[unit or "s"]


class WaitToken(BaseModel):
    """Handle for a suspended step; completing it resumes the run."""

    id: str
    url: str
    timeout_seconds: float
    tags: List[str] = Field(default_factory=list)


class WaitResolution(BaseModel):
    """How a wait token was resolved."""

    model_config = ConfigDict(populate_by_name=True)

    ok: bool
    timed_out: bool = Field(default=False, alias="timedOut")
    output: Any = None

    @classmethod
    def completed(cls, output: Any) -> "WaitResolution":
        return cls(ok=True, timed_out=False, output=output)

    @classmethod
    def timeout(cls) -> "WaitResolution":
        return cls(ok=False, timed_out=True, output=None)

    def as_result(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class BaseWaitCoordinator(metaclass=abc.ABCMeta):
    """Abstract coordinator creating, awaiting and completing wait tokens."""

    def __init__(self, base_url: str = "http://localhost:3000") -> None:
        self.base_url = base_url.rstrip("/")

    def token_url(self, token_id: str) -> str:
        return f"{self.base_url}/api/waitpoints/{token_id}/complete"

    async def connect(self) -> None:
        """Open connection to the backend (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to the backend (no-op by default)."""
        pass

    @abc.abstractmethod
    async def create_token(
        self, timeout: Union[str, int, float], tags: Optional[List[str]] = None
    ) -> WaitToken:
        """Create a token that times out after ``timeout``."""
        raise NotImplementedError

    @abc.abstractmethod
    async def await_token(self, token_id: str) -> WaitResolution:
        """Suspend until the token is completed or times out."""
        raise NotImplementedError

    @abc.abstractmethod
    async def complete_token(self, token_id: str, output: Any = None) -> None:
        """Resolve the token with ``output``.

        Raises:
            UnknownWaitToken: if the token does not exist or was already resolved.
        """
        raise NotImplementedError
