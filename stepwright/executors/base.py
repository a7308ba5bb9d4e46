"""Step executor contract and the context handed to executors."""

from __future__ import annotations

import abc
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Union

import httpx
from pydantic import BaseModel, Field

from ..config import IntegrationConfig
from ..errors import ExecutorError, StepConfigurationError

logger = logging.getLogger(__name__)


class ExecutorContext(BaseModel):
    """Read-only view of the run given to a step executor."""

    run_id: str
    node_id: str
    node_type: str
    company_id: Optional[str] = None
    trigger_payload: Any = None
    step_outputs: Dict[str, Any] = Field(default_factory=dict)

    @property
    def dedup_key(self) -> str:
        """Stable key executors may forward as an idempotency key."""
        return f"{self.run_id}:{self.node_id}"


class InvoiceConnection(BaseModel):
    token: str
    entity_id: str
    entity_name: Optional[str] = None


class CredentialProvider(metaclass=abc.ABCMeta):
    """Supplies per-company credentials for external integrations."""

    @abc.abstractmethod
    async def get_slack_token(self, company_id: Optional[str]) -> str:
        raise NotImplementedError

    @abc.abstractmethod
    async def get_invoice_connection(self, company_id: Optional[str]) -> InvoiceConnection:
        raise NotImplementedError


class StaticCredentialProvider(CredentialProvider):
    """Credentials held in memory, keyed by company id."""

    def __init__(
        self,
        slack_tokens: Optional[Dict[str, str]] = None,
        invoice_connections: Optional[Dict[str, InvoiceConnection]] = None,
    ) -> None:
        self._slack_tokens = dict(slack_tokens or {})
        self._invoice_connections = dict(invoice_connections or {})

    async def get_slack_token(self, company_id: Optional[str]) -> str:
        token = self._slack_tokens.get(company_id or "")
        if not token:
            raise StepConfigurationError("Slack integration not connected")
        return token

    async def get_invoice_connection(self, company_id: Optional[str]) -> InvoiceConnection:
        connection = self._invoice_connections.get(company_id or "")
        if connection is None:
            raise StepConfigurationError("Invoicing integration not connected")
        return connection


class StepExecutor(metaclass=abc.ABCMeta):
    """Side-effecting action invoked for one node type.

    Executors never retry; any exception is handed to the engine's retry
    policy.
    """

    node_types: Tuple[str, ...] = ()

    @abc.abstractmethod
    async def execute(self, settings: Dict[str, Any], context: ExecutorContext) -> Any:
        """Run the action and return the step output."""
        raise NotImplementedError

    async def __call__(self, settings: Dict[str, Any], context: ExecutorContext) -> Any:
        return await self.execute(settings, context)


ExecutorCallable = Callable[[Dict[str, Any], ExecutorContext], Awaitable[Any]]
Executor = Union[StepExecutor, ExecutorCallable]


class HttpStepExecutor(StepExecutor):
    """Executor talking to an HTTP API with ``httpx``."""

    def __init__(
        self,
        credentials: CredentialProvider,
        config: Optional[IntegrationConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.credentials = credentials
        self.config = config or IntegrationConfig()
        self._transport = transport

    @property
    @abc.abstractmethod
    def base_url(self) -> str:
        raise NotImplementedError

    def client(self, token: str, **headers: str) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.config.request_timeout,
            transport=self._transport,
            headers={"Authorization": f"Bearer {token}", **headers},
        )


def require_setting(settings: Dict[str, Any], key: str, label: str) -> str:
    """Return ``settings[key]`` as a stripped string or raise when empty."""
    value = settings.get(key)
    text = "" if value is None else str(value).strip()
    if not text:
        raise StepConfigurationError(f"{label} is required")
    return text


def response_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def raise_for_response(response: httpx.Response, default: str) -> Any:
    """Return the decoded body or raise ``ExecutorError`` for a non-2xx status."""
    payload = response_json(response)
    if response.is_error:
        message = response.text or default
        logger.warning(f"{response.request.method} {response.request.url} -> {response.status_code}")
        raise ExecutorError(message, status_code=response.status_code, response=payload)
    return payload
