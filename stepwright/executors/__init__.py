"""Step executors and the registry mapping node types to them."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from ..config import StepwrightConfig, load_config
from ..constants import STUB_OUTPUT_MESSAGE
from .base import (
    CredentialProvider,
    Executor,
    ExecutorContext,
    InvoiceConnection,
    StaticCredentialProvider,
    StepExecutor,
)
from .documents import (
    CompileTemplateExecutor,
    DocumentStore,
    DocumentTemplate,
    InMemoryDocumentStore,
    TemplateField,
)
from .email import (
    HttpMailSender,
    InMemoryMailSender,
    MailMessage,
    MailSender,
    SendEmailExecutor,
)
from .invoices import CreateInvoiceExecutor, UpdateInvoiceStatusExecutor
from .slack import SlackChannelMessageExecutor, SlackUserMessageExecutor

logger = logging.getLogger(__name__)


class StubExecutor(StepExecutor):
    """Fallback for node types without a registered executor."""

    async def execute(self, settings: Dict[str, Any], context: ExecutorContext) -> Any:
        logger.info(
            f"Run {context.run_id}: no executor for '{context.node_type}', using stub"
        )
        return {"message": STUB_OUTPUT_MESSAGE}


class ExecutorRegistry:
    """Executors keyed by node type.

    Lookups for unregistered types return the ``fallback`` executor.
    """

    def __init__(self, fallback: Optional[Executor] = None) -> None:
        self._executors: Dict[str, Executor] = {}
        self.fallback: Executor = fallback or StubExecutor()

    def register(self, node_type: str, executor: Executor) -> None:
        self._executors[node_type] = executor

    def add(self, executor: StepExecutor) -> StepExecutor:
        """Register ``executor`` under each of its declared ``node_types``."""
        if not executor.node_types:
            raise ValueError(f"{type(executor).__name__} declares no node types")
        for node_type in executor.node_types:
            self.register(node_type, executor)
        return executor

    def get(self, node_type: str) -> Executor:
        return self._executors.get(node_type, self.fallback)

    def __contains__(self, node_type: object) -> bool:
        return node_type in self._executors

    @property
    def node_types(self) -> list[str]:
        return sorted(self._executors)


def default_registry(
    credentials: Optional[CredentialProvider] = None,
    document_store: Optional[DocumentStore] = None,
    config: Optional[StepwrightConfig] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    mail_sender: Optional[MailSender] = None,
) -> ExecutorRegistry:
    """Registry with every reference executor wired to ``credentials``."""

    config = config or load_config()
    credentials = credentials or StaticCredentialProvider()
    registry = ExecutorRegistry()
    for executor_cls in (
        SlackChannelMessageExecutor,
        SlackUserMessageExecutor,
        CreateInvoiceExecutor,
        UpdateInvoiceStatusExecutor,
    ):
        registry.add(executor_cls(credentials, config.integrations, transport))
    registry.add(
        CompileTemplateExecutor(
            document_store or InMemoryDocumentStore(), config.app_base_url
        )
    )
    registry.add(
        SendEmailExecutor(mail_sender or HttpMailSender(config.integrations, transport))
    )
    return registry


__all__ = [
    "CompileTemplateExecutor",
    "CreateInvoiceExecutor",
    "CredentialProvider",
    "DocumentStore",
    "DocumentTemplate",
    "ExecutorContext",
    "ExecutorRegistry",
    "HttpMailSender",
    "InMemoryDocumentStore",
    "InMemoryMailSender",
    "InvoiceConnection",
    "MailMessage",
    "MailSender",
    "SendEmailExecutor",
    "SlackChannelMessageExecutor",
    "SlackUserMessageExecutor",
    "StaticCredentialProvider",
    "StepExecutor",
    "StubExecutor",
    "TemplateField",
    "UpdateInvoiceStatusExecutor",
    "default_registry",
]
