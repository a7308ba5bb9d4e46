"""E-mail executor and the mail senders it delivers through."""

from __future__ import annotations

import abc
import html
import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel

from ..config import IntegrationConfig
from ..errors import StepConfigurationError
from .base import ExecutorContext, StepExecutor, raise_for_response, require_setting

logger = logging.getLogger(__name__)


class MailMessage(BaseModel):
    to: str
    subject: str
    body: str
    sender: Optional[str] = None


def render_body(body: str) -> str:
    """Escape ``body`` and turn line breaks into ``<br/>``."""
    escaped = html.escape(body, quote=True)
    return escaped.replace("\r\n", "<br/>").replace("\n", "<br/>")


class MailSender(metaclass=abc.ABCMeta):
    """Delivers a single e-mail message."""

    @abc.abstractmethod
    async def send(self, message: MailMessage) -> None:
        raise NotImplementedError


class InMemoryMailSender(MailSender):
    """Keeps sent messages in ``outbox``."""

    def __init__(self) -> None:
        self.outbox: List[MailMessage] = []

    async def send(self, message: MailMessage) -> None:
        self.outbox.append(message)


class HttpMailSender(MailSender):
    """Posts messages to a transactional mail API (``POST /emails``)."""

    def __init__(
        self,
        config: Optional[IntegrationConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config or IntegrationConfig()
        self._transport = transport

    def format_sender(self, sender: Optional[str]) -> str:
        address = (sender or "").strip() or self.config.mail_default_sender
        return f"{self.config.mail_sender_name} <{address}>"

    async def send(self, message: MailMessage) -> None:
        if not self.config.mail_api_key:
            raise StepConfigurationError("Mail API key not configured")
        async with httpx.AsyncClient(
            base_url=self.config.mail_api_url,
            timeout=self.config.request_timeout,
            transport=self._transport,
            headers={"Authorization": f"Bearer {self.config.mail_api_key}"},
        ) as client:
            response = await client.post(
                "/emails",
                json={
                    "from": self.format_sender(message.sender),
                    "to": message.to,
                    "subject": message.subject,
                    "html": render_body(message.body),
                },
            )
        raise_for_response(response, "E-mail delivery failed")


class SendEmailExecutor(StepExecutor):
    """Send ``body`` to ``to`` with ``subject``; ``from`` is optional."""

    node_types = ("reglo-email",)

    def __init__(self, sender: MailSender) -> None:
        self.sender = sender

    async def execute(self, settings: Dict[str, Any], context: ExecutorContext) -> Any:
        to = require_setting(settings, "to", "E-mail recipient")
        subject = require_setting(settings, "subject", "E-mail subject")
        body = str(settings.get("body") or "")
        if not body.strip():
            raise StepConfigurationError("E-mail body is required")
        sender = str(settings.get("from") or "").strip() or None

        await self.sender.send(MailMessage(to=to, subject=subject, body=body, sender=sender))
        logger.info(f"Run {context.run_id}: sent e-mail to {to}")
        return {"to": to, "subject": subject}
