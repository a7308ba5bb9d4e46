"""Document template compilation executor."""

from __future__ import annotations

import abc
import json
import logging
import re
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..errors import StepConfigurationError
from ..persistence.models import utc_now
from ..templating import render_value, resolve_path
from .base import ExecutorContext, StepExecutor, require_setting

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]+>")
_BREAK_RE = re.compile(r"<br\s*/?>|</p>", re.IGNORECASE)


def html_to_text(html: str) -> str:
    if not html:
        return ""
    text = _BREAK_RE.sub("\n", html)
    text = _TAG_RE.sub(" ", text)
    return " ".join(text.split())


class TemplateField(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str = "input"
    label: Optional[str] = None
    binding_key: Optional[str] = Field(default=None, alias="bindingKey")
    meta: Dict[str, Any] = Field(default_factory=dict)


class DocumentTemplate(BaseModel):
    id: str
    company_id: Optional[str] = None
    name: str
    fields: List[TemplateField] = Field(default_factory=list)


class DocumentRequest(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    company_id: Optional[str] = None
    template_id: str
    name: str
    public_token: str = Field(default_factory=lambda: str(uuid.uuid4()))
    payload: Any = None
    status: str = "pending"
    result_url: Optional[str] = None
    completed_at: Optional[datetime] = None
    completed_by_name: Optional[str] = None


class DocumentStore(metaclass=abc.ABCMeta):
    """Storage for templates, document requests and compiled artifacts."""

    @abc.abstractmethod
    async def get_template(
        self, company_id: Optional[str], template_id: str
    ) -> Optional[DocumentTemplate]:
        raise NotImplementedError

    @abc.abstractmethod
    async def create_request(self, request: DocumentRequest) -> DocumentRequest:
        raise NotImplementedError

    @abc.abstractmethod
    async def save_artifact(self, key: str, content: bytes, content_type: str) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def complete_request(self, request_id: str, result_url: str) -> DocumentRequest:
        raise NotImplementedError


class InMemoryDocumentStore(DocumentStore):
    def __init__(self, templates: Optional[List[DocumentTemplate]] = None) -> None:
        self.templates: Dict[str, DocumentTemplate] = {t.id: t for t in templates or []}
        self.requests: Dict[str, DocumentRequest] = {}
        self.artifacts: Dict[str, bytes] = {}

    def add_template(self, template: DocumentTemplate) -> None:
        self.templates[template.id] = template

    async def get_template(
        self, company_id: Optional[str], template_id: str
    ) -> Optional[DocumentTemplate]:
        template = self.templates.get(template_id)
        if template is None or template.company_id not in (None, company_id):
            return None
        return template

    async def create_request(self, request: DocumentRequest) -> DocumentRequest:
        self.requests[request.id] = request
        return request

    async def save_artifact(self, key: str, content: bytes, content_type: str) -> None:
        self.artifacts[key] = content

    async def complete_request(self, request_id: str, result_url: str) -> DocumentRequest:
        request = self.requests[request_id].model_copy(
            update={
                "status": "completed",
                "result_url": result_url,
                "completed_at": utc_now(),
                "completed_by_name": "Workflow",
            }
        )
        self.requests[request_id] = request
        return request


def compile_fields(template: DocumentTemplate, payload: Any) -> List[Dict[str, Any]]:
    """Fill every template field from ``payload`` through its binding key."""
    compiled = []
    for field in template.fields:
        if field.type == "text":
            value = html_to_text(field.meta.get("html") or field.label or "")
        elif field.binding_key:
            value = render_value(resolve_path(payload, field.binding_key))
        else:
            value = ""
        compiled.append(
            {
                "type": field.type,
                "label": field.label,
                "bindingKey": field.binding_key,
                "value": value,
            }
        )
    return compiled


class CompileTemplateExecutor(StepExecutor):
    """Create a document request from a template and fill it from the trigger payload."""

    node_types = ("doc-compile-template",)

    def __init__(self, store: DocumentStore, app_base_url: str = "http://localhost:3000") -> None:
        self.store = store
        self.app_base_url = app_base_url.rstrip("/")

    async def execute(self, settings: Dict[str, Any], context: ExecutorContext) -> Any:
        template_id = require_setting(settings, "templateId", "Template")
        name = require_setting(settings, "requestName", "Request name")

        template = await self.store.get_template(context.company_id, template_id)
        if template is None:
            raise StepConfigurationError(f"Template {template_id} not found")

        request = await self.store.create_request(
            DocumentRequest(
                company_id=context.company_id,
                template_id=template_id,
                name=name,
                payload=context.trigger_payload,
            )
        )

        artifact = {
            "requestId": request.id,
            "templateId": template_id,
            "name": name,
            "fields": compile_fields(template, context.trigger_payload or {}),
        }
        key = f"document-requests/{request.id}/completed-{uuid.uuid4()}.json"
        await self.store.save_artifact(
            key, json.dumps(artifact, default=str).encode("utf-8"), "application/json"
        )
        request = await self.store.complete_request(request.id, key)
        logger.info(f"Run {context.run_id}: compiled document request {request.id}")

        path = f"/public/documents/{request.public_token}"
        return {
            "requestId": request.id,
            "templateId": template_id,
            "templateName": template.name,
            "publicToken": request.public_token,
            "path": path,
            "publicUrl": f"{self.app_base_url}{path}",
            "resultUrl": f"/api/document-requests/{request.id}/file",
            "status": request.status,
        }
