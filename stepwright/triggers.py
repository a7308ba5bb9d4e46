"""Trigger intake: turn external events into workflow runs."""

from __future__ import annotations

import abc
import asyncio
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .contracts import WorkflowDefinition
from .definitions import DefinitionSource, StoredWorkflow
from .execute import RunExecutor
from .executors.documents import html_to_text

logger = logging.getLogger(__name__)

DOCUMENT_COMPLETED = "document_completed"
EMAIL_INBOUND = "email_inbound"
SLACK_MESSAGE = "slack_message"

_EMAIL_RE = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)
_TRIGGER_TOKEN_RE = re.compile(r"\{\{\s*trigger\.payload\.([^}\s]+)\s*\}\}")
_NAME_PATTERNS = [
    re.compile(rf"\b(?i:{prefix})\s*([A-Z][\w'.-]*(?:[ \t]+[A-Z][\w'.-]*){{0,3}})")
    for prefix in (
        r"my name is",
        r"customer is",
        r"customer:",
        r"name:",
        r"mi chiamo",
        r"il cliente (?:è|e)",
    )
]

_FROM_KEYS = ("from", "sender", "from_email", "fromEmail")
_TO_KEYS = ("to", "recipient", "recipients", "rcpt")
_SUBJECT_KEYS = ("subject", "Subject", "email_subject")
_ID_KEYS = ("email_id", "emailId", "id")
_TEXT_KEYS = (
    "text",
    "text_body",
    "text_plain",
    "plain",
    "body",
    "body_plain",
    "stripped_text",
    "content",
)
_HTML_KEYS = ("html", "html_body", "body_html", "stripped_html")
_NESTED_KEYS = ("email", "message", "mail", "data", "payload", "body")


class InboundEmail(BaseModel):
    """Provider-independent shape of a received e-mail."""

    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(default="", alias="from")
    to: List[str] = Field(default_factory=list)
    subject: str = ""
    text: str = ""
    html: Optional[str] = None
    email_id: Optional[str] = None
    fields: Dict[str, str] = Field(default_factory=dict)
    raw: Any = None


def extract_address(value: str) -> str:
    match = _EMAIL_RE.search(value)
    return (match.group(0) if match else value).strip().lower()


def parse_recipients(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return [address for item in value for address in parse_recipients(item)]
    if isinstance(value, str):
        return [extract_address(item) for item in value.split(",") if item.strip()]
    if isinstance(value, dict) and isinstance(value.get("address"), str):
        return [extract_address(value["address"])]
    return []


def _pick(sources: Iterable[Dict[str, Any]], keys: Iterable[str]) -> str:
    keys = tuple(keys)
    for source in sources:
        for key in keys:
            value = source.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return ""


def normalize_inbound_email(raw: Any) -> Optional[InboundEmail]:
    """Flatten an inbound e-mail webhook into an ``InboundEmail``.

    Returns ``None`` when ``raw`` does not look like an e-mail payload.
    """
    if not isinstance(raw, dict):
        return None
    record = raw.get("data", raw)
    if not isinstance(record, dict):
        return None

    nested = [record[key] for key in _NESTED_KEYS if isinstance(record.get(key), dict)]
    sources = [record, *nested]

    sender = _pick(sources, _FROM_KEYS)
    recipients = next((record[key] for key in _TO_KEYS if record.get(key)), None)
    html = _pick(sources, _HTML_KEYS) or None
    text = _pick(sources, _TEXT_KEYS) or (html_to_text(html) if html else "")
    fields = record.get("fields") if isinstance(record.get("fields"), dict) else {}

    return InboundEmail(
        from_=extract_address(sender) if sender else "",
        to=parse_recipients(recipients),
        subject=_pick(sources, _SUBJECT_KEYS),
        text=text,
        html=html,
        email_id=_pick(sources, _ID_KEYS) or None,
        fields={str(k): "" if v is None else str(v) for k, v in fields.items()},
        raw=raw,
    )


def collect_trigger_payload_keys(definition: WorkflowDefinition) -> List[str]:
    """Payload keys referenced as ``{{trigger.payload.<key>}}`` in node configs."""
    keys: Dict[str, None] = {}

    def _collect(value: Any) -> None:
        if isinstance(value, str):
            for match in _TRIGGER_TOKEN_RE.finditer(value):
                keys.setdefault(match.group(1).strip(), None)
        elif isinstance(value, (list, tuple)):
            for item in value:
                _collect(item)
        elif isinstance(value, dict):
            for item in value.values():
                _collect(item)

    for node in definition.nodes:
        _collect(node.config)
    return [key for key in keys if key and not key.startswith("_")]


def match_recipient(address: str, recipients: List[str]) -> bool:
    if not address.strip():
        return False
    normalized = extract_address(address)
    if "@" in normalized:
        return normalized in recipients
    return any(recipient.startswith(f"{normalized}@") for recipient in recipients)


def match_filter(value: str, pattern: Any) -> bool:
    if not isinstance(pattern, str) or not pattern.strip():
        return True
    return pattern.strip().lower() in value.lower()


def match_keywords(text: str, keywords: Any) -> bool:
    if not isinstance(keywords, str):
        return True
    wanted = [item.strip().lower() for item in keywords.split(",") if item.strip()]
    lowered = text.lower()
    return all(keyword in lowered for keyword in wanted)


def expected_keys(
    definition: WorkflowDefinition, fields_key: str, meta_key: str
) -> tuple[List[str], List[Dict[str, Any]]]:
    """Payload keys a trigger should fill, plus the field metadata they came from.

    Keys come from ``config[fields_key]``, then ``config[meta_key][].key``,
    then the ``{{trigger.payload.<key>}}`` tokens used by the nodes.
    """
    config = definition.trigger.config
    field_meta = [
        item
        for item in config.get(meta_key) or []
        if isinstance(item, dict) and item.get("key")
    ]
    listed = [key for key in config.get(fields_key) or [] if key]

    if listed:
        keys = listed
    elif field_meta:
        keys = [item["key"] for item in field_meta]
    else:
        keys = collect_trigger_payload_keys(definition)
    return list(dict.fromkeys(keys)), field_meta


def missing_field_warnings(
    field_meta: List[Dict[str, Any]], fields: Dict[str, str]
) -> List[str]:
    return [
        f"Missing field: {item['key']}"
        for item in field_meta
        if item.get("required") and not str(fields.get(item["key"], "")).strip()
    ]


def email_payload(inbound: InboundEmail, definition: WorkflowDefinition) -> Dict[str, Any]:
    """Build the trigger payload of an e-mail run for ``definition``."""
    keys, field_meta = expected_keys(definition, "emailFields", "emailFieldMeta")
    fields = {key: inbound.fields.get(key, "") for key in keys}
    return {
        **fields,
        "_email": {
            "id": inbound.email_id,
            "from": inbound.from_,
            "to": ", ".join(inbound.to),
            "subject": inbound.subject,
            "text": inbound.text,
            "html": inbound.html,
        },
        "_warnings": missing_field_warnings(field_meta, fields),
    }


class InboundSlackMessage(BaseModel):
    """A Slack message event addressed to a connected workspace."""

    team_id: str
    channel_id: str
    user_id: str
    text: str
    ts: Optional[str] = None
    event_id: Optional[str] = None
    raw: Any = None


def _slack_team_id(envelope: Dict[str, Any], event: Dict[str, Any]) -> str:
    team = envelope.get("team")
    authorizations = envelope.get("authorizations")
    candidates = [
        envelope.get("team_id"),
        event.get("team"),
        team.get("id") if isinstance(team, dict) else None,
        authorizations[0].get("team_id")
        if isinstance(authorizations, list) and authorizations and isinstance(authorizations[0], dict)
        else None,
    ]
    return next((value for value in candidates if isinstance(value, str) and value), "")


def normalize_inbound_slack(raw: Any) -> Optional[InboundSlackMessage]:
    """Turn a Slack Events API envelope into an ``InboundSlackMessage``.

    Returns ``None`` for anything that should not start runs: verification
    handshakes, bot posts, edits and other subtypes, events other than
    ``message``/``app_mention``, and messages without text, user or channel.
    """
    if not isinstance(raw, dict) or raw.get("type") == "url_verification":
        return None
    event = raw.get("event")
    if not isinstance(event, dict) or not event.get("type"):
        return None
    team_id = _slack_team_id(raw, event)
    if not team_id or event.get("subtype") or event.get("bot_id"):
        return None
    if event["type"] not in ("message", "app_mention"):
        return None

    text = event.get("text") or ""
    user_id = event.get("user") or ""
    channel_id = event.get("channel") or ""
    if not (text and user_id and channel_id):
        return None
    return InboundSlackMessage(
        team_id=team_id,
        channel_id=channel_id,
        user_id=user_id,
        text=text,
        ts=event.get("ts") or None,
        event_id=raw.get("event_id") or None,
        raw=raw,
    )


def normalize_user_filter(value: Any) -> str:
    """Strip Slack mention markup: ``<@U123>`` becomes ``U123``."""
    if not isinstance(value, str):
        return ""
    text = value.strip()
    if text.startswith("<@"):
        text = text[2:]
    if text.endswith(">"):
        text = text[:-1]
    return text


class FieldExtraction(BaseModel):
    fields: Dict[str, str] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list)


class FieldExtractor(metaclass=abc.ABCMeta):
    """Pulls payload fields out of free text."""

    @abc.abstractmethod
    async def extract(self, keys: List[str], text: str) -> FieldExtraction:
        raise NotImplementedError


class PatternFieldExtractor(FieldExtractor):
    """Fills e-mail and name keys from the text with regular expressions."""

    async def extract(self, keys: List[str], text: str) -> FieldExtraction:
        fields = {}
        for key in keys:
            lower = key.lower()
            if "email" in lower:
                match = _EMAIL_RE.search(text)
                fields[key] = match.group(0) if match else ""
            elif "name" in lower or "nome" in lower:
                fields[key] = guess_name(text)
            else:
                fields[key] = ""
        return FieldExtraction(fields=fields)


def guess_name(text: str) -> str:
    for pattern in _NAME_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1).strip().rstrip(".")
    return ""


def slack_payload(
    inbound: InboundSlackMessage,
    extraction: FieldExtraction,
    keys: List[str],
    field_meta: List[Dict[str, Any]],
) -> Dict[str, Any]:
    """Build the trigger payload of a Slack run from the extracted fields."""
    fields = {key: extraction.fields.get(key) or "" for key in keys}
    return {
        **fields,
        "_slack": {
            "channel": inbound.channel_id,
            "user": inbound.user_id,
            "text": inbound.text,
            "ts": inbound.ts,
            "eventId": inbound.event_id,
        },
        "_warnings": [*extraction.warnings, *missing_field_warnings(field_meta, fields)],
    }


class TriggerIntake:
    """Matches events against active workflows and starts a run for each match.

    ``slack_teams`` maps Slack workspace (team) ids to company ids. A single
    mapping is used for every workspace.
    """

    def __init__(
        self,
        executor: RunExecutor,
        definitions: DefinitionSource,
        slack_teams: Optional[Dict[str, str]] = None,
        extractor: Optional[FieldExtractor] = None,
    ) -> None:
        self.executor = executor
        self.definitions = definitions
        self.slack_teams = dict(slack_teams or {})
        self.extractor = extractor or PatternFieldExtractor()

    async def document_completed(
        self,
        company_id: str,
        template_id: str,
        payload: Dict[str, Any],
        execute: bool = True,
    ) -> List[str]:
        workflows = await self.definitions.list_workflows(company_id=company_id)
        matching = [
            workflow
            for workflow in workflows
            if workflow.definition.trigger.type == DOCUMENT_COMPLETED
            and workflow.definition.trigger.config.get("templateId") == template_id
        ]
        launched = [
            (workflow, await self._start(workflow, payload, DOCUMENT_COMPLETED, company_id))
            for workflow in matching
        ]
        return await self._finish(launched, execute)

    async def email_inbound(
        self, inbound: Union[InboundEmail, Dict[str, Any]], execute: bool = True
    ) -> List[str]:
        if not isinstance(inbound, InboundEmail):
            normalized = normalize_inbound_email(inbound)
            if normalized is None:
                logger.warning("Ignoring inbound e-mail payload that is not an object")
                return []
            inbound = normalized

        launched = []
        for workflow in await self.definitions.list_workflows():
            trigger = workflow.definition.trigger
            if trigger.type != EMAIL_INBOUND:
                continue
            config = trigger.config
            if not match_recipient(str(config.get("address") or ""), inbound.to):
                continue
            if not match_filter(inbound.from_, config.get("fromFilter")):
                continue
            if not match_filter(inbound.subject, config.get("subjectFilter")):
                continue
            if not match_keywords(f"{inbound.subject}\n{inbound.text}", config.get("keywords")):
                continue
            payload = email_payload(inbound, workflow.definition)
            run_id = await self._start(workflow, payload, EMAIL_INBOUND, workflow.company_id)
            launched.append((workflow, run_id))
        return await self._finish(launched, execute)

    async def slack_inbound(
        self, inbound: Union[InboundSlackMessage, Dict[str, Any]], execute: bool = True
    ) -> List[str]:
        if not isinstance(inbound, InboundSlackMessage):
            normalized = normalize_inbound_slack(inbound)
            if normalized is None:
                logger.debug("Ignoring Slack event that is not a user message")
                return []
            inbound = normalized

        company_id = self.company_for_team(inbound.team_id)
        if company_id is None:
            logger.warning(f"No company connected to Slack team {inbound.team_id}")
            return []

        launched = []
        for workflow in await self.definitions.list_workflows(company_id=company_id):
            trigger = workflow.definition.trigger
            if trigger.type != SLACK_MESSAGE:
                continue
            config = trigger.config
            channel = config.get("channelId") or ""
            if channel and channel != "all" and channel != inbound.channel_id:
                continue
            user = normalize_user_filter(config.get("userFilter"))
            if user and user != inbound.user_id:
                continue
            if not match_keywords(inbound.text, config.get("keywords")):
                continue
            if inbound.event_id and await self._seen_slack_event(workflow.id, inbound.event_id):
                logger.info(f"Slack event {inbound.event_id} already started workflow {workflow.id}")
                continue

            keys, field_meta = expected_keys(workflow.definition, "slackFields", "slackFieldMeta")
            extraction = (
                await self.extractor.extract(keys, inbound.text) if keys else FieldExtraction()
            )
            payload = slack_payload(inbound, extraction, keys, field_meta)
            run_id = await self._start(workflow, payload, SLACK_MESSAGE, company_id)
            launched.append((workflow, run_id))
        return await self._finish(launched, execute)

    def company_for_team(self, team_id: str) -> Optional[str]:
        if team_id in self.slack_teams:
            return self.slack_teams[team_id]
        if len(self.slack_teams) == 1:
            return next(iter(self.slack_teams.values()))
        return None

    async def _seen_slack_event(self, workflow_id: str, event_id: str) -> bool:
        for run in await self.executor.repository.list_runs(workflow_id):
            payload = run.trigger_payload
            if (
                run.trigger_type == SLACK_MESSAGE
                and isinstance(payload, dict)
                and (payload.get("_slack") or {}).get("eventId") == event_id
            ):
                return True
        return False

    async def _start(
        self,
        workflow: StoredWorkflow,
        payload: Dict[str, Any],
        trigger_type: str,
        company_id: Optional[str],
    ) -> str:
        run = await self.executor.start_run(
            workflow.definition,
            payload,
            workflow_id=workflow.id,
            company_id=company_id,
            trigger_type=trigger_type,
        )
        logger.info(f"{trigger_type} started run {run.id} of workflow {workflow.id}")
        return run.id

    async def _finish(self, launched: List[tuple[StoredWorkflow, str]], execute: bool) -> List[str]:
        if execute and launched:
            await asyncio.gather(
                *(
                    self.executor.execute_run(run_id, workflow.definition)
                    for workflow, run_id in launched
                )
            )
        return [run_id for _, run_id in launched]
