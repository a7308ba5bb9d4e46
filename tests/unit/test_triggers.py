import pytest

from stepwright.contracts import WorkflowDefinition
from stepwright.definitions import InMemoryDefinitionSource, StoredWorkflow
from stepwright.persistence import RunStatus
from stepwright.triggers import (
    FieldExtraction,
    FieldExtractor,
    InboundEmail,
    PatternFieldExtractor,
    TriggerIntake,
    collect_trigger_payload_keys,
    email_payload,
    match_keywords,
    match_recipient,
    normalize_inbound_email,
    normalize_inbound_slack,
    normalize_user_filter,
)


def _workflow(workflow_id, trigger, nodes=None, company_id="acme", status="active"):
    return StoredWorkflow(
        id=workflow_id,
        company_id=company_id,
        status=status,
        definition=WorkflowDefinition(
            trigger=trigger,
            nodes=nodes or [{"id": "A", "type": "noop"}],
        ),
    )


def test_normalize_nested_provider_payload():
    raw = {
        "type": "email.received",
        "data": {
            "email_id": "em_1",
            "from": "Ada Lovelace <ADA@Example.com>",
            "to": ["Orders <orders@acme.io>", "cc@acme.io"],
            "subject": "New order",
            "html": "<p>Order <b>42</b></p>",
            "fields": {"orderId": 42, "note": None},
        },
    }
    inbound = normalize_inbound_email(raw)
    assert inbound.from_ == "ada@example.com"
    assert inbound.to == ["orders@acme.io", "cc@acme.io"]
    assert inbound.subject == "New order"
    assert inbound.text == "Order 42"
    assert inbound.email_id == "em_1"
    assert inbound.fields == {"orderId": "42", "note": ""}


def test_normalize_flat_payload_and_garbage():
    inbound = normalize_inbound_email(
        {"sender": "bob@example.com", "recipient": "a@x.io, b@x.io", "text_body": "hi"}
    )
    assert inbound.from_ == "bob@example.com"
    assert inbound.to == ["a@x.io", "b@x.io"]
    assert inbound.text == "hi"
    assert normalize_inbound_email("not an email") is None


def test_match_recipient():
    assert match_recipient("orders@acme.io", ["orders@acme.io"])
    assert match_recipient("orders", ["orders@acme.io"])
    assert not match_recipient("sales", ["orders@acme.io"])
    assert not match_recipient("", ["orders@acme.io"])


def test_match_keywords_requires_all():
    assert match_keywords("Urgent order for ACME", "urgent, order")
    assert not match_keywords("Urgent request", "urgent, order")
    assert match_keywords("anything", None)


def test_collect_trigger_payload_keys():
    definition = WorkflowDefinition(
        nodes=[
            {
                "id": "A",
                "type": "slack-channel-message",
                "config": {
                    "settings": {
                        "message": "{{ trigger.payload.orderId }} for {{trigger.payload.customer}}",
                        "channel": "{{trigger.payload._email}}",
                    }
                },
            },
            {"id": "B", "type": "x", "config": {"items": ["{{trigger.payload.orderId}}"]}},
        ]
    )
    assert collect_trigger_payload_keys(definition) == ["orderId", "customer"]


def test_email_payload_with_field_meta_warnings():
    definition = WorkflowDefinition(
        trigger={
            "type": "email_inbound",
            "config": {
                "emailFieldMeta": [
                    {"key": "orderId", "required": True},
                    {"key": "vat", "required": True},
                    {"key": "note"},
                ]
            },
        }
    )
    inbound = InboundEmail(
        from_="ada@example.com",
        to=["orders@acme.io", "cc@acme.io"],
        subject="Order",
        text="body",
        fields={"orderId": "42"},
    )
    payload = email_payload(inbound, definition)
    assert payload["orderId"] == "42"
    assert payload["vat"] == ""
    assert payload["_warnings"] == ["Missing field: vat"]
    assert payload["_email"]["to"] == "orders@acme.io, cc@acme.io"
    assert payload["_email"]["from"] == "ada@example.com"


@pytest.mark.asyncio
async def test_document_completed_starts_matching_workflows(engine):
    definitions = InMemoryDefinitionSource(
        [
            _workflow("wf-doc", {"type": "document_completed", "config": {"templateId": "tpl-1"}}),
            _workflow("wf-other-tpl", {"type": "document_completed", "config": {"templateId": "tpl-2"}}),
            _workflow("wf-paused", {"type": "document_completed", "config": {"templateId": "tpl-1"}}, status="paused"),
            _workflow("wf-foreign", {"type": "document_completed", "config": {"templateId": "tpl-1"}}, company_id="other"),
        ]
    )
    intake = TriggerIntake(engine, definitions)

    run_ids = await intake.document_completed("acme", "tpl-1", {"name": "Ada"})

    assert len(run_ids) == 1
    run = await engine.repository.get_run(run_ids[0])
    assert run.workflow_id == "wf-doc"
    assert run.trigger_type == "document_completed"
    assert run.trigger_payload == {"name": "Ada"}
    assert run.status == RunStatus.COMPLETED


@pytest.mark.asyncio
async def test_email_inbound_filters_and_queues(engine):
    definitions = InMemoryDefinitionSource(
        [
            _workflow(
                "wf-orders",
                {
                    "type": "email_inbound",
                    "config": {"address": "orders", "subjectFilter": "order", "keywords": "urgent"},
                },
            ),
            _workflow("wf-support", {"type": "email_inbound", "config": {"address": "support@acme.io"}}),
            _workflow("wf-manual", {"type": "manual"}),
        ]
    )
    intake = TriggerIntake(engine, definitions)
    raw = {
        "from": "ada@example.com",
        "to": "orders@acme.io",
        "subject": "Order 42",
        "text": "This is urgent",
    }

    run_ids = await intake.email_inbound(raw, execute=False)

    assert len(run_ids) == 1
    run = await engine.repository.get_run(run_ids[0])
    assert run.workflow_id == "wf-orders"
    assert run.status == RunStatus.QUEUED
    assert run.trigger_payload["_email"]["subject"] == "Order 42"

    assert await intake.email_inbound({**raw, "text": "whenever"}) == []
    assert await intake.email_inbound(["not", "a", "dict"]) == []


def _slack_event(text="New lead: my name is Ada Lovelace, ada@example.com", **event):
    return {
        "type": "event_callback",
        "team_id": "T1",
        "event_id": "Ev1",
        "event": {
            "type": "message",
            "channel": "C1",
            "user": "U1",
            "text": text,
            "ts": "1700000000.1",
            **event,
        },
    }


def test_normalize_slack_event():
    inbound = normalize_inbound_slack(_slack_event())
    assert inbound.team_id == "T1"
    assert inbound.channel_id == "C1"
    assert inbound.user_id == "U1"
    assert inbound.ts == "1700000000.1"
    assert inbound.event_id == "Ev1"

    nested_team = {"authorizations": [{"team_id": "T9"}], "event": {"type": "app_mention", "channel": "C1", "user": "U1", "text": "hi"}}
    assert normalize_inbound_slack(nested_team).team_id == "T9"


@pytest.mark.parametrize(
    "raw",
    [
        {"type": "url_verification", "challenge": "abc"},
        _slack_event(bot_id="B1"),
        _slack_event(subtype="message_changed"),
        _slack_event(type="reaction_added"),
        _slack_event(text=""),
        {"event": {"type": "message", "channel": "C1", "user": "U1", "text": "no team"}},
        "not a dict",
    ],
)
def test_normalize_slack_ignores_non_user_messages(raw):
    assert normalize_inbound_slack(raw) is None


def test_normalize_user_filter():
    assert normalize_user_filter("<@U123>") == "U123"
    assert normalize_user_filter(" U123 ") == "U123"
    assert normalize_user_filter(None) == ""


@pytest.mark.asyncio
async def test_pattern_extractor_fills_email_and_name_keys():
    extraction = await PatternFieldExtractor().extract(
        ["customerEmail", "customerName", "orderId"],
        "Hello, my name is Ada Lovelace and my address is ada@example.com",
    )
    assert extraction.fields == {
        "customerEmail": "ada@example.com",
        "customerName": "Ada Lovelace",
        "orderId": "",
    }


SLACK_NODES = [
    {
        "id": "A",
        "type": "noop",
        "config": {"settings": {"text": "{{trigger.payload.customerName}} {{trigger.payload.customerEmail}}"}},
    }
]


@pytest.mark.asyncio
async def test_slack_inbound_filters_and_builds_payload(engine):
    definitions = InMemoryDefinitionSource(
        [
            _workflow(
                "wf-leads",
                {"type": "slack_message", "config": {"channelId": "C1", "userFilter": "<@U1>", "keywords": "lead"}},
                nodes=SLACK_NODES,
            ),
            _workflow("wf-any-channel", {"type": "slack_message", "config": {"channelId": "all", "keywords": "invoice"}}),
            _workflow("wf-other-user", {"type": "slack_message", "config": {"userFilter": "U2"}}),
            _workflow("wf-other-channel", {"type": "slack_message", "config": {"channelId": "C2"}}),
            _workflow("wf-foreign", {"type": "slack_message"}, company_id="other"),
            _workflow("wf-email", {"type": "email_inbound", "config": {"address": "x@acme.io"}}),
        ]
    )
    intake = TriggerIntake(engine, definitions, slack_teams={"T1": "acme", "T2": "other"})

    run_ids = await intake.slack_inbound(_slack_event(), execute=False)

    assert len(run_ids) == 1
    run = await engine.repository.get_run(run_ids[0])
    assert run.workflow_id == "wf-leads"
    assert run.company_id == "acme"
    assert run.trigger_type == "slack_message"
    assert run.status == RunStatus.QUEUED
    payload = run.trigger_payload
    assert payload["customerName"] == "Ada Lovelace"
    assert payload["customerEmail"] == "ada@example.com"
    assert payload["_slack"] == {
        "channel": "C1",
        "user": "U1",
        "text": "New lead: my name is Ada Lovelace, ada@example.com",
        "ts": "1700000000.1",
        "eventId": "Ev1",
    }
    assert payload["_warnings"] == []


@pytest.mark.asyncio
async def test_slack_inbound_skips_replayed_events(engine):
    definitions = InMemoryDefinitionSource([_workflow("wf-slack", {"type": "slack_message"})])
    intake = TriggerIntake(engine, definitions, slack_teams={"T1": "acme"})

    first = await intake.slack_inbound(_slack_event())
    replay = await intake.slack_inbound(_slack_event())

    assert len(first) == 1
    assert replay == []
    run = await engine.repository.get_run(first[0])
    assert run.status == RunStatus.COMPLETED


@pytest.mark.asyncio
async def test_slack_inbound_team_resolution(engine):
    definitions = InMemoryDefinitionSource([_workflow("wf-slack", {"type": "slack_message"})])

    single = TriggerIntake(engine, definitions, slack_teams={"T-other": "acme"})
    assert len(await single.slack_inbound(_slack_event(), execute=False)) == 1

    ambiguous = TriggerIntake(engine, definitions, slack_teams={"T2": "acme", "T3": "other"})
    assert await ambiguous.slack_inbound(_slack_event(), execute=False) == []

    unconnected = TriggerIntake(engine, definitions)
    assert await unconnected.slack_inbound(_slack_event(), execute=False) == []
    assert await unconnected.slack_inbound({"type": "url_verification"}) == []


@pytest.mark.asyncio
async def test_slack_inbound_uses_configured_extractor(engine):
    class FixedExtractor(FieldExtractor):
        def __init__(self):
            self.calls = []

        async def extract(self, keys, text):
            self.calls.append((keys, text))
            return FieldExtraction(fields={"orderId": "42"}, warnings=["ambiguous amount"])

    definitions = InMemoryDefinitionSource(
        [
            _workflow(
                "wf-orders",
                {
                    "type": "slack_message",
                    "config": {
                        "slackFieldMeta": [
                            {"key": "orderId", "required": True},
                            {"key": "amount", "required": True},
                        ]
                    },
                },
            )
        ]
    )
    extractor = FixedExtractor()
    intake = TriggerIntake(engine, definitions, slack_teams={"T1": "acme"}, extractor=extractor)

    (run_id,) = await intake.slack_inbound(_slack_event(text="order 42 please"), execute=False)

    assert extractor.calls == [(["orderId", "amount"], "order 42 please")]
    payload = (await engine.repository.get_run(run_id)).trigger_payload
    assert payload["orderId"] == "42"
    assert payload["amount"] == ""
    assert payload["_warnings"] == ["ambiguous amount", "Missing field: amount"]
