"""Tests for the Resend email transport."""

import json
from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest

from ritmo.db.enums import EmailStatus
from ritmo.db.models import CadenceEvent, EmailLog
from ritmo.services import cadence_service
from ritmo.services.email_transport import (
    ERROR_EMAIL_NOT_CONFIGURED,
    ERROR_TEMPLATE_NOT_FOUND,
    ResendEmailTransport,
    render_template,
)

SENT_AT = datetime(2024, 1, 2, 10, 0, tzinfo=timezone.utc)
VARIABLES = {
    "contact_name": "Ana Silva",
    "quote_title": "Office fit-out",
    "quote_reference": "Q-001",
    "quote_value": "1500.00",
}


def test_render_template_replaces_known_and_blanks_unknown():
    subject, body = render_template("Re: {{quote_title}}", "Hi {{contact_name}} {{missing}}!", VARIABLES)
    assert subject == "Re: Office fit-out"
    assert body == "Hi Ana Silva !"


@pytest.fixture
def event(db, test_org, test_quote, cadence_config) -> CadenceEvent:
    result = cadence_service.generate_cadence_events(
        db, test_quote.id, test_org.id, SENT_AT, Decimal("1500"), config=cadence_config
    )
    return min(result.events, key=lambda e: e.scheduled_for)


def _transport(db, handler, api_key="re_test"):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return ResendEmailTransport(db, api_key=api_key, from_email="vendas@example.com", client=client)


def _send(transport, event, org_id):
    return transport.send_templated_email(
        organization_id=org_id,
        cadence_event_id=event.id,
        template_code="T2",
        recipient="ana@silva.example",
        variables=VARIABLES,
    )


def test_send_success_logs_email(db, test_org, event, email_templates):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["headers"] = request.headers
        seen["payload"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "msg_123"})

    result = _send(_transport(db, handler), event, test_org.id)
    db.commit()

    assert result.success is True
    assert result.message_id == "msg_123"
    assert seen["headers"]["Idempotency-Key"] == f"cadence-event/{event.id}"
    assert seen["headers"]["Authorization"] == "Bearer re_test"
    assert seen["payload"]["subject"] == "T2: Office fit-out"
    assert seen["payload"]["to"] == ["ana@silva.example"]
    assert "Ana Silva" in seen["payload"]["text"]

    log = db.query(EmailLog).filter(EmailLog.cadence_event_id == event.id).one()
    assert log.status == EmailStatus.SENT.value
    assert log.provider_message_id == "msg_123"


def test_conflict_is_treated_as_already_sent(db, test_org, event, email_templates):
    result = _send(_transport(db, lambda _r: httpx.Response(409, json={})), event, test_org.id)
    assert result.success is True


def test_replay_after_logged_send_skips_delivery(db, test_org, event, email_templates):
    calls = {"count": 0}

    def handler(request):
        calls["count"] += 1
        return httpx.Response(200, json={"id": "msg_1"})

    transport = _transport(db, handler)
    _send(transport, event, test_org.id)
    db.commit()
    result = _send(transport, event, test_org.id)

    assert result.success is True
    assert result.message_id == "msg_1"
    assert calls["count"] == 1


def test_missing_template_is_permanent(db, test_org, event):
    result = _send(_transport(db, lambda _r: httpx.Response(200, json={})), event, test_org.id)
    assert result.success is False
    assert result.permanent is True
    assert result.error == ERROR_TEMPLATE_NOT_FOUND


def test_missing_api_key_is_permanent(db, test_org, event, email_templates):
    result = _send(_transport(db, lambda _r: httpx.Response(200, json={}), api_key=""), event, test_org.id)
    assert result.success is False
    assert result.permanent is True
    assert result.error == ERROR_EMAIL_NOT_CONFIGURED


@pytest.mark.parametrize("status,permanent", [(500, False), (429, False), (422, True), (401, True)])
def test_api_errors_are_classified(db, test_org, event, email_templates, status, permanent):
    handler = lambda _r: httpx.Response(status, json={"message": "nope"})  # noqa: E731

    result = _send(_transport(db, handler), event, test_org.id)
    db.commit()

    assert result.success is False
    assert result.permanent is permanent
    assert result.error == f"Resend API error: {status} (nope)"
    log = db.query(EmailLog).filter(EmailLog.cadence_event_id == event.id).one()
    assert log.status == EmailStatus.FAILED.value


def test_timeout_is_transient(db, test_org, event, email_templates):
    def handler(request):
        raise httpx.ConnectTimeout("slow", request=request)

    result = _send(_transport(db, handler), event, test_org.id)

    assert result.success is False
    assert result.permanent is False
    assert result.error == "Connection timeout"
