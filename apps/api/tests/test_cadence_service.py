"""Tests for cadence generation, resends, and cancellation."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from ritmo.db.enums import (
    CadenceEventStatus,
    CadenceEventType,
    CallPriority,
    CancelReason,
    RitmoStage,
)
from ritmo.db.models import CadenceEvent
from ritmo.services import cadence_service

SENT_AT = datetime(2024, 1, 2, 10, 0, tzinfo=timezone.utc)  # Tuesday


def _events(db, quote_id, run_id=None):
    query = db.query(CadenceEvent).filter(CadenceEvent.quote_id == quote_id)
    if run_id is not None:
        query = query.filter(CadenceEvent.cadence_run_id == run_id)
    return query.order_by(CadenceEvent.cadence_run_id, CadenceEvent.scheduled_for).all()


def test_generate_creates_four_events_on_business_days(db, test_quote, cadence_config):
    result = cadence_service.generate_cadence_events(
        db,
        quote_id=test_quote.id,
        organization_id=test_quote.organization_id,
        sent_at=SENT_AT,
        quote_value=Decimal("1500"),
        config=cadence_config,
        now=SENT_AT,
    )

    assert result.run_id == 1
    assert result.events_created == 4

    events = _events(db, test_quote.id)
    assert [(e.event_type, e.scheduled_for) for e in events] == [
        (CadenceEventType.EMAIL_D1.value, datetime(2024, 1, 3, 9, 0, tzinfo=timezone.utc)),
        (CadenceEventType.EMAIL_D3.value, datetime(2024, 1, 5, 9, 0, tzinfo=timezone.utc)),
        (CadenceEventType.CALL_D7.value, datetime(2024, 1, 11, 9, 0, tzinfo=timezone.utc)),
        (CadenceEventType.EMAIL_D14.value, datetime(2024, 1, 22, 9, 0, tzinfo=timezone.utc)),
    ]
    assert all(e.status == CadenceEventStatus.SCHEDULED.value for e in events)
    assert all(e.cadence_run_id == 1 for e in events)
    assert [e.priority for e in events] == [None, None, CallPriority.HIGH.value, None]

    db.refresh(test_quote)
    assert test_quote.cadence_run_id == 1
    assert test_quote.ritmo_stage == RitmoStage.FUP_D1.value
    assert test_quote.first_sent_at == SENT_AT
    assert test_quote.sent_at == SENT_AT
    assert test_quote.last_activity_at == SENT_AT


@pytest.mark.parametrize(
    "value,expected",
    [
        (Decimal("999.99"), CallPriority.LOW),
        (Decimal("1000"), CallPriority.HIGH),
        (None, CallPriority.LOW),
    ],
)
def test_resolve_priority_threshold_is_inclusive(value, expected):
    assert cadence_service.resolve_priority(value, 1000) == expected


def test_org_priority_threshold_overrides_global(db, test_org, test_quote, cadence_config):
    test_org.priority_threshold = Decimal("5000")
    db.commit()

    cadence_service.generate_cadence_events(
        db,
        test_quote.id,
        test_org.id,
        SENT_AT,
        Decimal("1500"),
        config=cadence_config,
    )

    call = next(e for e in _events(db, test_quote.id) if e.event_type == CadenceEventType.CALL_D7.value)
    assert call.priority == CallPriority.LOW.value


def test_explicit_timezone_moves_anchor(db, test_org, test_quote, cadence_config):
    result = cadence_service.generate_cadence_events(
        db,
        test_quote.id,
        test_org.id,
        SENT_AT,
        Decimal("10"),
        timezone="America/New_York",
        config=cadence_config,
    )

    first = min(result.events, key=lambda e: e.scheduled_for)
    assert first.scheduled_for == datetime(2024, 1, 3, 14, 0, tzinfo=timezone.utc)


def test_resend_cancels_previous_run(db, test_org, test_quote, cadence_config):
    cadence_service.generate_cadence_events(
        db, test_quote.id, test_org.id, SENT_AT, Decimal("1500"), config=cadence_config
    )
    resent_at = datetime(2024, 1, 4, 10, 0, tzinfo=timezone.utc)

    result = cadence_service.generate_cadence_events(
        db, test_quote.id, test_org.id, resent_at, Decimal("1500"), config=cadence_config
    )

    assert result.run_id == 2
    run_1 = _events(db, test_quote.id, run_id=1)
    assert len(run_1) == 4
    assert all(e.status == CadenceEventStatus.CANCELLED.value for e in run_1)
    assert all(e.cancel_reason == CancelReason.RESENT.value for e in run_1)

    run_2 = _events(db, test_quote.id, run_id=2)
    assert len(run_2) == 4
    assert all(e.status == CadenceEventStatus.SCHEDULED.value for e in run_2)
    assert run_2[0].scheduled_for == datetime(2024, 1, 5, 9, 0, tzinfo=timezone.utc)

    db.refresh(test_quote)
    assert test_quote.cadence_run_id == 2
    assert test_quote.ritmo_stage == RitmoStage.FUP_D1.value
    assert test_quote.first_sent_at == SENT_AT  # immutable
    assert test_quote.sent_at == resent_at


def test_resend_leaves_in_flight_events_to_claim_processor(db, test_org, test_quote, cadence_config):
    cadence_service.generate_cadence_events(
        db, test_quote.id, test_org.id, SENT_AT, Decimal("1500"), config=cadence_config
    )
    in_flight = _events(db, test_quote.id)[0]
    in_flight.status = CadenceEventStatus.CLAIMED.value
    in_flight.claimed_by = "worker-a"
    in_flight.claimed_at = SENT_AT
    db.commit()

    cadence_service.generate_cadence_events(
        db, test_quote.id, test_org.id, SENT_AT, Decimal("1500"), config=cadence_config
    )

    db.refresh(in_flight)
    assert in_flight.status == CadenceEventStatus.CLAIMED.value
    assert in_flight.cancel_reason is None


def test_generate_twice_creates_two_runs(db, test_org, test_quote, cadence_config):
    for _ in range(2):
        cadence_service.generate_cadence_events(
            db, test_quote.id, test_org.id, SENT_AT, Decimal("1500"), config=cadence_config
        )

    assert len(_events(db, test_quote.id)) == 8
    live = [e for e in _events(db, test_quote.id) if e.status == CadenceEventStatus.SCHEDULED.value]
    assert {e.cadence_run_id for e in live} == {2}


def test_unknown_quote_raises(db, test_org, cadence_config):
    import uuid

    with pytest.raises(cadence_service.QuoteNotFoundError):
        cadence_service.generate_cadence_events(
            db, uuid.uuid4(), test_org.id, SENT_AT, Decimal("1"), config=cadence_config
        )
    assert db.query(CadenceEvent).count() == 0


def test_generation_is_all_or_nothing(db, test_org, test_quote, cadence_config, monkeypatch):
    def boom(_db, _quote_id):
        raise RuntimeError("integrity check failed")

    monkeypatch.setattr(cadence_service, "assert_single_live_run", boom)

    with pytest.raises(RuntimeError):
        cadence_service.generate_cadence_events(
            db, test_quote.id, test_org.id, SENT_AT, Decimal("1500"), config=cadence_config
        )

    assert db.query(CadenceEvent).count() == 0
    db.refresh(test_quote)
    assert test_quote.cadence_run_id == 0
    assert test_quote.ritmo_stage == RitmoStage.NONE.value
    assert test_quote.first_sent_at is None


def test_mark_quote_sent_sets_status_and_generates(db, test_org, quote_factory, test_contact, cadence_config):
    quote = quote_factory(test_org, test_contact, business_status="draft")

    result = cadence_service.mark_quote_sent(db, quote.id, test_org.id, sent_at=SENT_AT, config=cadence_config)

    assert result.run_id == 1
    db.refresh(quote)
    assert quote.business_status == "sent"
    assert quote.ritmo_stage == RitmoStage.FUP_D1.value


def test_cancel_pending_cadence_stops_quote(db, test_org, test_quote, cadence_config):
    cadence_service.generate_cadence_events(
        db, test_quote.id, test_org.id, SENT_AT, Decimal("1500"), config=cadence_config
    )
    first = _events(db, test_quote.id)[0]
    first.status = CadenceEventStatus.SENT.value
    db.commit()

    result = cadence_service.cancel_pending_cadence(db, test_quote.id)

    assert result.cancelled_count == 3
    events = _events(db, test_quote.id)
    assert events[0].status == CadenceEventStatus.SENT.value
    assert all(e.status == CadenceEventStatus.CANCELLED.value for e in events[1:])
    assert all(e.cancel_reason == CancelReason.STATUS_CHANGED.value for e in events[1:])
    db.refresh(test_quote)
    assert test_quote.ritmo_stage == RitmoStage.STOPPED.value


def test_cancel_pending_cadence_manual_reason(db, test_org, test_quote, cadence_config):
    cadence_service.generate_cadence_events(
        db, test_quote.id, test_org.id, SENT_AT, Decimal("1500"), config=cadence_config
    )

    cadence_service.cancel_pending_cadence(db, test_quote.id, reason=CancelReason.MANUAL)

    assert {e.cancel_reason for e in _events(db, test_quote.id)} == {CancelReason.MANUAL.value}


def test_assert_single_live_run_reports_violation(db, test_org, test_quote, monkeypatch):
    import sentry_sdk

    captured = []
    monkeypatch.setattr(sentry_sdk, "capture_exception", lambda exc: captured.append(exc))

    for run_id in (1, 2):
        db.add(
            CadenceEvent(
                quote_id=test_quote.id,
                organization_id=test_org.id,
                cadence_run_id=run_id,
                event_type=CadenceEventType.EMAIL_D1.value,
                scheduled_for=SENT_AT,
            )
        )
    db.commit()

    with pytest.raises(cadence_service.CadenceIntegrityError):
        cadence_service.assert_single_live_run(db, test_quote.id)
    assert len(captured) == 1
