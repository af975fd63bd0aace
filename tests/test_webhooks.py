"""Webhook idempotency, failure recording, and the retry sweep."""

from datetime import datetime, timedelta, timezone

import pytest

from tradein.common.clock import as_utc
from tradein.services.tradein.schemas import Actor, ManualEvaluation, SubmitTradeInRequest
from tradein.services.tradein.service import TradeInService
from tradein.services.webhooks.handlers import TradeInWebhookHandlers
from tradein.services.webhooks.schemas import (
    CreditNoteIssuedWebhook,
    EvaluationCompletedWebhook,
    OfferAcceptedWebhook,
)
from tradein.services.webhooks.service import WebhookService, retry_delay

STAMP = datetime(2026, 3, 2, 9, 30, 15, tzinfo=timezone.utc)


@pytest.fixture
def webhooks(session_factory, clock):
    return WebhookService(session_factory, clock=clock, max_retries=3)


@pytest.fixture
def trade_ins(session_factory, clock):
    return TradeInService(session_factory, clock=clock)


@pytest.fixture
def handlers(session_factory, webhooks, trade_ins):
    return TradeInWebhookHandlers(session_factory, webhooks, trade_ins)


def submitted(trade_ins):
    return trade_ins.submit(
        SubmitTradeInRequest(
            owner_id="cust-1",
            device_brand="Apple",
            device_model="iPhone 13",
            photo_urls=["https://cdn.example/1.jpg"],
        )
    )


def test_event_ids_are_deterministic():
    assert EvaluationCompletedWebhook(
        trade_in_case_id=7, offered_amount_cents=1, condition_grade="A", timestamp=STAMP
    ).event_id == "evaluation_completed_7_20260302093015"
    assert OfferAcceptedWebhook(
        trade_in_case_id=7, user_id="u", accepted_amount_cents=1, timestamp=STAMP
    ).event_id == "offer_accepted_7_20260302093015"
    assert CreditNoteIssuedWebhook(credit_note_id=3, timestamp=STAMP).event_id == "credit_note_3_20260302093015"


def test_retry_delay_doubles():
    assert [retry_delay(n) for n in (1, 2, 3, 4)] == [timedelta(minutes=m) for m in (1, 2, 4, 8)]


def test_handler_runs_once_per_event(webhooks):
    calls = []

    def handler():
        calls.append(1)
        return True

    assert webhooks.process_webhook("evt-1", "TEST", "unit", {"a": 1}, handler) is True
    assert webhooks.process_webhook("evt-1", "TEST", "unit", {"a": 1}, handler) is True

    assert len(calls) == 1
    event = webhooks.get_status("evt-1")
    assert event.status == "PROCESSED"
    assert event.processed_at is not None


def test_failure_is_recorded_with_backoff(webhooks, clock):
    def boom():
        raise RuntimeError("downstream unavailable")

    assert webhooks.process_webhook("evt-2", "TEST", "unit", {}, boom) is False

    event = webhooks.get_status("evt-2")
    assert event.status == "FAILED"
    assert event.retry_count == 1
    assert as_utc(event.next_retry_at) == clock() + timedelta(minutes=1)
    assert "downstream unavailable" in event.error_message


def test_failed_event_can_be_redelivered_until_exhausted(webhooks):
    outcomes = [False, False, False, True]
    for _ in range(3):
        assert webhooks.process_webhook("evt-3", "TEST", "unit", {}, lambda: outcomes.pop(0)) is False

    assert webhooks.get_status("evt-3").retry_count == 3
    # Exhausted: the handler is no longer invoked.
    assert webhooks.process_webhook("evt-3", "TEST", "unit", {}, lambda: outcomes.pop(0)) is False
    assert outcomes == [True]


def crash_after_claim(webhooks, event_id):
    """Leave the event PROCESSING as a process that died mid-handler would."""

    assert webhooks._claim(event_id, "TEST", "unit", {}, {}) is None


def test_abandoned_claim_is_taken_over_after_timeout(webhooks, clock):
    calls = []

    def handler():
        calls.append(1)
        return True

    crash_after_claim(webhooks, "evt-4")
    assert webhooks.process_webhook("evt-4", "TEST", "unit", {}, handler) is False
    clock.advance(seconds=webhooks.claim_timeout.total_seconds() - 1)
    assert webhooks.process_webhook("evt-4", "TEST", "unit", {}, handler) is False
    assert calls == []

    clock.advance(seconds=2)
    assert webhooks.process_webhook("evt-4", "TEST", "unit", {}, handler) is True
    assert webhooks.process_webhook("evt-4", "TEST", "unit", {}, handler) is True

    assert len(calls) == 1
    event = webhooks.get_status("evt-4")
    assert event.status == "PROCESSED"
    # The lost attempt counts against the retry budget.
    assert event.retry_count == 1


def test_retry_sweep_picks_up_abandoned_claims(webhooks, clock):
    calls = []

    def resolve(event):
        return lambda: calls.append(event.event_id) or True

    crash_after_claim(webhooks, "evt-5")
    assert webhooks.retry_due(resolve) == 0

    clock.advance(seconds=webhooks.claim_timeout.total_seconds() + 1)
    assert webhooks.retry_due(resolve) == 1
    assert webhooks.retry_due(resolve) == 0

    assert calls == ["evt-5"]
    assert webhooks.get_status("evt-5").status == "PROCESSED"


def test_repeatedly_abandoned_claim_ends_failed(webhooks, clock):
    timeout = webhooks.claim_timeout.total_seconds() + 1
    for _ in range(4):
        crash_after_claim(webhooks, "evt-6")
        clock.advance(seconds=timeout)
    assert webhooks.get_status("evt-6").retry_count == 3

    assert webhooks.process_webhook("evt-6", "TEST", "unit", {}, lambda: pytest.fail("handler ran")) is False

    event = webhooks.get_status("evt-6")
    assert event.status == "FAILED"
    assert event.error_message == "claim abandoned"
    assert webhooks.retry_due(lambda event: lambda: True) == 0


def test_evaluation_webhook_sends_offer_once(handlers, trade_ins):
    trade_in = submitted(trade_ins)
    webhook = EvaluationCompletedWebhook(
        trade_in_case_id=trade_in.id,
        offered_amount_cents=900_000,
        condition_grade="B",
        evaluated_by="grader-7",
        timestamp=STAMP,
    )

    assert handlers.evaluation_completed(webhook) is True
    assert handlers.evaluation_completed(webhook) is True

    row = trade_ins.get(trade_in.id)
    assert row.status == "OFFER_SENT"
    assert row.approved_value_cents == 900_000
    assert [entry.to_state for entry in trade_ins.timeline(trade_in.public_id)].count("OFFER_SENT") == 1


def test_offer_accepted_webhook_requires_matching_amount(handlers, trade_ins):
    trade_in = submitted(trade_ins)
    handlers.evaluation_completed(
        EvaluationCompletedWebhook(
            trade_in_case_id=trade_in.id, offered_amount_cents=900_000, condition_grade="B", timestamp=STAMP
        )
    )

    mismatched = OfferAcceptedWebhook(
        trade_in_case_id=trade_in.id, user_id="cust-1", accepted_amount_cents=950_000, timestamp=STAMP
    )
    assert handlers.offer_accepted(mismatched) is False
    assert trade_ins.get(trade_in.id).status == "OFFER_SENT"

    matched = OfferAcceptedWebhook(
        trade_in_case_id=trade_in.id,
        user_id="cust-1",
        accepted_amount_cents=900_000,
        timestamp=STAMP + timedelta(seconds=1),
    )
    assert handlers.offer_accepted(matched) is True
    row = trade_ins.get(trade_in.id)
    assert row.status == "COMPLETED"
    assert row.credit_note_code


def test_credit_note_webhook_retried_after_note_exists(handlers, webhooks, trade_ins, clock):
    webhook = CreditNoteIssuedWebhook(credit_note_id=1, user_id="cust-1", amount_cents=900_000, timestamp=STAMP)

    assert handlers.credit_note_issued(webhook) is False
    event = webhooks.get_status(webhook.event_id)
    assert event.status == "FAILED"
    assert event.retry_count == 1
    assert event.credit_note_id == 1

    trade_in = submitted(trade_ins)
    trade_ins.evaluate(
        trade_in.public_id,
        ManualEvaluation(grade="B", value_cents=900_000),
        Actor(user_id="admin-1", is_admin=True),
    )
    trade_ins.accept(trade_in.public_id, Actor(user_id="cust-1"))

    assert handlers.retry_due() == 0
    clock.advance(minutes=2)
    assert handlers.retry_due() == 1
    assert webhooks.get_status(webhook.event_id).status == "PROCESSED"
    assert handlers.retry_due() == 0
