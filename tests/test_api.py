"""Webhook ingress over HTTP, against a per-test database."""

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from tradein.services.api import main
from tradein.services.tradein.service import TradeInService
from tradein.services.webhooks.handlers import TradeInWebhookHandlers
from tradein.services.webhooks.service import WebhookService

HEADERS = {"x-api-key": "test-key"}


@pytest.fixture
def client(session_factory, clock, monkeypatch):
    trade_ins = TradeInService(session_factory, queue=main.queue, clock=clock)
    webhooks = WebhookService(session_factory, clock=clock)
    monkeypatch.setattr(main, "trade_ins", trade_ins)
    monkeypatch.setattr(main, "webhooks", webhooks)
    monkeypatch.setattr(main, "webhook_handlers", TradeInWebhookHandlers(session_factory, webhooks, trade_ins))
    monkeypatch.setattr(main.settings, "api_key", "test-key")
    # No `with`: the lifespan background loops are not started.
    return TestClient(main.app)


def evaluation(case_id: int) -> dict:
    return {
        "trade_in_case_id": case_id,
        "offered_amount_cents": 750_000,
        "condition_grade": "C",
        "evaluation_notes": "scuffed frame",
        "evaluated_by": "grader-3",
        "timestamp": datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc).isoformat(),
    }


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["ok"] is True


def test_webhooks_require_api_key(client):
    response = client.post("/api/webhooks/tradein/evaluation-completed", json=evaluation(1))
    assert response.status_code == 401


def test_submit_then_evaluate_via_webhook(client):
    submitted = client.post(
        "/internal/trade-ins",
        headers=HEADERS,
        json={
            "owner_id": "cust-9",
            "device_brand": "Samsung",
            "device_model": "Galaxy S22",
            "photo_urls": ["https://cdn.example/s22.jpg"],
        },
    )
    assert submitted.status_code == 201
    public_id = submitted.json()["public_id"]
    case_id = main.trade_ins.get_by_public_id(public_id).id
    main.queue.discard(case_id)

    first = client.post("/api/webhooks/tradein/evaluation-completed", headers=HEADERS, json=evaluation(case_id))
    replay = client.post("/api/webhooks/tradein/evaluation-completed", headers=HEADERS, json=evaluation(case_id))

    assert first.status_code == 200
    assert replay.status_code == 200
    view = client.get(f"/internal/trade-ins/{public_id}", headers=HEADERS).json()
    assert view["status"] == "OFFER_SENT"
    assert view["approved_value_cents"] == 750_000

    status = client.get(
        f"/api/webhooks/tradein/status/evaluation_completed_{case_id}_20260302100000", headers=HEADERS
    )
    assert status.json()["status"] == "PROCESSED"


def test_unknown_credit_note_webhook_is_a_handled_failure(client):
    body = {"credit_note_id": 404, "timestamp": datetime(2026, 3, 2, tzinfo=timezone.utc).isoformat()}

    response = client.post("/api/webhooks/tradein/credit-note-issued", headers=HEADERS, json=body)

    assert response.status_code == 400
    status = client.get("/api/webhooks/tradein/status/credit_note_404_20260302000000", headers=HEADERS).json()
    assert status["status"] == "FAILED"
    assert status["retry_count"] == 1


def test_domain_errors_map_to_http_status(client):
    response = client.get("/internal/trade-ins/missing", headers=HEADERS)
    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"
