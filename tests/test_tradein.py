"""Trade-in lifecycle: submission, admin evaluation, customer decision, credit issuance."""

import pytest
from sqlalchemy import select

from tradein.common.errors import AuthorizationError, InvalidTransitionError, NotFoundError, ValidationError
from tradein.services.credit.models import CreditNote
from tradein.services.notification.models import OutboxEvent
from tradein.services.tradein.models import TradeIn
from tradein.services.tradein.schemas import Actor, ManualEvaluation, SubmitTradeInRequest
from tradein.services.tradein.service import TradeInService
from tradein.services.worker.queue import AssessmentQueue

CUSTOMER = Actor(user_id="cust-1")
STRANGER = Actor(user_id="cust-2")
ADMIN = Actor(user_id="admin-1", is_admin=True)


def request(**overrides) -> SubmitTradeInRequest:
    values = {
        "owner_id": "cust-1",
        "device_brand": "Apple",
        "device_model": "iPhone 13",
        "device_storage_gb": 128,
        "imei": "356789012345678",
        "photo_urls": ["https://cdn.example/front.jpg", "  ", "https://cdn.example/back.jpg"],
    }
    values.update(overrides)
    return SubmitTradeInRequest(**values)


@pytest.fixture
def queue(clock):
    return AssessmentQueue(clock=clock)


@pytest.fixture
def service(session_factory, queue, clock):
    return TradeInService(session_factory, queue=queue, clock=clock)


def offer(service, value_cents=1_100_000):
    trade_in = service.submit(request())
    service.evaluate(trade_in.public_id, ManualEvaluation(grade="B", value_cents=value_cents), ADMIN)
    return trade_in


def test_submit_persists_and_enqueues(service, queue):
    trade_in = service.submit(request())

    assert trade_in.status == "SUBMITTED"
    assert trade_in.photo_urls == ["https://cdn.example/front.jpg", "https://cdn.example/back.jpg"]
    assert trade_in.public_id
    assert queue.is_queued(trade_in.id)
    assert [entry.to_state for entry in service.timeline(trade_in.public_id)] == ["SUBMITTED"]


@pytest.mark.parametrize(
    "overrides",
    [{"photo_urls": []}, {"photo_urls": [" "]}, {"imei": "12345"}, {"device_brand": ""}],
)
def test_submit_request_validation(overrides):
    with pytest.raises(ValueError):
        request(**overrides)


def test_admin_evaluation_sends_offer(service, clock):
    trade_in = offer(service)

    row = service.get(trade_in.id)
    assert row.status == "OFFER_SENT"
    assert row.approved_grade == "B"
    assert row.offer_cents == 1_100_000
    assert row.state_version == 2
    assert [entry.to_state for entry in service.timeline(trade_in.public_id)] == [
        "SUBMITTED",
        "EVALUATED",
        "OFFER_SENT",
    ]


def test_evaluation_requires_admin(service):
    trade_in = service.submit(request())
    with pytest.raises(AuthorizationError):
        service.evaluate(trade_in.public_id, ManualEvaluation(grade="A", value_cents=1), CUSTOMER)


def test_accept_issues_credit_note_and_completes(service, session_factory):
    trade_in = offer(service)

    accepted = service.accept(trade_in.public_id, CUSTOMER)

    assert accepted.status == "COMPLETED"
    assert accepted.credit_note_code.startswith("CN20260302")
    with session_factory() as db:
        note = db.execute(select(CreditNote).where(CreditNote.code == accepted.credit_note_code)).scalar_one()
        topics = set(db.execute(select(OutboxEvent.topic)).scalars())
    assert note.amount_cents == note.remaining_cents == 1_100_000
    assert note.owner_id == "cust-1"
    assert note.trade_in_id == trade_in.id
    assert note.status == "ACTIVE"
    assert {"tradein.offer_accepted", "tradein.credit_note_issued"} <= topics
    assert [entry.to_state for entry in service.timeline(trade_in.public_id)][-2:] == ["ACCEPTED", "COMPLETED"]


def test_only_owner_may_accept(service):
    trade_in = offer(service)
    with pytest.raises(AuthorizationError):
        service.accept(trade_in.public_id, STRANGER)
    assert service.get(trade_in.id).status == "OFFER_SENT"


def test_cannot_accept_without_offer(service, session_factory):
    trade_in = service.submit(request())
    with session_factory() as db:
        row = db.get(TradeIn, trade_in.id)
        row.status = "AI_ERROR"
        db.commit()

    with pytest.raises(InvalidTransitionError):
        service.accept(trade_in.public_id, CUSTOMER)


def test_zero_offer_cannot_be_accepted(service, session_factory):
    trade_in = offer(service, value_cents=0)
    with pytest.raises(ValidationError):
        service.accept(trade_in.public_id, CUSTOMER)
    with session_factory() as db:
        assert db.execute(select(CreditNote)).first() is None


def test_accept_is_not_repeatable(service):
    trade_in = offer(service)
    service.accept(trade_in.public_id, CUSTOMER)
    with pytest.raises(InvalidTransitionError):
        service.accept(trade_in.public_id, CUSTOMER)


def test_reject_offer(service):
    trade_in = offer(service)
    assert service.reject(trade_in.public_id, CUSTOMER).status == "REJECTED"


def test_expired_offer_cannot_be_accepted_and_is_swept(service, clock):
    trade_in = offer(service)
    clock.advance(days=8)

    with pytest.raises(InvalidTransitionError):
        service.accept(trade_in.public_id, CUSTOMER)
    assert service.expire_stale_offers() == 1
    assert service.get(trade_in.id).status == "EXPIRED"
    assert service.expire_stale_offers() == 0


def test_cancel_is_admin_only_and_drops_queued_work(service, queue):
    trade_in = service.submit(request())
    with pytest.raises(AuthorizationError):
        service.cancel(trade_in.public_id, CUSTOMER)

    cancelled = service.cancel(trade_in.public_id, ADMIN, reason="duplicate submission")

    assert cancelled.status == "CANCELLED"
    assert not queue.is_queued(trade_in.id)
    assert service.timeline(trade_in.public_id)[-1].reason == "duplicate submission"


def test_terminal_states_reject_further_transitions(service):
    trade_in = offer(service)
    service.reject(trade_in.public_id, CUSTOMER)
    with pytest.raises(InvalidTransitionError):
        service.cancel(trade_in.public_id, ADMIN)


def test_lookup_enforces_ownership(service):
    trade_in = service.submit(request())
    assert service.get_by_public_id(trade_in.public_id, CUSTOMER).id == trade_in.id
    assert service.get_by_public_id(trade_in.public_id, ADMIN).id == trade_in.id
    with pytest.raises(AuthorizationError):
        service.get_by_public_id(trade_in.public_id, STRANGER)
    with pytest.raises(NotFoundError):
        service.get_by_public_id("missing")


def test_statistics(service):
    first = offer(service, value_cents=500_000)
    service.accept(first.public_id, CUSTOMER)
    service.submit(request())
    service.submit(request(owner_id="cust-2"))

    stats = service.statistics()

    assert stats.total == 3
    assert stats.by_status == {"COMPLETED": 1, "SUBMITTED": 2}
    assert stats.total_credit_issued_cents == 500_000
    assert len(service.list_for_owner("cust-1")) == 2
