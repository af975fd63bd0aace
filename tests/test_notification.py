"""Outbox publishing and the maintenance sweeper."""

import asyncio

from sqlalchemy import select

from tradein.services.notification.models import OutboxEvent
from tradein.services.notification.service import CREDIT_NOTE_ISSUED, NotificationService, notify
from tradein.services.worker.sweeper import Sweeper


class RecordingBus:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent = []

    async def publish(self, topic, event):
        if self.fail:
            raise ConnectionError("broker unreachable")
        self.sent.append((topic, event))


def stage(session_factory, count=1):
    with session_factory() as db:
        for i in range(count):
            notify(db, CREDIT_NOTE_ISSUED, "credit_note", f"CN-{i}", {"owner_id": "cust-1", "amount_cents": 100})
        db.commit()


def statuses(session_factory):
    with session_factory() as db:
        return sorted(db.execute(select(OutboxEvent.status)).scalars())


async def test_pending_rows_are_published_once(session_factory):
    stage(session_factory, count=2)
    bus = RecordingBus()
    service = NotificationService(session_factory, bus=bus)

    assert await service.publish_pending() == 2
    assert await service.publish_pending() == 0

    assert statuses(session_factory) == ["SENT", "SENT"]
    topic, event = bus.sent[0]
    assert topic == "tradein.credit_note_issued"
    assert event.payload["amount_cents"] == 100


async def test_failed_publish_returns_row_to_pending(session_factory):
    stage(session_factory)
    service = NotificationService(session_factory, bus=RecordingBus(fail=True))

    assert await service.publish_pending() == 0
    assert statuses(session_factory) == ["PENDING"]


async def test_publisher_loop_stops(session_factory):
    stage(session_factory)
    bus = RecordingBus()
    stop = asyncio.Event()
    task = asyncio.create_task(NotificationService(session_factory, bus=bus).outbox_publisher(stop, interval_seconds=0.01))
    for _ in range(100):
        if bus.sent:
            break
        await asyncio.sleep(0.01)
    stop.set()
    await asyncio.wait_for(task, timeout=2)

    assert len(bus.sent) == 1


def test_sweeper_isolates_failing_sweeps():
    def broken():
        raise RuntimeError("db down")

    sweeper = Sweeper({"offers": lambda: 2, "broken": broken, "notes": lambda: 0}, interval_seconds=0)

    assert sweeper.run_once() == {"offers": 2, "broken": -1, "notes": 0}
