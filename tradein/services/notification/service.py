"""Customer notifications via the transactional outbox.

Rows are written in the same transaction as the state change that caused
them; `outbox_publisher` ships them to Kafka.
"""

import asyncio

from tradein.common.events import EventEnvelope, KafkaBus
from tradein.common.logging import logger, trace_id_ctx
from tradein.services.notification.models import OutboxEvent
from tradein.services.notification.outbox import claim_batch, mark_sent, record_backlog, release_claim

EVALUATION_COMPLETED = "tradein.evaluation_completed"
OFFER_ACCEPTED = "tradein.offer_accepted"
CREDIT_NOTE_ISSUED = "tradein.credit_note_issued"
ASSESSMENT_FAILED = "tradein.assessment_failed"


def notify(db, event_type: str, aggregate_type: str, aggregate_id: str, payload: dict) -> OutboxEvent:
    """Stage one notification inside the caller's transaction."""

    row = OutboxEvent(
        aggregate_type=aggregate_type,
        aggregate_id=aggregate_id,
        event_type=event_type,
        topic=event_type,
        payload=EventEnvelope(
            event_type=event_type,
            aggregate_id=aggregate_id,
            trace_id=trace_id_ctx.get(),
            payload=payload,
        ).model_dump(mode="json"),
    )
    db.add(row)
    logger.info("notification staged event_type=%s aggregate_id=%s", event_type, aggregate_id)
    return row


class NotificationService:
    """Publishes staged outbox rows to Kafka."""

    def __init__(self, session_factory, bus: KafkaBus | None = None, service_name: str = "tradein") -> None:
        self.session_factory = session_factory
        self.kafka = bus or KafkaBus()
        self.service_name = service_name

    async def publish_pending(self, limit: int = 100) -> int:
        """Claim one batch and publish it; returns how many were sent."""

        with self.session_factory() as db:
            rows = claim_batch(db, limit=limit)
            db.commit()
        sent = 0
        for row in rows:
            try:
                await self.kafka.publish(row.topic, EventEnvelope(**row.payload))
            except Exception as exc:
                logger.warning(
                    "notification publish failed event_type=%s outbox_id=%s error=%s", row.event_type, row.id, exc
                )
                with self.session_factory() as db:
                    release_claim(db, row.id)
                    db.commit()
                continue
            with self.session_factory() as db:
                mark_sent(db, row.id)
                db.commit()
            sent += 1
        with self.session_factory() as db:
            backlog = record_backlog(db, self.service_name)
        if rows:
            logger.info("notification batch published sent=%s claimed=%s backlog=%s", sent, len(rows), backlog)
        return sent

    async def outbox_publisher(self, stop: asyncio.Event | None = None, interval_seconds: float = 0.5) -> None:
        """Continuously publish outbox rows until `stop` is set."""

        stop = stop or asyncio.Event()
        while not stop.is_set():
            try:
                await self.publish_pending()
            except Exception as exc:
                logger.exception("notification outbox loop error: %s", exc)
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval_seconds)
            except asyncio.TimeoutError:
                pass
