"""Claim, acknowledge, and requeue `OutboxEvent` rows.

A row is PENDING until a publisher claims it (PROCESSING, `sent_at` stamped
with the claim time) and SENT once Kafka acknowledged it. Claims older than
`claim_timeout` are considered abandoned and can be claimed again.
"""

from datetime import datetime, timedelta, timezone

from sqlalchemy import func, or_, select, update

from tradein.common.clock import as_utc
from tradein.common.metrics import outbox_oldest_pending_age_seconds, outbox_pending_total
from tradein.services.notification.models import OutboxEvent

UNSENT = ("PENDING", "PROCESSING")


def claim_batch(db, limit: int = 100, claim_timeout: timedelta = timedelta(seconds=30)) -> list[OutboxEvent]:
    """Mark up to `limit` publishable rows PROCESSING and return them, oldest first."""

    now = datetime.now(timezone.utc)
    ids = db.execute(
        select(OutboxEvent.id)
        .where(
            or_(
                OutboxEvent.status == "PENDING",
                (OutboxEvent.status == "PROCESSING") & (OutboxEvent.sent_at < now - claim_timeout),
            )
        )
        .order_by(OutboxEvent.created_at, OutboxEvent.id)
        .limit(limit)
        .with_for_update(skip_locked=True)
    ).scalars().all()
    if not ids:
        return []
    db.execute(
        update(OutboxEvent)
        .where(OutboxEvent.id.in_(ids))
        .values(status="PROCESSING", sent_at=now)
        .execution_options(synchronize_session=False)
    )
    rows = db.execute(
        select(OutboxEvent).where(OutboxEvent.id.in_(ids)).execution_options(populate_existing=True)
    ).scalars().all()
    order = {event_id: position for position, event_id in enumerate(ids)}
    return sorted(rows, key=lambda row: order[row.id])


def mark_sent(db, event_id: str) -> None:
    db.execute(
        update(OutboxEvent)
        .where(OutboxEvent.id == event_id, OutboxEvent.status == "PROCESSING")
        .values(status="SENT", sent_at=datetime.now(timezone.utc))
    )


def release_claim(db, event_id: str) -> None:
    """Give a claimed row back to PENDING after a failed publish."""

    db.execute(
        update(OutboxEvent)
        .where(OutboxEvent.id == event_id, OutboxEvent.status == "PROCESSING")
        .values(status="PENDING", sent_at=None)
    )


def record_backlog(db, service_name: str) -> int:
    """Refresh the backlog gauges; returns the number of unsent rows."""

    pending, oldest = db.execute(
        select(func.count(OutboxEvent.id), func.min(OutboxEvent.created_at)).where(OutboxEvent.status.in_(UNSENT))
    ).one()
    age = 0.0
    if oldest is not None:
        age = max(0.0, (datetime.now(timezone.utc) - as_utc(oldest)).total_seconds())
    outbox_pending_total.labels(service=service_name).set(float(pending))
    outbox_oldest_pending_age_seconds.labels(service=service_name).set(age)
    return int(pending)
