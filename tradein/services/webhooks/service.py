"""Idempotent webhook processing.

A handler runs at most once to success per event id. The claim (PENDING ->
PROCESSING, `claimed_at` stamped) and the outcome are committed in separate
transactions so the handler can use its own sessions. A claim older than
`claim_timeout` was abandoned by a dead process; the next delivery or retry
sweep takes it over and counts the lost attempt as a retry.
"""

from collections.abc import Callable
from datetime import timedelta

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError

from tradein.common.clock import as_utc, utcnow
from tradein.common.config import settings
from tradein.common.logging import log_context, logger
from tradein.common.metrics import duplicate_events_skipped_total, sweep_items_total, webhook_events_total
from tradein.services.webhooks.models import WebhookEvent

Handler = Callable[[], bool]


def retry_delay(retry_count: int) -> timedelta:
    """1, 2, 4, ... minutes for the 1st, 2nd, 3rd failure."""

    return timedelta(minutes=2 ** max(retry_count - 1, 0))


class WebhookService:
    def __init__(
        self,
        session_factory,
        clock=utcnow,
        max_retries: int | None = None,
        claim_timeout: timedelta | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.clock = clock
        self.max_retries = settings.webhook_max_retries if max_retries is None else max_retries
        self.claim_timeout = claim_timeout or timedelta(seconds=settings.webhook_claim_timeout_seconds)
        self.service_name = settings.service_name

    def _abandoned(self, cutoff):
        return (WebhookEvent.status == "PROCESSING") & or_(
            WebhookEvent.claimed_at.is_(None), WebhookEvent.claimed_at < cutoff
        )

    def _claim(self, event_id: str, event_type: str, source: str, payload: dict, refs: dict) -> bool | None:
        """Mark the event PROCESSING. Returns a final answer when the handler must not run."""

        now = self.clock()
        cutoff = now - self.claim_timeout
        claimable = WebhookEvent.status.in_(("PENDING", "FAILED"))
        values = {"status": "PROCESSING", "payload": payload, "claimed_at": now}
        with self.session_factory() as db:
            event = db.execute(select(WebhookEvent).where(WebhookEvent.event_id == event_id)).scalar_one_or_none()
            if event is None:
                event = WebhookEvent(
                    event_id=event_id,
                    event_type=event_type,
                    source=source,
                    payload=payload,
                    status="PENDING",
                    retry_count=0,
                    received_at=self.clock(),
                    **refs,
                )
                db.add(event)
                try:
                    db.flush()
                except IntegrityError:
                    db.rollback()
                    logger.info("webhook concurrently received event_id=%s", event_id)
                    return False
            elif event.status == "PROCESSED":
                duplicate_events_skipped_total.labels(service=self.service_name, event_type=event_type).inc()
                logger.info("duplicate webhook skipped event_type=%s event_id=%s", event_type, event_id)
                return True
            elif event.status == "PROCESSING":
                if event.claimed_at is not None and as_utc(event.claimed_at) >= cutoff:
                    logger.info("webhook already in progress event_id=%s", event_id)
                    return False
                if event.retry_count >= self.max_retries:
                    db.execute(
                        update(WebhookEvent)
                        .where(WebhookEvent.event_id == event_id, self._abandoned(cutoff))
                        .values(status="FAILED", next_retry_at=None, error_message="claim abandoned")
                        .execution_options(synchronize_session=False)
                    )
                    db.commit()
                    logger.warning("webhook retries exhausted event_id=%s retries=%s", event_id, event.retry_count)
                    return False
                logger.warning(
                    "webhook claim abandoned event_id=%s claimed_at=%s",
                    event_id,
                    event.claimed_at.isoformat() if event.claimed_at else None,
                )
                claimable = self._abandoned(cutoff)
                values["retry_count"] = WebhookEvent.retry_count + 1
            elif event.status == "FAILED" and event.retry_count >= self.max_retries:
                logger.warning("webhook retries exhausted event_id=%s retries=%s", event_id, event.retry_count)
                return False

            claimed = db.execute(
                update(WebhookEvent)
                .where(WebhookEvent.event_id == event_id, claimable)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                db.rollback()
                return False
            db.commit()
        return None

    def process_webhook(
        self,
        event_id: str,
        event_type: str,
        source: str,
        payload: dict,
        handler: Handler,
        trade_in_id: int | None = None,
        credit_note_id: int | None = None,
        order_id: str | None = None,
    ) -> bool:
        """Run `handler` once for `event_id`; replays return the recorded outcome."""

        with log_context(event_id=event_id):
            refs = {"trade_in_id": trade_in_id, "credit_note_id": credit_note_id, "order_id": order_id}
            early = self._claim(event_id, event_type, source, payload, refs)
            if early is not None:
                webhook_events_total.labels(
                    service=self.service_name, event_type=event_type, outcome="duplicate" if early else "skipped"
                ).inc()
                return early

            error = None
            try:
                succeeded = bool(handler())
            except Exception as exc:
                logger.exception("webhook handler failed event_type=%s event_id=%s", event_type, event_id)
                succeeded = False
                error = f"{type(exc).__name__}: {exc}"
            self._record(event_id, succeeded, error)
            webhook_events_total.labels(
                service=self.service_name, event_type=event_type, outcome="processed" if succeeded else "failed"
            ).inc()
            return succeeded

    def _record(self, event_id: str, succeeded: bool, error: str | None) -> None:
        now = self.clock()
        with self.session_factory() as db:
            event = db.execute(select(WebhookEvent).where(WebhookEvent.event_id == event_id)).scalar_one()
            if succeeded:
                event.status = "PROCESSED"
                event.processed_at = now
                event.next_retry_at = None
                event.error_message = None
            else:
                event.status = "FAILED"
                event.retry_count = (event.retry_count or 0) + 1
                event.next_retry_at = now + retry_delay(event.retry_count)
                event.error_message = error or "handler reported failure"
                logger.warning(
                    "webhook failed event_id=%s retry_count=%s next_retry_at=%s",
                    event_id,
                    event.retry_count,
                    event.next_retry_at.isoformat(),
                )
            db.commit()

    def get_status(self, event_id: str) -> WebhookEvent | None:
        with self.session_factory() as db:
            return db.execute(select(WebhookEvent).where(WebhookEvent.event_id == event_id)).scalar_one_or_none()

    def retry_due(self, resolve_handler: Callable[[WebhookEvent], Handler | None]) -> int:
        """Sweep: re-dispatch FAILED events whose backoff has elapsed and abandoned claims."""

        now = self.clock()
        with self.session_factory() as db:
            due = db.execute(
                select(WebhookEvent)
                .where(
                    WebhookEvent.retry_count < self.max_retries,
                    or_(
                        (WebhookEvent.status == "FAILED") & (WebhookEvent.next_retry_at <= now),
                        self._abandoned(now - self.claim_timeout),
                    ),
                )
                .order_by(WebhookEvent.received_at, WebhookEvent.id)
            ).scalars().all()
        retried = 0
        for event in due:
            handler = resolve_handler(event)
            if handler is None:
                logger.warning("webhook retry has no handler event_type=%s event_id=%s", event.event_type, event.event_id)
                continue
            self.process_webhook(event.event_id, event.event_type, event.source, event.payload, handler)
            retried += 1
        if retried:
            sweep_items_total.labels(service=self.service_name, sweep="webhook_retry").inc(retried)
        return retried
