"""Background assessment worker.

Pulls trade-in ids from the `AssessmentQueue`, runs the configured assessment
provider and the pricing engine, and persists the outcome. Transient failures
are retried with exponential backoff up to a fixed ceiling; everything else
lands in the terminal `AI_ERROR` state for manual evaluation.
"""

import asyncio
import time
from datetime import timedelta

import httpx
from sqlalchemy import select

from tradein.common.clock import as_utc, utcnow
from tradein.common.config import settings
from tradein.common.errors import AssessmentProviderError, DomainError, NoPhotosError
from tradein.common.logging import log_context, logger
from tradein.common.metrics import (
    assessment_latency_seconds,
    assessment_retries_total,
    assessments_total,
    sweep_items_total,
)
from tradein.common.tracing import tracer
from tradein.services.assessment.providers import AssessmentProvider
from tradein.services.assessment.schemas import AssessmentRequest, AssessmentResult
from tradein.services.notification.service import ASSESSMENT_FAILED, EVALUATION_COMPLETED, notify
from tradein.services.pricing.grading import grade_explanation, to_grade
from tradein.services.pricing.schemas import PriceQuote
from tradein.services.pricing.service import PricingEngine
from tradein.services.tradein.models import TradeIn
from tradein.services.tradein.service import transition
from tradein.services.worker.queue import AssessmentQueue

RETRYABLE_MESSAGE_MARKERS = ("timeout", "timed out", "connection", "network")


def is_retryable(exc: BaseException) -> bool:
    """Transient network/timeout failures are retried; everything else is terminal."""

    if isinstance(exc, AssessmentProviderError):
        return exc.retryable
    if isinstance(exc, DomainError):
        return False
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError, asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in RETRYABLE_MESSAGE_MARKERS)


def is_acceptable(quote: PriceQuote | None, assessment: AssessmentResult, min_condition_score: float) -> bool:
    """A quote is offered only with a positive price and a condition above the floor."""

    if quote is None:
        return False
    return quote.final_price_cents > 0 and assessment.overall_condition_score >= min_condition_score


class AssessmentWorker:
    def __init__(
        self,
        session_factory,
        queue: AssessmentQueue,
        provider: AssessmentProvider,
        pricing: PricingEngine | None = None,
        clock=utcnow,
        config=settings,
    ) -> None:
        self.session_factory = session_factory
        self.queue = queue
        self.provider = provider
        self.pricing = pricing or PricingEngine(session_factory)
        self.clock = clock
        self.config = config

    async def run(self, stop: asyncio.Event) -> None:
        """Poll the queue until `stop` is set; never dies on a single failure."""

        logger.info("assessment worker started provider=%s", self.provider.provider_name)
        self.requeue_submitted()
        while not stop.is_set():
            try:
                if await self.process_next():
                    continue
                delay = self.config.worker_poll_interval_seconds
            except Exception as exc:
                logger.exception("assessment worker loop error: %s", exc)
                delay = self.config.worker_error_cooldown_seconds
            try:
                await asyncio.wait_for(stop.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
        logger.info("assessment worker stopped queued=%s", self.queue.queue_length())

    async def process_next(self) -> bool:
        trade_in_id = self.queue.dequeue()
        if trade_in_id is None:
            return False
        await self.process_trade_in(trade_in_id)
        return True

    def _begin(self, trade_in_id: int) -> TradeIn | None:
        with self.session_factory() as db:
            trade_in = db.get(TradeIn, trade_in_id)
            if trade_in is None:
                logger.warning("assessment skipped missing trade_in_id=%s", trade_in_id)
                return None
            if trade_in.status != "SUBMITTED":
                # Re-delivery after the record already moved on.
                logger.info("assessment skipped trade_in_id=%s status=%s", trade_in.public_id, trade_in.status)
                return None
            transition(db, trade_in, "AI_PROCESSING", reason="assessment_started", processing_started_at=self.clock())
            db.commit()
            return trade_in

    async def process_trade_in(self, trade_in_id: int) -> str | None:
        """Assess one trade-in; returns its resulting status, or None when skipped."""

        trade_in = self._begin(trade_in_id)
        if trade_in is None:
            return None
        with log_context(trade_in_id=trade_in.public_id), tracer.start_as_current_span("assessment.process") as span:
            span.set_attribute("trade_in.id", trade_in.public_id)
            try:
                return await self._assess(trade_in)
            except asyncio.CancelledError:
                self._reset_after_cancel(trade_in_id)
                raise
            except Exception as exc:
                span.record_exception(exc)
                return self._handle_failure(trade_in_id, exc)

    async def _assess(self, trade_in: TradeIn) -> str:
        photos = list(trade_in.photo_urls or [])
        if not photos:
            raise NoPhotosError(f"trade-in {trade_in.public_id} has no photos")

        context = AssessmentRequest(
            image_urls=photos,
            device_brand=trade_in.device_brand,
            device_model=trade_in.device_model,
            device_type=trade_in.device_type,
            additional_context=trade_in.notes,
        )
        started = time.perf_counter()
        result = await asyncio.wait_for(
            self.provider.analyze(photos, context), timeout=self.config.assessment_timeout_seconds
        )
        assessment_latency_seconds.labels(
            service=self.config.service_name, provider=result.provider_name or self.provider.provider_name
        ).observe(time.perf_counter() - started)

        if result.failure_kind is not None:
            # Degraded fallback: classify the underlying failure like a raised one.
            raise AssessmentProviderError(result.failure_reason or "assessment degraded", result.failure_kind)

        hint = f"{trade_in.device_brand} {trade_in.device_model}"
        quote = self.pricing.quote(result, expected_storage_gb=trade_in.device_storage_gb, model_hint=hint)
        return self._persist(trade_in.id, result, quote)

    def _persist(self, trade_in_id: int, result: AssessmentResult, quote: PriceQuote | None) -> str:
        now = self.clock()
        accepted = is_acceptable(quote, result, self.config.min_condition_score)
        status = "AI_ASSESSED" if accepted else "AI_REJECTED"
        grade = to_grade(result)
        breakdown = None
        offer = 0
        if quote is not None:
            offer = max(quote.final_price_cents, 0)
            breakdown = quote.model_dump(mode="json")
        payload = result.model_dump(mode="json")
        payload["grade_explanation"] = grade_explanation(result)

        with self.session_factory() as db:
            trade_in = db.get(TradeIn, trade_in_id)
            transition(
                db,
                trade_in,
                status,
                reason="assessment_completed" if accepted else "assessment_rejected",
                ai_vendor=result.provider_name or self.provider.provider_name,
                ai_version=result.model_version or self.provider.model_version,
                ai_confidence=result.identification_confidence,
                ai_assessment=payload,
                auto_grade=grade,
                auto_offer_cents=offer,
                auto_offer_breakdown=breakdown,
                ai_assessed_at=now,
                offer_expires_at=now + timedelta(days=self.config.offer_validity_days) if accepted else None,
            )
            if accepted:
                notify(
                    db,
                    EVALUATION_COMPLETED,
                    "trade_in",
                    trade_in.public_id,
                    {"owner_id": trade_in.owner_id, "grade": grade, "offer_cents": offer},
                )
            db.commit()
        assessments_total.labels(service=self.config.service_name, outcome=status.lower()).inc()
        logger.info(
            "assessment persisted trade_in_id=%s status=%s grade=%s offer_cents=%s",
            trade_in.public_id,
            status,
            grade,
            offer,
        )
        return status

    def _handle_failure(self, trade_in_id: int, exc: Exception) -> str:
        retryable = is_retryable(exc)
        with self.session_factory() as db:
            trade_in = db.get(TradeIn, trade_in_id)
            retry_count = trade_in.retry_count or 0
            if retryable and retry_count < self.config.assessment_max_retries:
                delay_minutes = self.config.assessment_retry_base_minutes * 2**retry_count
                transition(db, trade_in, "SUBMITTED", reason=f"retry_scheduled: {exc}", retry_count=retry_count + 1)
                db.commit()
                self.queue.enqueue(
                    trade_in_id, priority=self.config.assessment_retry_priority, delay_minutes=delay_minutes
                )
                assessment_retries_total.labels(service=self.config.service_name).inc()
                logger.warning(
                    "assessment retry scheduled trade_in_id=%s retry=%s/%s delay_minutes=%s error=%s",
                    trade_in.public_id,
                    retry_count + 1,
                    self.config.assessment_max_retries,
                    delay_minutes,
                    exc,
                )
                return "SUBMITTED"

            transition(
                db,
                trade_in,
                "AI_ERROR",
                reason="assessment_failed",
                ai_assessment={
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                    "failure_kind": getattr(exc, "kind", None),
                    "retryable": retryable,
                    "retry_count": retry_count,
                },
                ai_vendor=self.provider.provider_name,
                ai_assessed_at=self.clock(),
            )
            notify(db, ASSESSMENT_FAILED, "trade_in", trade_in.public_id, {"owner_id": trade_in.owner_id})
            db.commit()
        assessments_total.labels(service=self.config.service_name, outcome="ai_error").inc()
        logger.error(
            "assessment failed permanently trade_in_id=%s retries=%s retryable=%s error=%s",
            trade_in.public_id,
            retry_count,
            retryable,
            exc,
        )
        return "AI_ERROR"

    def _reset_after_cancel(self, trade_in_id: int) -> None:
        with self.session_factory() as db:
            trade_in = db.get(TradeIn, trade_in_id)
            if trade_in is not None and trade_in.status == "AI_PROCESSING":
                transition(db, trade_in, "SUBMITTED", reason="worker_shutdown")
                db.commit()
                self.queue.enqueue(trade_in_id)
        logger.info("assessment interrupted by shutdown trade_in_id=%s", trade_in_id)

    def requeue_submitted(self) -> int:
        """Re-enqueue SUBMITTED trade-ins the in-memory queue lost (e.g. on restart)."""

        with self.session_factory() as db:
            ids = db.execute(select(TradeIn.id).where(TradeIn.status == "SUBMITTED").order_by(TradeIn.id)).scalars().all()
        added = sum(1 for trade_in_id in ids if self.queue.enqueue(trade_in_id))
        if added:
            logger.info("assessment recovery requeued submitted=%s", added)
        return added

    def recover_stale(self) -> int:
        """Sweep: AI_PROCESSING rows older than the stale timeout go back to SUBMITTED."""

        cutoff = self.clock() - timedelta(minutes=self.config.stale_processing_minutes)
        recovered = []
        with self.session_factory() as db:
            rows = db.execute(select(TradeIn).where(TradeIn.status == "AI_PROCESSING")).scalars().all()
            for trade_in in rows:
                started = as_utc(trade_in.processing_started_at or trade_in.updated_at)
                if started is not None and started > cutoff:
                    continue
                transition(db, trade_in, "SUBMITTED", reason="stale_processing_recovered")
                recovered.append(trade_in.id)
            db.commit()
        for trade_in_id in recovered:
            self.queue.enqueue(trade_in_id)
        if recovered:
            sweep_items_total.labels(service=self.config.service_name, sweep="stale_processing").inc(len(recovered))
            logger.warning("stale assessments recovered count=%s", len(recovered))
        return len(recovered)
