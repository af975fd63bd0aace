"""HTTP process: webhook ingress, health, metrics, and the background loops.

The app lifespan starts the assessment worker, the maintenance sweeper, and
the notification outbox publisher, and stops them cooperatively on shutdown.
"""

import asyncio
from contextlib import asynccontextmanager
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from tradein.common.cache import RedisResultCache
from tradein.common.config import settings
from tradein.common.db import SessionLocal
from tradein.common.errors import AuthorizationError, ConcurrencyConflictError, DomainError, NotFoundError
from tradein.common.logging import configure_logging, logger, trace_id_ctx
from tradein.common.metrics import http_request_duration_seconds, http_requests_total, metrics_response
from tradein.common.startup import log_startup_config
from tradein.common.tracing import current_trace_id, instrument_app, setup_tracing
from tradein.services.assessment.factory import build_provider
from tradein.services.credit.checkout import CheckoutService
from tradein.services.credit.schemas import CreditNoteView, CreditValidation
from tradein.services.credit.service import CreditNoteService
from tradein.services.notification.service import NotificationService
from tradein.services.pricing.service import PricingEngine
from tradein.services.tradein.schemas import SubmitTradeInRequest, TradeInView
from tradein.services.tradein.service import TradeInService
from tradein.services.webhooks.handlers import TradeInWebhookHandlers
from tradein.services.webhooks.schemas import (
    CreditNoteIssuedWebhook,
    EvaluationCompletedWebhook,
    OfferAcceptedWebhook,
    WebhookStatusResponse,
)
from tradein.services.webhooks.service import WebhookService
from tradein.services.worker.queue import AssessmentQueue
from tradein.services.worker.service import AssessmentWorker
from tradein.services.worker.sweeper import Sweeper

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings,
    [
        "postgres_dsn",
        "redis_url",
        "kafka_bootstrap_servers",
        "assessment_provider",
        "remote_assessment_url",
        "remote_assessment_api_key",
        "assessment_max_retries",
        "min_condition_score",
        "offer_validity_days",
    ],
)

queue = AssessmentQueue()
credit_notes = CreditNoteService(SessionLocal)
checkout = CheckoutService(SessionLocal)
trade_ins = TradeInService(SessionLocal, queue=queue, credit=credit_notes)
webhooks = WebhookService(SessionLocal)
webhook_handlers = TradeInWebhookHandlers(SessionLocal, webhooks, trade_ins)
notifications = NotificationService(SessionLocal)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run worker, sweeper, and outbox publisher with the app lifecycle."""

    cache = RedisResultCache.from_url(settings.redis_url, namespace=settings.service_name)
    provider = build_provider(settings, cache=cache)
    worker = AssessmentWorker(SessionLocal, queue, provider, PricingEngine(SessionLocal))
    app.state.worker = worker
    sweeper = Sweeper(
        {
            "checkout_expiry": checkout.expire_sessions,
            "credit_note_expiry": credit_notes.expire_overdue,
            "offer_expiry": trade_ins.expire_stale_offers,
            "stale_processing": worker.recover_stale,
            "webhook_retry": webhook_handlers.retry_due,
        }
    )
    stop = asyncio.Event()
    tasks = [
        asyncio.create_task(worker.run(stop)),
        asyncio.create_task(sweeper.run(stop)),
        asyncio.create_task(notifications.outbox_publisher(stop)),
    ]
    yield
    stop.set()
    done, pending = await asyncio.wait(tasks, timeout=settings.assessment_timeout_seconds)
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)
    await provider.aclose()
    await notifications.kafka.close()
    logger.info("background tasks stopped finished=%s cancelled=%s", len(done), len(pending))


app = FastAPI(title="Trade-In Valuation", lifespan=lifespan)
instrument_app(app)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Record request count and latency for every HTTP call."""

    start = perf_counter()
    route = request.url.path
    method = request.method
    status_code = 500
    trace_id_ctx.set(request.headers.get("x-correlation-id") or current_trace_id() or str(uuid4()))
    try:
        response = await call_next(request)
        status_code = response.status_code
        route_obj = request.scope.get("route")
        if route_obj is not None and getattr(route_obj, "path", None):
            route = route_obj.path
        return response
    finally:
        elapsed = max(0.0, perf_counter() - start)
        http_request_duration_seconds.labels(service=settings.service_name, route=route, method=method).observe(
            elapsed
        )
        http_requests_total.labels(
            service=settings.service_name, route=route, method=method, status_code=str(status_code)
        ).inc()


@app.exception_handler(DomainError)
async def domain_error_handler(_: Request, exc: DomainError):
    status = 400
    if isinstance(exc, NotFoundError):
        status = 404
    elif isinstance(exc, AuthorizationError):
        status = 403
    return JSONResponse(status_code=status, content={"code": exc.code, "message": str(exc)})


@app.exception_handler(ConcurrencyConflictError)
async def conflict_handler(_: Request, exc: ConcurrencyConflictError):
    return JSONResponse(status_code=409, content={"code": exc.code, "message": str(exc)})


def enforce_api_key(x_api_key: str | None) -> None:
    """Reject requests that do not provide the configured API key."""

    if x_api_key != settings.api_key:
        raise HTTPException(status_code=401, detail="invalid API key")


def webhook_response(success: bool, label: str):
    if success:
        return {"message": f"{label} webhook processed successfully"}
    return JSONResponse(status_code=400, content={"message": f"Failed to process {label} webhook"})


@app.post("/api/webhooks/tradein/evaluation-completed")
def evaluation_completed(webhook: EvaluationCompletedWebhook, x_api_key: str | None = Header(default=None)):
    enforce_api_key(x_api_key)
    return webhook_response(webhook_handlers.evaluation_completed(webhook), "Evaluation completed")


@app.post("/api/webhooks/tradein/offer-accepted")
def offer_accepted(webhook: OfferAcceptedWebhook, x_api_key: str | None = Header(default=None)):
    enforce_api_key(x_api_key)
    return webhook_response(webhook_handlers.offer_accepted(webhook), "Offer acceptance")


@app.post("/api/webhooks/tradein/credit-note-issued")
def credit_note_issued(webhook: CreditNoteIssuedWebhook, x_api_key: str | None = Header(default=None)):
    enforce_api_key(x_api_key)
    return webhook_response(webhook_handlers.credit_note_issued(webhook), "Credit note issuance")


@app.get("/api/webhooks/tradein/status/{event_id}", response_model=WebhookStatusResponse)
def webhook_status(event_id: str, x_api_key: str | None = Header(default=None)):
    enforce_api_key(x_api_key)
    event = webhooks.get_status(event_id)
    if event is None:
        raise HTTPException(status_code=404, detail="webhook event not found")
    return WebhookStatusResponse.model_validate(event)


@app.post("/internal/trade-ins", response_model=TradeInView, status_code=201)
def submit_trade_in(req: SubmitTradeInRequest, x_api_key: str | None = Header(default=None)):
    """Intake hook for the storefront; queues the trade-in for assessment."""

    enforce_api_key(x_api_key)
    return TradeInView.model_validate(trade_ins.submit(req))


@app.get("/internal/trade-ins/{public_id}", response_model=TradeInView)
def get_trade_in(public_id: str, x_api_key: str | None = Header(default=None)):
    enforce_api_key(x_api_key)
    return TradeInView.model_validate(trade_ins.get_by_public_id(public_id))


@app.get("/internal/credit-notes/{code}", response_model=CreditNoteView)
def get_credit_note(code: str, x_api_key: str | None = Header(default=None)):
    enforce_api_key(x_api_key)
    return CreditNoteView.model_validate(credit_notes.get_by_code(code))


@app.get("/internal/credit-notes/{code}/validate", response_model=CreditValidation)
def validate_credit_note(
    code: str, amount_cents: int, owner_id: str | None = None, x_api_key: str | None = Header(default=None)
):
    enforce_api_key(x_api_key)
    return credit_notes.validate(code, amount_cents, owner_id=owner_id)


@app.post("/internal/assessments/requeue")
def requeue_assessments(request: Request, x_api_key: str | None = Header(default=None)):
    """Re-enqueue SUBMITTED trade-ins and reset stale AI_PROCESSING ones."""

    enforce_api_key(x_api_key)
    worker = request.app.state.worker
    recovered = worker.recover_stale()
    requeued = worker.requeue_submitted()
    return {"stale_recovered": recovered, "requeued": requeued, "queued": queue.queue_length()}


@app.post("/internal/webhooks/retry")
def retry_webhooks(x_api_key: str | None = Header(default=None)):
    enforce_api_key(x_api_key)
    return {"retried": webhook_handlers.retry_due()}


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True, "queued": queue.queue_length()}
