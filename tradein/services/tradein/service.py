"""Trade-in lifecycle: submission, evaluation, customer decision, credit issuance.

Status writes are guarded by `(id, status, state_version)` and each one
appends a `TradeInTimeline` row in the same transaction.
"""

from datetime import timedelta

from sqlalchemy import func, select, update

from tradein.common.clock import as_utc, utcnow
from tradein.common.config import settings
from tradein.common.errors import (
    AuthorizationError,
    ConcurrencyConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from tradein.common.logging import logger
from tradein.common.metrics import sweep_items_total
from tradein.common.state_machine import OFFER_STATES, validate_transition
from tradein.services.credit.service import CreditNoteService
from tradein.services.notification.service import EVALUATION_COMPLETED, OFFER_ACCEPTED, notify
from tradein.services.tradein.models import TradeIn, TradeInTimeline
from tradein.services.tradein.schemas import (
    Actor,
    ManualEvaluation,
    SubmitTradeInRequest,
    TradeInStatistics,
)


def transition(db, trade_in: TradeIn, new_status: str, reason: str, actor: str = "system", **values) -> None:
    """Apply one validated status change with optimistic concurrency."""

    validate_transition(trade_in.status, new_status)
    from_status = trade_in.status
    current_version = trade_in.state_version
    result = db.execute(
        update(TradeIn)
        .where(
            TradeIn.id == trade_in.id,
            TradeIn.status == from_status,
            TradeIn.state_version == current_version,
        )
        .values(status=new_status, state_version=current_version + 1, updated_at=utcnow(), **values)
    )
    if result.rowcount != 1:
        raise ConcurrencyConflictError("trade_in", trade_in.public_id, current_version)

    trade_in.status = new_status
    trade_in.state_version = current_version + 1
    for key, value in values.items():
        setattr(trade_in, key, value)
    db.add(
        TradeInTimeline(
            trade_in_id=trade_in.id,
            from_state=from_status,
            to_state=new_status,
            reason=reason,
            actor=actor,
            created_at=utcnow(),
        )
    )
    logger.info(
        "trade-in transition trade_in_id=%s from=%s to=%s reason=%s", trade_in.public_id, from_status, new_status, reason
    )


class TradeInService:
    """Customer and admin operations on trade-ins."""

    def __init__(self, session_factory, queue=None, credit: CreditNoteService | None = None, clock=utcnow) -> None:
        self.session_factory = session_factory
        self.queue = queue
        self.clock = clock
        self.credit = credit or CreditNoteService(session_factory, clock=clock)

    def submit(self, req: SubmitTradeInRequest) -> TradeIn:
        """Create a SUBMITTED trade-in and queue it for assessment."""

        with self.session_factory() as db:
            trade_in = TradeIn(
                owner_id=req.owner_id,
                device_brand=req.device_brand.strip(),
                device_model=req.device_model.strip(),
                device_type=req.device_type,
                device_storage_gb=req.device_storage_gb,
                imei=req.imei,
                photo_urls=list(req.photo_urls),
                proposed_value_cents=req.proposed_value_cents,
                notes=req.notes,
                status="SUBMITTED",
                state_version=0,
                retry_count=0,
                submitted_at=self.clock(),
            )
            db.add(trade_in)
            db.flush()
            db.add(
                TradeInTimeline(
                    trade_in_id=trade_in.id,
                    from_state=None,
                    to_state="SUBMITTED",
                    reason="submitted",
                    actor=req.owner_id,
                    created_at=utcnow(),
                )
            )
            db.commit()
        logger.info("trade-in submitted trade_in_id=%s owner=%s", trade_in.public_id, trade_in.owner_id)
        if self.queue is not None:
            self.queue.enqueue(trade_in.id)
        return trade_in

    def _load(self, db, public_id: str) -> TradeIn:
        trade_in = db.execute(select(TradeIn).where(TradeIn.public_id == public_id)).scalar_one_or_none()
        if trade_in is None:
            raise NotFoundError(f"trade-in {public_id} not found")
        return trade_in

    def get(self, trade_in_id: int) -> TradeIn:
        with self.session_factory() as db:
            trade_in = db.get(TradeIn, trade_in_id)
            if trade_in is None:
                raise NotFoundError(f"trade-in {trade_in_id} not found")
            return trade_in

    def get_by_public_id(self, public_id: str, actor: Actor | None = None) -> TradeIn:
        with self.session_factory() as db:
            trade_in = self._load(db, public_id)
        if actor is not None and not actor.is_admin and actor.user_id != trade_in.owner_id:
            raise AuthorizationError("trade-in belongs to another customer")
        return trade_in

    def list_for_owner(self, owner_id: str) -> list[TradeIn]:
        with self.session_factory() as db:
            return list(
                db.execute(
                    select(TradeIn).where(TradeIn.owner_id == owner_id).order_by(TradeIn.submitted_at.desc())
                ).scalars()
            )

    def timeline(self, public_id: str) -> list[TradeInTimeline]:
        with self.session_factory() as db:
            trade_in = self._load(db, public_id)
            return list(
                db.execute(
                    select(TradeInTimeline)
                    .where(TradeInTimeline.trade_in_id == trade_in.id)
                    .order_by(TradeInTimeline.created_at, TradeInTimeline.timeline_id)
                ).scalars()
            )

    def statistics(self) -> TradeInStatistics:
        with self.session_factory() as db:
            by_status = dict(db.execute(select(TradeIn.status, func.count()).group_by(TradeIn.status)).all())
            offered = db.execute(select(func.coalesce(func.sum(TradeIn.auto_offer_cents), 0))).scalar_one()
            issued = db.execute(
                select(func.coalesce(func.sum(func.coalesce(TradeIn.approved_value_cents, TradeIn.auto_offer_cents)), 0))
                .where(TradeIn.credit_issued_at.is_not(None))
            ).scalar_one()
        return TradeInStatistics(
            total=sum(by_status.values()),
            by_status=by_status,
            total_offered_cents=int(offered),
            total_credit_issued_cents=int(issued),
        )

    def evaluate(self, public_id: str, evaluation: ManualEvaluation, actor: Actor) -> TradeIn:
        """Admin override: set grade and value directly and send the offer."""

        if not actor.is_admin:
            raise AuthorizationError("only an admin may evaluate a trade-in")
        now = self.clock()
        with self.session_factory() as db:
            trade_in = self._load(db, public_id)
            transition(
                db,
                trade_in,
                "EVALUATED",
                reason="manual_evaluation",
                actor=actor.user_id,
                approved_grade=evaluation.grade,
                approved_value_cents=evaluation.value_cents,
                admin_notes=evaluation.notes,
                admin_approved_at=now,
            )
            transition(
                db,
                trade_in,
                "OFFER_SENT",
                reason="offer_sent",
                actor=actor.user_id,
                offer_expires_at=now + timedelta(days=settings.offer_validity_days),
            )
            notify(
                db,
                EVALUATION_COMPLETED,
                "trade_in",
                trade_in.public_id,
                {"owner_id": trade_in.owner_id, "grade": evaluation.grade, "offer_cents": evaluation.value_cents},
            )
            db.commit()
            return trade_in

    def _owned_offer(self, db, public_id: str, actor: Actor) -> TradeIn:
        trade_in = self._load(db, public_id)
        if actor.user_id != trade_in.owner_id:
            raise AuthorizationError("only the owning customer may respond to an offer")
        if trade_in.status not in OFFER_STATES:
            raise InvalidTransitionError(f"trade-in {public_id} has no open offer (status {trade_in.status})")
        expires = as_utc(trade_in.offer_expires_at)
        if expires is not None and expires <= self.clock():
            raise InvalidTransitionError(f"offer for trade-in {public_id} has expired")
        return trade_in

    def accept(self, public_id: str, actor: Actor) -> TradeIn:
        """Customer accepts: issue the credit note and complete, atomically."""

        now = self.clock()
        with self.session_factory() as db:
            trade_in = self._owned_offer(db, public_id, actor)
            amount = trade_in.offer_cents
            if not amount or amount <= 0:
                raise ValidationError(f"trade-in {public_id} has no positive offer to accept")
            transition(db, trade_in, "ACCEPTED", reason="offer_accepted", actor=actor.user_id, user_accepted_at=now)
            note = self.credit.issue(db, trade_in.owner_id, amount, trade_in_id=trade_in.id)
            transition(
                db,
                trade_in,
                "COMPLETED",
                reason="credit_issued",
                actor="system",
                credit_issued_at=now,
                credit_note_code=note.code,
            )
            notify(
                db,
                OFFER_ACCEPTED,
                "trade_in",
                trade_in.public_id,
                {"owner_id": trade_in.owner_id, "amount_cents": amount, "credit_note_code": note.code},
            )
            db.commit()
        logger.info("trade-in accepted trade_in_id=%s credit_note=%s", public_id, note.code)
        return trade_in

    def reject(self, public_id: str, actor: Actor) -> TradeIn:
        with self.session_factory() as db:
            trade_in = self._owned_offer(db, public_id, actor)
            transition(db, trade_in, "REJECTED", reason="offer_rejected", actor=actor.user_id)
            db.commit()
            return trade_in

    def cancel(self, public_id: str, actor: Actor, reason: str = "cancelled") -> TradeIn:
        if not actor.is_admin:
            raise AuthorizationError("only an admin may cancel a trade-in")
        with self.session_factory() as db:
            trade_in = self._load(db, public_id)
            transition(db, trade_in, "CANCELLED", reason=reason, actor=actor.user_id)
            db.commit()
        if self.queue is not None:
            self.queue.discard(trade_in.id)
        return trade_in

    def expire(self, public_id: str, actor: Actor) -> TradeIn:
        if not actor.is_admin:
            raise AuthorizationError("only an admin may expire a trade-in")
        with self.session_factory() as db:
            trade_in = self._load(db, public_id)
            transition(db, trade_in, "EXPIRED", reason="expired_by_admin", actor=actor.user_id)
            db.commit()
            return trade_in

    def expire_stale_offers(self) -> int:
        """Sweep: open offers past `offer_expires_at` become EXPIRED."""

        now = self.clock()
        expired = 0
        with self.session_factory() as db:
            rows = db.execute(
                select(TradeIn).where(TradeIn.status.in_(OFFER_STATES), TradeIn.offer_expires_at <= now)
            ).scalars().all()
            for trade_in in rows:
                try:
                    transition(db, trade_in, "EXPIRED", reason="offer_expired")
                    expired += 1
                except ConcurrencyConflictError as exc:
                    logger.warning("offer expiry skipped: %s", exc)
            db.commit()
        if expired:
            sweep_items_total.labels(service=settings.service_name, sweep="offer_expiry").inc(expired)
        return expired
