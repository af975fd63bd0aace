"""Checkout sessions and the credit-note locking protocol.

The capacity check and the reservation for one note happen in a single
transaction that holds the note row (`SELECT ... FOR UPDATE`) and bumps its
version, so two sessions can never both reserve the same balance. The
invariant kept is: sum(LOCKED amounts for a code) <= remaining_cents.
"""

from datetime import timedelta

from sqlalchemy import select, update

from tradein.common.clock import as_utc, utcnow
from tradein.common.config import settings
from tradein.common.errors import (
    AuthorizationError,
    ConcurrencyConflictError,
    CreditLockConflictError,
    CreditValidationError,
    InsufficientCreditError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from tradein.common.logging import logger
from tradein.common.metrics import (
    credit_consumed_cents_total,
    credit_lock_attempts_total,
    credit_lock_contention_total,
    sweep_items_total,
)
from tradein.common.state_machine import CHECKOUT_SESSION_TRANSITIONS, LOCK_TRANSITIONS, validate_transition
from tradein.services.credit.models import CheckoutSession, CreditNoteLock, StockLock
from tradein.services.credit.service import load_note_for_update, locked_cents, write_note


class CheckoutService:
    def __init__(self, session_factory, clock=utcnow) -> None:
        self.session_factory = session_factory
        self.clock = clock
        self.service_name = settings.service_name

    def create_session(
        self, owner_id: str, credit_code: str | None = None, amount_cents: int | None = None
    ) -> CheckoutSession:
        """Open a session; when a code is given the credit is locked straight away."""

        now = self.clock()
        with self.session_factory() as db:
            session = CheckoutSession(
                owner_id=owner_id,
                status="ACTIVE",
                created_at=now,
                expires_at=now + timedelta(minutes=settings.checkout_session_ttl_minutes),
            )
            db.add(session)
            db.commit()
        logger.info("checkout session created session_id=%s owner=%s", session.id, owner_id)
        if credit_code:
            if not amount_cents:
                raise ValidationError("amount is required when applying a credit note")
            self.lock(session.id, credit_code, amount_cents)
            with self.session_factory() as db:
                session = db.get(CheckoutSession, session.id)
        return session

    def _active_session(self, db, session_id: str) -> CheckoutSession:
        session = db.get(CheckoutSession, session_id)
        if session is None:
            raise NotFoundError(f"checkout session {session_id} not found")
        if session.status != "ACTIVE":
            raise InvalidTransitionError(f"checkout session {session_id} is {session.status}")
        if as_utc(session.expires_at) <= self.clock():
            raise InvalidTransitionError(f"checkout session {session_id} has expired")
        return session

    def lock(self, session_id: str, code: str, amount_cents: int) -> CreditNoteLock:
        """Reserve `amount_cents` of a note for this session.

        Re-locking from the same session replaces that session's reservation.
        """

        if amount_cents <= 0:
            raise ValidationError("lock amount must be positive")
        now = self.clock()
        try:
            with self.session_factory() as db:
                session = self._active_session(db, session_id)
                note = load_note_for_update(db, code)
                if note.owner_id != session.owner_id:
                    raise AuthorizationError("credit note belongs to another customer")
                if note.status != "ACTIVE" or as_utc(note.expires_at) <= now:
                    raise CreditValidationError(f"credit note {code} is not redeemable", code="CREDIT_NOTE_NOT_ACTIVE")

                held_elsewhere = db.execute(
                    select(CreditNoteLock.id).where(
                        CreditNoteLock.credit_note_code == code,
                        CreditNoteLock.status == "LOCKED",
                        CreditNoteLock.owner_id == session.owner_id,
                        CreditNoteLock.session_id != session_id,
                    )
                ).first()
                if held_elsewhere is not None:
                    credit_lock_contention_total.labels(service=self.service_name, reason="same_owner").inc()
                    raise CreditLockConflictError(f"credit note {code} is already in use by another checkout")

                available = note.remaining_cents - locked_cents(db, code, exclude_session_id=session_id)
                if amount_cents > available:
                    credit_lock_contention_total.labels(service=self.service_name, reason="insufficient").inc()
                    logger.warning(
                        "credit lock contention code=%s session_id=%s requested_cents=%s available_cents=%s",
                        code,
                        session_id,
                        amount_cents,
                        available,
                    )
                    raise InsufficientCreditError(
                        f"requested {amount_cents} exceeds available {max(available, 0)} on {code}"
                    )

                # Serializes concurrent lockers of this code even without row locks.
                write_note(db, note)

                lock = db.execute(
                    select(CreditNoteLock).where(
                        CreditNoteLock.session_id == session_id,
                        CreditNoteLock.credit_note_code == code,
                        CreditNoteLock.status == "LOCKED",
                    )
                ).scalar_one_or_none()
                if lock is None:
                    lock = CreditNoteLock(
                        session_id=session_id,
                        credit_note_code=code,
                        owner_id=session.owner_id,
                        amount_cents=amount_cents,
                        status="LOCKED",
                        created_at=now,
                        expires_at=session.expires_at,
                    )
                    db.add(lock)
                else:
                    lock.amount_cents = amount_cents
                session.credit_note_code = code
                session.credit_locked_cents = amount_cents
                db.commit()
        except ConcurrencyConflictError:
            credit_lock_attempts_total.labels(service=self.service_name, result="conflict").inc()
            raise
        except Exception:
            credit_lock_attempts_total.labels(service=self.service_name, result="rejected").inc()
            raise
        credit_lock_attempts_total.labels(service=self.service_name, result="granted").inc()
        logger.info("credit lock granted code=%s session_id=%s amount_cents=%s", code, session_id, amount_cents)
        return lock

    def _transition_lock(self, db, lock: CreditNoteLock, new_status: str, **values) -> None:
        """Move a lock out of LOCKED only if nobody else already did."""

        validate_transition(lock.status, new_status, LOCK_TRANSITIONS)
        result = db.execute(
            update(CreditNoteLock)
            .where(CreditNoteLock.id == lock.id, CreditNoteLock.status == lock.status)
            .values(status=new_status, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = db.execute(select(CreditNoteLock.status).where(CreditNoteLock.id == lock.id)).scalar_one_or_none()
            credit_lock_contention_total.labels(service=self.service_name, reason="lock_race").inc()
            logger.warning(
                "credit lock transition lost lock_id=%s wanted=%s current=%s", lock.id, new_status, current
            )
            raise InvalidTransitionError(f"credit lock {lock.id} is already {current or 'gone'}")
        lock.status = new_status
        for key, value in values.items():
            setattr(lock, key, value)

    def _release_lock(self, db, lock: CreditNoteLock, now) -> None:
        self._transition_lock(db, lock, "RELEASED", released_at=now)

    def release(self, lock_id: str) -> CreditNoteLock:
        """Free a lock's reservation. Releasing twice is a no-op; a consumed lock cannot be released."""

        now = self.clock()
        with self.session_factory() as db:
            lock = db.get(CreditNoteLock, lock_id)
            if lock is None:
                raise NotFoundError(f"credit lock {lock_id} not found")
            if lock.status == "RELEASED":
                return lock
            self._release_lock(db, lock, now)
            session = db.get(CheckoutSession, lock.session_id)
            if session is not None and session.credit_note_code == lock.credit_note_code:
                session.credit_locked_cents = 0
            db.commit()
        logger.info("credit lock released lock_id=%s code=%s", lock_id, lock.credit_note_code)
        return lock

    def _consume_lock(self, db, lock: CreditNoteLock, order_id: str, now) -> bool:
        """Apply one lock to its note. Returns False when already applied to this order."""

        if lock.status == "CONSUMED":
            if lock.order_id == order_id:
                return False
            raise InvalidTransitionError(f"credit lock {lock.id} was consumed by another order")
        validate_transition(lock.status, "CONSUMED", LOCK_TRANSITIONS)

        note = load_note_for_update(db, lock.credit_note_code)
        if note.status != "ACTIVE":
            raise CreditValidationError(f"credit note {note.code} is {note.status.lower()}")
        if lock.amount_cents > note.remaining_cents:
            raise InsufficientCreditError(f"lock {lock.id} exceeds remaining balance on {note.code}")

        remaining = note.remaining_cents - lock.amount_cents
        values = {"remaining_cents": remaining, "redeemed_at": now}
        if remaining == 0:
            values.update(status="CONSUMED", consumed_in_order_id=order_id, closed_at=now)
        write_note(db, note, **values)

        # A concurrent release rolls the note write back with this transaction.
        self._transition_lock(db, lock, "CONSUMED", order_id=order_id, consumed_at=now)
        credit_consumed_cents_total.labels(service=self.service_name).inc(lock.amount_cents)
        logger.info(
            "credit consumed code=%s lock_id=%s order_id=%s amount_cents=%s remaining_cents=%s",
            note.code,
            lock.id,
            order_id,
            lock.amount_cents,
            remaining,
        )
        return True

    def consume(self, lock_id: str, order_id: str) -> CreditNoteLock:
        """Redeem a lock for a completed order; repeating with the same order is a no-op."""

        if not order_id:
            raise ValidationError("order id is required to consume credit")
        with self.session_factory() as db:
            lock = db.execute(
                select(CreditNoteLock).where(CreditNoteLock.id == lock_id).with_for_update()
            ).scalar_one_or_none()
            if lock is None:
                raise NotFoundError(f"credit lock {lock_id} not found")
            self._consume_lock(db, lock, order_id, self.clock())
            db.commit()
            return lock

    def lock_stock(self, session_id: str, product_id: str, quantity: int) -> StockLock:
        if quantity <= 0:
            raise ValidationError("quantity must be positive")
        with self.session_factory() as db:
            session = self._active_session(db, session_id)
            lock = StockLock(
                session_id=session_id,
                product_id=product_id,
                quantity=quantity,
                status="LOCKED",
                created_at=self.clock(),
                expires_at=session.expires_at,
            )
            db.add(lock)
            db.commit()
        logger.info("stock lock granted session_id=%s product_id=%s quantity=%s", session_id, product_id, quantity)
        return lock

    def complete_session(self, session_id: str, order_id: str) -> CheckoutSession:
        """Consume every outstanding lock of the session for `order_id`."""

        if not order_id:
            raise ValidationError("order id is required to complete checkout")
        now = self.clock()
        with self.session_factory() as db:
            session = db.get(CheckoutSession, session_id)
            if session is None:
                raise NotFoundError(f"checkout session {session_id} not found")
            if session.status == "COMPLETED" and session.order_id == order_id:
                return session
            session = self._active_session(db, session_id)

            credit_locks = db.execute(
                select(CreditNoteLock)
                .where(CreditNoteLock.session_id == session_id, CreditNoteLock.status == "LOCKED")
                .with_for_update()
            ).scalars().all()
            for lock in credit_locks:
                self._consume_lock(db, lock, order_id, now)
            db.execute(
                update(StockLock)
                .where(StockLock.session_id == session_id, StockLock.status == "LOCKED")
                .values(status="CONSUMED")
            )
            validate_transition(session.status, "COMPLETED", CHECKOUT_SESSION_TRANSITIONS)
            session.status = "COMPLETED"
            session.order_id = order_id
            session.closed_at = now
            db.commit()
        logger.info("checkout completed session_id=%s order_id=%s credit_locks=%s", session_id, order_id, len(credit_locks))
        return session

    def _close_session(self, db, session: CheckoutSession, status: str, now) -> None:
        validate_transition(session.status, status, CHECKOUT_SESSION_TRANSITIONS)
        for lock in db.execute(
            select(CreditNoteLock).where(CreditNoteLock.session_id == session.id, CreditNoteLock.status == "LOCKED")
        ).scalars():
            self._release_lock(db, lock, now)
        db.execute(
            update(StockLock)
            .where(StockLock.session_id == session.id, StockLock.status == "LOCKED")
            .values(status="RELEASED", released_at=now)
        )
        session.status = status
        session.credit_locked_cents = 0
        session.closed_at = now

    def cancel_session(self, session_id: str) -> CheckoutSession:
        now = self.clock()
        with self.session_factory() as db:
            session = db.get(CheckoutSession, session_id)
            if session is None:
                raise NotFoundError(f"checkout session {session_id} not found")
            self._close_session(db, session, "CANCELLED", now)
            db.commit()
        logger.info("checkout cancelled session_id=%s", session_id)
        return session

    def expire_sessions(self) -> int:
        """Sweep: ACTIVE sessions past `expires_at` expire and free their locks."""

        now = self.clock()
        with self.session_factory() as db:
            sessions = db.execute(
                select(CheckoutSession)
                .where(CheckoutSession.status == "ACTIVE", CheckoutSession.expires_at <= now)
                .with_for_update(skip_locked=True)
            ).scalars().all()
            for session in sessions:
                self._close_session(db, session, "EXPIRED", now)
            db.commit()
        if sessions:
            sweep_items_total.labels(service=self.service_name, sweep="checkout_expiry").inc(len(sessions))
            logger.info("checkout expiry sweep expired=%s", len(sessions))
        return len(sessions)
