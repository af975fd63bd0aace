"""Credit note issuance, validation, and lifecycle.

Every write to a note goes through `write_note`, which compares-and-swaps
`version`; a lost race surfaces as `ConcurrencyConflictError`.
"""

import secrets
from datetime import timedelta

from sqlalchemy import func, select, update

from tradein.common.clock import as_utc, utcnow
from tradein.common.config import settings
from tradein.common.errors import (
    AuthorizationError,
    ConcurrencyConflictError,
    CreditValidationError,
    NotFoundError,
    ValidationError,
)
from tradein.common.logging import logger
from tradein.common.metrics import sweep_items_total
from tradein.common.state_machine import CREDIT_NOTE_TRANSITIONS, validate_transition
from tradein.services.credit.models import CreditNote, CreditNoteLock
from tradein.services.credit.schemas import CreditUsageEntry, CreditValidation
from tradein.services.notification.service import CREDIT_NOTE_ISSUED, notify


def generate_code(now) -> str:
    return f"CN{now:%Y%m%d}{secrets.token_hex(4).upper()}"


def locked_cents(db, code: str, exclude_session_id: str | None = None) -> int:
    """Sum of LOCKED reservations against a note."""

    query = select(func.coalesce(func.sum(CreditNoteLock.amount_cents), 0)).where(
        CreditNoteLock.credit_note_code == code,
        CreditNoteLock.status == "LOCKED",
    )
    if exclude_session_id is not None:
        query = query.where(CreditNoteLock.session_id != exclude_session_id)
    return int(db.execute(query).scalar_one())


def load_note_for_update(db, code: str) -> CreditNote:
    note = db.execute(select(CreditNote).where(CreditNote.code == code).with_for_update()).scalar_one_or_none()
    if note is None:
        raise NotFoundError(f"credit note {code} not found")
    return note


def write_note(db, note: CreditNote, **values) -> None:
    """CAS update of one credit note; bumps `version`."""

    expected = note.version
    if "status" in values:
        validate_transition(note.status, values["status"], CREDIT_NOTE_TRANSITIONS)
    result = db.execute(
        update(CreditNote)
        .where(CreditNote.id == note.id, CreditNote.version == expected)
        .values(version=expected + 1, **values)
    )
    if result.rowcount != 1:
        raise ConcurrencyConflictError("credit_note", note.code, expected)
    note.version = expected + 1
    for key, value in values.items():
        setattr(note, key, value)


class CreditNoteService:
    """Issues and manages credit notes; locking lives in `CheckoutService`."""

    def __init__(self, session_factory, clock=utcnow) -> None:
        self.session_factory = session_factory
        self.clock = clock

    def issue(self, db, owner_id: str, amount_cents: int, trade_in_id: int | None = None) -> CreditNote:
        """Stage a new ACTIVE note in the caller's transaction."""

        if amount_cents <= 0:
            raise ValidationError("credit note amount must be positive")
        now = self.clock()
        code = generate_code(now)
        while db.execute(select(CreditNote.id).where(CreditNote.code == code)).first() is not None:
            code = generate_code(now)
        note = CreditNote(
            code=code,
            owner_id=owner_id,
            trade_in_id=trade_in_id,
            amount_cents=amount_cents,
            remaining_cents=amount_cents,
            status="ACTIVE",
            version=0,
            created_at=now,
            expires_at=now + timedelta(days=settings.credit_note_validity_days),
        )
        db.add(note)
        db.flush()
        notify(
            db,
            CREDIT_NOTE_ISSUED,
            "credit_note",
            code,
            {"owner_id": owner_id, "amount_cents": amount_cents, "expires_at": note.expires_at.isoformat()},
        )
        logger.info("credit note issued code=%s owner=%s amount_cents=%s", code, owner_id, amount_cents)
        return note

    def get_by_code(self, code: str) -> CreditNote:
        with self.session_factory() as db:
            note = db.execute(select(CreditNote).where(CreditNote.code == code)).scalar_one_or_none()
            if note is None:
                raise NotFoundError(f"credit note {code} not found")
            return note

    def validate(self, code: str, requested_cents: int, owner_id: str | None = None) -> CreditValidation:
        """Check a note can be applied and how much of `requested_cents` it covers."""

        if requested_cents <= 0:
            raise ValidationError("requested amount must be positive")
        with self.session_factory() as db:
            note = db.execute(select(CreditNote).where(CreditNote.code == code)).scalar_one_or_none()
            if note is None:
                raise CreditValidationError(f"credit note {code} not found", code="CREDIT_NOTE_NOT_FOUND")
            if owner_id is not None and note.owner_id != owner_id:
                raise AuthorizationError("credit note belongs to another customer")
            if note.status != "ACTIVE":
                raise CreditValidationError(
                    f"credit note {code} is {note.status.lower()}", code="CREDIT_NOTE_NOT_ACTIVE"
                )
            if as_utc(note.expires_at) <= self.clock():
                raise CreditValidationError(f"credit note {code} has expired", code="CREDIT_NOTE_EXPIRED")
            return CreditValidation(
                code=code,
                remaining_cents=note.remaining_cents,
                applicable_cents=min(note.remaining_cents, requested_cents),
            )

    def cancel(self, code: str, actor, reason: str) -> CreditNote:
        """Admin cancellation; outstanding locks are released."""

        if not actor.is_admin:
            raise AuthorizationError("only an admin may cancel a credit note")
        now = self.clock()
        with self.session_factory() as db:
            note = load_note_for_update(db, code)
            write_note(db, note, status="CANCELLED", closed_at=now, close_reason=reason)
            released = self._release_locks(db, code, now)
            db.commit()
        logger.info("credit note cancelled code=%s actor=%s locks_released=%s", code, actor.user_id, released)
        return note

    def expire_overdue(self) -> int:
        """Sweep: ACTIVE notes past `expires_at` become EXPIRED."""

        now = self.clock()
        expired = 0
        with self.session_factory() as db:
            codes = db.execute(
                select(CreditNote.code).where(CreditNote.status == "ACTIVE", CreditNote.expires_at <= now)
            ).scalars().all()
            for code in codes:
                note = load_note_for_update(db, code)
                if note.status != "ACTIVE":
                    continue
                write_note(db, note, status="EXPIRED", closed_at=now, close_reason="expired")
                self._release_locks(db, code, now)
                expired += 1
            db.commit()
        if expired:
            sweep_items_total.labels(service=settings.service_name, sweep="credit_note_expiry").inc(expired)
            logger.info("credit note expiry sweep expired=%s", expired)
        return expired

    def _release_locks(self, db, code: str, now) -> int:
        result = db.execute(
            update(CreditNoteLock)
            .where(CreditNoteLock.credit_note_code == code, CreditNoteLock.status == "LOCKED")
            .values(status="RELEASED", released_at=now)
        )
        return result.rowcount

    def list_for_owner(self, owner_id: str) -> list[CreditNote]:
        with self.session_factory() as db:
            return list(
                db.execute(
                    select(CreditNote).where(CreditNote.owner_id == owner_id).order_by(CreditNote.created_at.desc())
                ).scalars()
            )

    def list_expiring(self, days: int = 30) -> list[CreditNote]:
        now = self.clock()
        with self.session_factory() as db:
            return list(
                db.execute(
                    select(CreditNote)
                    .where(
                        CreditNote.status == "ACTIVE",
                        CreditNote.expires_at > now,
                        CreditNote.expires_at <= now + timedelta(days=days),
                    )
                    .order_by(CreditNote.expires_at)
                ).scalars()
            )

    def owner_balance(self, owner_id: str) -> int:
        """Spendable cents across the owner's ACTIVE, unexpired notes."""

        with self.session_factory() as db:
            total = db.execute(
                select(func.coalesce(func.sum(CreditNote.remaining_cents), 0)).where(
                    CreditNote.owner_id == owner_id,
                    CreditNote.status == "ACTIVE",
                    CreditNote.expires_at > self.clock(),
                )
            ).scalar_one()
        return int(total)

    def usage_history(self, code: str) -> list[CreditUsageEntry]:
        with self.session_factory() as db:
            note = db.execute(select(CreditNote).where(CreditNote.code == code)).scalar_one_or_none()
            if note is None:
                raise NotFoundError(f"credit note {code} not found")
            history = [CreditUsageEntry(kind="created", amount_cents=note.amount_cents, at=as_utc(note.created_at))]
            consumed = db.execute(
                select(CreditNoteLock)
                .where(CreditNoteLock.credit_note_code == code, CreditNoteLock.status == "CONSUMED")
                .order_by(CreditNoteLock.consumed_at)
            ).scalars()
            for lock in consumed:
                history.append(
                    CreditUsageEntry(
                        kind="redeemed",
                        amount_cents=-lock.amount_cents,
                        at=as_utc(lock.consumed_at),
                        order_id=lock.order_id,
                    )
                )
            if note.status in ("EXPIRED", "CANCELLED"):
                history.append(
                    CreditUsageEntry(
                        kind=note.status.lower(),
                        amount_cents=-note.remaining_cents,
                        at=as_utc(note.closed_at),
                        note=note.close_reason,
                    )
                )
            return history
