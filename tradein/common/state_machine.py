"""Status transition tables for trade-ins, credit notes, checkout records."""

from tradein.common.errors import InvalidTransitionError


TRADE_IN_TRANSITIONS: dict[str, set[str]] = {
    "SUBMITTED": {"AI_PROCESSING", "EVALUATED", "CANCELLED"},
    # AI_PROCESSING -> SUBMITTED is the retry/stale-recovery reset.
    "AI_PROCESSING": {"AI_ASSESSED", "AI_REJECTED", "AI_ERROR", "SUBMITTED"},
    "AI_ASSESSED": {"ACCEPTED", "REJECTED", "EVALUATED", "EXPIRED", "CANCELLED"},
    "AI_REJECTED": {"EVALUATED", "CANCELLED"},
    "AI_ERROR": {"EVALUATED", "CANCELLED"},
    "EVALUATED": {"OFFER_SENT", "CANCELLED"},
    "OFFER_SENT": {"ACCEPTED", "REJECTED", "EXPIRED", "CANCELLED"},
    "ACCEPTED": {"COMPLETED", "CANCELLED"},
    "REJECTED": set(),
    "COMPLETED": set(),
    "CANCELLED": set(),
    "EXPIRED": set(),
}

# States the customer may act on (accept/reject an offer).
OFFER_STATES = frozenset({"AI_ASSESSED", "OFFER_SENT"})

CREDIT_NOTE_TRANSITIONS: dict[str, set[str]] = {
    "ACTIVE": {"CONSUMED", "EXPIRED", "CANCELLED"},
    "CONSUMED": set(),
    "EXPIRED": set(),
    "CANCELLED": set(),
}

CHECKOUT_SESSION_TRANSITIONS: dict[str, set[str]] = {
    "ACTIVE": {"COMPLETED", "EXPIRED", "CANCELLED"},
    "COMPLETED": set(),
    "EXPIRED": set(),
    "CANCELLED": set(),
}

LOCK_TRANSITIONS: dict[str, set[str]] = {
    "LOCKED": {"RELEASED", "CONSUMED"},
    "RELEASED": set(),
    "CONSUMED": set(),
}


def validate_transition(current: str, new: str, table: dict[str, set[str]] = TRADE_IN_TRANSITIONS) -> None:
    """Raise when a transition is not allowed by the given state machine."""

    if new not in table.get(current, set()):
        raise InvalidTransitionError(f"Invalid transition: {current} -> {new}")


def is_terminal(status: str, table: dict[str, set[str]] = TRADE_IN_TRANSITIONS) -> bool:
    return not table.get(status)
