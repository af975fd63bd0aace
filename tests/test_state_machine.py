"""Unit tests for trade-in, credit note, and lock transition guardrails."""

import pytest

from tradein.common.errors import DomainError, InvalidTransitionError
from tradein.common.state_machine import (
    CREDIT_NOTE_TRANSITIONS,
    LOCK_TRANSITIONS,
    is_terminal,
    validate_transition,
)


def test_valid_transition():
    """Sanity check: a legal transition should pass."""

    validate_transition("SUBMITTED", "AI_PROCESSING")
    validate_transition("AI_ASSESSED", "ACCEPTED")
    validate_transition("ACCEPTED", "COMPLETED")


def test_accepting_errored_trade_in_is_rejected():
    """An AI_ERROR record has no offer; accepting it must fail loudly."""

    with pytest.raises(InvalidTransitionError):
        validate_transition("AI_ERROR", "ACCEPTED")


def test_invalid_transition_is_a_domain_error():
    with pytest.raises(DomainError):
        validate_transition("SUBMITTED", "COMPLETED")


def test_admin_override_paths_exist_for_failed_assessments():
    validate_transition("AI_ERROR", "EVALUATED")
    validate_transition("AI_REJECTED", "EVALUATED")
    validate_transition("EVALUATED", "OFFER_SENT")


def test_terminal_states():
    for status in ("COMPLETED", "REJECTED", "CANCELLED", "EXPIRED"):
        assert is_terminal(status)
    assert not is_terminal("AI_ERROR")
    assert is_terminal("CONSUMED", CREDIT_NOTE_TRANSITIONS)


def test_consumed_lock_cannot_be_released():
    with pytest.raises(InvalidTransitionError):
        validate_transition("CONSUMED", "RELEASED", LOCK_TRANSITIONS)
