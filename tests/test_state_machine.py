"""Unit tests for order state-machine guardrails."""

import pytest

from calistar.common.state_machine import ALLOWED_TRANSITIONS, can_transition, validate_transition


def test_valid_transition():
    """Sanity check: a legal transition should pass."""

    validate_transition("pending", "completed")


def test_invalid_transition():
    """Illegal transition must raise to protect order correctness."""

    with pytest.raises(ValueError):
        validate_transition("pending", "refunded")


def test_same_state_is_not_a_transition():
    for state in ALLOWED_TRANSITIONS:
        assert not can_transition(state, state)


def test_paid_orders_never_move_backwards():
    for target in ("pending", "active", "expired", "canceled", "failed"):
        assert not can_transition("completed", target)
    assert can_transition("completed", "refunded")


def test_expired_order_accepts_late_confirmation():
    assert can_transition("expired", "completed")
    assert not can_transition("expired", "active")


def test_terminal_states_have_no_exits():
    for state in ("canceled", "refunded", "failed"):
        assert ALLOWED_TRANSITIONS[state] == set()


def test_unknown_state_is_rejected():
    assert not can_transition("unknown", "completed")
