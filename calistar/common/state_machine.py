"""Order state machine transitions enforced by the checkout service.

Statuses only move forward. A confirmation that reaches an order already
expired on the client side is still honored (`expired -> completed`).
"""

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"active", "completed", "expired", "canceled", "failed"},
    "active": {"completed", "expired", "canceled"},
    "expired": {"completed"},
    "completed": {"refunded"},
    "canceled": set(),
    "refunded": set(),
    "failed": set(),
}


def can_transition(current: str, new: str) -> bool:
    """Return True when `current -> new` is a legal forward move."""

    return new in ALLOWED_TRANSITIONS.get(current, set())


def validate_transition(current: str, new: str) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if not can_transition(current, new):
        raise ValueError(f"Invalid transition: {current} -> {new}")
