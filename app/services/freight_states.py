"""Freight status machine.

    PENDING -> OPEN -> IN_PROGRESS -> FINISHED | DELIVERED
    PENDING | OPEN -> CLOSED | DELETED

FINISHED, DELIVERED, CLOSED and DELETED are terminal. Moderators may move a
freight between any two non-terminal states.
"""
from __future__ import annotations

PENDING = "PENDING"
OPEN = "OPEN"
IN_PROGRESS = "IN_PROGRESS"
FINISHED = "FINISHED"
DELIVERED = "DELIVERED"
CLOSED = "CLOSED"
DELETED = "DELETED"

ALL_STATUSES = frozenset({PENDING, OPEN, IN_PROGRESS, FINISHED, DELIVERED, CLOSED, DELETED})
TERMINAL = frozenset({FINISHED, DELIVERED, CLOSED, DELETED})
DELETABLE = frozenset({PENDING, OPEN})
COMPLETED = frozenset({FINISHED, DELIVERED})

TRANSITIONS: dict[str, frozenset[str]] = {
    PENDING: frozenset({OPEN, CLOSED, DELETED}),
    OPEN: frozenset({IN_PROGRESS, CLOSED, DELETED}),
    IN_PROGRESS: frozenset({FINISHED, DELIVERED}),
}

PAYMENT_STATUSES = frozenset({"PENDING", "PAID", "REFUNDED", "CANCELLED"})


def normalise(status: str | None) -> str:
    return (status or "").strip().upper()


def is_terminal(status: str | None) -> bool:
    return normalise(status) in TERMINAL


def can_transition(current: str | None, target: str | None, *, override: bool = False) -> bool:
    current, target = normalise(current), normalise(target)
    if current not in ALL_STATUSES or target not in ALL_STATUSES:
        return False
    if current in TERMINAL or current == target:
        return False
    if target in TRANSITIONS.get(current, frozenset()):
        return True
    return override and target not in TERMINAL
