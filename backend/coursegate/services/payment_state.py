from __future__ import annotations

from ..errors import InvalidPaymentTransition
from ..schemas import PaymentStatus

TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.pending: frozenset({PaymentStatus.completed, PaymentStatus.failed}),
    PaymentStatus.completed: frozenset(),
    PaymentStatus.failed: frozenset(),
}


def coerce_status(value: str | PaymentStatus | None) -> PaymentStatus:
    if isinstance(value, PaymentStatus):
        return value
    return PaymentStatus((value or PaymentStatus.pending.value).lower())


def is_terminal(status: str | PaymentStatus | None) -> bool:
    return not TRANSITIONS[coerce_status(status)]


def ensure_transition(
    current: str | PaymentStatus | None, target: PaymentStatus
) -> PaymentStatus:
    current_status = coerce_status(current)
    if target not in TRANSITIONS[current_status]:
        raise InvalidPaymentTransition(current_status.value, target.value)
    return current_status


__all__ = ["TRANSITIONS", "coerce_status", "ensure_transition", "is_terminal"]
