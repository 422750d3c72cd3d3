from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Mapping

from ..db import get_store
from ..schemas import PaymentMethod, PaymentStatus

_TABLE = "payments"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def free_transaction_id(course_id: str, user_id: str) -> str:
    return f"FREE_{course_id}_{user_id}"


async def create_payment(
    *,
    course_id: str,
    user_id: str,
    amount: Decimal,
    currency: str,
    payment_method: PaymentMethod,
    transaction_id: str | None,
) -> dict[str, Any]:
    return await get_store().insert(
        _TABLE,
        {
            "course_id": course_id,
            "user_id": user_id,
            "amount": str(amount),
            "currency": currency,
            "status": PaymentStatus.pending.value,
            "payment_method": payment_method.value,
            "transaction_id": transaction_id,
            "payment_date": _now(),
        },
    )


async def ensure_free_payment(
    *, course_id: str, user_id: str, currency: str
) -> dict[str, Any] | None:
    """Write the zero-amount completed payment for a free enrollment once."""
    transaction_id = free_transaction_id(course_id, user_id)
    row = await get_store().upsert(
        _TABLE,
        {
            "course_id": course_id,
            "user_id": user_id,
            "amount": "0",
            "currency": currency,
            "status": PaymentStatus.completed.value,
            "payment_method": PaymentMethod.free.value,
            "transaction_id": transaction_id,
            "payment_date": _now(),
        },
        ("transaction_id",),
        ignore_duplicates=True,
    )
    if row is not None:
        return row
    return await get_payment_by_transaction(transaction_id)


async def get_payment(payment_id: str) -> dict[str, Any] | None:
    return await get_store().select_one(_TABLE, {"id": payment_id})


async def get_payment_by_transaction(transaction_id: str) -> dict[str, Any] | None:
    return await get_store().select_one(_TABLE, {"transaction_id": transaction_id})


async def list_untracked_pending(
    course_id: str, user_id: str
) -> list[dict[str, Any]]:
    """Pending payments for the pair that never received a transaction id."""
    return await get_store().select(
        _TABLE,
        {
            "course_id": course_id,
            "user_id": user_id,
            "status": PaymentStatus.pending.value,
            "transaction_id": None,
        },
        order=("-payment_date",),
    )


async def set_transaction_id(payment_id: str, transaction_id: str) -> dict[str, Any] | None:
    rows = await get_store().update(
        _TABLE,
        {"id": payment_id, "status": PaymentStatus.pending.value},
        {"transaction_id": transaction_id},
    )
    return rows[0] if rows else None


async def update_status_if(
    payment_id: str,
    *,
    expected: PaymentStatus,
    target: PaymentStatus,
    extra: Mapping[str, Any] | None = None,
) -> dict[str, Any] | None:
    """Status-guarded write. Returns ``None`` when another writer got there first."""
    # payment_date stays the creation time; untracked lookups order by it.
    patch: dict[str, Any] = {"status": target.value, "settled_at": _now()}
    if extra:
        patch.update({key: value for key, value in extra.items() if value is not None})
    rows = await get_store().update(
        _TABLE,
        {"id": payment_id, "status": expected.value},
        patch,
    )
    return rows[0] if rows else None


__all__ = [
    "create_payment",
    "ensure_free_payment",
    "free_transaction_id",
    "get_payment",
    "get_payment_by_transaction",
    "list_untracked_pending",
    "set_transaction_id",
    "update_status_if",
]
