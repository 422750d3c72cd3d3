from __future__ import annotations

import sentry_sdk

from ..errors import PartialWriteError, ReconciliationConflict


def _sentry_enabled() -> bool:
    return sentry_sdk.get_client().is_active()


def capture_partial_write(exc: PartialWriteError) -> None:
    if not _sentry_enabled():
        return
    with sentry_sdk.new_scope() as scope:
        scope.set_tag("alert_kind", "partial_write")
        scope.set_tag("course_id", exc.course_id)
        scope.set_tag("student_id", exc.student_id)
        sentry_sdk.capture_exception(exc)


def capture_reconciliation_conflict(exc: ReconciliationConflict, *, gateway: str) -> None:
    if not _sentry_enabled():
        return
    with sentry_sdk.new_scope() as scope:
        scope.set_tag("alert_kind", "reconciliation_conflict")
        scope.set_tag("payment.gateway", gateway)
        scope.set_tag("payment.stored_status", exc.stored)
        scope.set_tag("payment.reported_status", exc.reported)
        sentry_sdk.capture_message(str(exc), level="warning")


def capture_unmatched_callback(gateway: str, transaction_id: str | None) -> None:
    if not _sentry_enabled():
        return
    with sentry_sdk.new_scope() as scope:
        scope.set_tag("alert_kind", "unmatched_callback")
        scope.set_tag("payment.gateway", gateway)
        if transaction_id:
            scope.set_tag("payment.transaction_id", transaction_id)
        sentry_sdk.capture_message(
            f"{gateway} callback for unknown payment {transaction_id}", level="warning"
        )


__all__ = [
    "capture_partial_write",
    "capture_reconciliation_conflict",
    "capture_unmatched_callback",
]
