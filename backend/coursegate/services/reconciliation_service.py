"""Bring local payment state in line with what the gateways report.

Two channels feed this module: gateway callbacks (SSLCommerz IPN and browser
returns, the bKash redirect) and the client's single delayed check. Both
resolve a gateway-confirmed verdict first and then write through
:func:`apply_gateway_status`, which re-reads, no-ops on terminal rows and
performs a status-guarded update.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping

from .. import metrics
from ..errors import (
    GatewaySessionError,
    InvalidPaymentTransition,
    PaymentNotFound,
    ReconciliationConflict,
)
from ..logging_context import bind_log_context
from ..repositories import enrollments as enrollments_repo
from ..repositories import payments as payments_repo
from ..schemas import (
    CheckResult,
    PaymentCheckResponse,
    PaymentMethod,
    PaymentStatus,
    enrollment_from_row,
)
from ..utils import urls
from . import alerts, gateways
from .payment_state import coerce_status, ensure_transition, is_terminal

logger = logging.getLogger(__name__)

CHECK_MESSAGES = {
    CheckResult.completed: "Your payment has been confirmed and enrollment is complete.",
    CheckResult.failed: "We couldn't process your payment. Please try again.",
    CheckResult.processing: "Your payment is being processed. You'll receive confirmation shortly.",
}


@dataclass(slots=True)
class CallbackResult:
    payment: dict[str, Any] | None
    verdict: gateways.GatewayVerdict
    applied: bool = False

    @property
    def status(self) -> PaymentStatus | None:
        if self.payment is None:
            return None
        return coerce_status(self.payment.get("status"))

    @property
    def course_id(self) -> str | None:
        if self.payment is not None and self.payment.get("course_id"):
            return str(self.payment["course_id"])
        return self.verdict.course_id

    @property
    def transaction_id(self) -> str | None:
        if self.payment is not None and self.payment.get("transaction_id"):
            return str(self.payment["transaction_id"])
        return self.verdict.transaction_id


def _payment_method(payment: Mapping[str, Any]) -> PaymentMethod:
    try:
        return PaymentMethod(str(payment.get("payment_method") or "").lower())
    except ValueError:
        raise GatewaySessionError(
            f"Payment uses an unknown method: {payment.get('payment_method')}"
        ) from None


async def grant_access(payment: Mapping[str, Any]) -> dict[str, Any] | None:
    """Ensure the enrollment a completed payment pays for exists."""
    course_id = payment.get("course_id")
    user_id = payment.get("user_id")
    if not course_id or not user_id:
        logger.warning(
            "Completed payment %s has no course or user; cannot enroll",
            payment.get("transaction_id"),
        )
        return None
    row, created = await enrollments_repo.ensure_active_enrollment(
        str(course_id), str(user_id)
    )
    if created:
        metrics.enrollments_created_total.labels(path="payment").inc()
        logger.info("Enrollment created for course %s after payment", course_id)
    return row


def _report_conflict(
    payment: Mapping[str, Any], stored: PaymentStatus, reported: PaymentStatus
) -> None:
    conflict = ReconciliationConflict(
        str(payment.get("transaction_id") or payment.get("id")),
        stored.value,
        reported.value,
    )
    gateway = str(payment.get("payment_method") or "unknown")
    logger.warning(
        "Reconciliation conflict",
        extra={
            "transaction_id": conflict.transaction_id,
            "stored_status": conflict.stored,
            "reported_status": conflict.reported,
            "gateway": gateway,
        },
    )
    alerts.capture_reconciliation_conflict(conflict, gateway=gateway)


async def _settle_terminal(
    payment: dict[str, Any], target: PaymentStatus
) -> tuple[dict[str, Any], bool]:
    stored = coerce_status(payment.get("status"))
    if stored is not target:
        _report_conflict(payment, stored, target)
    else:
        logger.info(
            "Payment %s already %s; nothing to apply",
            payment.get("transaction_id"),
            stored.value,
        )
    if stored is PaymentStatus.completed:
        # Heals a completed payment whose enrollment write was lost.
        await grant_access(payment)
    return payment, False


async def apply_gateway_status(
    payment: dict[str, Any],
    target: PaymentStatus,
    *,
    trigger: str,
    reference: str | None = None,
) -> tuple[dict[str, Any], bool]:
    """Move ``payment`` to the terminal ``target`` once.

    Returns the stored row and whether this call performed the transition.
    """
    try:
        current = ensure_transition(payment.get("status"), target)
    except InvalidPaymentTransition:
        return await _settle_terminal(payment, target)

    updated = await payments_repo.update_status_if(
        str(payment["id"]),
        expected=current,
        target=target,
        extra={"gateway_reference": reference},
    )
    if updated is None:
        latest = await payments_repo.get_payment(str(payment["id"])) or payment
        if is_terminal(latest.get("status")):
            return await _settle_terminal(latest, target)
        logger.warning(
            "Status write for payment %s matched no pending row", payment.get("id")
        )
        return latest, False

    metrics.payment_transitions_total.labels(status=target.value, trigger=trigger).inc()
    logger.info(
        "Payment %s moved to %s via %s",
        updated.get("transaction_id"),
        target.value,
        trigger,
    )
    if target is PaymentStatus.completed:
        await grant_access(updated)
    return updated, True


def _amount_short(payment: Mapping[str, Any], paid: Decimal | None) -> bool:
    if paid is None:
        return False
    try:
        expected = Decimal(str(payment.get("amount")))
    except ArithmeticError:
        return False
    return paid < expected


async def locate_payment(verdict: gateways.GatewayVerdict) -> dict[str, Any] | None:
    """Find the local payment a verdict refers to.

    The gateway's transaction id wins, then our own merchant reference; when
    neither is known the newest untracked pending payment for the course and
    user is adopted.
    """
    for candidate in (verdict.transaction_id, verdict.merchant_reference):
        if not candidate:
            continue
        payment = await payments_repo.get_payment_by_transaction(str(candidate))
        if payment is None:
            continue
        if (
            verdict.transaction_id
            and candidate != verdict.transaction_id
            and not is_terminal(payment.get("status"))
        ):
            # Session id never made it onto the row; adopt the gateway's.
            adopted = await payments_repo.set_transaction_id(
                str(payment["id"]), str(verdict.transaction_id)
            )
            payment = adopted or payment
        return payment

    if verdict.course_id and verdict.user_id:
        untracked = await payments_repo.list_untracked_pending(
            str(verdict.course_id), str(verdict.user_id)
        )
        if untracked:
            payment = untracked[0]
            if verdict.transaction_id:
                adopted = await payments_repo.set_transaction_id(
                    str(payment["id"]), str(verdict.transaction_id)
                )
                payment = adopted or payment
            return payment
    return None


async def handle_callback(
    method: PaymentMethod, payload: Mapping[str, Any]
) -> CallbackResult:
    gateway = await gateways.build_gateway(method)
    verdict = await gateway.confirm_callback(payload)
    payment = await locate_payment(verdict)
    if payment is not None:
        bind_log_context(
            transaction_id=payment.get("transaction_id"), course_id=payment.get("course_id")
        )
    if payment is None:
        metrics.payment_callbacks_total.labels(gateway=method.value, result="unmatched").inc()
        logger.warning(
            "%s callback for unknown payment %s", method.value, verdict.transaction_id
        )
        alerts.capture_unmatched_callback(method.value, verdict.transaction_id)
        return CallbackResult(payment=None, verdict=verdict)

    if verdict.status is PaymentStatus.pending:
        metrics.payment_callbacks_total.labels(gateway=method.value, result="pending").inc()
        logger.info(
            "%s callback for %s is not settled yet", method.value, payment.get("transaction_id")
        )
        return CallbackResult(payment=payment, verdict=verdict)

    if verdict.status is PaymentStatus.completed and _amount_short(payment, verdict.amount):
        stored = coerce_status(payment.get("status"))
        _report_conflict(payment, stored, verdict.status)
        metrics.payment_callbacks_total.labels(gateway=method.value, result="conflict").inc()
        return CallbackResult(payment=payment, verdict=verdict)

    stored, applied = await apply_gateway_status(
        payment, verdict.status, trigger="callback", reference=verdict.reference
    )
    metrics.payment_callbacks_total.labels(
        gateway=method.value, result="applied" if applied else "noop"
    ).inc()
    return CallbackResult(payment=stored, verdict=verdict, applied=applied)


def _check_response(
    payment: Mapping[str, Any],
    result: CheckResult,
    enrollment: Mapping[str, Any] | None = None,
) -> PaymentCheckResponse:
    metrics.payment_verifications_total.labels(result=result.value).inc()
    course_id = str(payment["course_id"]) if payment.get("course_id") else None
    return PaymentCheckResponse(
        status=result,
        message=CHECK_MESSAGES[result],
        transaction_id=str(payment.get("transaction_id")),
        course_id=course_id,
        retry_url=urls.retry_checkout_url(course_id) if result is CheckResult.failed else None,
        enrollment=enrollment_from_row(dict(enrollment)) if enrollment else None,
    )


async def get_owned_payment(transaction_id: str, user_id: str) -> dict[str, Any]:
    payment = await payments_repo.get_payment_by_transaction(transaction_id)
    if payment is None or str(payment.get("user_id")) != str(user_id):
        raise PaymentNotFound("Payment not found")
    return payment


async def check_payment(transaction_id: str, user_id: str) -> PaymentCheckResponse:
    """The client's delayed check.

    Terminal payments are answered from the store. A pending payment is
    verified with its own gateway; only a confirmed completion is written,
    everything else reports ``processing``.
    """
    bind_log_context(transaction_id=transaction_id)
    payment = await get_owned_payment(transaction_id, user_id)
    status = coerce_status(payment.get("status"))

    if status is PaymentStatus.completed:
        return _check_response(payment, CheckResult.completed, await grant_access(payment))
    if status is PaymentStatus.failed:
        return _check_response(payment, CheckResult.failed)

    try:
        gateway = await gateways.build_gateway(_payment_method(payment))
        verdict = await gateway.verify(transaction_id)
    except GatewaySessionError as exc:
        logger.warning("Verification of %s deferred: %s", transaction_id, exc.detail)
        return _check_response(payment, CheckResult.processing)

    if verdict.status is not PaymentStatus.completed:
        return _check_response(payment, CheckResult.processing)
    if _amount_short(payment, verdict.amount):
        _report_conflict(payment, status, verdict.status)
        return _check_response(payment, CheckResult.processing)

    stored, _ = await apply_gateway_status(
        payment, PaymentStatus.completed, trigger="verify", reference=verdict.reference
    )
    final = coerce_status(stored.get("status"))
    if final is PaymentStatus.completed:
        enrollment = await enrollments_repo.get_enrollment(
            str(stored.get("course_id")), str(stored.get("user_id"))
        )
        return _check_response(stored, CheckResult.completed, enrollment)
    if final is PaymentStatus.failed:
        return _check_response(stored, CheckResult.failed)
    return _check_response(stored, CheckResult.processing)


__all__ = [
    "CHECK_MESSAGES",
    "CallbackResult",
    "apply_gateway_status",
    "check_payment",
    "get_owned_payment",
    "grant_access",
    "handle_callback",
    "locate_payment",
]
