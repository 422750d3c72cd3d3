"""Course purchase and enrollment.

Free courses (effective price zero) enroll immediately and record a
zero-amount completed payment. Paid courses record a pending payment and hand
the student to the configured gateway; access is granted later by
:mod:`coursegate.services.reconciliation_service`.
"""

from __future__ import annotations

import logging
import time
import uuid
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from .. import metrics
from ..config import settings
from ..db import ContentStoreError
from ..errors import GatewaySessionError, GatewayTimeout, PartialWriteError, ValidationError
from ..logging_context import bind_log_context
from ..repositories import courses as courses_repo
from ..repositories import enrollments as enrollments_repo
from ..repositories import payments as payments_repo
from ..schemas import (
    EnrollOutcome,
    EnrollResponse,
    PaymentStatus,
    enrollment_from_row,
)
from ..utils import urls
from . import alerts, gateway_config, gateways
from .payment_state import ensure_transition

logger = logging.getLogger(__name__)


def effective_price(course: Mapping[str, Any]) -> Decimal:
    """Discounted price when one is set (zero included), list price otherwise."""
    discounted = course.get("discounted_price")
    raw = discounted if discounted is not None else course.get("price")
    try:
        price = Decimal(str(raw if raw is not None else 0))
    except InvalidOperation:
        raise ValidationError("Course price is not a number") from None
    if price < 0:
        raise ValidationError("Course price cannot be negative")
    return price


def new_transaction_id() -> str:
    return f"TXN_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def _course_currency(course: Mapping[str, Any]) -> str:
    return str(course.get("currency") or settings.default_currency)


async def _load_purchasable_course(course_id: str) -> dict[str, Any]:
    course = await courses_repo.get_course(course_id)
    if not course or not course.get("is_published"):
        raise ValidationError("Course not found", status_code=404)
    return course


async def record_free_payment(course: Mapping[str, Any], student_id: str) -> bool:
    """Write the free payment row, retrying a bounded number of times.

    Failure never takes access away: the enrollment already exists, so the
    miss is logged and reported as a partial write instead of raised.
    """
    course_id = str(course["id"])
    attempts = settings.free_payment_write_attempts
    for attempt in range(1, attempts + 1):
        try:
            await payments_repo.ensure_free_payment(
                course_id=course_id,
                user_id=student_id,
                currency=_course_currency(course),
            )
            return True
        except ContentStoreError as exc:
            logger.warning(
                "Free payment write failed for course %s (attempt %s/%s): %s",
                course_id,
                attempt,
                attempts,
                exc,
            )

    error = PartialWriteError(
        "Enrollment recorded without its free payment row",
        course_id=course_id,
        student_id=student_id,
    )
    logger.error(
        "Partial write for free enrollment",
        extra={"course_id": course_id, "student_id": student_id},
    )
    metrics.partial_writes_total.inc()
    alerts.capture_partial_write(error)
    return False


async def _enroll_free(course: Mapping[str, Any], student_id: str) -> EnrollResponse:
    course_id = str(course["id"])
    row, created = await enrollments_repo.ensure_active_enrollment(course_id, student_id)
    if created:
        metrics.enrollments_created_total.labels(path="free").inc()
        logger.info("Free enrollment created for course %s", course_id)
    await record_free_payment(course, student_id)
    return EnrollResponse(
        status=EnrollOutcome.enrolled if created else EnrollOutcome.already_enrolled,
        enrollment=enrollment_from_row(row),
        redirect_to=urls.enrollment_success_path(course.get("title")),
    )


async def _abandon_payment(payment: Mapping[str, Any]) -> None:
    current = ensure_transition(payment.get("status"), PaymentStatus.failed)
    try:
        updated = await payments_repo.update_status_if(
            str(payment["id"]), expected=current, target=PaymentStatus.failed
        )
    except ContentStoreError:
        logger.exception("Could not mark payment %s failed", payment.get("id"))
        return
    if updated is not None:
        metrics.payment_transitions_total.labels(
            status=PaymentStatus.failed.value, trigger="session_error"
        ).inc()


async def _start_checkout(
    course: Mapping[str, Any], profile: Mapping[str, Any], price: Decimal
) -> EnrollResponse:
    course_id = str(course["id"])
    student_id = str(profile["id"])

    # Resolve the rail before writing anything; misconfiguration leaves no rows.
    method = await gateway_config.active_gateway_method()
    gateway = await gateways.build_gateway(method)

    transaction_id = new_transaction_id()
    bind_log_context(transaction_id=transaction_id)
    currency = _course_currency(course)
    payment = await payments_repo.create_payment(
        course_id=course_id,
        user_id=student_id,
        amount=price,
        currency=currency,
        payment_method=method,
        transaction_id=transaction_id,
    )

    request = gateways.SessionRequest(
        transaction_id=transaction_id,
        course_id=course_id,
        course_title=str(course.get("title") or "Course"),
        amount=price,
        currency=currency,
        customer_id=student_id,
        customer_name=profile.get("full_name"),
        customer_email=profile.get("email"),
        customer_phone=profile.get("phone"),
    )
    try:
        session = await gateway.create_session(request)
    except GatewayTimeout:
        # The gateway may still have opened the session; leave it pending.
        metrics.payment_sessions_total.labels(gateway=method.value, outcome="timeout").inc()
        logger.warning("Gateway session timed out for payment %s", transaction_id)
        raise
    except GatewaySessionError:
        metrics.payment_sessions_total.labels(gateway=method.value, outcome="error").inc()
        await _abandon_payment(payment)
        raise

    if session.session_id != transaction_id:
        await payments_repo.set_transaction_id(str(payment["id"]), session.session_id)
    metrics.payment_sessions_total.labels(gateway=method.value, outcome="created").inc()
    logger.info(
        "Checkout started for course %s via %s (%s)",
        course_id,
        method.value,
        session.session_id,
    )
    return EnrollResponse(
        status=EnrollOutcome.redirect,
        payment_url=session.redirect_url,
        transaction_id=session.session_id,
        verify_after_seconds=settings.payment_verify_delay_seconds,
    )


async def enroll(profile: Mapping[str, Any] | None, course_id: str) -> EnrollResponse:
    if not profile or not profile.get("id"):
        raise ValidationError("Profile not found", status_code=404)
    student_id = str(profile["id"])
    bind_log_context(course_id=course_id)

    course = await _load_purchasable_course(course_id)
    price = effective_price(course)

    existing = await enrollments_repo.get_active_enrollment(str(course["id"]), student_id)
    if existing:
        if price == 0:
            await record_free_payment(course, student_id)
        return EnrollResponse(
            status=EnrollOutcome.already_enrolled,
            enrollment=enrollment_from_row(existing),
            redirect_to=urls.enrollment_success_path(course.get("title"))
            if price == 0
            else None,
        )

    if price == 0:
        return await _enroll_free(course, student_id)
    return await _start_checkout(course, profile, price)


__all__ = [
    "effective_price",
    "enroll",
    "new_transaction_id",
    "record_free_payment",
]
