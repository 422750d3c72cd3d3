from __future__ import annotations

import logging
from typing import Any, Literal

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import PlainTextResponse, RedirectResponse

from ..auth import CurrentUser
from ..db import ContentStoreError
from ..errors import PipelineError
from ..schemas import (
    Payment,
    PaymentCheckResponse,
    PaymentMethod,
    PaymentStatus,
    payment_from_row,
)
from ..services import reconciliation_service
from ..services.reconciliation_service import CallbackResult
from ..utils import urls

router = APIRouter(prefix="/api/payments", tags=["payments"])
logger = logging.getLogger(__name__)


def _http_error(exc: PipelineError | ContentStoreError) -> HTTPException:
    if isinstance(exc, ContentStoreError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    return HTTPException(status_code=exc.status_code, detail=exc.detail)


def _profile_id(current: dict) -> str:
    profile = current.get("profile") or {}
    if not profile.get("id"):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found")
    return str(profile["id"])


async def _callback_payload(request: Request) -> dict[str, Any]:
    payload: dict[str, Any] = dict(request.query_params)
    if request.method == "POST":
        form = await request.form()
        payload.update({key: value for key, value in form.items() if isinstance(value, str)})
    return payload


async def _settle_redirect(
    method: PaymentMethod,
    payload: dict[str, Any],
    *,
    reported_success: bool,
    transaction_id: str | None,
) -> RedirectResponse:
    course_id = payload.get("course_id")
    result: CallbackResult | None = None
    try:
        result = await reconciliation_service.handle_callback(method, payload)
    except (PipelineError, ContentStoreError) as exc:
        logger.warning("%s return for %s not confirmed: %s", method.value, transaction_id, exc)

    if result is not None:
        course_id = result.course_id or course_id
        transaction_id = result.transaction_id or transaction_id
        settled = result.status
    else:
        settled = None

    if settled is PaymentStatus.completed:
        target = urls.payment_success_url(course_id, transaction_id)
    elif settled is PaymentStatus.failed or not reported_success:
        target = urls.payment_failed_url(course_id, transaction_id)
    else:
        # Unconfirmed success; the success page runs the delayed check.
        target = urls.payment_success_url(course_id, transaction_id)
    return RedirectResponse(target, status_code=status.HTTP_303_SEE_OTHER)


@router.post("/sslcommerz/ipn", response_class=PlainTextResponse)
async def sslcommerz_ipn(request: Request) -> PlainTextResponse:
    payload = await _callback_payload(request)
    try:
        result = await reconciliation_service.handle_callback(PaymentMethod.sslcommerz, payload)
    except (PipelineError, ContentStoreError) as exc:
        logger.warning("SSLCommerz IPN for %s failed: %s", payload.get("tran_id"), exc)
        raise _http_error(exc) from exc
    logger.info(
        "SSLCommerz IPN processed",
        extra={
            "transaction_id": result.transaction_id,
            "applied": result.applied,
            "status": result.status.value if result.status else None,
        },
    )
    return PlainTextResponse("OK")


@router.api_route("/sslcommerz/return/{outcome}", methods=["GET", "POST"])
async def sslcommerz_return(
    outcome: Literal["success", "fail", "cancel"], request: Request
) -> RedirectResponse:
    payload = await _callback_payload(request)
    return await _settle_redirect(
        PaymentMethod.sslcommerz,
        payload,
        reported_success=outcome == "success",
        transaction_id=payload.get("tran_id"),
    )


@router.get("/bkash/callback")
async def bkash_callback(request: Request) -> RedirectResponse:
    payload = dict(request.query_params)
    if not payload.get("paymentID"):
        return RedirectResponse(
            urls.payment_failed_url(None, None), status_code=status.HTTP_303_SEE_OTHER
        )
    return await _settle_redirect(
        PaymentMethod.bkash,
        payload,
        reported_success=str(payload.get("status") or "").lower() == "success",
        transaction_id=payload.get("paymentID"),
    )


@router.get("/{transaction_id}", response_model=Payment)
async def get_payment(transaction_id: str, current: CurrentUser) -> Payment:
    try:
        row = await reconciliation_service.get_owned_payment(
            transaction_id, _profile_id(current)
        )
    except (PipelineError, ContentStoreError) as exc:
        raise _http_error(exc) from exc
    return payment_from_row(row)


@router.post("/{transaction_id}/verify", response_model=PaymentCheckResponse)
async def verify_payment(transaction_id: str, current: CurrentUser) -> PaymentCheckResponse:
    try:
        return await reconciliation_service.check_payment(
            transaction_id, _profile_id(current)
        )
    except (PipelineError, ContentStoreError) as exc:
        raise _http_error(exc) from exc
