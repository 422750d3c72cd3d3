"""SSLCommerz hosted checkout (card rail)."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from ...errors import GatewaySessionError
from ...schemas import PaymentMethod, PaymentStatus
from ...utils.urls import with_query
from ..gateway_config import SslCommerzConfig
from .base import (
    GatewaySession,
    GatewayVerdict,
    PaymentGateway,
    SessionRequest,
    format_amount,
    parse_amount,
)

logger = logging.getLogger(__name__)

SESSION_PATH = "/gwprocess/v4/api.php"
VALIDATION_PATH = "/validator/api/validationserverAPI.php"
TRANSACTION_QUERY_PATH = "/validator/api/merchantTransIDvalidationAPI.php"

_COMPLETED = {"VALID", "VALIDATED"}
# Final declines only; INVALID_TRANSACTION, UNATTEMPTED and the rest stay pending.
_FAILED = {"FAILED", "CANCELLED", "EXPIRED"}


def _verdict_status(raw_status: str | None) -> PaymentStatus:
    status = (raw_status or "").upper()
    if status in _COMPLETED:
        return PaymentStatus.completed
    if status in _FAILED:
        return PaymentStatus.failed
    return PaymentStatus.pending


class SslCommerzGateway(PaymentGateway):
    method = PaymentMethod.sslcommerz

    def __init__(self, config: SslCommerzConfig, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.config = config

    def _credentials(self) -> dict[str, str]:
        return {
            "store_id": self.config.store_id,
            "store_passwd": self.config.store_password,
        }

    def _session_form(self, request: SessionRequest) -> dict[str, str]:
        customer_name = request.customer_name or request.customer_email or "Customer"
        tracking = {"course_id": request.course_id, "tran_id": request.transaction_id}
        form = {
            **self._credentials(),
            "total_amount": format_amount(request.amount),
            "currency": request.currency,
            "tran_id": request.transaction_id,
            "success_url": with_query(self.config.success_url, **tracking),
            "fail_url": with_query(self.config.fail_url, **tracking),
            "cancel_url": with_query(self.config.cancel_url, **tracking),
            "product_name": request.course_title,
            "product_category": "Course",
            "product_profile": "digital-goods",
            "shipping_method": "NO",
            "num_of_item": "1",
            "cus_name": customer_name,
            "cus_email": request.customer_email or "",
            "cus_add1": "N/A",
            "cus_city": "N/A",
            "cus_state": "N/A",
            "cus_postcode": "N/A",
            "cus_country": "Bangladesh",
            "cus_phone": request.customer_phone or "N/A",
            # Echoed back on IPN and validation so a row can be found without tran_id.
            "value_a": request.course_id,
            "value_b": request.customer_id,
        }
        if self.config.ipn_url:
            form["ipn_url"] = self.config.ipn_url
        return form

    async def create_session(self, request: SessionRequest) -> GatewaySession:
        async with self._client() as client:
            body = await self._send(
                client,
                "POST",
                f"{self.config.base_url}{SESSION_PATH}",
                data=self._session_form(request),
            )

        page_url = body.get("GatewayPageURL")
        if body.get("status") != "SUCCESS" or not isinstance(page_url, str) or not page_url:
            reason = body.get("failedreason") or "Payment initialization failed"
            logger.warning(
                "SSLCommerz refused session for %s: %s", request.transaction_id, reason
            )
            raise GatewaySessionError(str(reason))
        return GatewaySession(redirect_url=page_url, session_id=request.transaction_id)

    def _element_verdict(self, element: Mapping[str, Any]) -> GatewayVerdict:
        return GatewayVerdict(
            status=_verdict_status(element.get("status")),
            transaction_id=element.get("tran_id"),
            merchant_reference=element.get("tran_id"),
            reference=element.get("bank_tran_id"),
            amount=parse_amount(element.get("amount")),
            course_id=element.get("value_a") or None,
            user_id=element.get("value_b") or None,
            raw=dict(element),
        )

    async def verify(self, transaction_id: str) -> GatewayVerdict:
        async with self._client() as client:
            body = await self._send(
                client,
                "GET",
                f"{self.config.base_url}{TRANSACTION_QUERY_PATH}",
                params={"tran_id": transaction_id, **self._credentials(), "format": "json"},
            )

        if body.get("APIConnect") not in (None, "DONE"):
            raise GatewaySessionError(
                f"SSLCommerz transaction query rejected: {body.get('APIConnect')}"
            )
        elements = [
            element for element in body.get("element") or [] if isinstance(element, dict)
        ]
        verdicts = [self._element_verdict(element) for element in elements]
        for verdict in verdicts:
            if verdict.status is PaymentStatus.completed:
                return verdict
        if verdicts and all(v.status is PaymentStatus.failed for v in verdicts):
            return verdicts[0]
        return GatewayVerdict(
            status=PaymentStatus.pending,
            transaction_id=transaction_id,
            merchant_reference=transaction_id,
            raw=body,
        )

    async def validate(self, val_id: str) -> GatewayVerdict:
        async with self._client() as client:
            body = await self._send(
                client,
                "GET",
                f"{self.config.base_url}{VALIDATION_PATH}",
                params={"val_id": val_id, **self._credentials(), "format": "json"},
            )
        return self._element_verdict(body)

    async def confirm_callback(self, payload: Mapping[str, Any]) -> GatewayVerdict:
        """Confirm an IPN or browser return against SSLCommerz.

        A ``val_id`` is checked with the validation API. Validation can only
        confirm a payment: when it does not, or when no ``val_id`` was posted,
        the transaction id is queried instead. The posted ``status`` is never
        trusted on its own.
        """
        tran_id = payload.get("tran_id") or None
        val_id = payload.get("val_id") or None
        if not tran_id and not val_id:
            raise GatewaySessionError("SSLCommerz callback carried no transaction id")

        verdict = await self.validate(str(val_id)) if val_id else None
        if verdict is None or verdict.status is not PaymentStatus.completed:
            if verdict is not None:
                logger.info(
                    "SSLCommerz did not validate val_id %s (%s)",
                    val_id,
                    verdict.raw.get("status"),
                )
                if not tran_id:
                    return GatewayVerdict(status=PaymentStatus.pending, raw=verdict.raw)
            verdict = await self.verify(str(tran_id))

        verdict.transaction_id = verdict.transaction_id or tran_id
        verdict.merchant_reference = verdict.merchant_reference or tran_id
        verdict.course_id = verdict.course_id or payload.get("value_a") or None
        verdict.user_id = verdict.user_id or payload.get("value_b") or None
        if tran_id and verdict.transaction_id != tran_id:
            logger.warning(
                "SSLCommerz validation returned tran_id %s for callback %s",
                verdict.transaction_id,
                tran_id,
            )
            raise GatewaySessionError("SSLCommerz validation does not match callback")
        return verdict


__all__ = ["SslCommerzGateway"]
