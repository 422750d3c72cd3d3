"""bKash tokenized checkout (wallet rail)."""

from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from ...errors import GatewaySessionError
from ...schemas import PaymentMethod, PaymentStatus
from ..gateway_config import BkashConfig
from .base import (
    GatewaySession,
    GatewayVerdict,
    PaymentGateway,
    SessionRequest,
    format_amount,
    parse_amount,
)

logger = logging.getLogger(__name__)

CHECKOUT_PATH = "/tokenized/checkout"

_STATUS_MAP = {
    "completed": PaymentStatus.completed,
    "failed": PaymentStatus.failed,
    "cancelled": PaymentStatus.failed,
    "expired": PaymentStatus.failed,
    "declined": PaymentStatus.failed,
}


class BkashGateway(PaymentGateway):
    method = PaymentMethod.bkash

    def __init__(self, config: BkashConfig, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.config = config

    def _url(self, endpoint: str) -> str:
        return f"{self.config.base_url}{CHECKOUT_PATH}/{endpoint}"

    async def _grant_token(self, client: httpx.AsyncClient) -> str:
        body = await self._send(
            client,
            "POST",
            self._url("token/grant"),
            headers={
                "username": self.config.username,
                "password": self.config.password,
                "Accept": "application/json",
            },
            json={"app_key": self.config.app_key, "app_secret": self.config.app_secret},
        )
        token = body.get("id_token")
        if not token:
            logger.warning("bKash token grant failed: %s", body.get("statusMessage"))
            raise GatewaySessionError("Failed to authenticate with bKash")
        return str(token)

    def _headers(self, token: str) -> dict[str, str]:
        return {
            "authorization": token,
            "x-app-key": self.config.app_key,
            "Accept": "application/json",
        }

    async def _call(
        self, client: httpx.AsyncClient, endpoint: str, payload: Mapping[str, Any]
    ) -> dict[str, Any]:
        token = await self._grant_token(client)
        return await self._send(
            client,
            "POST",
            self._url(endpoint),
            headers=self._headers(token),
            json=dict(payload),
        )

    async def create_session(self, request: SessionRequest) -> GatewaySession:
        payer = request.customer_phone or request.customer_email or request.customer_id[:8]
        async with self._client() as client:
            body = await self._call(
                client,
                "create",
                {
                    "mode": "0011",
                    "payerReference": payer,
                    "callbackURL": self.config.callback_url,
                    "amount": format_amount(request.amount),
                    "currency": request.currency,
                    "intent": "sale",
                    "merchantInvoiceNumber": request.transaction_id,
                },
            )

        payment_id = body.get("paymentID")
        redirect_url = body.get("bkashURL")
        if not payment_id or not redirect_url:
            reason = body.get("statusMessage") or "Failed to create bKash payment"
            logger.warning(
                "bKash refused session for %s: %s", request.transaction_id, reason
            )
            raise GatewaySessionError(str(reason))
        return GatewaySession(redirect_url=str(redirect_url), session_id=str(payment_id))

    def _verdict(self, payment_id: str, body: Mapping[str, Any]) -> GatewayVerdict:
        raw_status = str(body.get("transactionStatus") or "").lower()
        status = _STATUS_MAP.get(raw_status, PaymentStatus.pending)
        if status is PaymentStatus.completed and not body.get("trxID"):
            status = PaymentStatus.pending
        return GatewayVerdict(
            status=status,
            transaction_id=str(body.get("paymentID") or payment_id),
            merchant_reference=body.get("merchantInvoiceNumber") or None,
            reference=body.get("trxID") or None,
            amount=parse_amount(body.get("amount")),
            raw=dict(body),
        )

    async def verify(self, transaction_id: str) -> GatewayVerdict:
        async with self._client() as client:
            body = await self._call(client, "payment/status", {"paymentID": transaction_id})
        return self._verdict(transaction_id, body)

    async def execute(self, payment_id: str) -> GatewayVerdict:
        async with self._client() as client:
            body = await self._call(client, "execute", {"paymentID": payment_id})
        return self._verdict(payment_id, body)

    async def confirm_callback(self, payload: Mapping[str, Any]) -> GatewayVerdict:
        """Settle a browser callback.

        A ``success`` callback executes the payment, which is what actually
        captures the funds; anything else, or an execute that does not come
        back completed, is resolved with a status query.
        """
        payment_id = payload.get("paymentID")
        if not payment_id:
            raise GatewaySessionError("bKash callback carried no paymentID")
        payment_id = str(payment_id)
        reported = str(payload.get("status") or "").lower()

        if reported == "success":
            verdict = await self.execute(payment_id)
            if verdict.status is PaymentStatus.completed:
                return verdict
            logger.info(
                "bKash execute for %s returned %s; querying status",
                payment_id,
                verdict.raw.get("statusMessage") or verdict.status.value,
            )
        return await self.verify(payment_id)


__all__ = ["BkashGateway"]
