from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping

import httpx

from ...config import settings
from ...errors import GatewaySessionError, GatewayTimeout
from ...schemas import PaymentMethod, PaymentStatus

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SessionRequest:
    transaction_id: str
    course_id: str
    course_title: str
    amount: Decimal
    currency: str
    customer_id: str
    customer_name: str | None = None
    customer_email: str | None = None
    customer_phone: str | None = None


@dataclass(slots=True)
class GatewaySession:
    redirect_url: str
    session_id: str


@dataclass(slots=True)
class GatewayVerdict:
    """What the gateway itself says about a payment."""

    status: PaymentStatus
    transaction_id: str | None = None
    merchant_reference: str | None = None
    reference: str | None = None
    amount: Decimal | None = None
    course_id: str | None = None
    user_id: str | None = None
    raw: Mapping[str, Any] = field(default_factory=dict)


def format_amount(amount: Decimal) -> str:
    return f"{amount.quantize(Decimal('0.01'))}"


def parse_amount(value: Any) -> Decimal | None:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value))
    except ArithmeticError:
        return None


class PaymentGateway:
    """Outbound contract shared by the card and wallet rails.

    Every call opens its own client bounded by ``gateway_timeout_seconds``.
    A timeout surfaces as :class:`GatewayTimeout`; any other transport or
    protocol failure as :class:`GatewaySessionError`.
    """

    method: PaymentMethod

    def __init__(
        self,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout or settings.gateway_timeout_seconds
        self._transport = transport

    @property
    def name(self) -> str:
        return self.method.value

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def _send(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> dict[str, Any]:
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("%s request timed out: %s", self.name, url)
            raise GatewayTimeout(f"{self.name} did not respond in time") from exc
        except httpx.HTTPError as exc:
            logger.warning("%s request failed: %s", self.name, exc)
            raise GatewaySessionError(f"Failed to reach {self.name}") from exc

        if response.status_code >= 400:
            logger.warning(
                "%s responded with %s for %s", self.name, response.status_code, url
            )
            raise GatewaySessionError(
                f"{self.name} rejected the request ({response.status_code})"
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise GatewaySessionError(f"{self.name} returned an unreadable response") from exc
        if not isinstance(body, dict):
            raise GatewaySessionError(f"{self.name} returned an unexpected response")
        return body

    async def create_session(self, request: SessionRequest) -> GatewaySession:
        raise NotImplementedError

    async def verify(self, transaction_id: str) -> GatewayVerdict:
        """Query the gateway for the authoritative status of ``transaction_id``."""
        raise NotImplementedError

    async def confirm_callback(self, payload: Mapping[str, Any]) -> GatewayVerdict:
        """Turn an inbound callback into a gateway-confirmed verdict."""
        raise NotImplementedError


__all__ = [
    "GatewaySession",
    "GatewayVerdict",
    "PaymentGateway",
    "SessionRequest",
    "format_amount",
    "parse_amount",
]
