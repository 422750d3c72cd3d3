from __future__ import annotations

from ...errors import GatewayConfigError
from ...schemas import PaymentMethod
from ..gateway_config import load_gateway_config
from .base import (
    GatewaySession,
    GatewayVerdict,
    PaymentGateway,
    SessionRequest,
)
from .bkash import BkashGateway
from .sslcommerz import SslCommerzGateway

GATEWAYS: dict[PaymentMethod, type[PaymentGateway]] = {
    PaymentMethod.sslcommerz: SslCommerzGateway,
    PaymentMethod.bkash: BkashGateway,
}


async def build_gateway(method: PaymentMethod) -> PaymentGateway:
    gateway_cls = GATEWAYS.get(method)
    if gateway_cls is None:
        raise GatewayConfigError(f"No payment gateway for {method.value}")
    config = await load_gateway_config(method)
    return gateway_cls(config)  # type: ignore[call-arg]


__all__ = [
    "BkashGateway",
    "GATEWAYS",
    "GatewaySession",
    "GatewayVerdict",
    "PaymentGateway",
    "SessionRequest",
    "SslCommerzGateway",
    "build_gateway",
]
