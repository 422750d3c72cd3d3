"""Gateway credentials and redirect targets.

Environment settings provide the defaults; rows in ``site_settings`` written
from the admin panel take precedence key by key.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from ..config import settings
from ..errors import GatewayConfigError
from ..repositories import site_settings as site_settings_repo
from ..schemas import PaymentMethod
from ..utils import urls

SSLCOMMERZ_KEYS = (
    "ssl_store_id",
    "ssl_store_password",
    "ssl_is_live",
    "ssl_success_url",
    "ssl_fail_url",
    "ssl_cancel_url",
    "ssl_ipn_url",
)
BKASH_KEYS = (
    "bkash_app_key",
    "bkash_app_secret",
    "bkash_username",
    "bkash_password",
    "bkash_is_live",
    "bkash_success_url",
)
ACTIVE_GATEWAY_KEY = "payment_gateway"


@dataclass(frozen=True)
class SslCommerzConfig:
    store_id: str
    store_password: str
    is_live: bool
    success_url: str
    fail_url: str
    cancel_url: str
    ipn_url: str | None = None

    @property
    def base_url(self) -> str:
        if self.is_live:
            return "https://securepay.sslcommerz.com"
        return "https://sandbox.sslcommerz.com"


@dataclass(frozen=True)
class BkashConfig:
    app_key: str
    app_secret: str
    username: str
    password: str
    is_live: bool
    callback_url: str

    @property
    def base_url(self) -> str:
        if self.is_live:
            return "https://tokenized.pay.bka.sh/v1.2.0-beta"
        return "https://tokenized.sandbox.bka.sh/v1.2.0-beta"


GatewayConfig = SslCommerzConfig | BkashConfig


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _text(overrides: Mapping[str, Any], key: str, default: str | None) -> str | None:
    value = overrides.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    return str(value).strip()


async def active_gateway_method() -> PaymentMethod:
    overrides = await site_settings_repo.get_settings([ACTIVE_GATEWAY_KEY])
    raw = _text(overrides, ACTIVE_GATEWAY_KEY, settings.payment_gateway) or ""
    try:
        method = PaymentMethod(raw.lower())
    except ValueError:
        raise GatewayConfigError(f"Unknown payment gateway: {raw}") from None
    if method is PaymentMethod.free:
        raise GatewayConfigError("The free rail cannot take card or wallet payments")
    return method


async def load_sslcommerz_config() -> SslCommerzConfig:
    overrides = await site_settings_repo.get_settings(SSLCOMMERZ_KEYS)
    store_id = _text(overrides, "ssl_store_id", settings.sslcommerz_store_id)
    store_password = _text(
        overrides, "ssl_store_password", settings.sslcommerz_store_password
    )
    if not store_id or not store_password:
        raise GatewayConfigError("SSLCommerz payment gateway not configured properly")

    is_live = overrides.get("ssl_is_live")
    success_default = urls.api_url("/api/payments/sslcommerz/return/success")
    fail_default = urls.api_url("/api/payments/sslcommerz/return/fail")
    cancel_default = urls.api_url("/api/payments/sslcommerz/return/cancel")
    return SslCommerzConfig(
        store_id=store_id,
        store_password=store_password,
        is_live=settings.sslcommerz_is_live if is_live is None else _as_bool(is_live),
        success_url=_text(overrides, "ssl_success_url", success_default)
        or urls.frontend_url("/payment/success"),
        fail_url=_text(overrides, "ssl_fail_url", fail_default)
        or urls.frontend_url("/payment/failed"),
        cancel_url=_text(overrides, "ssl_cancel_url", cancel_default)
        or urls.frontend_url("/payment/failed"),
        ipn_url=_text(
            overrides, "ssl_ipn_url", urls.api_url("/api/payments/sslcommerz/ipn")
        ),
    )


async def load_bkash_config() -> BkashConfig:
    overrides = await site_settings_repo.get_settings(BKASH_KEYS)
    app_key = _text(overrides, "bkash_app_key", settings.bkash_app_key)
    app_secret = _text(overrides, "bkash_app_secret", settings.bkash_app_secret)
    username = _text(overrides, "bkash_username", settings.bkash_username)
    password = _text(overrides, "bkash_password", settings.bkash_password)
    if not (app_key and app_secret and username and password):
        raise GatewayConfigError("bKash payment gateway not configured properly")

    callback_url = _text(
        overrides, "bkash_success_url", urls.api_url("/api/payments/bkash/callback")
    )
    if not callback_url:
        raise GatewayConfigError("bKash callback URL is not configured")

    is_live = overrides.get("bkash_is_live")
    return BkashConfig(
        app_key=app_key,
        app_secret=app_secret,
        username=username,
        password=password,
        is_live=settings.bkash_is_live if is_live is None else _as_bool(is_live),
        callback_url=callback_url,
    )


async def load_gateway_config(method: PaymentMethod) -> GatewayConfig:
    if method is PaymentMethod.sslcommerz:
        return await load_sslcommerz_config()
    if method is PaymentMethod.bkash:
        return await load_bkash_config()
    raise GatewayConfigError(f"No gateway configuration for {method.value}")


__all__ = [
    "BkashConfig",
    "GatewayConfig",
    "SslCommerzConfig",
    "active_gateway_method",
    "load_bkash_config",
    "load_gateway_config",
    "load_sslcommerz_config",
]
