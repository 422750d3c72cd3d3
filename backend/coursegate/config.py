from urllib.parse import urlsplit

from pydantic import AliasChoices, AnyUrl, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_PORTS = {"http": 80, "https": 443}

_LOCAL_DEV_ORIGINS = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]


def origin_of(url: str | None) -> str | None:
    """Reduce a URL to its CORS origin (scheme, host and non-default port)."""
    parts = urlsplit((url or "").strip())
    scheme = parts.scheme.lower()
    if scheme not in _DEFAULT_PORTS or not parts.hostname:
        return None
    try:
        port = parts.port
    except ValueError:
        return None
    if port is None or port == _DEFAULT_PORTS[scheme]:
        return f"{scheme}://{parts.hostname}"
    return f"{scheme}://{parts.hostname}:{port}"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env", "../.env"), extra="ignore")

    # Content store and identity provider (Supabase).
    supabase_url: AnyUrl | None = None
    supabase_service_role_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("SUPABASE_SERVICE_ROLE_KEY", "SUPABASE_SECRET_API_KEY"),
    )
    supabase_jwt_secret: str | None = Field(
        default=None,
        validation_alias=AliasChoices("SUPABASE_JWT_SECRET", "JWT_SECRET"),
    )
    supabase_jwks_url: AnyUrl | None = None
    supabase_jwt_issuer: str | None = None
    jwt_algorithm: str = "HS256"
    store_timeout_seconds: float = Field(default=10.0, gt=0)

    # Where browsers and gateways are sent back to.
    frontend_base_url: str | None = "http://localhost:5173"
    public_api_base_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("PUBLIC_API_BASE_URL", "BACKEND_BASE_URL"),
    )

    # Checkout.
    default_currency: str = "BDT"
    payment_gateway: str = Field(
        default="sslcommerz",
        validation_alias=AliasChoices("PAYMENT_GATEWAY", "DEFAULT_PAYMENT_GATEWAY"),
    )
    gateway_timeout_seconds: float = Field(default=20.0, ge=10.0, le=30.0)
    payment_verify_delay_seconds: float = Field(default=2.0, ge=0)
    free_payment_write_attempts: int = Field(default=2, ge=1, le=5)

    sslcommerz_store_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("SSLCOMMERZ_STORE_ID", "SSL_STORE_ID"),
    )
    sslcommerz_store_password: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "SSLCOMMERZ_STORE_PASSWORD", "SSLCOMMERZ_STORE_PASSWD", "SSL_STORE_PASSWORD"
        ),
    )
    sslcommerz_is_live: bool = False

    bkash_app_key: str | None = None
    bkash_app_secret: str | None = None
    bkash_username: str | None = None
    bkash_password: str | None = None
    bkash_is_live: bool = False

    # HTTP surface and observability.
    cors_allow_origins: list[str] = Field(default_factory=lambda: list(_LOCAL_DEV_ORIGINS))
    cors_allow_origin_regex: str | None = r"http://(localhost|127\.0\.0\.1)(:\d+)?"
    sentry_dsn: str | None = None
    sentry_traces_sample_rate: float = Field(default=0.0, ge=0.0, le=1.0)

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _parse_origin_list(cls, value):
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("payment_gateway", mode="before")
    @classmethod
    def _lowercase_gateway(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _allow_frontend_origin(self):
        frontend = origin_of(self.frontend_base_url)
        known = {origin.lower() for origin in self.cors_allow_origins}
        if frontend and frontend.lower() not in known:
            self.cors_allow_origins.append(frontend)
        return self


settings = Settings()
