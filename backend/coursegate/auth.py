from datetime import datetime, timezone
from typing import Annotated, Any

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .config import settings
from .db import ContentStoreError
from .logging_context import set_user_context
from .repositories import profiles as profiles_repo
from .utils.jwks import JwksVerificationError, verify_with_jwks

bearer_scheme = HTTPBearer(auto_error=False)


def decode_jwt(token: str) -> dict[str, Any]:
    """Verify an HS256 token signed with the project secret.

    Expiry is checked separately by :func:`is_token_expired`.
    """
    if not settings.supabase_jwt_secret:
        raise JWTError("JWT secret is not configured")
    return jwt.decode(
        token,
        settings.supabase_jwt_secret,
        algorithms=[settings.jwt_algorithm],
        options={"verify_signature": True, "verify_exp": False, "verify_aud": False},
    )


def _auth_base_url() -> str | None:
    if settings.supabase_url is None:
        return None
    return settings.supabase_url.unicode_string().rstrip("/") + "/auth/v1"


def _jwks_url() -> str | None:
    if settings.supabase_jwks_url:
        return str(settings.supabase_jwks_url)
    base = _auth_base_url()
    return f"{base}/.well-known/jwks.json" if base else None


def _jwt_issuer() -> str | None:
    return settings.supabase_jwt_issuer or _auth_base_url()


async def decode_access_token(token: str) -> dict[str, Any]:
    """Project-secret HS256 first; asymmetric Supabase keys via JWKS otherwise."""
    try:
        return decode_jwt(token)
    except JWTError:
        jwks_url = _jwks_url()
        if not jwks_url:
            raise
        try:
            return await verify_with_jwks(token, jwks_url=jwks_url, issuer=_jwt_issuer())
        except JwksVerificationError as jwks_exc:
            raise JWTError("Identity token verification failed") from jwks_exc


def _expires_at(raw: Any) -> datetime | None:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return datetime.fromtimestamp(raw, tz=timezone.utc)
    if isinstance(raw, str):
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def is_token_expired(claims: dict[str, Any], *, now: datetime | None = None) -> bool:
    expires_at = _expires_at(claims.get("exp"))
    if expires_at is None:
        return False
    return expires_at <= (now or datetime.now(timezone.utc))


async def _resolve_user(token: str) -> dict[str, Any] | None:
    try:
        payload = await decode_access_token(token)
    except JWTError:
        return None
    if is_token_expired(payload):
        return None
    user_id = payload.get("sub")
    if not user_id:
        return None

    try:
        profile = await profiles_repo.get_profile_by_user_id(str(user_id))
    except ContentStoreError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    set_user_context(str(user_id))
    return {
        "id": str(user_id),
        "email": payload.get("email") or (profile or {}).get("email"),
        "profile": profile,
    }


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or expired access token",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> dict[str, Any]:
    token = credentials.credentials if credentials else None
    user = await _resolve_user(token) if token else None
    if user is None:
        raise _unauthorized()
    return user


async def get_optional_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> dict[str, Any] | None:
    if credentials is None or not credentials.credentials:
        return None
    return await _resolve_user(credentials.credentials)


CurrentUser = Annotated[dict, Depends(get_current_user)]
OptionalCurrentUser = Annotated[dict | None, Depends(get_optional_user)]
