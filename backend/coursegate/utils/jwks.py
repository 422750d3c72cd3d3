"""Verification of identity-provider tokens signed with asymmetric keys."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

import httpx
from jose import JWTError, jwk, jwt

_CACHE_SECONDS = 300
_ASYMMETRIC_ALGORITHMS = ("RS256", "ES256")


class JwksVerificationError(Exception):
    pass


@dataclass
class _KeyCache:
    url: str | None = None
    expires_at: float = 0.0
    keys: dict[str, dict[str, Any]] = field(default_factory=dict)

    def fresh_for(self, url: str) -> bool:
        return self.url == url and time.monotonic() < self.expires_at

    def store(self, url: str, keys: dict[str, dict[str, Any]]) -> None:
        self.url = url
        self.keys = keys
        self.expires_at = time.monotonic() + _CACHE_SECONDS


_cache = _KeyCache()


async def _fetch_keys(url: str) -> dict[str, dict[str, Any]]:
    try:
        async with httpx.AsyncClient(timeout=5) as client:
            response = await client.get(url)
            response.raise_for_status()
            data = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        raise JwksVerificationError(f"Failed to fetch JWKS: {exc}") from exc
    if not isinstance(data, dict) or "keys" not in data:
        raise JwksVerificationError("JWKS response missing keys")
    return {
        entry["kid"]: entry
        for entry in data.get("keys", [])
        if isinstance(entry, dict) and entry.get("kid")
    }


async def _signing_key(url: str, kid: str) -> dict[str, Any] | None:
    if not _cache.fresh_for(url):
        _cache.store(url, await _fetch_keys(url))
    key_data = _cache.keys.get(kid)
    if key_data is None:
        # Keys rotate; refetch once before giving up on an unknown kid.
        _cache.store(url, await _fetch_keys(url))
        key_data = _cache.keys.get(kid)
    return key_data


async def verify_with_jwks(
    token: str, *, jwks_url: str, issuer: str | None = None
) -> dict[str, Any]:
    try:
        header = jwt.get_unverified_header(token)
    except JWTError as exc:
        raise JwksVerificationError("Invalid token header") from exc

    algorithm = header.get("alg")
    if algorithm not in _ASYMMETRIC_ALGORITHMS:
        raise JwksVerificationError(f"Unsupported JWT alg: {algorithm}")
    kid = header.get("kid")
    if not kid:
        raise JwksVerificationError("JWT header missing kid")

    key_data = await _signing_key(jwks_url, kid)
    if not key_data:
        raise JwksVerificationError("JWT kid not found in JWKS")

    try:
        return jwt.decode(
            token,
            jwk.construct(key_data, algorithm),
            algorithms=[algorithm],
            issuer=issuer,
            options={"verify_aud": False},
        )
    except JWTError as exc:
        raise JwksVerificationError("JWT verification failed") from exc


__all__ = ["JwksVerificationError", "verify_with_jwks"]
