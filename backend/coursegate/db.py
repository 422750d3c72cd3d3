"""Content store access.

The relational store is consumed as a generic CRUD service. Production talks to
Supabase's PostgREST endpoint with the service-role key; tests install an
in-memory double through :func:`set_store`.

Filters are plain mappings of column to value: ``None`` matches NULL, a list,
tuple or set matches any member, anything else is an equality test. Orders are
column names, prefixed with ``-`` for descending.
"""

from __future__ import annotations

import json
from typing import Any, Mapping, Sequence

import httpx

from .config import settings

Row = dict[str, Any]
Filter = Mapping[str, Any]


class ContentStoreError(RuntimeError):
    """Raised when the content store rejects or cannot serve a statement."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class ContentStore:
    """Single-statement CRUD contract. No cross-table transactions."""

    async def select(
        self,
        table: str,
        filters: Filter | None = None,
        *,
        order: Sequence[str] = (),
        limit: int | None = None,
    ) -> list[Row]:
        raise NotImplementedError

    async def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        raise NotImplementedError

    async def update(
        self, table: str, filters: Filter, patch: Mapping[str, Any]
    ) -> list[Row]:
        raise NotImplementedError

    async def upsert(
        self,
        table: str,
        row: Mapping[str, Any],
        conflict_key: Sequence[str],
        *,
        ignore_duplicates: bool = False,
    ) -> Row | None:
        """Insert ``row`` or resolve against ``conflict_key``.

        With ``ignore_duplicates`` an existing row is left untouched and
        ``None`` is returned; otherwise the existing row is merged and returned.
        """
        raise NotImplementedError

    async def delete(self, table: str, filters: Filter) -> list[Row]:
        raise NotImplementedError

    async def select_one(self, table: str, filters: Filter) -> Row | None:
        rows = await self.select(table, filters, limit=1)
        return rows[0] if rows else None

    async def close(self) -> None:
        return None


def _format_scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _filter_params(filters: Filter | None) -> list[tuple[str, str]]:
    params: list[tuple[str, str]] = []
    for column, value in (filters or {}).items():
        if value is None:
            params.append((column, "is.null"))
        elif isinstance(value, (list, tuple, set, frozenset)):
            members = ",".join(json.dumps(_format_scalar(item)) for item in value)
            params.append((column, f"in.({members})"))
        else:
            params.append((column, f"eq.{_format_scalar(value)}"))
    return params


def _order_param(order: Sequence[str]) -> str | None:
    parts: list[str] = []
    for column in order:
        if column.startswith("-"):
            parts.append(f"{column[1:]}.desc")
        else:
            parts.append(f"{column}.asc")
    return ",".join(parts) or None


class PostgrestStore(ContentStore):
    def __init__(
        self,
        *,
        supabase_url: str | None = None,
        service_role_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._supabase_url = supabase_url or (
            settings.supabase_url.unicode_string()
            if settings.supabase_url is not None
            else None
        )
        self._service_role_key = service_role_key or settings.supabase_service_role_key
        self._timeout = timeout or settings.store_timeout_seconds
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    @property
    def enabled(self) -> bool:
        return bool(self._supabase_url and self._service_role_key)

    def _client(self) -> httpx.AsyncClient:
        if not self.enabled:
            raise ContentStoreError("Supabase REST is not configured")
        if self._http is None or self._http.is_closed:
            base_url = self._supabase_url.rstrip("/")  # type: ignore[union-attr]
            self._http = httpx.AsyncClient(
                base_url=f"{base_url}/rest/v1",
                timeout=self._timeout,
                transport=self._transport,
                headers={
                    "apikey": self._service_role_key or "",
                    "Authorization": f"Bearer {self._service_role_key}",
                    "Content-Type": "application/json",
                },
            )
        return self._http

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: list[tuple[str, str]] | None = None,
        payload: Any = None,
        prefer: str | None = None,
    ) -> list[Row]:
        headers = {"Prefer": prefer} if prefer else None
        try:
            response = await self._client().request(
                method,
                f"/{table}",
                params=params,
                json=payload,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            raise ContentStoreError(f"Failed to reach content store for {table}") from exc

        if response.status_code >= 400:
            code = None
            message = None
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                code = body.get("code")
                message = body.get("message")
            raise ContentStoreError(
                message or f"Content store {method} {table} failed with status {response.status_code}",
                status_code=response.status_code,
                code=str(code) if code is not None else None,
            )

        if not response.content:
            return []
        data = response.json()
        if isinstance(data, dict):
            return [data]
        return list(data or [])

    async def select(
        self,
        table: str,
        filters: Filter | None = None,
        *,
        order: Sequence[str] = (),
        limit: int | None = None,
    ) -> list[Row]:
        params = [("select", "*"), *_filter_params(filters)]
        order_value = _order_param(order)
        if order_value:
            params.append(("order", order_value))
        if limit is not None:
            params.append(("limit", str(limit)))
        return await self._request("GET", table, params=params)

    async def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        rows = await self._request(
            "POST", table, payload=dict(row), prefer="return=representation"
        )
        if not rows:
            raise ContentStoreError(f"Insert into {table} returned no row")
        return rows[0]

    async def update(
        self, table: str, filters: Filter, patch: Mapping[str, Any]
    ) -> list[Row]:
        if not filters:
            raise ContentStoreError("Refusing unfiltered update")
        return await self._request(
            "PATCH",
            table,
            params=_filter_params(filters),
            payload=dict(patch),
            prefer="return=representation",
        )

    async def upsert(
        self,
        table: str,
        row: Mapping[str, Any],
        conflict_key: Sequence[str],
        *,
        ignore_duplicates: bool = False,
    ) -> Row | None:
        resolution = "ignore-duplicates" if ignore_duplicates else "merge-duplicates"
        rows = await self._request(
            "POST",
            table,
            params=[("on_conflict", ",".join(conflict_key))],
            payload=dict(row),
            prefer=f"resolution={resolution},return=representation",
        )
        return rows[0] if rows else None

    async def delete(self, table: str, filters: Filter) -> list[Row]:
        if not filters:
            raise ContentStoreError("Refusing unfiltered delete")
        return await self._request(
            "DELETE",
            table,
            params=_filter_params(filters),
            prefer="return=representation",
        )


_store: ContentStore = PostgrestStore()


def get_store() -> ContentStore:
    return _store


def set_store(store: ContentStore) -> ContentStore:
    """Swap the process-wide store, returning the previous one."""
    global _store
    previous = _store
    _store = store
    return previous


__all__ = [
    "ContentStore",
    "ContentStoreError",
    "Filter",
    "PostgrestStore",
    "Row",
    "get_store",
    "set_store",
]
