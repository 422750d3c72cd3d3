"""In-memory doubles for the content store and payment gateways."""

from __future__ import annotations

import copy
import uuid
from collections import defaultdict
from typing import Any, Mapping, Sequence

import anyio

from coursegate.db import ContentStore, ContentStoreError, Filter, Row
from coursegate.schemas import PaymentMethod, PaymentStatus
from coursegate.services.gateways import (
    GatewaySession,
    GatewayVerdict,
    PaymentGateway,
    SessionRequest,
)

UNIQUE_KEYS: dict[str, tuple[str, ...]] = {
    "enrollments": ("course_id", "student_id"),
    "payments": ("transaction_id",),
    "site_settings": ("key",),
}


def _same(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return left is None and right is None
    if isinstance(left, bool) or isinstance(right, bool):
        return left == right
    return str(left) == str(right)


def _matches(row: Mapping[str, Any], filters: Filter | None) -> bool:
    for column, expected in (filters or {}).items():
        actual = row.get(column)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if not any(_same(actual, option) for option in expected):
                return False
        elif not _same(actual, expected):
            return False
    return True


class MemoryStore(ContentStore):
    """Single-statement semantics of the PostgREST store, kept in dicts.

    Every operation yields to the event loop first so concurrent callers
    interleave the way separate HTTP requests would.
    """

    def __init__(self) -> None:
        self.tables: dict[str, list[Row]] = defaultdict(list)
        self.calls: list[tuple[str, str]] = []
        self._failures: dict[tuple[str, str], list[Exception]] = defaultdict(list)

    def seed(self, table: str, *rows: Mapping[str, Any]) -> list[Row]:
        stored = []
        for row in rows:
            record = {"id": str(uuid.uuid4()), **row}
            self.tables[table].append(record)
            stored.append(copy.deepcopy(record))
        return stored

    def rows(self, table: str, **filters: Any) -> list[Row]:
        return [copy.deepcopy(row) for row in self.tables[table] if _matches(row, filters)]

    def fail_next(
        self, operation: str, table: str, *, times: int = 1, error: Exception | None = None
    ) -> None:
        for _ in range(times):
            self._failures[(operation, table)].append(
                error or ContentStoreError(f"injected {operation} failure on {table}")
            )

    async def _enter(self, operation: str, table: str) -> None:
        await anyio.sleep(0)
        self.calls.append((operation, table))
        pending = self._failures.get((operation, table))
        if pending:
            raise pending.pop(0)

    def _conflict(self, table: str, row: Mapping[str, Any], key: Sequence[str]) -> Row | None:
        if any(row.get(column) is None for column in key):
            return None
        for existing in self.tables[table]:
            if all(_same(existing.get(column), row.get(column)) for column in key):
                return existing
        return None

    async def select(
        self,
        table: str,
        filters: Filter | None = None,
        *,
        order: Sequence[str] = (),
        limit: int | None = None,
    ) -> list[Row]:
        await self._enter("select", table)
        found = [row for row in self.tables[table] if _matches(row, filters)]
        for column in reversed(list(order)):
            descending = column.startswith("-")
            name = column.lstrip("-")
            found.sort(
                key=lambda row: (row.get(name) is None, str(row.get(name))),
                reverse=descending,
            )
        if limit is not None:
            found = found[:limit]
        return [copy.deepcopy(row) for row in found]

    async def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        await self._enter("insert", table)
        key = UNIQUE_KEYS.get(table)
        if key and self._conflict(table, row, key) is not None:
            raise ContentStoreError(
                f"duplicate key value violates unique constraint on {table}",
                status_code=409,
                code="23505",
            )
        record = {"id": str(uuid.uuid4()), **row}
        self.tables[table].append(record)
        return copy.deepcopy(record)

    async def update(self, table: str, filters: Filter, patch: Mapping[str, Any]) -> list[Row]:
        await self._enter("update", table)
        if not filters:
            raise ContentStoreError("Refusing unfiltered update")
        changed = []
        for row in self.tables[table]:
            if _matches(row, filters):
                row.update(patch)
                changed.append(copy.deepcopy(row))
        return changed

    async def upsert(
        self,
        table: str,
        row: Mapping[str, Any],
        conflict_key: Sequence[str],
        *,
        ignore_duplicates: bool = False,
    ) -> Row | None:
        await self._enter("upsert", table)
        existing = self._conflict(table, row, conflict_key)
        if existing is not None:
            if ignore_duplicates:
                return None
            existing.update({k: v for k, v in row.items() if k != "id"})
            return copy.deepcopy(existing)
        record = {"id": str(uuid.uuid4()), **row}
        self.tables[table].append(record)
        return copy.deepcopy(record)

    async def delete(self, table: str, filters: Filter) -> list[Row]:
        await self._enter("delete", table)
        removed = [row for row in self.tables[table] if _matches(row, filters)]
        self.tables[table] = [row for row in self.tables[table] if not _matches(row, filters)]
        return removed


class FakeGateway(PaymentGateway):
    method = PaymentMethod.sslcommerz

    def __init__(
        self,
        *,
        method: PaymentMethod = PaymentMethod.sslcommerz,
        session_id: str | None = None,
        session_error: Exception | None = None,
        verdict: GatewayVerdict | None = None,
        verify_error: Exception | None = None,
        callback_verdict: GatewayVerdict | None = None,
    ) -> None:
        super().__init__()
        self.method = method
        self.session_id = session_id
        self.session_error = session_error
        self.verdict = verdict
        self.verify_error = verify_error
        self.callback_verdict = callback_verdict
        self.sessions: list[SessionRequest] = []
        self.verified: list[str] = []
        self.callbacks: list[Mapping[str, Any]] = []

    async def create_session(self, request: SessionRequest) -> GatewaySession:
        self.sessions.append(request)
        if self.session_error is not None:
            raise self.session_error
        session_id = self.session_id or request.transaction_id
        return GatewaySession(
            redirect_url=f"https://pay.example.test/{session_id}", session_id=session_id
        )

    async def verify(self, transaction_id: str) -> GatewayVerdict:
        self.verified.append(transaction_id)
        if self.verify_error is not None:
            raise self.verify_error
        return self.verdict or GatewayVerdict(
            status=PaymentStatus.pending, transaction_id=transaction_id
        )

    async def confirm_callback(self, payload: Mapping[str, Any]) -> GatewayVerdict:
        self.callbacks.append(dict(payload))
        if self.callback_verdict is None:
            raise AssertionError("no callback verdict configured")
        return self.callback_verdict


def install_gateway(monkeypatch, gateway: PaymentGateway) -> list[PaymentMethod]:
    """Route every gateway lookup to ``gateway``; returns the methods requested."""
    from coursegate.services import gateways

    requested: list[PaymentMethod] = []

    async def _build(method: PaymentMethod) -> PaymentGateway:
        requested.append(method)
        return gateway

    monkeypatch.setattr(gateways, "build_gateway", _build)
    return requested
