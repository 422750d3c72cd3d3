from __future__ import annotations

import logging
from contextvars import ContextVar, Token
from typing import Any

import sentry_sdk

_CONTEXT_FIELDS = ("request_id", "user_id", "course_id", "transaction_id")

_log_context: ContextVar[dict[str, Any] | None] = ContextVar("log_context", default=None)


class RequestContextFilter(logging.Filter):
    """Stamp every record with the request and payment identifiers in scope."""

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - formatting only
        context = _log_context.get() or {}
        for name in _CONTEXT_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, context.get(name))
        return True


def push_request_context(request_id: str) -> Token:
    return _log_context.set({"request_id": request_id})


def pop_request_context(token: Token) -> None:
    _log_context.reset(token)


def current_log_context() -> dict[str, Any]:
    return dict(_log_context.get() or {})


def bind_log_context(**fields: Any) -> None:
    """Attach identifiers to the rest of the current request's log lines."""
    context = _log_context.get()
    if context is None:
        context = {}
        _log_context.set(context)
    context.update({key: value for key, value in fields.items() if value is not None})
    for key in ("course_id", "transaction_id"):
        if fields.get(key) is not None:
            sentry_sdk.get_isolation_scope().set_tag(key, str(fields[key]))


def set_user_context(user_id: str | None) -> None:
    bind_log_context(user_id=user_id)
    sentry_sdk.set_user({"id": user_id} if user_id else None)


__all__ = [
    "RequestContextFilter",
    "bind_log_context",
    "current_log_context",
    "pop_request_context",
    "push_request_context",
    "set_user_context",
]
