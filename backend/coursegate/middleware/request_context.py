from __future__ import annotations

import logging
import time
import uuid

import sentry_sdk
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ..logging_context import pop_request_context, push_request_context

logger = logging.getLogger("coursegate.access")

# Gateways and load balancers poll these; keep them out of the access log.
_QUIET_PATHS = frozenset({"/healthz", "/readyz", "/metrics"})


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id, echo it back and log the outcome."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        token = push_request_context(request_id)
        request.state.request_id = request_id
        sentry_sdk.get_isolation_scope().set_tag("request_id", request_id)
        started = time.perf_counter()
        try:
            response: Response = await call_next(request)
            if request.url.path not in _QUIET_PATHS:
                logger.info(
                    "%s %s -> %s",
                    request.method,
                    request.url.path,
                    response.status_code,
                    extra={"duration_ms": round((time.perf_counter() - started) * 1000, 1)},
                )
        finally:
            pop_request_context(token)
        response.headers["X-Request-ID"] = request_id
        return response
