from __future__ import annotations

from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

from ..config import settings

# Characters encodeURIComponent leaves alone, so browser-built links match ours.
_COMPONENT_SAFE = "!~*'()"


def with_query(url: str, **params: str | None) -> str:
    """Append ``params`` to ``url``, keeping any query it already carries."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend((key, value) for key, value in params.items() if value is not None)
    return urlunsplit(parts._replace(query=urlencode(query)))


def frontend_url(path: str, **params: str | None) -> str:
    base = (settings.frontend_base_url or "").rstrip("/")
    return with_query(f"{base}/{path.lstrip('/')}", **params)


def api_url(path: str) -> str | None:
    base = (settings.public_api_base_url or "").rstrip("/")
    if not base:
        return None
    return f"{base}/{path.lstrip('/')}"


def payment_success_url(course_id: str | None, transaction_id: str | None) -> str:
    return frontend_url("/payment/success", course_id=course_id, tran_id=transaction_id)


def payment_failed_url(course_id: str | None, transaction_id: str | None) -> str:
    return frontend_url("/payment/failed", course_id=course_id, tran_id=transaction_id)


def retry_checkout_url(course_id: str | None) -> str | None:
    if not course_id:
        return None
    return frontend_url(f"/checkout/{course_id}")


def enrollment_success_path(course_title: str | None) -> str:
    return f"/success?course={quote(course_title or '', safe=_COMPONENT_SAFE)}"


__all__ = [
    "api_url",
    "enrollment_success_path",
    "frontend_url",
    "payment_failed_url",
    "payment_success_url",
    "retry_checkout_url",
    "with_query",
]
