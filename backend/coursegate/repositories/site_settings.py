from __future__ import annotations

import json
from typing import Any, Iterable

from ..db import get_store


def _decode_value(value: Any) -> Any:
    # Admin forms persist some values as JSON-encoded strings.
    if isinstance(value, str) and value[:1] in {'"', "{", "["}:
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


async def get_settings(keys: Iterable[str]) -> dict[str, Any]:
    wanted = list(keys)
    if not wanted:
        return {}
    rows = await get_store().select("site_settings", {"key": wanted})
    return {
        str(row["key"]): _decode_value(row.get("value"))
        for row in rows
        if row.get("key") is not None
    }


__all__ = ["get_settings"]
