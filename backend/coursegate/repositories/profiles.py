from __future__ import annotations

from typing import Any

from ..db import get_store


async def get_profile_by_user_id(user_id: str) -> dict[str, Any] | None:
    return await get_store().select_one("profiles", {"user_id": user_id})


__all__ = ["get_profile_by_user_id"]
