from __future__ import annotations

from typing import Any

from ..db import get_store


async def get_course(course_id: str) -> dict[str, Any] | None:
    return await get_store().select_one("courses", {"id": course_id})


async def list_course_lessons(course_id: str) -> list[dict[str, Any]]:
    return await get_store().select("lessons", {"course_id": course_id})


async def list_course_materials(course_id: str) -> list[dict[str, Any]]:
    return await get_store().select("course_materials", {"course_id": course_id})


__all__ = ["get_course", "list_course_lessons", "list_course_materials"]
