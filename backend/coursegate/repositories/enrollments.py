from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from ..db import get_store
from ..schemas import EnrollmentStatus

_TABLE = "enrollments"
_CONFLICT_KEY = ("course_id", "student_id")


async def get_enrollment(course_id: str, student_id: str) -> dict[str, Any] | None:
    return await get_store().select_one(
        _TABLE, {"course_id": course_id, "student_id": student_id}
    )


async def get_active_enrollment(course_id: str, student_id: str) -> dict[str, Any] | None:
    return await get_store().select_one(
        _TABLE,
        {
            "course_id": course_id,
            "student_id": student_id,
            "status": EnrollmentStatus.active.value,
        },
    )


async def ensure_active_enrollment(
    course_id: str, student_id: str
) -> tuple[dict[str, Any], bool]:
    """Make sure an enrollment row exists for the pair.

    Returns ``(row, created)``. An existing row keeps its progress; a cancelled
    one is reactivated.
    """
    store = get_store()
    created = await store.upsert(
        _TABLE,
        {
            "course_id": course_id,
            "student_id": student_id,
            "status": EnrollmentStatus.active.value,
            "progress": 0,
            "enrolled_at": datetime.now(timezone.utc).isoformat(),
        },
        _CONFLICT_KEY,
        ignore_duplicates=True,
    )
    if created:
        return created, True

    existing = await get_enrollment(course_id, student_id)
    if existing is None:
        # Row vanished between statements; insert again rather than fail.
        row = await store.upsert(
            _TABLE,
            {
                "course_id": course_id,
                "student_id": student_id,
                "status": EnrollmentStatus.active.value,
                "progress": 0,
                "enrolled_at": datetime.now(timezone.utc).isoformat(),
            },
            _CONFLICT_KEY,
        )
        return row or {}, True

    if existing.get("status") == EnrollmentStatus.cancelled.value:
        rows = await store.update(
            _TABLE,
            {"id": existing["id"], "status": EnrollmentStatus.cancelled.value},
            {"status": EnrollmentStatus.active.value},
        )
        if rows:
            return rows[0], False
        refreshed = await get_enrollment(course_id, student_id)
        return refreshed or existing, False
    return existing, False


__all__ = ["ensure_active_enrollment", "get_active_enrollment", "get_enrollment"]
