"""Learner-facing course outline.

Lessons form a forest through ``parent_lesson_id``; materials hang off lessons
or, when their lesson cannot be resolved, land in a flat legacy list. The
builder never follows raw parent pointers recursively: it indexes lessons into
an arena, links children in one pass and walks the result with a visited set,
so dangling references and cycles in upstream data degrade instead of failing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Mapping

from ..repositories import courses as courses_repo
from ..repositories import enrollments as enrollments_repo
from ..schemas import EnrollmentStatus
from ..errors import ValidationError


@dataclass(slots=True, eq=False)
class MaterialItem:
    id: str
    type: str
    order_index: int
    is_free: bool
    accessible: bool
    title: str | None = None
    description: str | None = None
    file_url: str | None = None
    duration_minutes: int | None = None


@dataclass(slots=True, eq=False)
class LessonItem:
    id: str
    order_index: int
    title: str | None = None
    description: str | None = None
    is_published: bool = True
    accessible: bool = False
    item_count: int = 0
    materials: list[MaterialItem] = field(default_factory=list)
    lessons: list["LessonItem"] = field(default_factory=list)


@dataclass(slots=True, eq=False)
class ContentTree:
    lessons: list[LessonItem]
    legacy_materials: list[MaterialItem]
    current_material_id: str | None
    total_materials: int
    accessible_count: int
    locked_count: int


def _order_value(row: Mapping[str, Any]) -> int:
    try:
        return int(row.get("order_index") or 0)
    except (TypeError, ValueError):
        return 0


def _key(value: Any) -> str | None:
    return str(value) if value is not None else None


def _material_item(row: Mapping[str, Any], has_access: bool) -> MaterialItem:
    is_free = bool(row.get("is_free"))
    accessible = is_free or has_access
    return MaterialItem(
        id=str(row["id"]),
        type=str(row.get("type") or "document"),
        order_index=_order_value(row),
        is_free=is_free,
        accessible=accessible,
        title=row.get("title"),
        description=row.get("description"),
        file_url=row.get("file_url") if accessible else None,
        duration_minutes=row.get("duration_minutes"),
    )


def _sort_in_place(items: list) -> None:
    # list.sort is stable, so equal order_index keeps fetch order.
    items.sort(key=lambda item: item.order_index)


def _walk(roots: Iterable[LessonItem]) -> Iterator[LessonItem]:
    stack = list(reversed(list(roots)))
    while stack:
        lesson = stack.pop()
        yield lesson
        stack.extend(reversed(lesson.lessons))


def build_content_tree(
    lessons: Iterable[Mapping[str, Any]],
    materials: Iterable[Mapping[str, Any]],
    *,
    has_access: bool,
    course_id: str | None = None,
) -> ContentTree:
    lesson_rows = list(lessons)
    arena: dict[str, LessonItem] = {}
    parents: dict[str, str | None] = {}
    courses: dict[str, str | None] = {}
    for row in lesson_rows:
        lesson_id = str(row["id"])
        if lesson_id in arena:
            continue
        arena[lesson_id] = LessonItem(
            id=lesson_id,
            order_index=_order_value(row),
            title=row.get("title"),
            description=row.get("description"),
            is_published=bool(row.get("is_published", True)),
        )
        parents[lesson_id] = _key(row.get("parent_lesson_id"))
        courses[lesson_id] = _key(row.get("course_id")) or course_id

    legacy: list[MaterialItem] = []
    total = 0
    accessible_count = 0
    for row in materials:
        item = _material_item(row, has_access)
        total += 1
        if item.accessible:
            accessible_count += 1
        owner = arena.get(_key(row.get("lesson_id")) or "")
        material_course = _key(row.get("course_id")) or course_id
        if owner is not None and courses.get(owner.id) == material_course:
            owner.materials.append(item)
        else:
            legacy.append(item)

    roots: list[LessonItem] = []
    for lesson_id, lesson in arena.items():
        parent_id = parents[lesson_id]
        parent = arena.get(parent_id) if parent_id else None
        if parent is None or parent is lesson or courses[parent.id] != courses[lesson_id]:
            roots.append(lesson)
        else:
            parent.lessons.append(lesson)

    visited: set[str] = set()

    def _claim(root: LessonItem) -> None:
        # Drop edges that lead back into already placed lessons.
        stack = [root]
        visited.add(root.id)
        while stack:
            node = stack.pop()
            kept: list[LessonItem] = []
            for child in node.lessons:
                if child.id in visited:
                    continue
                visited.add(child.id)
                kept.append(child)
                stack.append(child)
            node.lessons = kept

    for root in roots:
        _claim(root)

    # Anything left is trapped in (or hangs below) a parent cycle.
    for lesson_id in arena:
        if lesson_id in visited:
            continue
        seen: set[str] = set()
        cursor = lesson_id
        while cursor not in seen:
            seen.add(cursor)
            next_id = parents.get(cursor)
            if not next_id or next_id not in arena or next_id in visited:
                break
            cursor = next_id
        promoted = arena[cursor]
        for candidate in arena.values():
            if any(child is promoted for child in candidate.lessons):
                candidate.lessons = [
                    child for child in candidate.lessons if child is not promoted
                ]
        roots.append(promoted)
        _claim(promoted)

    _sort_in_place(roots)
    for lesson in arena.values():
        _sort_in_place(lesson.materials)
        _sort_in_place(lesson.lessons)
    _sort_in_place(legacy)

    ordered = list(_walk(roots))
    counts: dict[str, int] = {}
    unlocked: dict[str, bool] = {}
    for lesson in reversed(ordered):
        counts[lesson.id] = len(lesson.materials) + sum(
            counts[child.id] for child in lesson.lessons
        )
        unlocked[lesson.id] = any(item.accessible for item in lesson.materials) or any(
            unlocked[child.id] for child in lesson.lessons
        )
        lesson.item_count = counts[lesson.id]
        lesson.accessible = has_access or unlocked[lesson.id]

    current = next(
        (lesson.materials[0].id for lesson in ordered if lesson.materials),
        legacy[0].id if legacy else None,
    )

    return ContentTree(
        lessons=roots,
        legacy_materials=legacy,
        current_material_id=current,
        total_materials=total,
        accessible_count=accessible_count,
        locked_count=total - accessible_count,
    )


async def load_course_content(
    course_id: str, student_id: str | None
) -> dict[str, Any]:
    course = await courses_repo.get_course(course_id)
    if not course or not course.get("is_published"):
        raise ValidationError("Course not found", status_code=404)

    enrollment = None
    if student_id:
        enrollment = await enrollments_repo.get_enrollment(course_id, student_id)
    has_access = bool(
        enrollment and enrollment.get("status") == EnrollmentStatus.active.value
    )

    lessons = await courses_repo.list_course_lessons(course_id)
    materials = await courses_repo.list_course_materials(course_id)
    tree = build_content_tree(
        lessons, materials, has_access=has_access, course_id=str(course["id"])
    )
    return {
        "course_id": str(course["id"]),
        "title": course.get("title"),
        "has_access": has_access,
        "enrollment": enrollment,
        "tree": tree,
    }


__all__ = [
    "ContentTree",
    "LessonItem",
    "MaterialItem",
    "build_content_tree",
    "load_course_content",
]
