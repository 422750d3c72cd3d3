import pytest

from coursegate.errors import ValidationError
from coursegate.services import content_tree
from coursegate.services.content_tree import build_content_tree

COURSE = "course-1"


def _lesson(lesson_id, order=0, parent=None, course=COURSE, **extra):
    return {
        "id": lesson_id,
        "course_id": course,
        "parent_lesson_id": parent,
        "order_index": order,
        "title": f"Lesson {lesson_id}",
        **extra,
    }


def _material(material_id, lesson=None, order=0, is_free=False, course=COURSE, **extra):
    return {
        "id": material_id,
        "course_id": course,
        "lesson_id": lesson,
        "order_index": order,
        "is_free": is_free,
        "type": "video",
        "title": f"Material {material_id}",
        "file_url": f"https://cdn.example.test/{material_id}.mp4",
        **extra,
    }


def _all_lessons(tree):
    return list(content_tree._walk(tree.lessons))


def test_empty_course_is_valid():
    tree = build_content_tree([], [], has_access=False, course_id=COURSE)

    assert tree.lessons == []
    assert tree.legacy_materials == []
    assert tree.current_material_id is None
    assert (tree.total_materials, tree.accessible_count, tree.locked_count) == (0, 0, 0)


def test_locked_materials_keep_metadata_but_hide_file_url():
    tree = build_content_tree(
        [_lesson("l1")],
        [_material("m1", "l1", 0, is_free=True), _material("m2", "l1", 1)],
        has_access=False,
        course_id=COURSE,
    )

    free, locked = tree.lessons[0].materials
    assert free.accessible is True
    assert free.file_url == "https://cdn.example.test/m1.mp4"
    assert locked.accessible is False
    assert locked.file_url is None
    assert locked.title == "Material m2"
    assert locked.type == "video"
    assert tree.accessible_count + tree.locked_count == tree.total_materials == 2
    assert tree.locked_count == 1


def test_active_enrollment_unlocks_everything():
    tree = build_content_tree(
        [_lesson("l1")],
        [_material("m1", "l1"), _material("m2", None)],
        has_access=True,
        course_id=COURSE,
    )

    assert tree.accessible_count == tree.total_materials == 2
    assert tree.locked_count == 0
    assert tree.lessons[0].accessible is True


def test_dangling_and_foreign_lesson_references_fall_back_to_legacy():
    tree = build_content_tree(
        [_lesson("l1"), _lesson("other", course="course-2")],
        [
            _material("m1", "deleted-lesson", 2),
            _material("m2", "other", 1),
            _material("m3", "l1", 0),
            _material("m4", None, 0),
        ],
        has_access=False,
        course_id=COURSE,
    )

    assert [item.id for item in tree.legacy_materials] == ["m4", "m2", "m1"]
    assert [item.id for item in tree.lessons[0].materials] == ["m3"]
    assert tree.total_materials == 4


def test_parent_cycles_terminate_and_keep_every_lesson_once():
    lessons = [
        _lesson("a", 0, parent="b"),
        _lesson("b", 1, parent="a"),
        _lesson("c", 2, parent="c"),
        _lesson("d", 3, parent="a"),
        _lesson("e", 4, parent="missing"),
    ]
    tree = build_content_tree(lessons, [], has_access=False, course_id=COURSE)

    seen = [lesson.id for lesson in _all_lessons(tree)]
    assert sorted(seen) == ["a", "b", "c", "d", "e"]
    assert len(seen) == len(set(seen))
    root_ids = {lesson.id for lesson in tree.lessons}
    assert {"c", "e"} <= root_ids


def test_longer_cycle_promotes_a_single_root():
    lessons = [
        _lesson("x", 0, parent="z"),
        _lesson("y", 1, parent="x"),
        _lesson("z", 2, parent="y"),
    ]
    tree = build_content_tree(lessons, [], has_access=False, course_id=COURSE)

    assert len(tree.lessons) == 1
    assert sorted(lesson.id for lesson in _all_lessons(tree)) == ["x", "y", "z"]


def test_foreign_course_parent_makes_lesson_a_root():
    lessons = [_lesson("p", course="course-2"), _lesson("child", parent="p")]
    tree = build_content_tree(lessons, [], has_access=False, course_id=COURSE)

    assert sorted(lesson.id for lesson in tree.lessons) == ["child", "p"]
    assert all(not lesson.lessons for lesson in tree.lessons)


def test_siblings_sort_by_order_index_and_keep_fetch_order_on_ties():
    lessons = [
        _lesson("root"),
        _lesson("second", 1, parent="root"),
        _lesson("tie-a", 0, parent="root"),
        _lesson("tie-b", 0, parent="root"),
    ]
    materials = [
        _material("m-late", "root", 5),
        _material("m-tie-1", "root", 1),
        _material("m-tie-2", "root", 1),
    ]
    tree = build_content_tree(lessons, materials, has_access=False, course_id=COURSE)

    root = tree.lessons[0]
    assert [child.id for child in root.lessons] == ["tie-a", "tie-b", "second"]
    assert [item.id for item in root.materials] == ["m-tie-1", "m-tie-2", "m-late"]


def test_item_counts_include_descendants():
    lessons = [
        _lesson("root"),
        _lesson("mid", parent="root"),
        _lesson("leaf", parent="mid"),
    ]
    materials = [
        _material("m1", "root"),
        _material("m2", "mid"),
        _material("m3", "leaf"),
        _material("m4", "leaf", 1),
    ]
    tree = build_content_tree(lessons, materials, has_access=False, course_id=COURSE)

    root = tree.lessons[0]
    mid = root.lessons[0]
    leaf = mid.lessons[0]
    assert (root.item_count, mid.item_count, leaf.item_count) == (4, 3, 2)


def test_lesson_is_accessible_when_its_subtree_has_a_free_material():
    lessons = [
        _lesson("open", 0),
        _lesson("open-child", parent="open"),
        _lesson("closed", 1),
    ]
    materials = [
        _material("free", "open-child", is_free=True),
        _material("paid", "closed"),
    ]
    tree = build_content_tree(lessons, materials, has_access=False, course_id=COURSE)

    open_lesson, closed_lesson = tree.lessons
    assert open_lesson.accessible is True
    assert open_lesson.lessons[0].accessible is True
    assert closed_lesson.accessible is False


def test_current_material_prefers_own_materials_before_children():
    lessons = [
        _lesson("empty", 0),
        _lesson("parent", 1),
        _lesson("child", 0, parent="parent"),
    ]
    materials = [_material("child-m", "child"), _material("parent-m", "parent", 3)]
    tree = build_content_tree(lessons, materials, has_access=False, course_id=COURSE)

    assert tree.current_material_id == "parent-m"


def test_current_material_falls_back_to_legacy():
    tree = build_content_tree(
        [_lesson("l1")],
        [_material("legacy-2", None, 2), _material("legacy-1", None, 1)],
        has_access=False,
        course_id=COURSE,
    )

    assert tree.current_material_id == "legacy-1"


@pytest.mark.anyio("asyncio")
async def test_load_course_content_uses_active_enrollment(store, seed_course, student):
    course = seed_course(title="Python")
    store.seed("lessons", _lesson("l1", course=course["id"]))
    store.seed("course_materials", _material("m1", "l1", course=course["id"]))
    store.seed(
        "enrollments",
        {"course_id": course["id"], "student_id": student["id"], "status": "active"},
    )

    loaded = await content_tree.load_course_content(course["id"], student["id"])

    assert loaded["has_access"] is True
    assert loaded["title"] == "Python"
    assert loaded["tree"].accessible_count == 1


@pytest.mark.anyio("asyncio")
async def test_cancelled_enrollment_does_not_grant_access(store, seed_course, student):
    course = seed_course()
    store.seed("course_materials", _material("m1", None, course=course["id"]))
    store.seed(
        "enrollments",
        {"course_id": course["id"], "student_id": student["id"], "status": "cancelled"},
    )

    loaded = await content_tree.load_course_content(course["id"], student["id"])

    assert loaded["has_access"] is False
    assert loaded["tree"].locked_count == 1


@pytest.mark.anyio("asyncio")
async def test_unpublished_course_is_not_found(seed_course):
    course = seed_course(is_published=False)

    with pytest.raises(ValidationError) as excinfo:
        await content_tree.load_course_content(course["id"], None)

    assert excinfo.value.status_code == 404
