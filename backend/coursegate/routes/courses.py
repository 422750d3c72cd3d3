from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from ..auth import CurrentUser, OptionalCurrentUser
from ..db import ContentStoreError
from ..errors import PipelineError, ValidationError
from ..repositories import enrollments as enrollments_repo
from ..schemas import (
    CourseContentResponse,
    EnrollmentStatus,
    EnrollmentStatusResponse,
    EnrollResponse,
    enrollment_from_row,
)
from ..services import content_tree, enrollment_service

router = APIRouter(prefix="/api/courses", tags=["courses"])


def _http_error(exc: PipelineError | ContentStoreError) -> HTTPException:
    if isinstance(exc, ContentStoreError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    return HTTPException(status_code=exc.status_code, detail=exc.detail)


def _profile_id(current: dict) -> str:
    profile = current.get("profile")
    if not profile or not profile.get("id"):
        raise ValidationError("Profile not found", status_code=404)
    return str(profile["id"])


@router.post("/{course_id}/enroll", response_model=EnrollResponse)
async def enroll_in_course(course_id: str, current: CurrentUser) -> EnrollResponse:
    try:
        return await enrollment_service.enroll(current.get("profile"), course_id)
    except (PipelineError, ContentStoreError) as exc:
        raise _http_error(exc) from exc


@router.get("/{course_id}/enrollment", response_model=EnrollmentStatusResponse)
async def my_enrollment(course_id: str, current: CurrentUser) -> EnrollmentStatusResponse:
    try:
        row = await enrollments_repo.get_enrollment(course_id, _profile_id(current))
    except (PipelineError, ContentStoreError) as exc:
        raise _http_error(exc) from exc
    enrollment = enrollment_from_row(row)
    return EnrollmentStatusResponse(
        enrolled=bool(enrollment and enrollment.status is EnrollmentStatus.active),
        enrollment=enrollment,
    )


@router.get("/{course_id}/content", response_model=CourseContentResponse)
async def course_content(course_id: str, current: OptionalCurrentUser) -> CourseContentResponse:
    profile = (current or {}).get("profile") or {}
    student_id = str(profile["id"]) if profile.get("id") else None
    try:
        loaded = await content_tree.load_course_content(course_id, student_id)
    except (PipelineError, ContentStoreError) as exc:
        raise _http_error(exc) from exc

    tree = loaded["tree"]
    return CourseContentResponse.model_validate(
        {
            "course_id": loaded["course_id"],
            "title": loaded["title"],
            "has_access": loaded["has_access"],
            "enrollment": enrollment_from_row(loaded["enrollment"]),
            "lessons": tree.lessons,
            "legacy_materials": tree.legacy_materials,
            "current_material_id": tree.current_material_id,
            "total_materials": tree.total_materials,
            "accessible_count": tree.accessible_count,
            "locked_count": tree.locked_count,
        },
        from_attributes=True,
    )
