from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from .checkout import Enrollment


class MaterialNode(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: Optional[str] = None
    type: str
    description: Optional[str] = None
    order_index: int = 0
    is_free: bool = False
    accessible: bool = False
    file_url: Optional[str] = None
    duration_minutes: Optional[int] = None


class LessonNode(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: Optional[str] = None
    description: Optional[str] = None
    order_index: int = 0
    is_published: bool = True
    accessible: bool = False
    item_count: int = 0
    materials: List[MaterialNode] = []
    lessons: List["LessonNode"] = []


class CourseContentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    course_id: str
    title: Optional[str] = None
    has_access: bool
    enrollment: Optional[Enrollment] = None
    lessons: List[LessonNode] = []
    legacy_materials: List[MaterialNode] = []
    current_material_id: Optional[str] = None
    total_materials: int = 0
    accessible_count: int = 0
    locked_count: int = 0


LessonNode.model_rebuild()
