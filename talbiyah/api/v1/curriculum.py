"""
Curriculum progress endpoints - views, position pointer, cache maintenance.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, status

from talbiyah.api.deps import CurrentUserId, ProgressService, get_hierarchy_cache
from talbiyah.engines.progress.hierarchy_store import HierarchyCache
from talbiyah.engines.progress.presentation import ViewVariant, render
from talbiyah.schemas.common import SuccessResponse
from talbiyah.schemas.curriculum import (
    CurriculumProgressResponse,
    CurriculumView,
    PositionUpdate,
)

router = APIRouter()


@router.get(
    "/{subject_slug}/students/{student_id}",
    response_model=CurriculumView,
)
async def get_curriculum_progress(
    subject_slug: str,
    student_id: uuid.UUID,
    user_id: CurrentUserId,
    service: ProgressService,
    variant: ViewVariant = ViewVariant.FULL,
):
    """Student's progress through a subject in the requested display variant."""
    snapshot = await service.load_snapshot(student_id, subject_slug)
    return render(snapshot, variant)


@router.put(
    "/{subject_slug}/students/{student_id}/position",
    response_model=CurriculumProgressResponse,
)
async def move_position(
    subject_slug: str,
    student_id: uuid.UUID,
    body: PositionUpdate,
    user_id: CurrentUserId,
    service: ProgressService,
):
    """Explicitly move a student to a phase (and optionally a stage)."""
    saved = await service.move_position(student_id, subject_slug, body.phase_id, body.stage_id, actor_id=user_id)
    return CurriculumProgressResponse.model_validate(saved, from_attributes=True)


@router.post(
    "/{subject_slug}/students/{student_id}/recompute",
    response_model=CurriculumProgressResponse,
)
async def recompute_progress(
    subject_slug: str,
    student_id: uuid.UUID,
    user_id: CurrentUserId,
    service: ProgressService,
):
    """Rebuild the cached overall percentage from milestone records."""
    saved = await service.recompute(student_id, subject_slug)
    return CurriculumProgressResponse.model_validate(saved, from_attributes=True)


@router.post(
    "/{subject_slug}/cache/invalidate",
    response_model=SuccessResponse,
    status_code=status.HTTP_200_OK,
)
async def invalidate_hierarchy(
    subject_slug: str,
    user_id: CurrentUserId,
    cache: Optional[HierarchyCache] = Depends(get_hierarchy_cache),
):
    """Drop the cached tree after curriculum content changes."""
    if cache is not None:
        cache.invalidate(subject_slug)
    return SuccessResponse(message=f"Hierarchy cache cleared for {subject_slug}")
