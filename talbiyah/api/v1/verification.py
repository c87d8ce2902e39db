"""
Milestone verification endpoints - student submissions and teacher review.
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Query

from talbiyah.api.deps import CurrentUserId, Workflow
from talbiyah.config import get_settings
from talbiyah.engines.progress.types import Hierarchy, MilestoneProgress
from talbiyah.errors import CurriculumUnsupportedError, NotFoundError
from talbiyah.logging_config import get_logger
from talbiyah.schemas.curriculum import (
    MilestoneProgressResponse,
    PendingVerificationItem,
    RejectRequest,
    VerifyRequest,
)

logger = get_logger(__name__)

router = APIRouter()


def _to_response(progress: MilestoneProgress) -> MilestoneProgressResponse:
    return MilestoneProgressResponse(
        student_id=progress.student_id,
        milestone_id=progress.milestone_id,
        status=progress.status.value,
        progress_percentage=progress.progress_percentage,
        started_at=progress.started_at,
        completed_at=progress.completed_at,
        verified_at=progress.verified_at,
        verified_by=progress.verified_by,
        verification_notes=progress.verification_notes,
        updated_at=progress.updated_at,
    )


def _to_queue_item(progress: MilestoneProgress, hierarchy: Optional[Hierarchy]) -> PendingVerificationItem:
    milestone = stage = phase = None
    if hierarchy is not None:
        milestone = hierarchy.milestone(progress.milestone_id)
        stage = hierarchy.stage(milestone.stage_id) if milestone else None
        phase = hierarchy.phase(stage.phase_id) if stage else None
    return PendingVerificationItem(
        student_id=progress.student_id,
        milestone_id=progress.milestone_id,
        milestone_name=milestone.name if milestone else None,
        stage_name=stage.name if stage else None,
        phase_name=phase.name if phase else None,
        status=progress.status.value,
        progress_percentage=progress.progress_percentage,
        verified_at=progress.verified_at,
        verification_notes=progress.verification_notes,
        updated_at=progress.updated_at,
    )


async def _default_hierarchy(workflow) -> Optional[Hierarchy]:
    slug = get_settings().default_subject_slug
    try:
        return await workflow.progress.hierarchy_store.load_hierarchy(slug)
    except (CurriculumUnsupportedError, NotFoundError) as e:
        # Queue entries are still listed, just without names
        logger.info("Review queue without milestone names", extra={"subject": slug, "reason": e.code})
        return None


# ============================================================================
# Student actions (acting on their own record)
# ============================================================================


@router.post("/milestones/{milestone_id}/start", response_model=MilestoneProgressResponse)
async def start_milestone(milestone_id: uuid.UUID, user_id: CurrentUserId, workflow: Workflow):
    progress = await workflow.start_milestone(user_id, milestone_id)
    return _to_response(progress)


@router.post("/milestones/{milestone_id}/submit", response_model=MilestoneProgressResponse)
async def submit_for_verification(milestone_id: uuid.UUID, user_id: CurrentUserId, workflow: Workflow):
    """Ask a teacher to verify the milestone."""
    progress = await workflow.submit_for_verification(user_id, milestone_id)
    return _to_response(progress)


# ============================================================================
# Teacher actions
# ============================================================================


@router.post(
    "/milestones/{milestone_id}/students/{student_id}/verify",
    response_model=MilestoneProgressResponse,
)
async def verify_milestone(
    milestone_id: uuid.UUID,
    student_id: uuid.UUID,
    body: VerifyRequest,
    user_id: CurrentUserId,
    workflow: Workflow,
):
    """Verify a submitted milestone (must be pending verification)."""
    progress = await workflow.verify_strict(student_id, milestone_id, user_id, body.notes)
    return _to_response(progress)


@router.post(
    "/milestones/{milestone_id}/students/{student_id}/quick-verify",
    response_model=MilestoneProgressResponse,
)
async def quick_verify_milestone(
    milestone_id: uuid.UUID,
    student_id: uuid.UUID,
    user_id: CurrentUserId,
    workflow: Workflow,
):
    """Mark verified in one step, from any status."""
    progress = await workflow.verify_quick(student_id, milestone_id, user_id)
    return _to_response(progress)


@router.post(
    "/milestones/{milestone_id}/students/{student_id}/reject",
    response_model=MilestoneProgressResponse,
)
async def reject_milestone(
    milestone_id: uuid.UUID,
    student_id: uuid.UUID,
    body: RejectRequest,
    user_id: CurrentUserId,
    workflow: Workflow,
):
    """Send a submission back to in progress with feedback."""
    progress = await workflow.reject(student_id, milestone_id, body.notes)
    return _to_response(progress)


# ============================================================================
# Review queue
# ============================================================================


@router.get("/verification/pending", response_model=List[PendingVerificationItem])
async def list_pending_verifications(user_id: CurrentUserId, workflow: Workflow):
    """Submissions from the teacher's students, most recently updated first."""
    students = await workflow.students_for_teacher(user_id)
    pending = await workflow.pending_verifications(students)
    hierarchy = await _default_hierarchy(workflow) if pending else None
    return [_to_queue_item(p, hierarchy) for p in pending]


@router.get("/verification/recent", response_model=List[PendingVerificationItem])
async def list_recent_verifications(
    user_id: CurrentUserId,
    workflow: Workflow,
    days: Optional[int] = Query(None, ge=1, le=365),
    limit: Optional[int] = Query(None, ge=1, le=100),
):
    """Milestones verified for the teacher's students in the last few days."""
    students = await workflow.students_for_teacher(user_id)
    recent = await workflow.recent_verifications(students, days=days, limit=limit)
    hierarchy = await _default_hierarchy(workflow) if recent else None
    return [_to_queue_item(p, hierarchy) for p in recent]
