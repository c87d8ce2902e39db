"""
Learning overview endpoints - totals, streak, weekly chart and history.
"""

import uuid
from datetime import timedelta
from typing import List, Optional

from fastapi import APIRouter, Query

from talbiyah.api.deps import CurrentUserId, ProgressService
from talbiyah.config import get_settings
from talbiyah.engines.progress import learning_stats
from talbiyah.engines.progress.aggregation import aggregate_student_stats
from talbiyah.engines.progress.presentation import overview_view
from talbiyah.errors import CurriculumUnsupportedError, NotFoundError
from talbiyah.kernel.models.base import utcnow
from talbiyah.logging_config import get_logger
from talbiyah.schemas.overview import (
    LearningOverviewResponse,
    ProgressEventResponse,
    WeeklyChartPoint,
    WeeklyChartResponse,
)
from talbiyah.schemas.surah import SurahStatsResponse

logger = get_logger(__name__)

router = APIRouter()


@router.get("/{student_id}/overview", response_model=LearningOverviewResponse)
async def get_learning_overview(
    student_id: uuid.UUID,
    user_id: CurrentUserId,
    service: ProgressService,
    subject_slug: Optional[str] = None,
):
    """Lesson totals, streak and encouragement alongside curriculum and surah progress."""
    slug = subject_slug or get_settings().default_subject_slug
    lessons = await service.ledger.load_completed_lessons(student_id)
    stats = learning_stats.overview_stats(lessons)

    curriculum = None
    verified = 0
    try:
        dashboard = await service.load_dashboard(student_id, slug)
    except (CurriculumUnsupportedError, NotFoundError) as e:
        # Surah-only deployments have no curriculum tree
        logger.info("Overview without curriculum", extra={"subject": slug, "reason": e.code})
        surahs = await service.ledger.load_surah_progress(student_id)
        surah_stats = aggregate_student_stats(surahs.values())
    else:
        curriculum = overview_view(dashboard.curriculum)
        verified = dashboard.curriculum.verified_count()
        surah_stats = dashboard.surah_stats

    return LearningOverviewResponse(
        student_id=student_id,
        total_hours=stats.total_hours,
        completed_lessons=stats.completed_lessons,
        lessons_this_month=stats.lessons_this_month,
        current_streak=stats.current_streak,
        milestones_verified=verified,
        encouragement=learning_stats.encouragement_message(
            total_hours=stats.total_hours,
            streak=stats.current_streak,
            milestones_verified=verified,
            ayat_memorized=surah_stats.total_ayat_memorized,
        ),
        surah_stats=SurahStatsResponse(**surah_stats.model_dump()),
        curriculum=curriculum,
    )


@router.get("/{student_id}/chart", response_model=WeeklyChartResponse)
async def get_weekly_chart(
    student_id: uuid.UUID,
    user_id: CurrentUserId,
    service: ProgressService,
    period: str = Query("month", pattern="^(week|month|year)$"),
):
    """Hours, lessons and verified milestones per week."""
    since = utcnow() - timedelta(days=learning_stats.CHART_PERIOD_DAYS[period])
    lessons = await service.ledger.load_completed_lessons(student_id, since=since)
    verified = await service.ledger.verified_since([student_id], since)
    buckets = learning_stats.weekly_chart(lessons, verified, period=period)
    return WeeklyChartResponse(
        student_id=student_id,
        period=period,
        weeks=[WeeklyChartPoint(**b.model_dump()) for b in buckets],
    )


@router.get("/{student_id}/history", response_model=List[ProgressEventResponse])
async def get_progress_history(
    student_id: uuid.UUID,
    user_id: CurrentUserId,
    service: ProgressService,
    days: Optional[int] = Query(None, ge=1, le=365),
    limit: int = Query(50, ge=1, le=200),
):
    """Most recent progress transitions for a student."""
    since = utcnow() - timedelta(days=days) if days else None
    events = await service.events.get_student_history(student_id, since=since, limit=limit)
    return [ProgressEventResponse.model_validate(e) for e in events]
