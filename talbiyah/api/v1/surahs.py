"""
Surah progress endpoints - three pillar counters and post-lesson practice.
"""

import uuid
from typing import List

from fastapi import APIRouter

from talbiyah.api.deps import CurrentUserId, ProgressService
from talbiyah.engines.progress.aggregation import (
    aggregate_student_stats,
    surah_overall_percent,
    surah_pillar_percent,
)
from talbiyah.engines.progress.quran_data import PILLARS, SURAHS, PillarInfo, SurahInfo, get_surah_info
from talbiyah.engines.progress.types import Pillar, SurahProgress
from talbiyah.schemas.surah import (
    PillarPercentages,
    StudentSurahsResponse,
    SurahCountersUpdate,
    SurahPracticeRequest,
    SurahProgressResponse,
    SurahStatsResponse,
)

router = APIRouter()


def _to_response(sp: SurahProgress) -> SurahProgressResponse:
    info = get_surah_info(sp.surah_number)
    return SurahProgressResponse(
        student_id=sp.student_id,
        surah_number=sp.surah_number,
        surah_name=sp.surah_name or (info.name if info else f"Surah {sp.surah_number}"),
        surah_name_arabic=info.name_arabic if info else None,
        total_ayat=sp.total_ayat,
        fahm_progress=sp.fahm_progress,
        itqan_progress=sp.itqan_progress,
        hifz_progress=sp.hifz_progress,
        fahm_completed=sp.fahm_completed,
        itqan_completed=sp.itqan_completed,
        hifz_completed=sp.hifz_completed,
        status=sp.status.value,
        percentages=PillarPercentages(
            fahm=surah_pillar_percent(sp, sp.total_ayat, Pillar.FAHM),
            itqan=surah_pillar_percent(sp, sp.total_ayat, Pillar.ITQAN),
            hifz=surah_pillar_percent(sp, sp.total_ayat, Pillar.HIFZ),
        ),
        overall_percentage=surah_overall_percent(sp),
        started_at=sp.started_at,
        completed_at=sp.completed_at,
    )


@router.get("/reference", response_model=List[SurahInfo])
async def list_surahs():
    """Tracked surahs: Al-Fatiha and Juz Amma."""
    return list(SURAHS.values())


@router.get("/pillars", response_model=List[PillarInfo])
async def list_pillars():
    return list(PILLARS.values())


@router.get("/students/{student_id}", response_model=StudentSurahsResponse)
async def get_student_surahs(student_id: uuid.UUID, user_id: CurrentUserId, service: ProgressService):
    """All surah records for a student with pillar percentages and totals."""
    records = await service.ledger.load_surah_progress(student_id)
    stats = aggregate_student_stats(records.values())
    return StudentSurahsResponse(
        student_id=student_id,
        surahs=[_to_response(sp) for sp in records.values()],
        stats=SurahStatsResponse(**stats.model_dump()),
    )


@router.put("/students/{student_id}/{surah_number}", response_model=SurahProgressResponse)
async def update_surah_counters(
    student_id: uuid.UUID,
    surah_number: int,
    body: SurahCountersUpdate,
    user_id: CurrentUserId,
    service: ProgressService,
):
    """Set ayah counters; values above the surah's ayah count are clamped."""
    counters = {
        Pillar(name): value
        for name, value in (("fahm", body.fahm), ("itqan", body.itqan), ("hifz", body.hifz))
        if value is not None
    }
    updated = await service.update_surah(student_id, surah_number, counters, user_id, total_ayat=body.total_ayat)
    return _to_response(updated)


@router.post("/students/{student_id}/practice", response_model=List[SurahProgressResponse])
async def record_practice(
    student_id: uuid.UUID,
    body: SurahPracticeRequest,
    user_id: CurrentUserId,
    service: ProgressService,
):
    """Log the surahs covered in a lesson."""
    practiced = await service.record_practice(student_id, body.surah_numbers, user_id)
    return [_to_response(sp) for sp in practiced]
