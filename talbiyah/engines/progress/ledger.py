"""
Progress Ledger - per-student progress records.

Absent records mean "not started": loads return only what exists and nothing
is written until the first transition. The ledger never recomputes the
cached StudentCurriculumProgress itself; that belongs to the caller that
knows about the curriculum tree. Nothing is cached here, so records can never
leak between student identities.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from talbiyah.data import service as collections
from talbiyah.data.service import DataService
from talbiyah.engines.progress.aggregation import check_surah_invariants, derive_surah_status, report_anomaly
from talbiyah.engines.progress.hierarchy_store import parse_records
from talbiyah.engines.progress.quran_data import get_surah_info, get_surah_name
from talbiyah.engines.progress.types import (
    LessonRecord,
    MilestoneProgress,
    MilestoneStatus,
    Pillar,
    ProgressMap,
    StudentCurriculumProgress,
    SurahProgress,
    SurahStatus,
)
from talbiyah.errors import DataInvariantError, NotFoundError
from talbiyah.kernel.models.base import utcnow
from talbiyah.logging_config import get_logger

logger = get_logger(__name__)

MILESTONE_PATCH_FIELDS = frozenset({
    "status",
    "progress_percentage",
    "started_at",
    "completed_at",
    "verified_at",
    "verified_by",
    "verification_notes",
})

SURAH_COUNTER_FIELDS = {
    Pillar.FAHM: ("fahm_progress", "fahm_completed"),
    Pillar.ITQAN: ("itqan_progress", "itqan_completed"),
    Pillar.HIFZ: ("hifz_progress", "hifz_completed"),
}


def _clean_milestone_patch(patch: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(patch) - MILESTONE_PATCH_FIELDS
    if unknown:
        raise ValueError(f"Unknown milestone progress fields: {sorted(unknown)}")
    cleaned = dict(patch)
    if "status" in cleaned:
        cleaned["status"] = MilestoneStatus(cleaned["status"]).value
    if "progress_percentage" in cleaned:
        value = int(cleaned["progress_percentage"])
        if not 0 <= value <= 100:
            report_anomaly("progress_percentage outside [0, 100]", value=value)
        cleaned["progress_percentage"] = max(0, min(100, value))
    return cleaned


class ProgressLedger:
    """Read/write access to one data service's progress collections."""

    def __init__(self, data: DataService):
        self.data = data

    # ---------------------------------------------------------------- milestones

    async def load_milestone_progress(
        self,
        student_id: uuid.UUID,
        milestone_ids: Iterable[uuid.UUID],
    ) -> ProgressMap:
        """Existing records only, keyed by milestone id."""
        ids = list(milestone_ids)
        if not ids:
            return {}
        records = await self.data.fetch_many(
            collections.MILESTONE_PROGRESS,
            {"student_id": student_id},
            in_filters={"milestone_id": ids},
        )
        progress = parse_records(MilestoneProgress, records, collections.MILESTONE_PROGRESS)
        return {p.milestone_id: p for p in progress}

    async def get_milestone_progress(
        self,
        student_id: uuid.UUID,
        milestone_id: uuid.UUID,
    ) -> Optional[MilestoneProgress]:
        record = await self.data.fetch_one(
            collections.MILESTONE_PROGRESS,
            {"student_id": student_id, "milestone_id": milestone_id},
        )
        return MilestoneProgress.model_validate(record) if record is not None else None

    async def upsert_milestone_progress(
        self,
        student_id: uuid.UUID,
        milestone_id: uuid.UUID,
        patch: Dict[str, Any],
    ) -> MilestoneProgress:
        """Partial update keyed by (student, milestone); fields absent from patch are preserved."""
        record = await self.data.upsert(
            collections.MILESTONE_PROGRESS,
            {"student_id": student_id, "milestone_id": milestone_id},
            _clean_milestone_patch(patch),
        )
        return MilestoneProgress.model_validate(record)

    async def pending_verifications(self, student_ids: Iterable[uuid.UUID]) -> List[MilestoneProgress]:
        """Records awaiting teacher review, most recently updated first."""
        records = await self.data.fetch_many(
            collections.MILESTONE_PROGRESS,
            {"status": MilestoneStatus.PENDING_VERIFICATION.value},
            in_filters={"student_id": list(student_ids)},
            order_by="updated_at",
            descending=True,
        )
        return parse_records(MilestoneProgress, records, collections.MILESTONE_PROGRESS)

    async def verified_since(
        self,
        student_ids: Iterable[uuid.UUID],
        since: datetime,
        limit: Optional[int] = None,
    ) -> List[MilestoneProgress]:
        """Verified records with verified_at >= since, newest first."""
        records = await self.data.fetch_many(
            collections.MILESTONE_PROGRESS,
            {"status": MilestoneStatus.VERIFIED.value},
            in_filters={"student_id": list(student_ids)},
            since=("verified_at", since),
            order_by="verified_at",
            descending=True,
            limit=limit,
        )
        return parse_records(MilestoneProgress, records, collections.MILESTONE_PROGRESS)

    # ------------------------------------------------------- curriculum cache

    async def load_curriculum_progress(
        self,
        student_id: uuid.UUID,
        subject_id: uuid.UUID,
    ) -> Optional[StudentCurriculumProgress]:
        record = await self.data.fetch_one(
            collections.CURRICULUM_PROGRESS,
            {"student_id": student_id, "subject_id": subject_id},
        )
        return StudentCurriculumProgress.model_validate(record) if record is not None else None

    async def save_curriculum_progress(
        self,
        student_id: uuid.UUID,
        subject_id: uuid.UUID,
        *,
        overall_progress_percentage: int,
        current_phase_id: Optional[uuid.UUID],
        current_stage_id: Optional[uuid.UUID],
    ) -> StudentCurriculumProgress:
        record = await self.data.upsert(
            collections.CURRICULUM_PROGRESS,
            {"student_id": student_id, "subject_id": subject_id},
            {
                "overall_progress_percentage": overall_progress_percentage,
                "current_phase_id": current_phase_id,
                "current_stage_id": current_stage_id,
            },
        )
        return StudentCurriculumProgress.model_validate(record)

    # -------------------------------------------------------------------- surahs

    async def load_surah_progress(self, student_id: uuid.UUID) -> Dict[int, SurahProgress]:
        records = await self.data.fetch_many(
            collections.SURAH_PROGRESS,
            {"student_id": student_id},
            order_by="surah_number",
        )
        progress = parse_records(SurahProgress, records, collections.SURAH_PROGRESS)
        # rows are returned as stored; inconsistent ones are only reported
        check_surah_invariants(progress)
        return {p.surah_number: p for p in progress}

    async def get_surah_progress(self, student_id: uuid.UUID, surah_number: int) -> Optional[SurahProgress]:
        record = await self.data.fetch_one(
            collections.SURAH_PROGRESS,
            {"student_id": student_id, "surah_number": surah_number},
        )
        return SurahProgress.model_validate(record) if record is not None else None

    @staticmethod
    def _total_ayat(surah_number: int, existing: Optional[SurahProgress], total_ayat: Optional[int]) -> int:
        if total_ayat is None and existing is not None:
            total_ayat = existing.total_ayat
        if total_ayat is None:
            info = get_surah_info(surah_number)
            if info is None:
                raise NotFoundError("surah", surah_number)
            total_ayat = info.ayat
        if total_ayat <= 0:
            raise DataInvariantError(
                "total_ayat must be positive",
                details={"surah_number": surah_number, "total_ayat": total_ayat},
            )
        return total_ayat

    async def upsert_surah_progress(
        self,
        student_id: uuid.UUID,
        surah_number: int,
        counters: Dict[Pillar, int],
        *,
        total_ayat: Optional[int] = None,
    ) -> SurahProgress:
        """
        Set pillar counters for a surah. Counters are clamped to [0, total_ayat];
        completion flags and status are derived, never taken from the caller.
        """
        existing = await self.get_surah_progress(student_id, surah_number)
        total = self._total_ayat(surah_number, existing, total_ayat)

        patch: Dict[str, Any] = {"total_ayat": total}
        current = {p: (existing.counter(p) if existing else 0) for p in Pillar}
        for pillar, value in counters.items():
            pillar = Pillar(pillar)
            value = int(value)
            if value < 0 or value > total:
                report_anomaly(
                    "ayah counter clamped",
                    student_id=student_id,
                    surah_number=surah_number,
                    pillar=pillar.value,
                    counter=value,
                    total_ayat=total,
                )
                value = max(0, min(value, total))
            current[pillar] = value

        for pillar, (counter_field, completed_field) in SURAH_COUNTER_FIELDS.items():
            value = min(current[pillar], total)
            patch[counter_field] = value
            patch[completed_field] = value == total

        now = utcnow()
        any_progress = any(v > 0 for v in current.values())
        status = derive_surah_status(
            patch["hifz_completed"],
            any_progress,
            started=existing is not None and existing.started_at is not None,
        )
        patch["status"] = status.value
        if existing is None or existing.surah_name is None:
            patch["surah_name"] = get_surah_name(surah_number)
        if any_progress and (existing is None or existing.started_at is None):
            patch["started_at"] = now
        if status == SurahStatus.COMPLETED:
            if existing is None or existing.completed_at is None:
                patch["completed_at"] = now
        else:
            patch["completed_at"] = None

        record = await self.data.upsert(
            collections.SURAH_PROGRESS,
            {"student_id": student_id, "surah_number": surah_number},
            patch,
        )
        return SurahProgress.model_validate(record)

    async def record_surah_practice(
        self,
        student_id: uuid.UUID,
        surah_number: int,
        *,
        total_ayat: Optional[int] = None,
    ) -> SurahProgress:
        """Mark a surah as practiced in a lesson: in_progress unless already completed."""
        existing = await self.get_surah_progress(student_id, surah_number)
        total = self._total_ayat(surah_number, existing, total_ayat)
        patch: Dict[str, Any] = {"total_ayat": total}
        if existing is None or existing.status != SurahStatus.COMPLETED:
            patch["status"] = SurahStatus.IN_PROGRESS.value
        if existing is None or existing.started_at is None:
            patch["started_at"] = utcnow()
        if existing is None or existing.surah_name is None:
            patch["surah_name"] = get_surah_name(surah_number)
        record = await self.data.upsert(
            collections.SURAH_PROGRESS,
            {"student_id": student_id, "surah_number": surah_number},
            patch,
        )
        return SurahProgress.model_validate(record)

    # ------------------------------------------------------------------- lessons

    async def load_completed_lessons(
        self,
        learner_id: uuid.UUID,
        since: Optional[datetime] = None,
    ) -> List[LessonRecord]:
        records = await self.data.fetch_many(
            collections.LESSONS,
            {"learner_id": learner_id, "status": "completed"},
            since=("scheduled_time", since) if since is not None else None,
            order_by="scheduled_time",
        )
        return parse_records(LessonRecord, records, collections.LESSONS)

    async def students_for_teacher(self, teacher_id: uuid.UUID) -> List[uuid.UUID]:
        """Learners who have completed at least one lesson with this teacher."""
        records = await self.data.fetch_many(
            collections.LESSONS,
            {"teacher_id": teacher_id, "status": "completed"},
        )
        seen: Dict[uuid.UUID, None] = {}
        for lesson in parse_records(LessonRecord, records, collections.LESSONS):
            seen.setdefault(lesson.learner_id, None)
        return list(seen)
