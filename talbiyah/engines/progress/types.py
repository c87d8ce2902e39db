"""
Typed curriculum and progress entities.

Records from the data service are loosely typed dicts. They are parsed into
these models at the Hierarchy Store / Progress Ledger boundary so the
aggregation code never sees untyped data. Unknown enum values and
out-of-range advisory fields are defaulted; records missing required ids are
rejected by the caller.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from talbiyah.logging_config import get_logger

logger = get_logger(__name__)


class MilestoneStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    PENDING_VERIFICATION = "pending_verification"
    VERIFIED = "verified"
    MASTERED = "mastered"


# Statuses that count toward completion percentages
COMPLETED_STATUSES = frozenset({MilestoneStatus.VERIFIED, MilestoneStatus.MASTERED})


class Pillar(str, Enum):
    """Three pillars; stored as fahm/itqan/hifz, English names accepted on input."""

    FAHM = "fahm"
    ITQAN = "itqan"
    HIFZ = "hifz"


_PILLAR_ALIASES = {
    "fahm": Pillar.FAHM,
    "understanding": Pillar.FAHM,
    "itqan": Pillar.ITQAN,
    "fluency": Pillar.ITQAN,
    "hifz": Pillar.HIFZ,
    "memorization": Pillar.HIFZ,
    "memorisation": Pillar.HIFZ,
}


def parse_pillar(value) -> Optional[Pillar]:
    if value is None or isinstance(value, Pillar):
        return value
    pillar = _PILLAR_ALIASES.get(str(value).strip().lower())
    if pillar is None and str(value).strip():
        logger.warning("Unknown pillar, treating as none", extra={"pillar": str(value)})
    return pillar


class SurahStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class _Record(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


# ============================================================================
# Curriculum hierarchy
# ============================================================================


class Subject(_Record):
    id: uuid.UUID
    name: str = ""
    name_arabic: Optional[str] = None
    slug: str
    description: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None


class Phase(_Record):
    id: uuid.UUID
    subject_id: uuid.UUID
    name: str = ""
    name_arabic: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    sort_order: int = 0
    estimated_hours: Optional[int] = None


class Stage(_Record):
    id: uuid.UUID
    phase_id: uuid.UUID
    name: str = ""
    name_arabic: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    sort_order: int = 0


class Milestone(_Record):
    id: uuid.UUID
    stage_id: uuid.UUID
    name: str = ""
    name_arabic: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    sort_order: int = 0
    pillar: Optional[Pillar] = None
    verification_criteria: Optional[str] = None

    @field_validator("pillar", mode="before")
    @classmethod
    def _pillar(cls, v):
        return parse_pillar(v)


class Hierarchy(BaseModel):
    """Subject -> Phase -> Stage -> Milestone tree, each level ordered by sort_order."""

    model_config = ConfigDict(frozen=True)

    subject: Subject
    phases: List[Phase] = []
    stages: List[Stage] = []
    milestones: List[Milestone] = []

    def stages_for_phase(self, phase_id: uuid.UUID) -> List[Stage]:
        return [s for s in self.stages if s.phase_id == phase_id]

    def milestones_for_stage(self, stage_id: uuid.UUID) -> List[Milestone]:
        return [m for m in self.milestones if m.stage_id == stage_id]

    def milestones_for_phase(self, phase_id: uuid.UUID) -> List[Milestone]:
        stage_ids = {s.id for s in self.stages_for_phase(phase_id)}
        return [m for m in self.milestones if m.stage_id in stage_ids]

    def milestone_ids(self) -> List[uuid.UUID]:
        return [m.id for m in self.milestones]

    def phase(self, phase_id: uuid.UUID) -> Optional[Phase]:
        return next((p for p in self.phases if p.id == phase_id), None)

    def stage(self, stage_id: uuid.UUID) -> Optional[Stage]:
        return next((s for s in self.stages if s.id == stage_id), None)

    def milestone(self, milestone_id: uuid.UUID) -> Optional[Milestone]:
        return next((m for m in self.milestones if m.id == milestone_id), None)

    def phase_index(self, phase_id: uuid.UUID) -> int:
        for i, p in enumerate(self.phases):
            if p.id == phase_id:
                return i
        return -1


# ============================================================================
# Progress records
# ============================================================================


class MilestoneProgress(_Record):
    """Status of one milestone for one student. Absent record == not_started, 0%."""

    id: Optional[uuid.UUID] = None
    student_id: uuid.UUID
    milestone_id: uuid.UUID
    status: MilestoneStatus = MilestoneStatus.NOT_STARTED
    progress_percentage: int = Field(default=0, ge=0, le=100)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    verified_by: Optional[uuid.UUID] = None
    verification_notes: Optional[str] = None
    updated_at: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, v):
        if v is None:
            return MilestoneStatus.NOT_STARTED
        try:
            return MilestoneStatus(v)
        except ValueError:
            logger.warning("Unknown milestone status, treating as not_started", extra={"status": str(v)})
            return MilestoneStatus.NOT_STARTED

    @field_validator("progress_percentage", mode="before")
    @classmethod
    def _clamp_percentage(cls, v):
        if v is None:
            return 0
        try:
            value = int(round(float(v)))
        except (TypeError, ValueError):
            return 0
        return max(0, min(100, value))

    @property
    def is_complete(self) -> bool:
        return self.status in COMPLETED_STATUSES

    @classmethod
    def default(cls, student_id: uuid.UUID, milestone_id: uuid.UUID) -> "MilestoneProgress":
        return cls(student_id=student_id, milestone_id=milestone_id)


class StudentCurriculumProgress(_Record):
    """Derived per-subject cache; recomputable from milestone progress."""

    student_id: uuid.UUID
    subject_id: uuid.UUID
    current_phase_id: Optional[uuid.UUID] = None
    current_stage_id: Optional[uuid.UUID] = None
    overall_progress_percentage: int = 0
    updated_at: Optional[datetime] = None


class CurrentPosition(BaseModel):
    phase_id: Optional[uuid.UUID] = None
    stage_id: Optional[uuid.UUID] = None
    from_cache: bool = False


class SurahProgress(_Record):
    """
    Three-pillar ayah counters for one surah.

    Counters are kept exactly as stored so invariant checks can flag corrupt
    rows; the aggregation functions clamp when computing percentages.
    """

    id: Optional[uuid.UUID] = None
    student_id: uuid.UUID
    surah_number: int
    surah_name: Optional[str] = None
    total_ayat: int
    fahm_progress: int = 0
    itqan_progress: int = 0
    hifz_progress: int = 0
    fahm_completed: bool = False
    itqan_completed: bool = False
    hifz_completed: bool = False
    status: SurahStatus = SurahStatus.NOT_STARTED
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @field_validator("fahm_progress", "itqan_progress", "hifz_progress", mode="before")
    @classmethod
    def _counter(cls, v):
        return 0 if v is None else v

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, v):
        if v is None:
            return SurahStatus.NOT_STARTED
        try:
            return SurahStatus(v)
        except ValueError:
            logger.warning("Unknown surah status, treating as not_started", extra={"status": str(v)})
            return SurahStatus.NOT_STARTED

    def counter(self, pillar: Pillar) -> int:
        return {
            Pillar.FAHM: self.fahm_progress,
            Pillar.ITQAN: self.itqan_progress,
            Pillar.HIFZ: self.hifz_progress,
        }[pillar]

    def completed(self, pillar: Pillar) -> bool:
        return {
            Pillar.FAHM: self.fahm_completed,
            Pillar.ITQAN: self.itqan_completed,
            Pillar.HIFZ: self.hifz_completed,
        }[pillar]


class StudentSurahStats(BaseModel):
    total_ayat_memorized: int = 0
    total_ayat_understood: int = 0
    total_ayat_fluent: int = 0
    surahs_complete: int = 0
    surahs_in_progress: int = 0


class LessonRecord(_Record):
    id: uuid.UUID
    learner_id: uuid.UUID
    teacher_id: uuid.UUID
    status: str
    scheduled_time: datetime
    duration_minutes: int = 0

    @field_validator("duration_minutes", mode="before")
    @classmethod
    def _duration(cls, v):
        return v or 0


ProgressMap = Dict[uuid.UUID, MilestoneProgress]
