"""
Kernel Data Models

SQLAlchemy models for curriculum reference data, per-student progress
and the progress history log.
"""

from talbiyah.kernel.models.base import Base, TimestampMixin, generate_uuid, utcnow
from talbiyah.kernel.models.curriculum import (
    CurriculumSubject,
    CurriculumPhase,
    CurriculumStage,
    CurriculumMilestone,
)
from talbiyah.kernel.models.progress import (
    StudentMilestoneProgress,
    StudentCurriculumProgress,
    StudentSurahProgress,
    Lesson,
)
from talbiyah.kernel.models.event_log import ProgressEvent, EventType

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "generate_uuid",
    "utcnow",
    # Curriculum
    "CurriculumSubject",
    "CurriculumPhase",
    "CurriculumStage",
    "CurriculumMilestone",
    # Progress
    "StudentMilestoneProgress",
    "StudentCurriculumProgress",
    "StudentSurahProgress",
    "Lesson",
    # History
    "ProgressEvent",
    "EventType",
]
