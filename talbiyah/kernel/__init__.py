"""
Kernel Layer

Foundational persistence components:
- Curriculum reference data (subject, phase, stage, milestone)
- Per-student progress rows
- Append-only progress history
"""

from talbiyah.kernel.models import (
    Base,
    CurriculumSubject,
    CurriculumPhase,
    CurriculumStage,
    CurriculumMilestone,
    StudentMilestoneProgress,
    StudentCurriculumProgress,
    StudentSurahProgress,
    Lesson,
    ProgressEvent,
    EventType,
)

__all__ = [
    "Base",
    "CurriculumSubject",
    "CurriculumPhase",
    "CurriculumStage",
    "CurriculumMilestone",
    "StudentMilestoneProgress",
    "StudentCurriculumProgress",
    "StudentSurahProgress",
    "Lesson",
    "ProgressEvent",
    "EventType",
]
