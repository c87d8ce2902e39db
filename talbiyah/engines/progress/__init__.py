"""
Progress Engine - curriculum hierarchy, per-student ledger and aggregation.

Curriculum: Subject -> Phase -> Stage -> Milestone
Completion: a milestone counts once verified (or mastered)
Phase lock: phase N opens when phase N-1 reaches 80%
Surahs: Understanding (fahm) -> Fluency (itqan) -> Memorization (hifz)
"""

from talbiyah.engines.progress.aggregation import (
    PHASE_UNLOCK_THRESHOLD,
    aggregate_student_stats,
    current_phase_and_stage,
    is_phase_locked,
    overall_progress_percent,
    phase_progress_percent,
    stage_progress_percent,
    surah_pillar_percent,
)
from talbiyah.engines.progress.hierarchy_store import HierarchyCache, HierarchyStore
from talbiyah.engines.progress.ledger import ProgressLedger
from talbiyah.engines.progress.progress_service import (
    CurriculumProgressService,
    CurriculumSnapshot,
    StudentDashboard,
)
from talbiyah.engines.progress.scope import ProgressScope
from talbiyah.engines.progress.types import (
    Hierarchy,
    MilestoneProgress,
    MilestoneStatus,
    Pillar,
    SurahProgress,
    SurahStatus,
)

__all__ = [
    "PHASE_UNLOCK_THRESHOLD",
    "aggregate_student_stats",
    "current_phase_and_stage",
    "is_phase_locked",
    "overall_progress_percent",
    "phase_progress_percent",
    "stage_progress_percent",
    "surah_pillar_percent",
    "HierarchyCache",
    "HierarchyStore",
    "ProgressLedger",
    "CurriculumProgressService",
    "CurriculumSnapshot",
    "StudentDashboard",
    "ProgressScope",
    "Hierarchy",
    "MilestoneProgress",
    "MilestoneStatus",
    "Pillar",
    "SurahProgress",
    "SurahStatus",
]
