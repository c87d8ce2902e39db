"""
Aggregation Engine - pure rollups over an already loaded hierarchy and ledger.

Rules:
- Stage, phase and subject percentages are one flat ratio over leaf milestones:
  round_half_up(100 * completed / total). A phase is NOT the average of its
  stages, so stages with more milestones weigh proportionally more.
- verified and mastered both count as completed; a milestone without a
  progress record counts as not_started.
- An empty milestone set yields 0.
- Phase N > 0 is locked while phase N-1 is below PHASE_UNLOCK_THRESHOLD.
- Nothing here advances the student's current phase/stage pointer.

Malformed-but-present data never raises: values are clamped and the
anomaly is logged as a DataInvariantError.
"""

import uuid
from typing import Iterable, List, Optional, Sequence

from talbiyah.engines.progress.types import (
    Hierarchy,
    CurrentPosition,
    Milestone,
    MilestoneStatus,
    Phase,
    Pillar,
    ProgressMap,
    Stage,
    StudentCurriculumProgress,
    StudentSurahStats,
    SurahProgress,
    SurahStatus,
    COMPLETED_STATUSES,
)
from talbiyah.errors import DataInvariantError
from talbiyah.logging_config import get_logger

logger = get_logger(__name__)

PHASE_UNLOCK_THRESHOLD = 80


def report_anomaly(message: str, **details) -> DataInvariantError:
    """Log a data invariant violation for operators and return it (never raised here)."""
    error = DataInvariantError(message, details={k: str(v) for k, v in details.items()})
    logger.warning("Data invariant violated: %s", message, extra={"anomaly": error.details})
    return error


def round_half_up_percent(part: int, whole: int) -> int:
    """Whole percent of part/whole, halves rounded up, clamped to [0, 100]. 0 when whole is 0."""
    if whole <= 0:
        return 0
    part = max(0, min(part, whole))
    return (200 * part + whole) // (2 * whole)


def milestone_status(milestone_id: uuid.UUID, progress_map: ProgressMap) -> MilestoneStatus:
    progress = progress_map.get(milestone_id)
    return progress.status if progress is not None else MilestoneStatus.NOT_STARTED


def completed_count(milestones: Iterable[Milestone], progress_map: ProgressMap) -> int:
    return sum(1 for m in milestones if milestone_status(m.id, progress_map) in COMPLETED_STATUSES)


def completion_percent(milestones: Sequence[Milestone], progress_map: ProgressMap) -> int:
    return round_half_up_percent(completed_count(milestones, progress_map), len(milestones))


# ============================================================================
# Curriculum rollups
# ============================================================================


def stage_progress_percent(stage: Stage, milestones: Sequence[Milestone], progress_map: ProgressMap) -> int:
    """Percent of the stage's milestones that are verified or mastered."""
    return completion_percent([m for m in milestones if m.stage_id == stage.id], progress_map)


def phase_progress_percent(
    phase: Phase,
    stages: Sequence[Stage],
    milestones: Sequence[Milestone],
    progress_map: ProgressMap,
) -> int:
    """Flat ratio over every milestone in every stage of the phase."""
    stage_ids = {s.id for s in stages if s.phase_id == phase.id}
    return completion_percent([m for m in milestones if m.stage_id in stage_ids], progress_map)


def overall_progress_percent(hierarchy: Hierarchy, progress_map: ProgressMap) -> int:
    """Flat ratio over every milestone in the subject."""
    if hierarchy is None:
        raise ValueError("hierarchy is required; substitute an empty Hierarchy when none is configured")
    return completion_percent(hierarchy.milestones, progress_map)


def phase_locked_by(previous_phase_percent: Optional[int]) -> bool:
    """Lock rule on the previous phase's percentage; None means there is no previous phase."""
    if previous_phase_percent is None:
        return False
    return previous_phase_percent < PHASE_UNLOCK_THRESHOLD


def is_phase_locked(
    phase: Phase,
    previous_phase: Optional[Phase],
    hierarchy: Hierarchy,
    progress_map: ProgressMap,
) -> bool:
    """The first phase (no previous phase) is never locked."""
    if previous_phase is None:
        return False
    previous_percent = phase_progress_percent(
        previous_phase, hierarchy.stages, hierarchy.milestones, progress_map
    )
    return phase_locked_by(previous_percent)


def phase_lock_states(hierarchy: Hierarchy, progress_map: ProgressMap) -> List[bool]:
    """Locked flag for every phase, in phase order."""
    states = []
    previous: Optional[Phase] = None
    for phase in hierarchy.phases:
        states.append(is_phase_locked(phase, previous, hierarchy, progress_map))
        previous = phase
    return states


def current_phase_and_stage(
    hierarchy: Hierarchy,
    cached: Optional[StudentCurriculumProgress],
) -> CurrentPosition:
    """
    Prefer the cached pointer (a teacher or the system may have advanced the
    student explicitly); otherwise the first phase with no stage selected.
    """
    if cached is not None and cached.current_phase_id is not None:
        phase = hierarchy.phase(cached.current_phase_id)
        if phase is None:
            report_anomaly(
                "cached current phase is not part of the subject",
                student_id=cached.student_id,
                phase_id=cached.current_phase_id,
            )
        else:
            stage_id = cached.current_stage_id
            if stage_id is not None:
                stage = hierarchy.stage(stage_id)
                if stage is None or stage.phase_id != phase.id:
                    report_anomaly(
                        "cached current stage does not belong to the current phase",
                        student_id=cached.student_id,
                        stage_id=stage_id,
                    )
                    stage_id = None
            return CurrentPosition(phase_id=phase.id, stage_id=stage_id, from_cache=True)

    first = hierarchy.phases[0].id if hierarchy.phases else None
    return CurrentPosition(phase_id=first, stage_id=None, from_cache=False)


def first_incomplete_phase(hierarchy: Hierarchy, progress_map: ProgressMap) -> Optional[Phase]:
    """First phase below 100 percent; the one a view expands when no pointer is cached."""
    for phase in hierarchy.phases:
        if phase_progress_percent(phase, hierarchy.stages, hierarchy.milestones, progress_map) < 100:
            return phase
    return None


# ============================================================================
# Surah (three pillar) rollups
# ============================================================================


def surah_pillar_percent(surah_progress: SurahProgress, total_ayat: int, pillar: Pillar) -> int:
    """Percent of the surah's ayat covered for one pillar."""
    if total_ayat <= 0:
        report_anomaly(
            "surah has no ayat",
            surah_number=surah_progress.surah_number,
            total_ayat=total_ayat,
        )
        return 0
    count = surah_progress.counter(Pillar(pillar))
    if count > total_ayat or count < 0:
        report_anomaly(
            "ayah counter outside [0, total]",
            surah_number=surah_progress.surah_number,
            pillar=Pillar(pillar).value,
            counter=count,
            total_ayat=total_ayat,
        )
    return round_half_up_percent(count, total_ayat)


def surah_overall_percent(surah_progress: SurahProgress, total_ayat: Optional[int] = None) -> int:
    """Equal-weight average of the three pillar percentages."""
    total = surah_progress.total_ayat if total_ayat is None else total_ayat
    if total <= 0:
        return 0
    counts = [max(0, min(surah_progress.counter(p), total)) for p in Pillar]
    # round_half_up(mean(100 * c / total)) == round_half_up(100 * sum(c) / (3 * total))
    return round_half_up_percent(sum(counts), 3 * total)


def clamped_counter(surah_progress: SurahProgress, pillar: Pillar) -> int:
    """The pillar counter limited to [0, total_ayat]; out-of-range rows are reported."""
    count = surah_progress.counter(pillar)
    total = max(surah_progress.total_ayat, 0)
    if 0 <= count <= total:
        return count
    report_anomaly(
        "ayah counter outside [0, total]",
        surah_number=surah_progress.surah_number,
        pillar=pillar.value,
        counter=count,
        total_ayat=surah_progress.total_ayat,
    )
    return max(0, min(count, total))


def aggregate_student_stats(all_surah_progress: Iterable[SurahProgress]) -> StudentSurahStats:
    stats = StudentSurahStats()
    for sp in all_surah_progress:
        stats.total_ayat_memorized += clamped_counter(sp, Pillar.HIFZ)
        stats.total_ayat_understood += clamped_counter(sp, Pillar.FAHM)
        stats.total_ayat_fluent += clamped_counter(sp, Pillar.ITQAN)
        if sp.hifz_completed:
            stats.surahs_complete += 1
        elif sp.status == SurahStatus.IN_PROGRESS:
            stats.surahs_in_progress += 1
    return stats


def derive_surah_status(hifz_completed: bool, any_progress: bool, started: bool = False) -> SurahStatus:
    if hifz_completed:
        return SurahStatus.COMPLETED
    if any_progress or started:
        return SurahStatus.IN_PROGRESS
    return SurahStatus.NOT_STARTED


def check_surah_invariants(records: Iterable[SurahProgress]) -> List[DataInvariantError]:
    """
    Flag rows that break the counter invariants:
    counter within [0, total_ayat], *_completed iff counter == total_ayat,
    status completed iff hifz_completed.
    """
    anomalies: List[DataInvariantError] = []
    for sp in records:
        if sp.total_ayat <= 0:
            anomalies.append(report_anomaly("surah has no ayat", surah_number=sp.surah_number, total_ayat=sp.total_ayat))
            continue
        for pillar in Pillar:
            count = sp.counter(pillar)
            if count < 0 or count > sp.total_ayat:
                anomalies.append(report_anomaly(
                    "ayah counter outside [0, total]",
                    surah_number=sp.surah_number,
                    pillar=pillar.value,
                    counter=count,
                    total_ayat=sp.total_ayat,
                ))
            if sp.completed(pillar) != (count == sp.total_ayat):
                anomalies.append(report_anomaly(
                    "completion flag disagrees with counter",
                    surah_number=sp.surah_number,
                    pillar=pillar.value,
                    counter=count,
                    completed=sp.completed(pillar),
                ))
        if (sp.status == SurahStatus.COMPLETED) != sp.hifz_completed:
            anomalies.append(report_anomaly(
                "surah status disagrees with hifz completion",
                surah_number=sp.surah_number,
                status=sp.status.value,
                hifz_completed=sp.hifz_completed,
            ))
    return anomalies
