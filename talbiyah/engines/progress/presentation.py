"""
Presentation adapters - shape a CurriculumSnapshot for the three display
variants. Only formatting happens here; every percentage comes from the
aggregation module.
"""

from enum import Enum

from talbiyah.engines.progress import aggregation
from talbiyah.engines.progress.learning_stats import (
    estimate_time_to_complete,
    milestone_status_config,
    progress_status,
)
from talbiyah.engines.progress.progress_service import CurriculumSnapshot
from talbiyah.engines.progress.types import Hierarchy, Milestone, Subject
from talbiyah.schemas.curriculum import (
    CompactPhaseRow,
    CompactView,
    FullView,
    MilestoneView,
    OverviewView,
    PhaseView,
    StageView,
    SubjectSummary,
)


class ViewVariant(str, Enum):
    OVERVIEW = "overview"
    COMPACT = "compact"
    FULL = "full"


def _subject(subject: Subject) -> SubjectSummary:
    return SubjectSummary(
        id=subject.id,
        name=subject.name,
        name_arabic=subject.name_arabic,
        slug=subject.slug,
        icon=subject.icon,
        color=subject.color,
    )


def _expanded_phase_id(snapshot: CurriculumSnapshot):
    position = snapshot.position()
    if position.from_cache:
        return position.phase_id
    phase = aggregation.first_incomplete_phase(snapshot.hierarchy, snapshot.progress)
    return phase.id if phase is not None else position.phase_id


def overview_view(snapshot: CurriculumSnapshot) -> OverviewView:
    """Reads the cached overall percentage; computes it when no cache row exists yet."""
    hierarchy = snapshot.hierarchy
    if snapshot.cached is not None:
        overall = snapshot.cached.overall_progress_percentage
    else:
        overall = snapshot.overall_percent

    phase_id = snapshot.position().phase_id
    phase = hierarchy.phase(phase_id) if phase_id is not None else None
    return OverviewView(
        subject=_subject(hierarchy.subject),
        overall_progress_percentage=overall,
        current_phase_name=phase.name if phase is not None else "Not started",
        status_label=progress_status(overall).label,
    )


def compact_view(snapshot: CurriculumSnapshot) -> CompactView:
    percents = snapshot.phase_percents()
    current = snapshot.position().phase_id
    return CompactView(
        subject=_subject(snapshot.hierarchy.subject),
        phases=[
            CompactPhaseRow(
                phase_id=p.id,
                name=p.name,
                progress_percentage=percents[p.id],
                is_current=p.id == current,
            )
            for p in snapshot.hierarchy.phases
        ],
    )


def _milestone_view(milestone: Milestone, snapshot: CurriculumSnapshot) -> MilestoneView:
    record = snapshot.progress.get(milestone.id)
    status = aggregation.milestone_status(milestone.id, snapshot.progress)
    return MilestoneView(
        id=milestone.id,
        name=milestone.name,
        name_arabic=milestone.name_arabic,
        description=milestone.description,
        pillar=milestone.pillar.value if milestone.pillar else None,
        verification_criteria=milestone.verification_criteria,
        status=status.value,
        status_label=milestone_status_config(status).label,
        progress_percentage=record.progress_percentage if record else 0,
        verified_at=record.verified_at if record else None,
        verification_notes=record.verification_notes if record else None,
    )


def full_view(snapshot: CurriculumSnapshot) -> FullView:
    hierarchy: Hierarchy = snapshot.hierarchy
    position = snapshot.position()
    phase_percents = snapshot.phase_percents()
    stage_percents = snapshot.stage_percents()
    locks = snapshot.phase_locks()
    expanded_phase = _expanded_phase_id(snapshot)
    expanded_stage = position.stage_id

    phases = []
    for phase in hierarchy.phases:
        phase_milestones = hierarchy.milestones_for_phase(phase.id)
        verified = aggregation.completed_count(phase_milestones, snapshot.progress)
        remaining = len(phase_milestones) - verified
        stages = [
            StageView(
                id=stage.id,
                name=stage.name,
                name_arabic=stage.name_arabic,
                progress_percentage=stage_percents[stage.id],
                is_current=stage.id == position.stage_id,
                is_expanded=stage.id == expanded_stage,
                milestones=[_milestone_view(m, snapshot) for m in hierarchy.milestones_for_stage(stage.id)],
            )
            for stage in hierarchy.stages_for_phase(phase.id)
        ]
        phases.append(
            PhaseView(
                id=phase.id,
                name=phase.name,
                name_arabic=phase.name_arabic,
                description=phase.description,
                estimated_hours=phase.estimated_hours,
                progress_percentage=phase_percents[phase.id],
                is_locked=locks[phase.id],
                is_current=phase.id == position.phase_id,
                # a locked phase cannot be opened
                is_expanded=phase.id == expanded_phase and not locks[phase.id],
                verified_count=verified,
                milestone_count=len(phase_milestones),
                time_to_complete=estimate_time_to_complete(remaining) if remaining > 0 else None,
                stages=stages,
            )
        )

    return FullView(
        subject=_subject(hierarchy.subject),
        overall_progress_percentage=snapshot.overall_percent,
        current_phase_id=position.phase_id,
        current_stage_id=position.stage_id,
        phases=phases,
    )


def render(snapshot: CurriculumSnapshot, variant: ViewVariant = ViewVariant.FULL):
    variant = ViewVariant(variant)
    if variant == ViewVariant.OVERVIEW:
        return overview_view(snapshot)
    if variant == ViewVariant.COMPACT:
        return compact_view(snapshot)
    return full_view(snapshot)
