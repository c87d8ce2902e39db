"""Unit tests for the overview, compact and full curriculum views."""

import uuid

from talbiyah.engines.progress.presentation import ViewVariant, render
from talbiyah.engines.progress.progress_service import CurriculumSnapshot
from talbiyah.engines.progress.types import (
    Hierarchy,
    Milestone,
    MilestoneProgress,
    Phase,
    Stage,
    StudentCurriculumProgress,
    Subject,
)
from talbiyah.schemas.curriculum import CompactView, FullView, OverviewView

STUDENT = uuid.uuid4()


def quran_reading() -> Hierarchy:
    """Phase 1: stages with 2 and 3 milestones. Phase 2: one stage with 2."""
    subject = Subject(id=uuid.uuid4(), name="Quran Reading", slug="quran-reading")
    p1 = Phase(id=uuid.uuid4(), subject_id=subject.id, name="Foundations", sort_order=1)
    p2 = Phase(id=uuid.uuid4(), subject_id=subject.id, name="Fluency", sort_order=2)
    s1 = Stage(id=uuid.uuid4(), phase_id=p1.id, name="Letters", sort_order=1)
    s2 = Stage(id=uuid.uuid4(), phase_id=p1.id, name="Harakat", sort_order=2)
    s3 = Stage(id=uuid.uuid4(), phase_id=p2.id, name="Short Surahs", sort_order=1)
    milestones = [
        Milestone(id=uuid.uuid4(), stage_id=stage.id, name=f"{stage.name} {i}", sort_order=i)
        for stage, count in ((s1, 2), (s2, 3), (s3, 2))
        for i in range(1, count + 1)
    ]
    return Hierarchy(subject=subject, phases=[p1, p2], stages=[s1, s2, s3], milestones=milestones)


def snapshot(hierarchy, verified=(), cached=None) -> CurriculumSnapshot:
    progress = {
        m.id: MilestoneProgress(student_id=STUDENT, milestone_id=m.id, status="verified")
        for m in verified
    }
    return CurriculumSnapshot(student_id=STUDENT, hierarchy=hierarchy, progress=progress, cached=cached)


class TestOverviewView:
    def test_uses_cached_percentage(self):
        h = quran_reading()
        cached = StudentCurriculumProgress(
            student_id=STUDENT, subject_id=h.subject.id, overall_progress_percentage=57
        )
        view = render(snapshot(h, cached=cached), ViewVariant.OVERVIEW)
        assert isinstance(view, OverviewView)
        assert view.overall_progress_percentage == 57
        assert view.status_label == "Good Progress"

    def test_computes_without_cache_row(self):
        h = quran_reading()
        view = render(snapshot(h, verified=h.milestones[:2]), "overview")
        assert view.overall_progress_percentage == 29
        assert view.current_phase_name == "Foundations"

    def test_no_phases(self):
        h = quran_reading()
        empty = Hierarchy(subject=h.subject)
        view = render(snapshot(empty), ViewVariant.OVERVIEW)
        assert view.current_phase_name == "Not started"
        assert view.overall_progress_percentage == 0


class TestCompactView:
    def test_phase_rows(self):
        h = quran_reading()
        view = render(snapshot(h, verified=h.milestones[:4]), ViewVariant.COMPACT)
        assert isinstance(view, CompactView)
        assert [r.progress_percentage for r in view.phases] == [80, 0]
        assert [r.is_current for r in view.phases] == [True, False]


class TestFullView:
    def test_four_of_five_unlocks_phase_two(self):
        h = quran_reading()
        view = render(snapshot(h, verified=h.milestones[:4]), ViewVariant.FULL)
        assert isinstance(view, FullView)
        phase_1, phase_2 = view.phases
        assert phase_1.progress_percentage == 80
        assert phase_1.verified_count == 4
        assert phase_1.milestone_count == 5
        assert phase_1.time_to_complete == "This week"
        assert phase_2.is_locked is False

    def test_locked_phase_not_expanded(self):
        h = quran_reading()
        cached = StudentCurriculumProgress(
            student_id=STUDENT, subject_id=h.subject.id, current_phase_id=h.phases[1].id
        )
        view = render(snapshot(h, cached=cached), ViewVariant.FULL)
        assert view.phases[1].is_locked is True
        assert view.phases[1].is_current is True
        assert view.phases[1].is_expanded is False

    def test_expands_first_incomplete_without_pointer(self):
        h = quran_reading()
        phase_1_milestones = h.milestones_for_phase(h.phases[0].id)
        view = render(snapshot(h, verified=phase_1_milestones), ViewVariant.FULL)
        assert view.phases[0].is_expanded is False
        assert view.phases[1].is_expanded is True
        assert view.phases[0].time_to_complete is None

    def test_expanded_stage_follows_pointer(self):
        h = quran_reading()
        stage = h.stages[1]
        cached = StudentCurriculumProgress(
            student_id=STUDENT,
            subject_id=h.subject.id,
            current_phase_id=h.phases[0].id,
            current_stage_id=stage.id,
        )
        view = render(snapshot(h, cached=cached), ViewVariant.FULL)
        stages = view.phases[0].stages
        assert [s.is_expanded for s in stages] == [False, True]
        assert view.current_stage_id == stage.id

    def test_milestone_rows(self):
        h = quran_reading()
        view = render(snapshot(h, verified=h.milestones[:1]), ViewVariant.FULL)
        rows = view.phases[0].stages[0].milestones
        assert [r.status for r in rows] == ["verified", "not_started"]
        assert [r.status_label for r in rows] == ["Verified", "Not Started"]
        assert view.phases[0].stages[0].progress_percentage == 50
