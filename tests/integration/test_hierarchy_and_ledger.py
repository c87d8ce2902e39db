"""
Integration tests for the Hierarchy Store and Progress Ledger over SQLite.
"""

import uuid
from datetime import timedelta

import pytest

from talbiyah.data import service as collections
from talbiyah.data.sql_service import SqlDataService
from talbiyah.engines.progress.hierarchy_store import HierarchyCache, HierarchyStore
from talbiyah.engines.progress.ledger import ProgressLedger
from talbiyah.engines.progress.types import MilestoneStatus, Pillar, SurahStatus
from talbiyah.errors import CurriculumUnsupportedError, DataInvariantError, NotFoundError, PersistenceError
from talbiyah.kernel.models import Lesson, StudentSurahProgress
from talbiyah.kernel.models.base import utcnow


class CountingDataService(SqlDataService):
    """Counts child-level fetches so batching can be asserted."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.parent_fetches = []

    async def fetch_by_parent_ids(self, collection, parent_id_field, parent_ids, order_by):
        self.parent_fetches.append(collection)
        return await super().fetch_by_parent_ids(collection, parent_id_field, parent_ids, order_by)


class TestHierarchyStore:
    @pytest.mark.asyncio
    async def test_loads_ordered_tree(self, data_service, curriculum):
        hierarchy = await HierarchyStore(data_service).load_hierarchy("quran-reading")
        assert hierarchy.subject.id == curriculum.subject_id
        assert [p.id for p in hierarchy.phases] == curriculum.phase_ids
        assert [p.name for p in hierarchy.phases] == ["Foundations", "Fluency"]
        assert len(hierarchy.stages) == 3
        assert len(hierarchy.milestones) == 7
        first_stage = curriculum.stage_ids[curriculum.phase_ids[0]][0]
        assert [m.id for m in hierarchy.milestones_for_stage(first_stage)] == curriculum.milestone_ids[first_stage]

    @pytest.mark.asyncio
    async def test_one_fetch_per_level(self, db_session, curriculum):
        data = CountingDataService(db_session)
        await HierarchyStore(data).load_hierarchy("quran-reading")
        assert data.parent_fetches == [
            collections.PHASES,
            collections.STAGES,
            collections.MILESTONES,
        ]

    @pytest.mark.asyncio
    async def test_unknown_subject(self, data_service, curriculum):
        with pytest.raises(NotFoundError) as exc:
            await HierarchyStore(data_service).load_hierarchy("arabic-grammar")
        assert exc.value.collection == "subject"

    @pytest.mark.asyncio
    async def test_curriculum_not_configured(self, db_session, curriculum):
        data = SqlDataService(db_session, disabled_collections=collections.CURRICULUM_COLLECTIONS)
        assert await data.supports(collections.SUBJECTS) is False
        assert await data.supports(collections.SURAH_PROGRESS) is True
        with pytest.raises(CurriculumUnsupportedError):
            await HierarchyStore(data).load_hierarchy("quran-reading")

    @pytest.mark.asyncio
    async def test_unknown_collection_unsupported(self, data_service):
        assert await data_service.supports("homework") is False

    @pytest.mark.asyncio
    async def test_cache_shares_loaded_tree(self, db_session, curriculum):
        cache = HierarchyCache()
        data = CountingDataService(db_session)
        store = HierarchyStore(data, cache=cache)
        first = await store.load_hierarchy("quran-reading")
        second = await store.load_hierarchy("quran-reading")
        assert first is second
        assert len(data.parent_fetches) == 3

        cache.invalidate("quran-reading")
        await store.load_hierarchy("quran-reading")
        assert len(data.parent_fetches) == 6

    @pytest.mark.asyncio
    async def test_subject_for_milestone(self, data_service, curriculum):
        milestone_id = curriculum.phase_milestones(1)[0]
        subject = await HierarchyStore(data_service).subject_for_milestone(milestone_id)
        assert subject.slug == "quran-reading"

        with pytest.raises(NotFoundError):
            await HierarchyStore(data_service).subject_for_milestone(uuid.uuid4())


class TestSqlDataService:
    @pytest.mark.asyncio
    async def test_failed_write_undoes_only_itself(self, data_service, change_feed, curriculum, student_id):
        milestone_id = curriculum.phase_milestones(0)[0]
        changes = []
        change_feed.subscribe(collections.MILESTONE_PROGRESS, None, changes.append)
        change_feed.subscribe(collections.SURAH_PROGRESS, None, changes.append)

        await data_service.upsert(
            collections.MILESTONE_PROGRESS,
            {"student_id": student_id, "milestone_id": milestone_id},
            {"status": "in_progress"},
        )
        with pytest.raises(PersistenceError):
            await data_service.upsert(
                collections.SURAH_PROGRESS,
                {"student_id": student_id, "surah_number": 1},
                {"total_ayat": None},
            )

        await data_service.commit()
        assert [c.collection for c in changes] == [collections.MILESTONE_PROGRESS]
        kept = await data_service.fetch_one(
            collections.MILESTONE_PROGRESS,
            {"student_id": student_id, "milestone_id": milestone_id},
        )
        assert kept["status"] == "in_progress"
        assert await data_service.fetch_one(collections.SURAH_PROGRESS, {"student_id": student_id}) is None


class TestMilestoneLedger:
    @pytest.mark.asyncio
    async def test_absent_records_not_written(self, data_service, curriculum, student_id):
        ledger = ProgressLedger(data_service)
        milestones = curriculum.phase_milestones(0)
        assert await ledger.load_milestone_progress(student_id, milestones) == {}
        assert await ledger.get_milestone_progress(student_id, milestones[0]) is None
        assert await ledger.load_milestone_progress(student_id, []) == {}

    @pytest.mark.asyncio
    async def test_partial_upsert_preserves_fields(self, data_service, curriculum, student_id):
        ledger = ProgressLedger(data_service)
        milestone_id = curriculum.phase_milestones(0)[0]
        started = utcnow()
        await ledger.upsert_milestone_progress(
            student_id, milestone_id, {"status": "in_progress", "started_at": started, "progress_percentage": 40}
        )
        updated = await ledger.upsert_milestone_progress(
            student_id, milestone_id, {"status": MilestoneStatus.PENDING_VERIFICATION}
        )
        assert updated.status == MilestoneStatus.PENDING_VERIFICATION
        assert updated.progress_percentage == 40
        assert updated.started_at is not None

        loaded = await ledger.load_milestone_progress(student_id, curriculum.phase_milestones(0))
        assert list(loaded) == [milestone_id]

    @pytest.mark.asyncio
    async def test_percentage_clamped_on_write(self, data_service, curriculum, student_id):
        ledger = ProgressLedger(data_service)
        milestone_id = curriculum.phase_milestones(0)[0]
        record = await ledger.upsert_milestone_progress(student_id, milestone_id, {"progress_percentage": 150})
        assert record.progress_percentage == 100

    @pytest.mark.asyncio
    async def test_unknown_patch_field(self, data_service, curriculum, student_id):
        ledger = ProgressLedger(data_service)
        with pytest.raises(ValueError):
            await ledger.upsert_milestone_progress(student_id, curriculum.phase_milestones(0)[0], {"grade": "A"})

    @pytest.mark.asyncio
    async def test_records_isolated_per_student(self, data_service, curriculum, student_id):
        ledger = ProgressLedger(data_service)
        milestone_id = curriculum.phase_milestones(0)[0]
        await ledger.upsert_milestone_progress(student_id, milestone_id, {"status": "verified"})
        other = await ledger.load_milestone_progress(uuid.uuid4(), [milestone_id])
        assert other == {}


class TestSurahLedger:
    @pytest.mark.asyncio
    async def test_al_fatiha_memorized(self, data_service, student_id):
        """hifz=7 on Al-Fatiha: completed, 7 ayat memorized."""
        ledger = ProgressLedger(data_service)
        sp = await ledger.upsert_surah_progress(student_id, 1, {Pillar.HIFZ: 7})
        assert sp.total_ayat == 7
        assert sp.surah_name == "Al-Fatiha"
        assert sp.hifz_completed is True
        assert sp.status == SurahStatus.COMPLETED
        assert sp.completed_at is not None
        assert sp.started_at is not None

    @pytest.mark.asyncio
    async def test_counters_clamped(self, data_service, student_id):
        ledger = ProgressLedger(data_service)
        sp = await ledger.upsert_surah_progress(student_id, 1, {Pillar.FAHM: 12, Pillar.ITQAN: -2})
        assert sp.fahm_progress == 7
        assert sp.fahm_completed is True
        assert sp.itqan_progress == 0
        assert sp.status == SurahStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_partial_counters_keep_others(self, data_service, student_id):
        ledger = ProgressLedger(data_service)
        await ledger.upsert_surah_progress(student_id, 78, {Pillar.FAHM: 10})
        sp = await ledger.upsert_surah_progress(student_id, 78, {Pillar.HIFZ: 5})
        assert sp.fahm_progress == 10
        assert sp.hifz_progress == 5
        assert sp.total_ayat == 40

    @pytest.mark.asyncio
    async def test_completion_reverts_when_counter_drops(self, data_service, student_id):
        ledger = ProgressLedger(data_service)
        await ledger.upsert_surah_progress(student_id, 1, {Pillar.HIFZ: 7})
        sp = await ledger.upsert_surah_progress(student_id, 1, {Pillar.HIFZ: 6})
        assert sp.hifz_completed is False
        assert sp.status == SurahStatus.IN_PROGRESS
        assert sp.completed_at is None

    @pytest.mark.asyncio
    async def test_untracked_surah_needs_total(self, data_service, student_id):
        ledger = ProgressLedger(data_service)
        with pytest.raises(NotFoundError):
            await ledger.upsert_surah_progress(student_id, 2, {Pillar.FAHM: 1})
        sp = await ledger.upsert_surah_progress(student_id, 2, {Pillar.FAHM: 1}, total_ayat=286)
        assert sp.total_ayat == 286
        assert sp.surah_name == "Surah 2"

    @pytest.mark.asyncio
    async def test_non_positive_total_rejected(self, data_service, student_id):
        ledger = ProgressLedger(data_service)
        with pytest.raises(DataInvariantError):
            await ledger.upsert_surah_progress(student_id, 1, {Pillar.FAHM: 1}, total_ayat=0)

    @pytest.mark.asyncio
    async def test_practice_marks_in_progress(self, data_service, student_id):
        ledger = ProgressLedger(data_service)
        sp = await ledger.record_surah_practice(student_id, 112)
        assert sp.status == SurahStatus.IN_PROGRESS
        assert sp.started_at is not None
        assert sp.fahm_progress == 0

    @pytest.mark.asyncio
    async def test_practice_keeps_completed(self, data_service, student_id):
        ledger = ProgressLedger(data_service)
        await ledger.upsert_surah_progress(student_id, 1, {Pillar.HIFZ: 7})
        sp = await ledger.record_surah_practice(student_id, 1)
        assert sp.status == SurahStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_load_surah_progress(self, data_service, student_id):
        ledger = ProgressLedger(data_service)
        await ledger.upsert_surah_progress(student_id, 114, {Pillar.FAHM: 2})
        await ledger.upsert_surah_progress(student_id, 1, {Pillar.FAHM: 2})
        records = await ledger.load_surah_progress(student_id)
        assert list(records) == [1, 114]

    @pytest.mark.asyncio
    async def test_load_reports_corrupt_rows(self, db_session, data_service, student_id, caplog):
        """A row written elsewhere with hifz above total is returned as stored and reported."""
        db_session.add(StudentSurahProgress(
            student_id=student_id,
            surah_number=1,
            total_ayat=7,
            hifz_progress=40,
            hifz_completed=False,
            status="in_progress",
        ))
        await db_session.flush()

        with caplog.at_level("WARNING"):
            records = await ProgressLedger(data_service).load_surah_progress(student_id)
        assert records[1].hifz_progress == 40
        assert "ayah counter outside [0, total]" in caplog.text
        assert "completion flag disagrees with counter" in caplog.text


class TestLessons:
    @pytest.mark.asyncio
    async def test_completed_lessons_and_teacher_students(self, db_session, data_service, student_id, teacher_id):
        other_student = uuid.uuid4()
        now = utcnow()
        db_session.add_all([
            Lesson(learner_id=student_id, teacher_id=teacher_id, status="completed",
                   scheduled_time=now - timedelta(days=2), duration_minutes=30),
            Lesson(learner_id=student_id, teacher_id=teacher_id, status="scheduled",
                   scheduled_time=now + timedelta(days=2), duration_minutes=30),
            Lesson(learner_id=other_student, teacher_id=teacher_id, status="completed",
                   scheduled_time=now - timedelta(days=1), duration_minutes=45),
            Lesson(learner_id=uuid.uuid4(), teacher_id=uuid.uuid4(), status="completed",
                   scheduled_time=now - timedelta(days=1), duration_minutes=45),
        ])
        await db_session.commit()

        ledger = ProgressLedger(data_service)
        lessons = await ledger.load_completed_lessons(student_id)
        assert len(lessons) == 1
        assert lessons[0].duration_minutes == 30

        recent = await ledger.load_completed_lessons(student_id, since=now - timedelta(days=1))
        assert recent == []

        students = await ledger.students_for_teacher(teacher_id)
        assert set(students) == {student_id, other_student}
