"""
Integration tests for the verification workflow: transitions, history,
cached progress recompute, failure handling and the teacher review queue.
"""

import uuid

import pytest

from talbiyah.data import service as collections
from talbiyah.data.sql_service import SqlDataService
from talbiyah.engines.progress.progress_service import CurriculumProgressService
from talbiyah.engines.progress.types import MilestoneStatus
from talbiyah.errors import (
    InvalidTransitionError,
    NotFoundError,
    OperationInProgressError,
    PersistenceError,
)
from talbiyah.kernel.events import EventStore
from talbiyah.kernel.models.event_log import EventType
from talbiyah.orchestration.state_machine import (
    DEFAULT_REJECTION_NOTES,
    InFlightGuard,
    VerificationWorkflow,
)


class FailingWritesDataService(SqlDataService):
    """Rejects every write to the milestone progress collection."""

    async def upsert(self, collection, key, patch):
        if collection == collections.MILESTONE_PROGRESS:
            raise PersistenceError("store unavailable", details={"collection": collection})
        return await super().upsert(collection, key, patch)


class FailingCacheWritesDataService(SqlDataService):
    """Stores milestone rows but rejects every write to the cached curriculum progress."""

    async def upsert(self, collection, key, patch):
        if collection == collections.CURRICULUM_PROGRESS:
            raise PersistenceError("store unavailable", details={"collection": collection})
        return await super().upsert(collection, key, patch)


@pytest.fixture
def workflow(data_service) -> VerificationWorkflow:
    return VerificationWorkflow(data_service, guard=InFlightGuard())


async def submit_and_verify(workflow, student_id, milestone_id, teacher_id, notes=None):
    await workflow.submit_for_verification(student_id, milestone_id)
    return await workflow.verify_strict(student_id, milestone_id, teacher_id, notes)


class TestTransitions:
    @pytest.mark.asyncio
    async def test_happy_path(self, workflow, curriculum, student_id, teacher_id):
        milestone_id = curriculum.phase_milestones(0)[0]

        started = await workflow.start_milestone(student_id, milestone_id)
        assert started.status == MilestoneStatus.IN_PROGRESS
        assert started.started_at is not None

        submitted = await workflow.submit_for_verification(student_id, milestone_id)
        assert submitted.status == MilestoneStatus.PENDING_VERIFICATION
        assert submitted.started_at == started.started_at

        verified = await workflow.verify_strict(student_id, milestone_id, teacher_id, "Clear makharij")
        assert verified.status == MilestoneStatus.VERIFIED
        assert verified.verified_by == teacher_id
        assert verified.verification_notes == "Clear makharij"
        assert verified.verified_at is not None
        assert verified.completed_at is not None

    @pytest.mark.asyncio
    async def test_submit_without_start(self, workflow, curriculum, student_id):
        record = await workflow.submit_for_verification(student_id, curriculum.phase_milestones(0)[0])
        assert record.status == MilestoneStatus.PENDING_VERIFICATION
        assert record.started_at is None
        assert record.updated_at is not None

    @pytest.mark.asyncio
    async def test_blank_verify_notes_stored_as_none(self, workflow, curriculum, student_id, teacher_id):
        record = await submit_and_verify(workflow, student_id, curriculum.phase_milestones(0)[0], teacher_id, "  ")
        assert record.verification_notes is None

    @pytest.mark.asyncio
    async def test_verify_is_idempotent(self, workflow, curriculum, student_id, teacher_id):
        milestone_id = curriculum.phase_milestones(0)[0]
        first = await submit_and_verify(workflow, student_id, milestone_id, teacher_id)
        cache_before = await workflow.ledger.load_curriculum_progress(student_id, curriculum.subject_id)

        second = await workflow.verify_strict(student_id, milestone_id, teacher_id)
        cache_after = await workflow.ledger.load_curriculum_progress(student_id, curriculum.subject_id)

        assert second.status == MilestoneStatus.VERIFIED
        assert second.verified_at >= first.verified_at
        assert second.completed_at == first.completed_at
        assert cache_after.overall_progress_percentage == cache_before.overall_progress_percentage == 14

    @pytest.mark.asyncio
    @pytest.mark.parametrize("notes", [None, "", "   "])
    async def test_reject_default_notes(self, workflow, curriculum, student_id, notes):
        milestone_id = curriculum.phase_milestones(0)[0]
        await workflow.submit_for_verification(student_id, milestone_id)
        record = await workflow.reject(student_id, milestone_id, notes)
        assert record.status == MilestoneStatus.IN_PROGRESS
        assert record.verification_notes == DEFAULT_REJECTION_NOTES
        assert record.verified_by is None

    @pytest.mark.asyncio
    async def test_reject_keeps_notes_and_percentage(self, workflow, curriculum, student_id):
        milestone_id = curriculum.phase_milestones(0)[0]
        await workflow.ledger.upsert_milestone_progress(
            student_id, milestone_id, {"status": "pending_verification", "progress_percentage": 60}
        )
        record = await workflow.reject(student_id, milestone_id, "Work on madd")
        assert record.verification_notes == "Work on madd"
        assert record.progress_percentage == 60

    @pytest.mark.asyncio
    async def test_reject_in_progress_refused(self, workflow, curriculum, student_id):
        milestone_id = curriculum.phase_milestones(0)[0]
        await workflow.start_milestone(student_id, milestone_id)
        with pytest.raises(InvalidTransitionError) as exc:
            await workflow.reject(student_id, milestone_id)
        assert exc.value.from_status == "in_progress"
        record = await workflow.ledger.get_milestone_progress(student_id, milestone_id)
        assert record.status == MilestoneStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_verify_requires_submission(self, workflow, curriculum, student_id, teacher_id):
        milestone_id = curriculum.phase_milestones(0)[0]
        with pytest.raises(InvalidTransitionError):
            await workflow.verify_strict(student_id, milestone_id, teacher_id)
        await workflow.start_milestone(student_id, milestone_id)
        with pytest.raises(InvalidTransitionError):
            await workflow.verify_strict(student_id, milestone_id, teacher_id)

    @pytest.mark.asyncio
    async def test_start_twice_refused(self, workflow, curriculum, student_id):
        milestone_id = curriculum.phase_milestones(0)[0]
        await workflow.start_milestone(student_id, milestone_id)
        with pytest.raises(InvalidTransitionError):
            await workflow.start_milestone(student_id, milestone_id)

    @pytest.mark.asyncio
    async def test_unknown_milestone(self, workflow, curriculum, student_id):
        with pytest.raises(NotFoundError):
            await workflow.start_milestone(student_id, uuid.uuid4())


class TestQuickVerify:
    @pytest.mark.asyncio
    async def test_creates_complete_record(self, workflow, curriculum, student_id, teacher_id):
        milestone_id = curriculum.phase_milestones(1)[0]
        record = await workflow.verify_quick(student_id, milestone_id, teacher_id)
        assert record.status == MilestoneStatus.VERIFIED
        assert record.progress_percentage == 100
        assert record.started_at is not None
        assert record.completed_at is not None
        assert record.verified_at is not None
        assert record.verified_by == teacher_id

    @pytest.mark.asyncio
    async def test_from_any_status(self, workflow, curriculum, student_id, teacher_id):
        milestone_id = curriculum.phase_milestones(0)[0]
        await workflow.start_milestone(student_id, milestone_id)
        record = await workflow.verify_quick(student_id, milestone_id, teacher_id)
        assert record.status == MilestoneStatus.VERIFIED
        assert record.progress_percentage == 0

    @pytest.mark.asyncio
    async def test_logged_as_quick_verify(self, workflow, curriculum, student_id, teacher_id):
        milestone_id = curriculum.phase_milestones(0)[0]
        await workflow.verify_quick(student_id, milestone_id, teacher_id)
        history = await workflow.event_store.get_entity_history("milestone", milestone_id)
        assert [e["event_type"] for e in history] == [EventType.MILESTONE_QUICK_VERIFIED.value]
        assert history[0]["from_status"] == "not_started"
        assert history[0]["actor_id"] == teacher_id


class TestRecompute:
    @pytest.mark.asyncio
    async def test_four_of_five_unlocks_phase_two(self, workflow, curriculum, student_id, teacher_id):
        for milestone_id in curriculum.phase_milestones(0)[:4]:
            await submit_and_verify(workflow, student_id, milestone_id, teacher_id)

        snapshot = await workflow.progress.load_snapshot(student_id, curriculum.slug)
        percents = snapshot.phase_percents()
        locks = snapshot.phase_locks()
        assert percents[curriculum.phase_ids[0]] == 80
        assert locks[curriculum.phase_ids[1]] is False
        assert snapshot.cached.overall_progress_percentage == 57  # 4/7

    @pytest.mark.asyncio
    async def test_three_of_five_keeps_phase_two_locked(self, workflow, curriculum, student_id, teacher_id):
        for milestone_id in curriculum.phase_milestones(0)[:3]:
            await submit_and_verify(workflow, student_id, milestone_id, teacher_id)
        snapshot = await workflow.progress.load_snapshot(student_id, curriculum.slug)
        assert snapshot.phase_locks()[curriculum.phase_ids[1]] is True

    @pytest.mark.asyncio
    async def test_non_completing_transitions_skip_recompute(self, workflow, curriculum, student_id):
        milestone_id = curriculum.phase_milestones(0)[0]
        await workflow.start_milestone(student_id, milestone_id)
        await workflow.submit_for_verification(student_id, milestone_id)
        assert await workflow.ledger.load_curriculum_progress(student_id, curriculum.subject_id) is None

    @pytest.mark.asyncio
    async def test_pointer_not_advanced(self, workflow, curriculum, student_id, teacher_id):
        phase_1 = curriculum.phase_ids[0]
        await workflow.progress.move_position(student_id, curriculum.slug, phase_1, None, teacher_id)
        for milestone_id in curriculum.phase_milestones(0):
            await workflow.verify_quick(student_id, milestone_id, teacher_id)
        cached = await workflow.ledger.load_curriculum_progress(student_id, curriculum.subject_id)
        assert cached.overall_progress_percentage == 71  # 5/7
        assert cached.current_phase_id == phase_1

    @pytest.mark.asyncio
    async def test_pointer_stays_empty_when_never_set(self, workflow, curriculum, student_id, teacher_id):
        await workflow.verify_quick(student_id, curriculum.phase_milestones(0)[0], teacher_id)
        cached = await workflow.ledger.load_curriculum_progress(student_id, curriculum.subject_id)
        assert cached.current_phase_id is None
        assert cached.current_stage_id is None

    @pytest.mark.asyncio
    async def test_recompute_matches_from_scratch(self, workflow, curriculum, student_id, teacher_id):
        for milestone_id in curriculum.phase_milestones(1):
            await workflow.verify_quick(student_id, milestone_id, teacher_id)
        service = CurriculumProgressService(workflow.data)
        fresh = await service.load_snapshot(student_id, curriculum.slug)
        assert fresh.cached.overall_progress_percentage == fresh.overall_percent == 29


class TestHistory:
    @pytest.mark.asyncio
    async def test_every_transition_logged(self, workflow, curriculum, student_id, teacher_id):
        milestone_id = curriculum.phase_milestones(0)[0]
        await workflow.start_milestone(student_id, milestone_id)
        await workflow.submit_for_verification(student_id, milestone_id)
        await workflow.reject(student_id, milestone_id)
        await submit_and_verify(workflow, student_id, milestone_id, teacher_id)

        history = await EventStore(workflow.data).get_entity_history("milestone", milestone_id)
        assert [e["event_type"] for e in history] == [
            EventType.MILESTONE_STARTED.value,
            EventType.MILESTONE_SUBMITTED.value,
            EventType.MILESTONE_REJECTED.value,
            EventType.MILESTONE_SUBMITTED.value,
            EventType.MILESTONE_VERIFIED.value,
        ]
        rejected = history[2]
        assert rejected["actor_id"] is None
        assert rejected["payload"]["notes"] == DEFAULT_REJECTION_NOTES
        assert history[-1]["actor_id"] == teacher_id
        assert history[-1]["payload"]["subject_id"] == str(curriculum.subject_id)

    @pytest.mark.asyncio
    async def test_student_history_newest_first(self, workflow, curriculum, student_id):
        milestone_id = curriculum.phase_milestones(0)[0]
        await workflow.start_milestone(student_id, milestone_id)
        await workflow.submit_for_verification(student_id, milestone_id)
        events = await workflow.event_store.get_student_history(student_id, limit=1)
        assert [e["event_type"] for e in events] == [EventType.MILESTONE_SUBMITTED.value]


class TestFailures:
    @pytest.mark.asyncio
    async def test_persistence_failure_writes_nothing(self, db_session, change_feed, curriculum, student_id, teacher_id):
        data = FailingWritesDataService(db_session, identity=teacher_id, change_feed=change_feed)
        workflow = VerificationWorkflow(data, guard=InFlightGuard())
        milestone_id = curriculum.phase_milestones(0)[0]

        with pytest.raises(PersistenceError):
            await workflow.verify_quick(student_id, milestone_id, teacher_id)

        assert await workflow.ledger.get_milestone_progress(student_id, milestone_id) is None
        assert await workflow.ledger.load_curriculum_progress(student_id, curriculum.subject_id) is None
        assert await workflow.event_store.get_student_history(student_id) == []

    @pytest.mark.asyncio
    async def test_cache_failure_keeps_transition(self, db_session, change_feed, curriculum, student_id, teacher_id, caplog):
        """The verification is stored and announced; only the cached percentage goes stale."""
        data = FailingCacheWritesDataService(db_session, identity=teacher_id, change_feed=change_feed)
        workflow = VerificationWorkflow(data, guard=InFlightGuard())
        milestone_id = curriculum.phase_milestones(0)[0]
        changes = []
        data.subscribe(collections.MILESTONE_PROGRESS, {"student_id": student_id}, changes.append)

        with caplog.at_level("ERROR"):
            record = await workflow.verify_quick(student_id, milestone_id, teacher_id)
        assert record.status == MilestoneStatus.VERIFIED
        assert "Cached curriculum progress is stale" in caplog.text

        # announced only once committed
        assert changes == []
        await data.commit()
        assert [(c.operation, c.record["status"]) for c in changes] == [("insert", "verified")]

        stored = await workflow.ledger.get_milestone_progress(student_id, milestone_id)
        assert stored.status == MilestoneStatus.VERIFIED
        assert await workflow.ledger.load_curriculum_progress(student_id, curriculum.subject_id) is None
        history = await workflow.event_store.get_student_history(student_id)
        assert [e["event_type"] for e in history] == [EventType.MILESTONE_QUICK_VERIFIED.value]

    @pytest.mark.asyncio
    async def test_second_action_while_running_refused(self, data_service, curriculum, student_id):
        guard = InFlightGuard()
        workflow = VerificationWorkflow(data_service, guard=guard)
        milestone_id = curriculum.phase_milestones(0)[0]
        async with guard.hold((student_id, milestone_id)):
            with pytest.raises(OperationInProgressError):
                await workflow.start_milestone(student_id, milestone_id)
        record = await workflow.start_milestone(student_id, milestone_id)
        assert record.status == MilestoneStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_other_milestones_not_blocked(self, data_service, curriculum, student_id):
        guard = InFlightGuard()
        workflow = VerificationWorkflow(data_service, guard=guard)
        first, second = curriculum.phase_milestones(0)[:2]
        async with guard.hold((student_id, first)):
            record = await workflow.start_milestone(student_id, second)
        assert record.status == MilestoneStatus.IN_PROGRESS


class TestReviewQueue:
    @pytest.mark.asyncio
    async def test_pending_and_recent(self, workflow, curriculum, student_id, teacher_id):
        other = uuid.uuid4()
        first, second, third = curriculum.phase_milestones(0)[:3]
        await workflow.submit_for_verification(student_id, first)
        await workflow.submit_for_verification(other, second)
        await submit_and_verify(workflow, student_id, third, teacher_id)

        pending = await workflow.pending_verifications([student_id, other])
        assert {(p.student_id, p.milestone_id) for p in pending} == {(student_id, first), (other, second)}
        assert await workflow.pending_verifications([student_id]) != []
        assert await workflow.pending_verifications([]) == []

        recent = await workflow.recent_verifications([student_id, other])
        assert [r.milestone_id for r in recent] == [third]
        assert await workflow.recent_verifications([]) == []

    @pytest.mark.asyncio
    async def test_recent_limit(self, workflow, curriculum, student_id, teacher_id):
        for milestone_id in curriculum.phase_milestones(0):
            await workflow.verify_quick(student_id, milestone_id, teacher_id)
        recent = await workflow.recent_verifications([student_id], limit=2)
        assert len(recent) == 2
