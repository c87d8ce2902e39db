"""
Curriculum progress service - composes the Hierarchy Store, the Progress
Ledger and the Aggregation Engine.

- load_snapshot: hierarchy plus the student's ledger, ledger reads issued concurrently
- recompute: rewrite the StudentCurriculumProgress cache from milestone rows
- move_position: explicit teacher/system change of the current phase/stage pointer
- update_surah / record_practice: surah counters and post-lesson practice
- watch: re-run aggregation when a change notification arrives
"""

import asyncio
import uuid
from typing import Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from talbiyah.data import service as collections
from talbiyah.data.change_feed import ChangeEvent, Subscription
from talbiyah.data.service import DataService
from talbiyah.engines.progress import aggregation
from talbiyah.engines.progress.hierarchy_store import HierarchyCache, HierarchyStore
from talbiyah.engines.progress.ledger import ProgressLedger
from talbiyah.engines.progress.scope import ProgressScope
from talbiyah.engines.progress.types import (
    CurrentPosition,
    Hierarchy,
    Pillar,
    ProgressMap,
    StudentCurriculumProgress,
    StudentSurahStats,
    SurahProgress,
    SurahStatus,
)
from talbiyah.errors import NotFoundError
from talbiyah.kernel.events import EventStore, PositionChangedEvent, SurahProgressEvent
from talbiyah.kernel.models.event_log import EventType
from talbiyah.logging_config import get_logger

logger = get_logger(__name__)


class CurriculumSnapshot(BaseModel):
    """A student's view of one subject: tree, ledger, cached pointer."""

    model_config = ConfigDict(frozen=True)

    student_id: uuid.UUID
    hierarchy: Hierarchy
    progress: ProgressMap = {}
    cached: Optional[StudentCurriculumProgress] = None

    @property
    def overall_percent(self) -> int:
        return aggregation.overall_progress_percent(self.hierarchy, self.progress)

    def phase_percents(self) -> Dict[uuid.UUID, int]:
        h = self.hierarchy
        return {
            p.id: aggregation.phase_progress_percent(p, h.stages, h.milestones, self.progress)
            for p in h.phases
        }

    def stage_percents(self) -> Dict[uuid.UUID, int]:
        h = self.hierarchy
        return {s.id: aggregation.stage_progress_percent(s, h.milestones, self.progress) for s in h.stages}

    def phase_locks(self) -> Dict[uuid.UUID, bool]:
        locks = aggregation.phase_lock_states(self.hierarchy, self.progress)
        return {p.id: locked for p, locked in zip(self.hierarchy.phases, locks)}

    def position(self) -> CurrentPosition:
        return aggregation.current_phase_and_stage(self.hierarchy, self.cached)

    def verified_count(self) -> int:
        return aggregation.completed_count(self.hierarchy.milestones, self.progress)


class StudentDashboard(BaseModel):
    curriculum: Optional[CurriculumSnapshot] = None
    surahs: Dict[int, SurahProgress] = {}
    surah_stats: StudentSurahStats = StudentSurahStats()


class CurriculumProgressService:
    """Loads and maintains a student's curriculum progress."""

    def __init__(
        self,
        data: DataService,
        *,
        hierarchy_cache: Optional[HierarchyCache] = None,
        event_store: Optional[EventStore] = None,
    ):
        self.data = data
        self.hierarchy_store = HierarchyStore(data, cache=hierarchy_cache)
        self.ledger = ProgressLedger(data)
        self.events = event_store or EventStore(data)

    async def load_snapshot(self, student_id: uuid.UUID, subject_slug: str) -> CurriculumSnapshot:
        hierarchy = await self.hierarchy_store.load_hierarchy(subject_slug)
        progress, cached = await asyncio.gather(
            self.ledger.load_milestone_progress(student_id, hierarchy.milestone_ids()),
            self.ledger.load_curriculum_progress(student_id, hierarchy.subject.id),
        )
        return CurriculumSnapshot(student_id=student_id, hierarchy=hierarchy, progress=progress, cached=cached)

    async def load_dashboard(self, student_id: uuid.UUID, subject_slug: str) -> StudentDashboard:
        """Curriculum snapshot and surah progress; ledger reads issued concurrently."""
        # The tree load raises before any ledger read is in flight
        hierarchy = await self.hierarchy_store.load_hierarchy(subject_slug)
        progress, cached, surahs = await asyncio.gather(
            self.ledger.load_milestone_progress(student_id, hierarchy.milestone_ids()),
            self.ledger.load_curriculum_progress(student_id, hierarchy.subject.id),
            self.ledger.load_surah_progress(student_id),
        )
        snapshot = CurriculumSnapshot(student_id=student_id, hierarchy=hierarchy, progress=progress, cached=cached)
        return StudentDashboard(
            curriculum=snapshot,
            surahs=surahs,
            surah_stats=aggregation.aggregate_student_stats(surahs.values()),
        )

    async def recompute(self, student_id: uuid.UUID, subject_slug: str) -> StudentCurriculumProgress:
        """
        Rewrite the cached overall percentage from milestone rows.

        The phase/stage pointer is carried over unchanged; completing milestones
        never moves a student into another phase.
        """
        snapshot = await self.load_snapshot(student_id, subject_slug)
        overall = snapshot.overall_percent
        cached = snapshot.cached
        saved = await self.ledger.save_curriculum_progress(
            student_id,
            snapshot.hierarchy.subject.id,
            overall_progress_percentage=overall,
            current_phase_id=cached.current_phase_id if cached else None,
            current_stage_id=cached.current_stage_id if cached else None,
        )
        logger.info(
            "Curriculum progress recomputed",
            extra={"student_id": str(student_id), "subject": subject_slug, "overall": overall},
        )
        return saved

    async def move_position(
        self,
        student_id: uuid.UUID,
        subject_slug: str,
        phase_id: uuid.UUID,
        stage_id: Optional[uuid.UUID],
        actor_id: uuid.UUID,
    ) -> StudentCurriculumProgress:
        """Explicitly set the student's current phase (and optionally stage)."""
        snapshot = await self.load_snapshot(student_id, subject_slug)
        hierarchy = snapshot.hierarchy
        if hierarchy.phase(phase_id) is None:
            raise NotFoundError("phase", phase_id)
        if stage_id is not None:
            stage = hierarchy.stage(stage_id)
            if stage is None or stage.phase_id != phase_id:
                raise NotFoundError("stage", stage_id)

        previous = snapshot.cached
        saved = await self.ledger.save_curriculum_progress(
            student_id,
            hierarchy.subject.id,
            overall_progress_percentage=snapshot.overall_percent,
            current_phase_id=phase_id,
            current_stage_id=stage_id,
        )
        await self.events.log_from_model(
            event_type=EventType.CURRICULUM_POSITION_CHANGED,
            entity_type="curriculum",
            entity_id=hierarchy.subject.id,
            student_id=student_id,
            actor_id=actor_id,
            payload_model=PositionChangedEvent(
                subject_id=hierarchy.subject.id,
                previous_phase_id=previous.current_phase_id if previous else None,
                previous_stage_id=previous.current_stage_id if previous else None,
                phase_id=phase_id,
                stage_id=stage_id,
            ),
        )
        return saved

    async def update_surah(
        self,
        student_id: uuid.UUID,
        surah_number: int,
        counters: Dict[Pillar, int],
        actor_id: Optional[uuid.UUID],
        *,
        total_ayat: Optional[int] = None,
    ) -> SurahProgress:
        """Set ayah counters for a surah and append the matching history entries."""
        before = await self.ledger.get_surah_progress(student_id, surah_number)
        updated = await self.ledger.upsert_surah_progress(
            student_id, surah_number, counters, total_ayat=total_ayat
        )
        payload = SurahProgressEvent(
            surah_number=surah_number,
            counters={p.value: updated.counter(p) for p in Pillar},
            total_ayat=updated.total_ayat,
        )
        from_status = before.status.value if before else SurahStatus.NOT_STARTED.value
        await self.events.log_from_model(
            event_type=EventType.SURAH_PROGRESS_UPDATED,
            entity_type="surah",
            entity_id=surah_number,
            student_id=student_id,
            actor_id=actor_id,
            from_status=from_status,
            to_status=updated.status.value,
            payload_model=payload,
        )
        if updated.status == SurahStatus.COMPLETED and from_status != SurahStatus.COMPLETED.value:
            await self.events.log_from_model(
                event_type=EventType.SURAH_COMPLETED,
                entity_type="surah",
                entity_id=surah_number,
                student_id=student_id,
                actor_id=actor_id,
                from_status=from_status,
                to_status=updated.status.value,
                payload_model=payload,
            )
        return updated

    async def record_practice(
        self,
        student_id: uuid.UUID,
        surah_numbers: List[int],
        actor_id: Optional[uuid.UUID],
    ) -> List[SurahProgress]:
        """Log the surahs covered in a lesson; each one becomes in_progress unless already completed."""
        practiced = []
        for surah_number in dict.fromkeys(surah_numbers):
            before = await self.ledger.get_surah_progress(student_id, surah_number)
            updated = await self.ledger.record_surah_practice(student_id, surah_number)
            await self.events.log_from_model(
                event_type=EventType.SURAH_PRACTICED,
                entity_type="surah",
                entity_id=surah_number,
                student_id=student_id,
                actor_id=actor_id,
                from_status=before.status.value if before else SurahStatus.NOT_STARTED.value,
                to_status=updated.status.value,
                payload_model=SurahProgressEvent(surah_number=surah_number, total_ayat=updated.total_ayat),
            )
            practiced.append(updated)
        return practiced

    def watch(
        self,
        student_id: uuid.UUID,
        subject_slug: str,
        on_update: Callable[[CurriculumSnapshot], Awaitable[None]],
        scope: ProgressScope,
    ) -> List[Subscription]:
        """
        Re-aggregate when the student's milestone rows or lessons change.

        The subscriptions and every refresh they start belong to scope:
        closing it unsubscribes and cancels refreshes still in flight, so
        on_update is never called after the consumer has gone away.
        """

        async def _refresh(event: ChangeEvent) -> None:
            logger.debug("Change received, re-aggregating", extra={"collection": event.collection})
            snapshot = await self.load_snapshot(student_id, subject_slug)
            await on_update(snapshot)

        def _schedule(event: ChangeEvent) -> Optional[asyncio.Task]:
            if scope.closed:
                return None
            return scope.spawn(_refresh(event))

        subscriptions = [
            self.data.subscribe(collections.MILESTONE_PROGRESS, {"student_id": student_id}, _schedule),
            self.data.subscribe(collections.LESSONS, {"learner_id": student_id}, _schedule),
        ]
        scope.track(*subscriptions)
        return subscriptions
