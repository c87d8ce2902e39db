"""
State machine for the milestone verification workflow.

not_started -> in_progress -> pending_verification -> verified
pending_verification -> in_progress (rejected)

Valid transitions and the operations that may perform them are defined here.
Quick verify is the one operation outside the table: it sets a milestone to
verified from any state. `mastered` is never produced by this workflow;
aggregation counts it as complete wherever it appears.
"""

import uuid
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Dict, Hashable, List, Optional, Set, Tuple

from talbiyah.config import get_settings
from talbiyah.data.service import DataService
from talbiyah.engines.progress.hierarchy_store import HierarchyCache
from talbiyah.engines.progress.progress_service import CurriculumProgressService
from talbiyah.engines.progress.types import COMPLETED_STATUSES, MilestoneProgress, MilestoneStatus, Subject
from talbiyah.errors import InvalidTransitionError, OperationInProgressError, PersistenceError
from talbiyah.kernel.events.event_store import EventStore
from talbiyah.kernel.events.event_types import MilestoneTransitionEvent
from talbiyah.kernel.models.base import utcnow
from talbiyah.kernel.models.event_log import EventType
from talbiyah.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_REJECTION_NOTES = "Needs more practice before verification."


class Operation:
    START = "start"
    SUBMIT = "submit"
    VERIFY = "verify"
    REJECT = "reject"


_S = MilestoneStatus

# Valid transitions: (from_status, to_status) -> operations that may perform them
_TRANSITIONS: Dict[Tuple[str, str], Set[str]] = {
    (_S.NOT_STARTED.value, _S.IN_PROGRESS.value): {Operation.START},
    (_S.NOT_STARTED.value, _S.PENDING_VERIFICATION.value): {Operation.SUBMIT},
    (_S.IN_PROGRESS.value, _S.PENDING_VERIFICATION.value): {Operation.SUBMIT},
    (_S.PENDING_VERIFICATION.value, _S.VERIFIED.value): {Operation.VERIFY},
    # repeated verify refreshes verified_at
    (_S.VERIFIED.value, _S.VERIFIED.value): {Operation.VERIFY},
    (_S.PENDING_VERIFICATION.value, _S.IN_PROGRESS.value): {Operation.REJECT},
}

_EVENT_FOR_OPERATION = {
    Operation.START: EventType.MILESTONE_STARTED,
    Operation.SUBMIT: EventType.MILESTONE_SUBMITTED,
    Operation.VERIFY: EventType.MILESTONE_VERIFIED,
    Operation.REJECT: EventType.MILESTONE_REJECTED,
}


def valid_transitions(from_status: str) -> List[str]:
    """Return list of valid target statuses from given status."""
    return sorted({t for (f, t) in _TRANSITIONS if f == from_status})


def can_transition(operation: str, from_status: str, to_status: str) -> bool:
    return operation in _TRANSITIONS.get((from_status, to_status), set())


class InFlightGuard:
    """Refuses a second action on a key while the first is still running."""

    def __init__(self) -> None:
        self._keys: Set[Hashable] = set()

    def busy(self, key: Hashable) -> bool:
        return key in self._keys

    @asynccontextmanager
    async def hold(self, key: Hashable):
        if key in self._keys:
            raise OperationInProgressError(
                "Another action on this milestone is still running",
                details={"key": [str(k) for k in key] if isinstance(key, tuple) else str(key)},
            )
        self._keys.add(key)
        try:
            yield
        finally:
            self._keys.discard(key)


# Shared by all workflow instances in the process
_in_flight = InFlightGuard()


def _blank_to_none(notes: Optional[str]) -> Optional[str]:
    if notes is None or not notes.strip():
        return None
    return notes.strip()


class VerificationWorkflow:
    """
    Service for performing milestone transitions with history logging.

    The acting identity is passed into each call; nothing is read from
    ambient session state.
    """

    def __init__(
        self,
        data: DataService,
        *,
        hierarchy_cache: Optional[HierarchyCache] = None,
        guard: Optional[InFlightGuard] = None,
    ):
        self.data = data
        self.event_store = EventStore(data)
        self.progress = CurriculumProgressService(
            data, hierarchy_cache=hierarchy_cache, event_store=self.event_store
        )
        self.ledger = self.progress.ledger
        self.guard = guard or _in_flight

    # ------------------------------------------------------------ transitions

    async def start_milestone(self, student_id: uuid.UUID, milestone_id: uuid.UUID) -> MilestoneProgress:
        async with self.guard.hold((student_id, milestone_id)):
            subject, current = await self._current(student_id, milestone_id)
            self._check(Operation.START, current.status, _S.IN_PROGRESS)
            patch = {"status": _S.IN_PROGRESS.value}
            if current.started_at is None:
                patch["started_at"] = utcnow()
            return await self._apply(Operation.START, subject, current, patch, actor_id=student_id)

    async def submit_for_verification(self, student_id: uuid.UUID, milestone_id: uuid.UUID) -> MilestoneProgress:
        async with self.guard.hold((student_id, milestone_id)):
            subject, current = await self._current(student_id, milestone_id)
            self._check(Operation.SUBMIT, current.status, _S.PENDING_VERIFICATION)
            # status only; updated_at is the submission time
            patch = {"status": _S.PENDING_VERIFICATION.value}
            return await self._apply(Operation.SUBMIT, subject, current, patch, actor_id=student_id)

    async def verify_strict(
        self,
        student_id: uuid.UUID,
        milestone_id: uuid.UUID,
        verifier_id: uuid.UUID,
        notes: Optional[str] = None,
    ) -> MilestoneProgress:
        """Teacher verification of a submitted milestone."""
        async with self.guard.hold((student_id, milestone_id)):
            subject, current = await self._current(student_id, milestone_id)
            self._check(Operation.VERIFY, current.status, _S.VERIFIED)
            now = utcnow()
            patch = {
                "status": _S.VERIFIED.value,
                "verified_at": now,
                "verified_by": verifier_id,
                "verification_notes": _blank_to_none(notes),
            }
            if current.completed_at is None:
                patch["completed_at"] = now
            return await self._apply(Operation.VERIFY, subject, current, patch, actor_id=verifier_id)

    async def verify_quick(
        self,
        student_id: uuid.UUID,
        milestone_id: uuid.UUID,
        verifier_id: uuid.UUID,
    ) -> MilestoneProgress:
        """
        Mark verified regardless of the current status, creating the record if
        none exists. A new record is written complete: 100% with started,
        completed and verified timestamps all set to now.
        """
        async with self.guard.hold((student_id, milestone_id)):
            subject = await self.progress.hierarchy_store.subject_for_milestone(milestone_id)
            existing = await self.ledger.get_milestone_progress(student_id, milestone_id)
            now = utcnow()
            patch = {
                "status": _S.VERIFIED.value,
                "verified_at": now,
                "verified_by": verifier_id,
            }
            if existing is None:
                patch.update(progress_percentage=100, started_at=now, completed_at=now)
                current = MilestoneProgress.default(student_id, milestone_id)
            else:
                current = existing
                if existing.completed_at is None:
                    patch["completed_at"] = now
            return await self._apply(
                Operation.VERIFY,
                subject,
                current,
                patch,
                actor_id=verifier_id,
                event_type=EventType.MILESTONE_QUICK_VERIFIED,
            )

    async def reject(
        self,
        student_id: uuid.UUID,
        milestone_id: uuid.UUID,
        notes: Optional[str] = None,
    ) -> MilestoneProgress:
        """Send a submitted milestone back to in_progress; progress_percentage is kept."""
        async with self.guard.hold((student_id, milestone_id)):
            subject, current = await self._current(student_id, milestone_id)
            self._check(Operation.REJECT, current.status, _S.IN_PROGRESS)
            patch = {
                "status": _S.IN_PROGRESS.value,
                "verification_notes": _blank_to_none(notes) or DEFAULT_REJECTION_NOTES,
            }
            # no verifier is recorded on rejection
            return await self._apply(Operation.REJECT, subject, current, patch, actor_id=None)

    # ----------------------------------------------------------- review queue

    async def students_for_teacher(self, teacher_id: uuid.UUID) -> List[uuid.UUID]:
        return await self.ledger.students_for_teacher(teacher_id)

    async def pending_verifications(self, student_ids: List[uuid.UUID]) -> List[MilestoneProgress]:
        if not student_ids:
            return []
        return await self.ledger.pending_verifications(student_ids)

    async def recent_verifications(
        self,
        student_ids: List[uuid.UUID],
        days: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[MilestoneProgress]:
        if not student_ids:
            return []
        settings = get_settings()
        days = settings.recent_verification_days if days is None else days
        limit = settings.recent_verification_limit if limit is None else limit
        since = utcnow() - timedelta(days=days)
        return await self.ledger.verified_since(student_ids, since, limit=limit)

    # ---------------------------------------------------------------- helpers

    async def _current(
        self,
        student_id: uuid.UUID,
        milestone_id: uuid.UUID,
    ) -> Tuple[Subject, MilestoneProgress]:
        """The milestone's subject and its progress record (default when absent)."""
        subject = await self.progress.hierarchy_store.subject_for_milestone(milestone_id)
        existing = await self.ledger.get_milestone_progress(student_id, milestone_id)
        return subject, existing or MilestoneProgress.default(student_id, milestone_id)

    @staticmethod
    def _check(operation: str, from_status: MilestoneStatus, to_status: MilestoneStatus) -> None:
        if not can_transition(operation, from_status.value, to_status.value):
            raise InvalidTransitionError(from_status.value, to_status.value)

    async def _apply(
        self,
        operation: str,
        subject: Subject,
        current: MilestoneProgress,
        patch: Dict,
        *,
        actor_id: Optional[uuid.UUID],
        event_type: Optional[EventType] = None,
    ) -> MilestoneProgress:
        # PersistenceError propagates from here with no history or cache write
        updated = await self.ledger.upsert_milestone_progress(current.student_id, current.milestone_id, patch)

        from_status = current.status.value
        to_status = updated.status.value
        await self.event_store.log_from_model(
            event_type=event_type or _EVENT_FOR_OPERATION[operation],
            entity_type="milestone",
            entity_id=updated.milestone_id,
            student_id=updated.student_id,
            actor_id=actor_id,
            from_status=from_status,
            to_status=to_status,
            payload_model=MilestoneTransitionEvent(
                milestone_id=updated.milestone_id,
                subject_id=subject.id,
                notes=updated.verification_notes,
                progress_percentage=updated.progress_percentage,
            ),
        )
        logger.info(
            "Milestone transition",
            extra={
                "operation": operation,
                "student_id": str(updated.student_id),
                "milestone_id": str(updated.milestone_id),
                "from_status": from_status,
                "to_status": to_status,
            },
        )

        if current.status in COMPLETED_STATUSES or updated.status in COMPLETED_STATUSES:
            await self._refresh_cached_progress(updated, subject)
        return updated

    async def _refresh_cached_progress(self, updated: MilestoneProgress, subject: Subject) -> None:
        """
        Recompute the cached overall percentage after a stored transition.

        The transition stands when this fails; the cache stays stale until the
        next recompute and the failure is logged for operators.
        """
        try:
            await self.progress.recompute(updated.student_id, subject.slug)
        except PersistenceError as e:
            logger.error(
                "Cached curriculum progress is stale",
                extra={
                    "student_id": str(updated.student_id),
                    "subject": subject.slug,
                    "milestone_id": str(updated.milestone_id),
                    "error": e.message,
                },
            )
