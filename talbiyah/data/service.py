"""
External data service interface.

Everything the progress engine persists or reads goes through this boundary.
Records cross it as loosely typed dicts; the Hierarchy Store and Progress
Ledger parse them into the typed models in talbiyah.engines.progress.types.
"""

import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Protocol, Tuple, Union

from talbiyah.data.change_feed import ChangeEvent, Subscription

Record = Dict[str, Any]
ChangeCallback = Callable[[ChangeEvent], Union[None, Awaitable[None]]]

# Collection names, matching the backing tables
SUBJECTS = "curriculum_subjects"
PHASES = "curriculum_phases"
STAGES = "curriculum_stages"
MILESTONES = "curriculum_milestones"
MILESTONE_PROGRESS = "student_milestone_progress"
CURRICULUM_PROGRESS = "student_curriculum_progress"
SURAH_PROGRESS = "student_surah_progress"
LESSONS = "lessons"
PROGRESS_EVENTS = "progress_events"

CURRICULUM_COLLECTIONS = (SUBJECTS, PHASES, STAGES, MILESTONES)


class DataService(Protocol):
    """Capabilities the engine needs from the backing store."""

    async def supports(self, collection: str) -> bool:
        """False when the collection does not exist (distinct from existing but empty)."""
        ...

    async def fetch_by_slug(self, collection: str, slug: str) -> Optional[Record]:
        ...

    async def fetch_by_parent_ids(
        self,
        collection: str,
        parent_id_field: str,
        parent_ids: Iterable[uuid.UUID],
        order_by: str,
    ) -> List[Record]:
        ...

    async def fetch_one(self, collection: str, filters: Dict[str, Any]) -> Optional[Record]:
        """Single record or None; None is a valid 'no progress yet' answer."""
        ...

    async def fetch_many(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
        *,
        in_filters: Optional[Dict[str, Iterable[Any]]] = None,
        since: Optional[Tuple[str, datetime]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Record]:
        ...

    async def upsert(self, collection: str, key: Dict[str, Any], patch: Dict[str, Any]) -> Record:
        """Insert or partially update the record identified by key; returns the stored record."""
        ...

    async def commit(self) -> None:
        """Make pending writes durable and notify subscribers of them."""
        ...

    def subscribe(
        self,
        collection: str,
        filter: Optional[Dict[str, Any]],
        on_change: ChangeCallback,
    ) -> Subscription:
        """Notifications arrive only for committed writes."""
        ...

    def current_identity(self) -> Optional[uuid.UUID]:
        ...
