"""
Hierarchy Store - loads the Subject -> Phase -> Stage -> Milestone tree.

Children are fetched in one batched call per level (all stages of these
phases, all milestones of these stages), so a load costs four requests
regardless of tree size. Loaded trees are read-mostly reference data and may
be shared between students through a HierarchyCache.
"""

import uuid
from typing import Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from talbiyah.data import service as collections
from talbiyah.data.service import DataService, Record
from talbiyah.engines.progress.types import Hierarchy, Milestone, Phase, Stage, Subject
from talbiyah.errors import CurriculumUnsupportedError, NotFoundError
from talbiyah.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)


def parse_records(model: Type[T], records: List[Record], collection: str) -> List[T]:
    """Parse raw records, dropping (and logging) the ones that fail validation."""
    parsed: List[T] = []
    for raw in records:
        try:
            parsed.append(model.model_validate(raw))
        except ValidationError as e:
            logger.warning(
                "Rejected malformed record",
                extra={"collection": collection, "record_id": str(raw.get("id")), "errors": e.error_count()},
            )
    return parsed


class HierarchyCache:
    """Process-wide cache of loaded hierarchies keyed by subject slug."""

    def __init__(self) -> None:
        self._by_slug: Dict[str, Hierarchy] = {}

    def get(self, slug: str) -> Optional[Hierarchy]:
        return self._by_slug.get(slug)

    def put(self, hierarchy: Hierarchy) -> None:
        self._by_slug[hierarchy.subject.slug] = hierarchy

    def invalidate(self, slug: Optional[str] = None) -> None:
        if slug is None:
            self._by_slug.clear()
        else:
            self._by_slug.pop(slug, None)


class HierarchyStore:
    """Read-only access to curriculum trees."""

    def __init__(self, data: DataService, *, cache: Optional[HierarchyCache] = None):
        self.data = data
        self.cache = cache

    async def ensure_supported(self) -> None:
        """Raise CurriculumUnsupportedError when curriculum collections are not configured."""
        for collection in collections.CURRICULUM_COLLECTIONS:
            if not await self.data.supports(collection):
                logger.info("Curriculum collection unavailable", extra={"collection": collection})
                raise CurriculumUnsupportedError(collection)

    async def load_hierarchy(self, subject_slug: str) -> Hierarchy:
        """
        Load the full tree for a subject.

        Raises:
            CurriculumUnsupportedError: curriculum is not configured in the store
            NotFoundError: no subject with this slug
        """
        if self.cache is not None:
            cached = self.cache.get(subject_slug)
            if cached is not None:
                return cached

        await self.ensure_supported()

        raw_subject = await self.data.fetch_by_slug(collections.SUBJECTS, subject_slug)
        if raw_subject is None:
            raise NotFoundError("subject", subject_slug)
        subject = Subject.model_validate(raw_subject)

        phases = parse_records(
            Phase,
            await self.data.fetch_by_parent_ids(collections.PHASES, "subject_id", [subject.id], "sort_order"),
            collections.PHASES,
        )
        stages: List[Stage] = []
        milestones: List[Milestone] = []
        if phases:
            stages = parse_records(
                Stage,
                await self.data.fetch_by_parent_ids(
                    collections.STAGES, "phase_id", [p.id for p in phases], "sort_order"
                ),
                collections.STAGES,
            )
        if stages:
            milestones = parse_records(
                Milestone,
                await self.data.fetch_by_parent_ids(
                    collections.MILESTONES, "stage_id", [s.id for s in stages], "sort_order"
                ),
                collections.MILESTONES,
            )

        hierarchy = Hierarchy(subject=subject, phases=phases, stages=stages, milestones=milestones)
        logger.info(
            "Loaded curriculum",
            extra={
                "subject": subject_slug,
                "phases": len(phases),
                "stages": len(stages),
                "milestones": len(milestones),
            },
        )
        if self.cache is not None:
            self.cache.put(hierarchy)
        return hierarchy

    async def subject_for_milestone(self, milestone_id: uuid.UUID) -> Subject:
        """Walk milestone -> stage -> phase -> subject."""
        await self.ensure_supported()
        milestone = await self.data.fetch_one(collections.MILESTONES, {"id": milestone_id})
        if milestone is None:
            raise NotFoundError("milestone", milestone_id)
        stage = await self.data.fetch_one(collections.STAGES, {"id": milestone["stage_id"]})
        if stage is None:
            raise NotFoundError("stage", milestone["stage_id"])
        phase = await self.data.fetch_one(collections.PHASES, {"id": stage["phase_id"]})
        if phase is None:
            raise NotFoundError("phase", stage["phase_id"])
        subject = await self.data.fetch_one(collections.SUBJECTS, {"id": phase["subject_id"]})
        if subject is None:
            raise NotFoundError("subject", phase["subject_id"])
        return Subject.model_validate(subject)
