"""
Pytest fixtures for curriculum progress tests.

Every test that touches the database gets its own temp-file SQLite database
(in-memory SQLite is per-connection, so a file keeps all connections on the
same data).
"""

import os
import tempfile
import uuid
from dataclasses import dataclass, field
from typing import AsyncGenerator, Dict, List

# Point the app at SQLite before anything imports talbiyah.database
_tmp = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
_tmp.close()
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_tmp.name}"

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from talbiyah.config import get_settings

get_settings.cache_clear()

from talbiyah.data.change_feed import ChangeFeed
from talbiyah.data.sql_service import SqlDataService
from talbiyah.database import build_engine, build_session_maker
from talbiyah.kernel.models import (
    Base,
    CurriculumMilestone,
    CurriculumPhase,
    CurriculumStage,
    CurriculumSubject,
)


@dataclass
class SeededCurriculum:
    """Ids of the seeded Quran Reading tree."""

    subject_id: uuid.UUID
    slug: str
    phase_ids: List[uuid.UUID] = field(default_factory=list)
    stage_ids: Dict[uuid.UUID, List[uuid.UUID]] = field(default_factory=dict)
    milestone_ids: Dict[uuid.UUID, List[uuid.UUID]] = field(default_factory=dict)

    def phase_milestones(self, phase_index: int) -> List[uuid.UUID]:
        phase_id = self.phase_ids[phase_index]
        return [m for stage_id in self.stage_ids[phase_id] for m in self.milestone_ids[stage_id]]


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Create a fresh SQLite database for one test."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'progress.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    async with build_session_maker(db_engine)() as session:
        yield session
        await session.rollback()


@pytest.fixture
def change_feed() -> ChangeFeed:
    feed = ChangeFeed()
    yield feed
    feed.close()


@pytest.fixture
def student_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def teacher_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest_asyncio.fixture
async def data_service(db_session: AsyncSession, change_feed: ChangeFeed, teacher_id) -> SqlDataService:
    return SqlDataService(db_session, identity=teacher_id, change_feed=change_feed)


async def seed_curriculum(session: AsyncSession) -> SeededCurriculum:
    """
    Quran Reading: Phase 1 has two stages with [2, 3] milestones, Phase 2 has
    one stage with 2 milestones.
    """
    subject = CurriculumSubject(
        name="Quran Reading",
        name_arabic="قراءة القرآن",
        slug="quran-reading",
        icon="book",
    )
    session.add(subject)
    await session.flush()
    seeded = SeededCurriculum(subject_id=subject.id, slug=subject.slug)

    layout = [
        ("Foundations", [("Arabic Letters", 2), ("Harakat", 3)]),
        ("Fluency", [("Short Surahs", 2)]),
    ]
    for phase_order, (phase_name, stages) in enumerate(layout, start=1):
        phase = CurriculumPhase(
            subject_id=subject.id,
            name=phase_name,
            slug=phase_name.lower(),
            sort_order=phase_order,
            estimated_hours=10,
        )
        session.add(phase)
        await session.flush()
        seeded.phase_ids.append(phase.id)
        seeded.stage_ids[phase.id] = []
        for stage_order, (stage_name, count) in enumerate(stages, start=1):
            stage = CurriculumStage(phase_id=phase.id, name=stage_name, sort_order=stage_order)
            session.add(stage)
            await session.flush()
            seeded.stage_ids[phase.id].append(stage.id)
            seeded.milestone_ids[stage.id] = []
            for m in range(1, count + 1):
                milestone = CurriculumMilestone(
                    stage_id=stage.id,
                    name=f"{stage_name} {m}",
                    sort_order=m,
                    pillar="itqan",
                )
                session.add(milestone)
                await session.flush()
                seeded.milestone_ids[stage.id].append(milestone.id)

    await session.commit()
    return seeded


@pytest_asyncio.fixture
async def curriculum(db_session: AsyncSession) -> SeededCurriculum:
    return await seed_curriculum(db_session)
