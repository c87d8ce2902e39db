"""
Curriculum reference data: Subject -> Phase -> Stage -> Milestone.

Authored by content administrators; read-only for students and teachers.
"""

import uuid
from typing import Optional

from sqlalchemy import ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from talbiyah.kernel.models.base import Base, TimestampMixin, generate_uuid


class CurriculumSubject(Base, TimestampMixin):
    """Top-level curriculum track, e.g. Quran Reading."""

    __tablename__ = "curriculum_subjects"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    name_arabic: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    icon: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    color: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)


class CurriculumPhase(Base, TimestampMixin):
    """Ordered subdivision of a subject."""

    __tablename__ = "curriculum_phases"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    subject_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("curriculum_subjects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    name_arabic: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    slug: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    estimated_hours: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        UniqueConstraint("subject_id", "sort_order", name="uq_curriculum_phases_subject_order"),
    )


class CurriculumStage(Base, TimestampMixin):
    """Ordered subdivision of a phase."""

    __tablename__ = "curriculum_stages"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    phase_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("curriculum_phases.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    name_arabic: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    slug: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class CurriculumMilestone(Base, TimestampMixin):
    """Atomic, teacher-verifiable unit of progress."""

    __tablename__ = "curriculum_milestones"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    stage_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("curriculum_stages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    name_arabic: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    slug: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pillar: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # fahm | itqan | hifz
    verification_criteria: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
