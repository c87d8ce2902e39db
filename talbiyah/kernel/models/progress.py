"""
Per-student progress models.

- StudentMilestoneProgress: one row per (student, milestone), created lazily
- StudentCurriculumProgress: denormalized per-subject cache, recomputable from milestone rows
- StudentSurahProgress: three-pillar ayah counters per (student, surah)
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from talbiyah.kernel.models.base import Base, TimestampMixin, generate_uuid


class StudentMilestoneProgress(Base, TimestampMixin):
    """Status of one milestone for one student."""

    __tablename__ = "student_milestone_progress"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    student_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    milestone_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("curriculum_milestones.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    status: Mapped[str] = mapped_column(String(30), nullable=False, default="not_started")
    progress_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    verified_by: Mapped[Optional[uuid.UUID]] = mapped_column(nullable=True)
    verification_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("student_id", "milestone_id", name="uq_student_milestone_progress_student_milestone"),
        Index("ix_student_milestone_progress_status_updated", "status", "updated_at"),
    )


class StudentCurriculumProgress(Base, TimestampMixin):
    """Cached position and overall percentage of a student within a subject."""

    __tablename__ = "student_curriculum_progress"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    student_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    subject_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("curriculum_subjects.id", ondelete="CASCADE"),
        nullable=False,
    )
    current_phase_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("curriculum_phases.id", ondelete="SET NULL"),
        nullable=True,
    )
    current_stage_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("curriculum_stages.id", ondelete="SET NULL"),
        nullable=True,
    )
    overall_progress_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("student_id", "subject_id", name="uq_student_curriculum_progress_student_subject"),
    )


class StudentSurahProgress(Base, TimestampMixin):
    """Understanding / fluency / memorization ayah counters for one surah."""

    __tablename__ = "student_surah_progress"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    student_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    surah_number: Mapped[int] = mapped_column(Integer, nullable=False)
    surah_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    total_ayat: Mapped[int] = mapped_column(Integer, nullable=False)

    fahm_progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    itqan_progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    hifz_progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    fahm_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    itqan_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    hifz_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="not_started")
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("student_id", "surah_number", name="uq_student_surah_progress_student_surah"),
    )


class Lesson(Base, TimestampMixin):
    """
    Completed/scheduled lesson between a teacher and a learner.

    Owned by the booking side of the platform; the progress engine only reads it
    (learning streak, weekly charts, a teacher's students for the review queue).
    """

    __tablename__ = "lessons"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    learner_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    teacher_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="scheduled")
    scheduled_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
