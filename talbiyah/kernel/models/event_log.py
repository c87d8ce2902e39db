"""
Append-only history of progress transitions.

Progress rows are updated in place; this table is the durable record of
what changed, when, and who did it.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from talbiyah.kernel.models.base import Base, generate_uuid, utcnow


class EventType(str, Enum):
    """All event types for the progress history."""

    # Milestone events
    MILESTONE_STARTED = "milestone.started"
    MILESTONE_SUBMITTED = "milestone.submitted_for_verification"
    MILESTONE_VERIFIED = "milestone.verified"
    MILESTONE_QUICK_VERIFIED = "milestone.quick_verified"
    MILESTONE_REJECTED = "milestone.rejected"

    # Curriculum position
    CURRICULUM_POSITION_CHANGED = "curriculum.position_changed"

    # Surah events
    SURAH_PRACTICED = "surah.practiced"
    SURAH_PROGRESS_UPDATED = "surah.progress_updated"
    SURAH_COMPLETED = "surah.completed"


class ProgressEvent(Base):
    """
    Immutable progress history entry.

    This table is append-only - no updates or deletes allowed.
    """

    __tablename__ = "progress_events"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)

    event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    # Entity reference
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)

    student_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    # Null for rejections and system events
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(nullable=True)

    from_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    to_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        index=True,
    )

    __table_args__ = (
        Index("ix_progress_events_entity", "entity_type", "entity_id"),
        Index("ix_progress_events_student_time", "student_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<ProgressEvent {self.event_type} {self.entity_type}:{self.entity_id}>"
