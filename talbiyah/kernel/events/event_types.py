"""
Event payload definitions using Pydantic for validation.

These are the payload schemas for entries in the progress history.
"""

import uuid
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict


class BaseEvent(BaseModel):
    """Base event payload structure."""

    model_config = ConfigDict(extra="allow")


class MilestoneTransitionEvent(BaseEvent):
    """Milestone status change."""

    milestone_id: uuid.UUID
    subject_id: Optional[uuid.UUID] = None
    notes: Optional[str] = None
    progress_percentage: Optional[int] = None


class PositionChangedEvent(BaseEvent):
    """Explicit move of a student's current phase/stage pointer."""

    subject_id: uuid.UUID
    previous_phase_id: Optional[uuid.UUID] = None
    previous_stage_id: Optional[uuid.UUID] = None
    phase_id: Optional[uuid.UUID] = None
    stage_id: Optional[uuid.UUID] = None


class SurahProgressEvent(BaseEvent):
    """Ayah counters logged for a surah."""

    surah_number: int
    counters: Dict[str, int] = {}
    total_ayat: int
