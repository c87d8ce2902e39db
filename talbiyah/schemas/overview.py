"""
Pydantic schemas for the learning overview, weekly chart and history.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from talbiyah.schemas.curriculum import OverviewView
from talbiyah.schemas.surah import SurahStatsResponse


class LearningOverviewResponse(BaseModel):
    student_id: uuid.UUID
    total_hours: float
    completed_lessons: int
    lessons_this_month: int
    current_streak: int
    milestones_verified: int
    encouragement: str
    surah_stats: SurahStatsResponse
    curriculum: Optional[OverviewView] = None


class WeeklyChartPoint(BaseModel):
    week_start: datetime
    label: str
    hours: float
    lessons: int
    milestones: int


class WeeklyChartResponse(BaseModel):
    student_id: uuid.UUID
    period: str
    weeks: List[WeeklyChartPoint] = []


class ProgressEventResponse(BaseModel):
    """One history entry."""

    id: uuid.UUID
    event_type: str
    entity_type: str
    entity_id: str
    student_id: uuid.UUID
    actor_id: Optional[uuid.UUID] = None
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    payload: Dict[str, Any] = {}
    created_at: datetime

    class Config:
        from_attributes = True
