"""
Pydantic schemas for surah (three pillar) progress API.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class SurahCountersUpdate(BaseModel):
    """Ayah counters to set; omitted pillars keep their stored value."""

    fahm: Optional[int] = Field(None, ge=0, description="Ayat understood")
    itqan: Optional[int] = Field(None, ge=0, description="Ayat read fluently")
    hifz: Optional[int] = Field(None, ge=0, description="Ayat memorized")
    total_ayat: Optional[int] = Field(None, gt=0, description="Defaults to the reference ayah count")


class SurahPracticeRequest(BaseModel):
    """Surahs covered in a lesson."""

    surah_numbers: List[int] = Field(..., min_length=1)


class PillarPercentages(BaseModel):
    fahm: int
    itqan: int
    hifz: int


class SurahProgressResponse(BaseModel):
    student_id: uuid.UUID
    surah_number: int
    surah_name: str
    surah_name_arabic: Optional[str] = None
    total_ayat: int
    fahm_progress: int
    itqan_progress: int
    hifz_progress: int
    fahm_completed: bool
    itqan_completed: bool
    hifz_completed: bool
    status: str
    percentages: PillarPercentages
    overall_percentage: int
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class SurahStatsResponse(BaseModel):
    total_ayat_memorized: int
    total_ayat_understood: int
    total_ayat_fluent: int
    surahs_complete: int
    surahs_in_progress: int


class StudentSurahsResponse(BaseModel):
    student_id: uuid.UUID
    surahs: List[SurahProgressResponse] = []
    stats: SurahStatsResponse
