"""
Pydantic schemas for curriculum progress views and milestone actions.
"""

import uuid
from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class SubjectSummary(BaseModel):
    id: uuid.UUID
    name: str
    name_arabic: Optional[str] = None
    slug: str
    icon: Optional[str] = None
    color: Optional[str] = None


class OverviewView(BaseModel):
    """Single progress bar: cached overall percentage and current phase name."""

    variant: Literal["overview"] = "overview"
    subject: SubjectSummary
    overall_progress_percentage: int
    current_phase_name: str
    status_label: str


class CompactPhaseRow(BaseModel):
    phase_id: uuid.UUID
    name: str
    progress_percentage: int
    is_current: bool = False


class CompactView(BaseModel):
    """One row per phase."""

    variant: Literal["compact"] = "compact"
    subject: SubjectSummary
    phases: List[CompactPhaseRow] = []


class MilestoneView(BaseModel):
    id: uuid.UUID
    name: str
    name_arabic: Optional[str] = None
    description: Optional[str] = None
    pillar: Optional[str] = None
    verification_criteria: Optional[str] = None
    status: str
    status_label: str
    progress_percentage: int = 0
    verified_at: Optional[datetime] = None
    verification_notes: Optional[str] = None


class StageView(BaseModel):
    id: uuid.UUID
    name: str
    name_arabic: Optional[str] = None
    progress_percentage: int
    is_current: bool = False
    is_expanded: bool = False
    milestones: List[MilestoneView] = []


class PhaseView(BaseModel):
    id: uuid.UUID
    name: str
    name_arabic: Optional[str] = None
    description: Optional[str] = None
    estimated_hours: Optional[int] = None
    progress_percentage: int
    is_locked: bool = False
    is_current: bool = False
    is_expanded: bool = False
    verified_count: int = 0
    milestone_count: int = 0
    time_to_complete: Optional[str] = None
    stages: List[StageView] = []


class FullView(BaseModel):
    """Tree view with lock flags and auto-expanded phase/stage."""

    variant: Literal["full"] = "full"
    subject: SubjectSummary
    overall_progress_percentage: int
    current_phase_id: Optional[uuid.UUID] = None
    current_stage_id: Optional[uuid.UUID] = None
    phases: List[PhaseView] = []


CurriculumView = Annotated[Union[FullView, CompactView, OverviewView], Field(discriminator="variant")]


class MilestoneProgressResponse(BaseModel):
    """Response model for one student's milestone progress record."""

    student_id: uuid.UUID
    milestone_id: uuid.UUID
    status: str
    progress_percentage: int
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    verified_by: Optional[uuid.UUID] = None
    verification_notes: Optional[str] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class VerifyRequest(BaseModel):
    notes: Optional[str] = Field(None, description="Shown to the student; blank is stored as none")


class RejectRequest(BaseModel):
    notes: Optional[str] = None


class PositionUpdate(BaseModel):
    phase_id: uuid.UUID
    stage_id: Optional[uuid.UUID] = None


class CurriculumProgressResponse(BaseModel):
    student_id: uuid.UUID
    subject_id: uuid.UUID
    current_phase_id: Optional[uuid.UUID] = None
    current_stage_id: Optional[uuid.UUID] = None
    overall_progress_percentage: int
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PendingVerificationItem(BaseModel):
    """Review-queue entry enriched with the milestone it refers to."""

    student_id: uuid.UUID
    milestone_id: uuid.UUID
    milestone_name: Optional[str] = None
    stage_name: Optional[str] = None
    phase_name: Optional[str] = None
    status: str
    progress_percentage: int = 0
    verified_at: Optional[datetime] = None
    verification_notes: Optional[str] = None
    updated_at: Optional[datetime] = None
