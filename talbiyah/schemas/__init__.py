"""
Pydantic schemas for API request/response validation.
"""

from talbiyah.schemas.common import (
    ErrorResponse,
    HealthResponse,
    SuccessResponse,
)
from talbiyah.schemas.curriculum import (
    CompactView,
    CurriculumProgressResponse,
    CurriculumView,
    FullView,
    MilestoneProgressResponse,
    OverviewView,
    PendingVerificationItem,
    PositionUpdate,
    RejectRequest,
    VerifyRequest,
)
from talbiyah.schemas.overview import (
    LearningOverviewResponse,
    ProgressEventResponse,
    WeeklyChartResponse,
)
from talbiyah.schemas.surah import (
    StudentSurahsResponse,
    SurahCountersUpdate,
    SurahPracticeRequest,
    SurahProgressResponse,
)

__all__ = [
    # Common
    "ErrorResponse",
    "HealthResponse",
    "SuccessResponse",
    # Curriculum
    "CompactView",
    "CurriculumProgressResponse",
    "CurriculumView",
    "FullView",
    "MilestoneProgressResponse",
    "OverviewView",
    "PendingVerificationItem",
    "PositionUpdate",
    "RejectRequest",
    "VerifyRequest",
    # Overview
    "LearningOverviewResponse",
    "ProgressEventResponse",
    "WeeklyChartResponse",
    # Surahs
    "StudentSurahsResponse",
    "SurahCountersUpdate",
    "SurahPracticeRequest",
    "SurahProgressResponse",
]
