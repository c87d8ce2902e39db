"""
Learning stats - lesson-derived figures shown alongside curriculum progress.

- Streak: consecutive weeks with a completed lesson (max 52 weeks back)
- Weekly chart: hours / lessons / verified milestones bucketed by week
- Labels: progress status and milestone status display config
- Encouragement message and time-to-complete estimate
"""

import math
from datetime import datetime, time, timedelta, timezone
from typing import Iterable, List, Optional, Sequence

from pydantic import BaseModel

from talbiyah.engines.progress.types import LessonRecord, MilestoneProgress, MilestoneStatus

WEEK = timedelta(days=7)
MAX_STREAK_LOOKBACK_WEEKS = 52

CHART_PERIOD_DAYS = {"week": 7, "month": 30, "year": 365}


def _utc(value: datetime) -> datetime:
    # SQLite hands timestamps back naive; they are stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _now(now: Optional[datetime]) -> datetime:
    return _utc(now) if now is not None else datetime.now(timezone.utc)


class ProgressStatusLabel(BaseModel):
    label: str
    color: str


class MilestoneStatusConfig(BaseModel):
    label: str
    icon: str
    color: str


class WeeklyBucket(BaseModel):
    week_start: datetime
    label: str
    hours: float
    lessons: int
    milestones: int


class ProgressOverviewStats(BaseModel):
    """Lesson totals for the overview card."""

    total_hours: float = 0.0
    completed_lessons: int = 0
    lessons_this_month: int = 0
    current_streak: int = 0


def round_hours(minutes: int) -> float:
    """Minutes to hours, one decimal place."""
    return math.floor(minutes / 6 + 0.5) / 10


def format_hours(minutes: int) -> str:
    if minutes < 60:
        return f"{minutes} min"
    return f"{minutes / 60:.1f}h"


def calculate_streak(lesson_dates: Iterable[datetime], now: Optional[datetime] = None) -> int:
    """
    Consecutive weeks, counting back from now, that contain a lesson.

    The current week is the last seven days; without a lesson in it the
    streak is 0.
    """
    dates = [_utc(d) for d in lesson_dates]
    if not dates:
        return 0
    current = _now(now)
    check = current - WEEK
    if not any(d >= check for d in dates):
        return 0

    streak = 1
    for _ in range(MAX_STREAK_LOOKBACK_WEEKS):
        week_start = check - WEEK
        if any(week_start <= d < check for d in dates):
            streak += 1
            check = week_start
        else:
            break
    return streak


def overview_stats(lessons: Sequence[LessonRecord], now: Optional[datetime] = None) -> ProgressOverviewStats:
    current = _now(now)
    month_start = current.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    total_minutes = sum(lesson.duration_minutes for lesson in lessons)
    dates = [_utc(lesson.scheduled_time) for lesson in lessons]
    return ProgressOverviewStats(
        total_hours=round_hours(total_minutes),
        completed_lessons=len(lessons),
        lessons_this_month=sum(1 for d in dates if d >= month_start),
        current_streak=calculate_streak(dates, now=current),
    )


def _week_starts(start: datetime, end: datetime) -> List[datetime]:
    # Weeks begin on Sunday at midnight UTC
    first = datetime.combine(start.date(), time.min, tzinfo=timezone.utc)
    first -= timedelta(days=(first.weekday() + 1) % 7)
    starts = []
    while first <= end:
        starts.append(first)
        first += WEEK
    return starts


def weekly_chart(
    lessons: Sequence[LessonRecord],
    verified: Sequence[MilestoneProgress],
    period: str = "month",
    now: Optional[datetime] = None,
) -> List[WeeklyBucket]:
    """Bucket completed lessons and verified milestones by week over the period."""
    if period not in CHART_PERIOD_DAYS:
        raise ValueError(f"Unknown chart period: {period}")
    current = _now(now)
    start = current - timedelta(days=CHART_PERIOD_DAYS[period])

    lesson_points = [(_utc(lesson.scheduled_time), lesson.duration_minutes) for lesson in lessons]
    verified_points = [
        _utc(p.verified_at)
        for p in verified
        if p.verified_at is not None and p.status == MilestoneStatus.VERIFIED
    ]

    buckets = []
    for week_start in _week_starts(start, current):
        week_end = week_start + WEEK
        week_lessons = [m for d, m in lesson_points if start <= d and week_start <= d < week_end]
        milestones = sum(1 for d in verified_points if start <= d and week_start <= d < week_end)
        buckets.append(
            WeeklyBucket(
                week_start=week_start,
                label=f"{week_start:%b} {week_start.day}",
                hours=round_hours(sum(week_lessons)),
                lessons=len(week_lessons),
                milestones=milestones,
            )
        )
    return buckets


def progress_status(percentage: int) -> ProgressStatusLabel:
    if percentage <= 0:
        return ProgressStatusLabel(label="Not Started", color="gray")
    if percentage < 25:
        return ProgressStatusLabel(label="Just Started", color="blue")
    if percentage < 50:
        return ProgressStatusLabel(label="In Progress", color="blue")
    if percentage < 75:
        return ProgressStatusLabel(label="Good Progress", color="emerald")
    if percentage < 100:
        return ProgressStatusLabel(label="Almost There", color="amber")
    return ProgressStatusLabel(label="Complete", color="emerald")


def milestone_status_config(status) -> MilestoneStatusConfig:
    try:
        status = MilestoneStatus(status)
    except ValueError:
        status = MilestoneStatus.NOT_STARTED
    if status in (MilestoneStatus.VERIFIED, MilestoneStatus.MASTERED):
        return MilestoneStatusConfig(label="Verified", icon="check-circle", color="emerald")
    if status == MilestoneStatus.PENDING_VERIFICATION:
        return MilestoneStatusConfig(label="Pending Review", icon="clock", color="amber")
    if status == MilestoneStatus.IN_PROGRESS:
        return MilestoneStatusConfig(label="In Progress", icon="circle", color="blue")
    return MilestoneStatusConfig(label="Not Started", icon="circle-dashed", color="gray")


def encouragement_message(
    *,
    total_hours: float,
    streak: int,
    milestones_verified: int,
    ayat_memorized: int,
) -> str:
    # First match wins
    if streak >= 4:
        return "Amazing consistency! You're building a beautiful habit of learning."
    if milestones_verified >= 10:
        return "Your dedication is paying off! Keep reaching for new milestones."
    if ayat_memorized >= 50:
        return "MashaAllah! Your memorization journey is truly inspiring."
    if total_hours >= 20:
        return "Your commitment to learning is remarkable. Keep going!"
    if streak >= 2:
        return "Great job maintaining your learning streak!"
    if total_hours >= 5:
        return "You're making wonderful progress. Every minute counts!"
    return "Every journey starts with a single step. You've got this!"


def estimate_time_to_complete(
    remaining_milestones: int,
    lessons_per_milestone: int = 2,
    lessons_per_week: int = 2,
) -> str:
    """Rough calendar estimate for the remaining milestones of a phase."""
    weeks = math.ceil(remaining_milestones * lessons_per_milestone / lessons_per_week)
    if weeks <= 1:
        return "This week"
    if weeks <= 4:
        return f"~{weeks} weeks"
    months = math.ceil(weeks / 4)
    return f"~{months} month{'s' if months > 1 else ''}"
