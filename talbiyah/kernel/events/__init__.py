"""
Progress history infrastructure.

Provides append-only logging of progress transitions.
"""

from talbiyah.kernel.events.event_store import EventStore
from talbiyah.kernel.events.event_types import (
    BaseEvent,
    MilestoneTransitionEvent,
    PositionChangedEvent,
    SurahProgressEvent,
)

__all__ = [
    "EventStore",
    "BaseEvent",
    "MilestoneTransitionEvent",
    "PositionChangedEvent",
    "SurahProgressEvent",
]
