"""Orchestration layer - milestone verification workflow."""

from talbiyah.orchestration.state_machine import (
    DEFAULT_REJECTION_NOTES,
    InFlightGuard,
    VerificationWorkflow,
    can_transition,
    valid_transitions,
)

__all__ = [
    "DEFAULT_REJECTION_NOTES",
    "InFlightGuard",
    "VerificationWorkflow",
    "can_transition",
    "valid_transitions",
]
