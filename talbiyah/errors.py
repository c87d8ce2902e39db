"""
Error taxonomy for the curriculum progress engine.

- NotFoundError: a referenced subject/phase/stage/milestone/record does not exist
- InvalidTransitionError: verification state machine precondition violated
- PersistenceError: the data service call failed; no cached aggregate was touched
- DataInvariantError: upstream data is corrupt (counter above total, completion flag disagreeing with counter)
- CurriculumUnsupportedError: curriculum collections are not available in the store
- OperationInProgressError: an action for the same (student, milestone) is still running
"""

from typing import Any, Dict, Optional


class ProgressEngineError(Exception):
    """Base class for all engine errors."""

    code = "PROGRESS_ENGINE_ERROR"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(ProgressEngineError):
    code = "NOT_FOUND"

    def __init__(self, collection: str, key: Any):
        super().__init__(
            f"{collection} not found: {key}",
            details={"collection": collection, "key": str(key)},
        )
        self.collection = collection
        self.key = key


class InvalidTransitionError(ProgressEngineError):
    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str):
        super().__init__(
            f"Invalid transition: {from_status} -> {to_status}",
            details={"from_status": from_status, "to_status": to_status},
        )
        self.from_status = from_status
        self.to_status = to_status


class PersistenceError(ProgressEngineError):
    code = "PERSISTENCE_ERROR"


class DataInvariantError(ProgressEngineError):
    code = "DATA_INVARIANT_VIOLATION"


class CurriculumUnsupportedError(ProgressEngineError):
    code = "CURRICULUM_UNSUPPORTED"

    def __init__(self, collection: str):
        super().__init__(
            f"Collection {collection} is not available in the data service",
            details={"collection": collection},
        )
        self.collection = collection


class OperationInProgressError(ProgressEngineError):
    code = "OPERATION_IN_PROGRESS"
