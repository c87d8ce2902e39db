"""
Event Store service for the append-only progress history.

Every status transition is appended here once the progress write itself has
been accepted by the data service.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from talbiyah.data import service as collections
from talbiyah.data.service import DataService, Record
from talbiyah.kernel.models.event_log import EventType
from talbiyah.logging_config import get_logger

logger = get_logger(__name__)


class EventStore:
    """
    Service for appending to and reading the progress history.

    Usage:
        event_store = EventStore(data_service)
        await event_store.log(
            event_type=EventType.MILESTONE_VERIFIED,
            entity_type="milestone",
            entity_id=milestone_id,
            student_id=student_id,
            actor_id=verifier_id,
            from_status="pending_verification",
            to_status="verified",
        )
    """

    def __init__(self, data: DataService):
        self.data = data

    async def log(
        self,
        event_type: EventType,
        entity_type: str,
        entity_id: Any,
        student_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
        from_status: Optional[str] = None,
        to_status: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Record:
        """
        Append one history entry.

        Args:
            event_type: The type of event
            entity_type: milestone, surah or curriculum
            entity_id: Id of the entity (milestone id, surah number, subject id)
            student_id: Student whose progress changed
            actor_id: Who triggered it; None for rejections and system events
            from_status: Status before the transition
            to_status: Status after the transition
            payload: Additional event data

        Returns:
            The stored record
        """
        event_id = uuid.uuid4()
        record = await self.data.upsert(
            collections.PROGRESS_EVENTS,
            {"id": event_id},
            {
                "event_type": EventType(event_type).value,
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "student_id": student_id,
                "actor_id": actor_id,
                "from_status": from_status,
                "to_status": to_status,
                "payload": self._serialize_payload(payload or {}),
            },
        )
        logger.debug(
            "History event logged",
            extra={"event_type": EventType(event_type).value, "entity_id": str(entity_id)},
        )
        return record

    async def log_from_model(
        self,
        event_type: EventType,
        entity_type: str,
        entity_id: Any,
        student_id: uuid.UUID,
        payload_model: BaseModel,
        actor_id: Optional[uuid.UUID] = None,
        from_status: Optional[str] = None,
        to_status: Optional[str] = None,
    ) -> Record:
        """Log an event using a Pydantic model as payload."""
        return await self.log(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            student_id=student_id,
            actor_id=actor_id,
            from_status=from_status,
            to_status=to_status,
            payload=payload_model.model_dump(mode="json", exclude_none=True),
        )

    async def get_entity_history(self, entity_type: str, entity_id: Any) -> List[Record]:
        """All events for an entity, oldest first."""
        return await self.data.fetch_many(
            collections.PROGRESS_EVENTS,
            {"entity_type": entity_type, "entity_id": str(entity_id)},
            order_by="created_at",
        )

    async def get_student_history(
        self,
        student_id: uuid.UUID,
        since: Optional[datetime] = None,
        limit: int = 50,
    ) -> List[Record]:
        """Most recent events for a student, newest first."""
        return await self.data.fetch_many(
            collections.PROGRESS_EVENTS,
            {"student_id": student_id},
            since=("created_at", since) if since is not None else None,
            order_by="created_at",
            descending=True,
            limit=limit,
        )

    def _serialize_payload(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Convert payload values to JSON-serializable types."""
        result = {}
        for key, value in payload.items():
            if isinstance(value, uuid.UUID):
                result[key] = str(value)
            elif isinstance(value, datetime):
                result[key] = value.isoformat()
            elif isinstance(value, dict):
                result[key] = self._serialize_payload(value)
            elif isinstance(value, list):
                result[key] = [
                    self._serialize_payload(v) if isinstance(v, dict)
                    else str(v) if isinstance(v, uuid.UUID)
                    else v.isoformat() if isinstance(v, datetime)
                    else v
                    for v in value
                ]
            else:
                result[key] = value
        return result
