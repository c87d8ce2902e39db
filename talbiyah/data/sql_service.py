"""
SQLAlchemy-backed implementation of the external data service.

One instance wraps one AsyncSession. An AsyncSession does not allow
concurrent operations, so calls are serialized with an asyncio.Lock; callers
may still issue loads concurrently with asyncio.gather.

Each write runs in its own savepoint and is flushed, so a constraint failure
surfaces as PersistenceError at the call site and undoes only that write.
Change notifications are held until commit() succeeds; an outer rollback
discards them.
"""

import asyncio
import uuid
from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple, Type

from sqlalchemy import event, inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from talbiyah.data import service as collections
from talbiyah.data.change_feed import ChangeEvent, ChangeFeed, Subscription
from talbiyah.data.service import ChangeCallback, Record
from talbiyah.errors import CurriculumUnsupportedError, PersistenceError
from talbiyah.kernel.models import (
    Base,
    CurriculumMilestone,
    CurriculumPhase,
    CurriculumStage,
    CurriculumSubject,
    Lesson,
    ProgressEvent,
    StudentCurriculumProgress,
    StudentMilestoneProgress,
    StudentSurahProgress,
)
from talbiyah.logging_config import get_logger

logger = get_logger(__name__)

MODELS: Dict[str, Type[Base]] = {
    collections.SUBJECTS: CurriculumSubject,
    collections.PHASES: CurriculumPhase,
    collections.STAGES: CurriculumStage,
    collections.MILESTONES: CurriculumMilestone,
    collections.MILESTONE_PROGRESS: StudentMilestoneProgress,
    collections.CURRICULUM_PROGRESS: StudentCurriculumProgress,
    collections.SURAH_PROGRESS: StudentSurahProgress,
    collections.LESSONS: Lesson,
    collections.PROGRESS_EVENTS: ProgressEvent,
}


class SqlDataService:
    """DataService over an AsyncSession."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        identity: Optional[uuid.UUID] = None,
        change_feed: Optional[ChangeFeed] = None,
        disabled_collections: Iterable[str] = (),
    ):
        self.session = session
        self._identity = identity
        self.change_feed = change_feed or ChangeFeed()
        self._disabled: FrozenSet[str] = frozenset(disabled_collections)
        self._table_exists: Dict[str, bool] = {}
        self._lock = asyncio.Lock()
        self._unpublished: List[ChangeEvent] = []
        event.listen(session.sync_session, "after_rollback", self._on_rollback)

    # ------------------------------------------------------------------ helpers

    def _model(self, collection: str) -> Type[Base]:
        model = MODELS.get(collection)
        if model is None or collection in self._disabled:
            raise CurriculumUnsupportedError(collection)
        return model

    @staticmethod
    def _column(model: Type[Base], name: str):
        column = model.__table__.columns.get(name)
        if column is None:
            raise PersistenceError(
                f"Unknown field {name!r} on {model.__tablename__}",
                details={"collection": model.__tablename__, "field": name},
            )
        return getattr(model, name)

    async def _execute(self, stmt, collection: str):
        try:
            return await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error("Query failed", extra={"collection": collection, "error": str(e)})
            raise PersistenceError(
                f"Query on {collection} failed",
                details={"collection": collection},
            ) from e

    # ------------------------------------------------------------ capabilities

    async def supports(self, collection: str) -> bool:
        if collection not in MODELS or collection in self._disabled:
            return False
        if collection not in self._table_exists:
            async with self._lock:
                try:
                    exists = await self.session.run_sync(
                        lambda sync_session: inspect(sync_session.connection()).has_table(collection)
                    )
                except SQLAlchemyError as e:
                    raise PersistenceError(
                        f"Could not inspect {collection}",
                        details={"collection": collection},
                    ) from e
            self._table_exists[collection] = exists
        return self._table_exists[collection]

    def current_identity(self) -> Optional[uuid.UUID]:
        return self._identity

    # ------------------------------------------------------------------- reads

    async def fetch_by_slug(self, collection: str, slug: str) -> Optional[Record]:
        return await self.fetch_one(collection, {"slug": slug})

    async def fetch_by_parent_ids(
        self,
        collection: str,
        parent_id_field: str,
        parent_ids: Iterable[uuid.UUID],
        order_by: str,
    ) -> List[Record]:
        ids = list(parent_ids)
        if not ids:
            return []
        return await self.fetch_many(collection, in_filters={parent_id_field: ids}, order_by=order_by)

    async def fetch_one(self, collection: str, filters: Dict[str, Any]) -> Optional[Record]:
        model = self._model(collection)
        stmt = select(model)
        for name, value in filters.items():
            stmt = stmt.where(self._column(model, name) == value)
        async with self._lock:
            result = await self._execute(stmt.limit(1), collection)
            row = result.scalars().first()
        return row.to_record() if row is not None else None

    async def fetch_many(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
        *,
        in_filters: Optional[Dict[str, Iterable[Any]]] = None,
        since: Optional[Tuple[str, datetime]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Record]:
        model = self._model(collection)
        stmt = select(model)
        for name, value in (filters or {}).items():
            stmt = stmt.where(self._column(model, name) == value)
        for name, values in (in_filters or {}).items():
            values = list(values)
            if not values:
                return []
            stmt = stmt.where(self._column(model, name).in_(values))
        if since is not None:
            field_name, threshold = since
            stmt = stmt.where(self._column(model, field_name) >= threshold)
        if order_by:
            column = self._column(model, order_by)
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._lock:
            result = await self._execute(stmt, collection)
            rows = list(result.scalars().all())
        return [row.to_record() for row in rows]

    # ------------------------------------------------------------------ writes

    async def upsert(self, collection: str, key: Dict[str, Any], patch: Dict[str, Any]) -> Record:
        model = self._model(collection)
        for name in list(key) + list(patch):
            self._column(model, name)

        stmt = select(model)
        for name, value in key.items():
            stmt = stmt.where(getattr(model, name) == value)

        async with self._lock:
            result = await self._execute(stmt.limit(1), collection)
            row = result.scalars().first()
            operation = "update" if row is not None else "insert"
            # A failed write rolls back to its own savepoint; earlier writes in
            # the transaction are kept.
            savepoint = await self.session.begin_nested()
            try:
                if row is None:
                    row = model(**key, **patch)
                    self.session.add(row)
                else:
                    for name, value in patch.items():
                        setattr(row, name, value)
                await self.session.flush()
                await savepoint.commit()
                await self.session.refresh(row)
            except SQLAlchemyError as e:
                if savepoint.is_active:
                    await savepoint.rollback()
                logger.error(
                    "Write failed",
                    extra={"collection": collection, "operation": operation, "error": str(e)},
                )
                raise PersistenceError(
                    f"Write to {collection} failed",
                    details={"collection": collection, "operation": operation},
                ) from e
            record = row.to_record()

        self._unpublished.append(ChangeEvent(collection=collection, operation=operation, record=record))
        return record

    # ------------------------------------------------------------- transaction

    async def commit(self) -> None:
        """Commit the session, then publish the changes it made."""
        async with self._lock:
            try:
                await self.session.commit()
            except SQLAlchemyError as e:
                logger.error("Commit failed", extra={"error": str(e)})
                raise PersistenceError("Commit failed") from e
            changes, self._unpublished = self._unpublished, []
        for change in changes:
            self.change_feed.publish(change)

    def _on_rollback(self, session) -> None:
        # Fired for savepoints too; only an outer rollback discards changes
        if session.get_nested_transaction() is not None:
            return
        if self._unpublished:
            logger.debug("Discarding unpublished changes", extra={"count": len(self._unpublished)})
        self._unpublished = []

    # ----------------------------------------------------------------- realtime

    def subscribe(
        self,
        collection: str,
        filter: Optional[Dict[str, Any]],
        on_change: ChangeCallback,
    ) -> Subscription:
        return self.change_feed.subscribe(collection, filter, on_change)
