"""
FastAPI dependencies for identity, database sessions and engine services.

Authentication happens upstream: the gateway forwards the authenticated user
id in X-User-Id. Handlers receive it as a value and pass it explicitly into
engine calls.
"""

import uuid
from typing import Annotated, AsyncGenerator, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from talbiyah.config import get_settings
from talbiyah.data import service as collections
from talbiyah.data.change_feed import ChangeFeed
from talbiyah.data.sql_service import SqlDataService
from talbiyah.database import get_db
from talbiyah.engines.progress.hierarchy_store import HierarchyCache
from talbiyah.engines.progress.progress_service import CurriculumProgressService
from talbiyah.orchestration.state_machine import VerificationWorkflow

DbSession = Annotated[AsyncSession, Depends(get_db)]


async def get_current_user_id(
    x_user_id: Annotated[Optional[str], Header()] = None,
) -> uuid.UUID:
    """Identity forwarded by the gateway, or 401."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    try:
        return uuid.UUID(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user id",
        )


CurrentUserId = Annotated[uuid.UUID, Depends(get_current_user_id)]


def get_change_feed(request: Request) -> ChangeFeed:
    """Process-wide change feed (created in the app lifespan)."""
    feed = getattr(request.app.state, "change_feed", None)
    if feed is None:
        feed = ChangeFeed()
        request.app.state.change_feed = feed
    return feed


def get_hierarchy_cache(request: Request) -> Optional[HierarchyCache]:
    if not get_settings().hierarchy_cache_enabled:
        return None
    cache = getattr(request.app.state, "hierarchy_cache", None)
    if cache is None:
        cache = HierarchyCache()
        request.app.state.hierarchy_cache = cache
    return cache


async def get_data_service(
    db: DbSession,
    user_id: CurrentUserId,
    feed: Annotated[ChangeFeed, Depends(get_change_feed)],
) -> AsyncGenerator[SqlDataService, None]:
    """Data service for one request; commits and publishes its changes when the handler succeeds."""
    disabled = () if get_settings().curriculum_enabled else collections.CURRICULUM_COLLECTIONS
    data = SqlDataService(db, identity=user_id, change_feed=feed, disabled_collections=disabled)
    yield data
    await data.commit()


Data = Annotated[SqlDataService, Depends(get_data_service)]


async def get_progress_service(
    data: Data,
    cache: Annotated[Optional[HierarchyCache], Depends(get_hierarchy_cache)],
) -> CurriculumProgressService:
    return CurriculumProgressService(data, hierarchy_cache=cache)


async def get_workflow(
    data: Data,
    cache: Annotated[Optional[HierarchyCache], Depends(get_hierarchy_cache)],
) -> VerificationWorkflow:
    return VerificationWorkflow(data, hierarchy_cache=cache)


ProgressService = Annotated[CurriculumProgressService, Depends(get_progress_service)]
Workflow = Annotated[VerificationWorkflow, Depends(get_workflow)]
