"""
Lifetime binding for background loads and change subscriptions.

A view that starts a long hierarchy load or subscribes to change
notifications does so through a ProgressScope; leaving the scope cancels
whatever is still pending so no result is delivered to a consumer that has
gone away.
"""

import asyncio
from typing import Any, Coroutine, List, Set, TypeVar

from talbiyah.data.change_feed import Subscription
from talbiyah.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class ProgressScope:
    """
    Usage:
        async with ProgressScope() as scope:
            task = scope.spawn(service.load_snapshot(student_id, "quran-reading"))
            service.watch(student_id, "quran-reading", on_update, scope)
            scope.track(*other_subscriptions)
            snapshot = await task
    """

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()
        self._subscriptions: List[Subscription] = []
        self._closed = False

    async def __aenter__(self) -> "ProgressScope":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def spawn(self, coro: Coroutine[Any, Any, T]) -> "asyncio.Task[T]":
        if self._closed:
            coro.close()
            raise RuntimeError("scope is closed")
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def track(self, *subscriptions: Subscription) -> None:
        if self._closed:
            for sub in subscriptions:
                sub.unsubscribe()
            raise RuntimeError("scope is closed")
        self._subscriptions.extend(subscriptions)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for sub in self._subscriptions:
            sub.unsubscribe()
        self._subscriptions.clear()
        pending = [t for t in self._tasks if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.debug("Cancelled pending loads", extra={"count": len(pending)})
