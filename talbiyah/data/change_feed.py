"""
In-process change notification stream keyed by collection + equality filter.

The SQL data service publishes here after every successful write; consumers
(e.g. the progress service re-running aggregation) subscribe with a callback.
Callbacks may be plain functions or coroutine functions.
"""

import asyncio
import inspect
import itertools
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

from talbiyah.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    collection: str
    operation: str  # insert | update | delete
    record: Dict[str, Any]


@dataclass
class Subscription:
    """Handle returned by subscribe(); call unsubscribe() to stop receiving events."""

    id: int
    collection: str
    filter: Dict[str, Any]
    callback: Callable[[ChangeEvent], Any]
    _feed: Optional["ChangeFeed"] = field(default=None, repr=False)

    def matches(self, event: ChangeEvent) -> bool:
        if event.collection != self.collection:
            return False
        for key, expected in self.filter.items():
            if str(event.record.get(key)) != str(expected):
                return False
        return True

    @property
    def active(self) -> bool:
        return self._feed is not None

    def unsubscribe(self) -> None:
        if self._feed is not None:
            self._feed._remove(self)
            self._feed = None


class ChangeFeed:
    """Fan-out of change events to matching subscriptions."""

    def __init__(self) -> None:
        self._subscriptions: Dict[int, Subscription] = {}
        self._ids = itertools.count(1)
        self._pending: Set[asyncio.Task] = set()

    def subscribe(
        self,
        collection: str,
        filter: Optional[Dict[str, Any]],
        on_change: Callable[[ChangeEvent], Any],
    ) -> Subscription:
        sub = Subscription(
            id=next(self._ids),
            collection=collection,
            filter=dict(filter or {}),
            callback=on_change,
            _feed=self,
        )
        self._subscriptions[sub.id] = sub
        logger.debug("Subscribed", extra={"collection": collection, "subscription_id": sub.id})
        return sub

    def _remove(self, sub: Subscription) -> None:
        self._subscriptions.pop(sub.id, None)

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, event: ChangeEvent) -> int:
        """Deliver event to every matching subscription. Returns the number notified."""
        delivered = 0
        # Copy to allow unsubscribe from inside a callback
        for sub in list(self._subscriptions.values()):
            if not sub.matches(event):
                continue
            delivered += 1
            try:
                result = sub.callback(event)
            except Exception:
                # A failing subscriber must not fail the write that triggered it
                logger.exception(
                    "Change subscriber failed",
                    extra={"collection": event.collection, "subscription_id": sub.id},
                )
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._on_task_done)
        return delivered

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Async change subscriber failed", exc_info=exc)

    async def drain(self) -> None:
        """Wait for callbacks scheduled by publish() to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def close(self) -> None:
        for task in list(self._pending):
            task.cancel()
        for sub in list(self._subscriptions.values()):
            sub.unsubscribe()
