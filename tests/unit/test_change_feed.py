"""Unit tests for the change feed and ProgressScope."""

import asyncio

import pytest

from talbiyah.data.change_feed import ChangeEvent, ChangeFeed
from talbiyah.engines.progress.scope import ProgressScope


def event(collection="student_milestone_progress", **record) -> ChangeEvent:
    return ChangeEvent(collection=collection, operation="update", record=record)


class TestChangeFeed:
    def test_filter_matching(self):
        feed = ChangeFeed()
        received = []
        feed.subscribe("student_milestone_progress", {"student_id": "s1"}, received.append)

        assert feed.publish(event(student_id="s1")) == 1
        assert feed.publish(event(student_id="s2")) == 0
        assert feed.publish(event("lessons", student_id="s1")) == 0
        assert len(received) == 1

    def test_unsubscribe(self):
        feed = ChangeFeed()
        received = []
        sub = feed.subscribe("lessons", None, received.append)
        sub.unsubscribe()
        assert not sub.active
        assert feed.publish(event("lessons")) == 0
        assert feed.subscription_count == 0

    def test_failing_subscriber_isolated(self):
        feed = ChangeFeed()
        received = []

        def broken(_):
            raise RuntimeError("subscriber bug")

        feed.subscribe("lessons", None, broken)
        feed.subscribe("lessons", None, received.append)
        assert feed.publish(event("lessons")) == 2
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_async_callbacks_drained(self):
        feed = ChangeFeed()
        received = []

        async def on_change(e):
            await asyncio.sleep(0)
            received.append(e)

        feed.subscribe("lessons", None, on_change)
        feed.publish(event("lessons"))
        await feed.drain()
        assert len(received) == 1

    def test_close_removes_subscriptions(self):
        feed = ChangeFeed()
        sub = feed.subscribe("lessons", None, lambda e: None)
        feed.close()
        assert not sub.active
        assert feed.subscription_count == 0


class TestProgressScope:
    @pytest.mark.asyncio
    async def test_close_cancels_pending_loads(self):
        gate = asyncio.Event()

        async def slow_load():
            await gate.wait()
            return "snapshot"

        async with ProgressScope() as scope:
            task = scope.spawn(slow_load())
        assert scope.closed
        assert task.cancelled()

    @pytest.mark.asyncio
    async def test_finished_loads_return(self):
        async def load():
            return 42

        async with ProgressScope() as scope:
            assert await scope.spawn(load()) == 42

    @pytest.mark.asyncio
    async def test_close_unsubscribes(self):
        feed = ChangeFeed()
        received = []
        async with ProgressScope() as scope:
            scope.track(feed.subscribe("lessons", None, received.append))
            feed.publish(event("lessons"))
        feed.publish(event("lessons"))
        assert len(received) == 1
        assert feed.subscription_count == 0

    @pytest.mark.asyncio
    async def test_closed_scope_refuses_work(self):
        scope = ProgressScope()
        await scope.close()

        async def load():
            return None

        with pytest.raises(RuntimeError):
            scope.spawn(load())

        feed = ChangeFeed()
        sub = feed.subscribe("lessons", None, lambda e: None)
        with pytest.raises(RuntimeError):
            scope.track(sub)
        assert not sub.active
