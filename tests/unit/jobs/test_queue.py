"""Tests for enqueue-then-notify."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from jsongen.errors import ValidationError
from jsongen.jobs.dispatcher import DrainSummary
from jsongen.jobs.queue import GenerationQueue
from jsongen.repositories.jobs import InMemoryJobRepository


@pytest.fixture
def store():
    return InMemoryJobRepository()


@pytest.fixture
def dispatcher():
    mock = MagicMock()
    mock.drain = AsyncMock(return_value=DrainSummary())
    return mock


class TestGenerationQueue:
    @pytest.mark.asyncio
    async def test_enqueue_persists_then_drains(self, store, dispatcher):
        queue = GenerationQueue(store, dispatcher)

        job_id = await queue.enqueue("Generate 3 users")
        await queue.wait_idle()

        assert (await store.get(job_id)) is not None
        dispatcher.drain.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_invalid_prompt_skips_notify(self, store, dispatcher):
        queue = GenerationQueue(store, dispatcher)

        with pytest.raises(ValidationError):
            await queue.enqueue("")
        await queue.wait_idle()

        dispatcher.drain.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_eager_disabled(self, store, dispatcher):
        queue = GenerationQueue(store, dispatcher, eager=False)

        await queue.enqueue("Generate 3 users")
        await queue.wait_idle()

        dispatcher.drain.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_notify_during_drain_reruns_once(self, store, dispatcher):
        release = asyncio.Event()
        calls = 0

        async def slow_drain():
            nonlocal calls
            calls += 1
            if calls == 1:
                await release.wait()
            return DrainSummary()

        dispatcher.drain = AsyncMock(side_effect=slow_drain)
        queue = GenerationQueue(store, dispatcher)

        await queue.enqueue("first")
        await asyncio.sleep(0)
        await queue.enqueue("second")
        await queue.enqueue("third")
        release.set()
        await queue.wait_idle()

        assert calls == 2

    @pytest.mark.asyncio
    async def test_drain_failure_is_contained(self, store, dispatcher):
        dispatcher.drain = AsyncMock(side_effect=RuntimeError("db down"))
        queue = GenerationQueue(store, dispatcher)

        job_id = await queue.enqueue("Generate 3 users")
        await queue.wait_idle()

        assert (await store.get(job_id)) is not None

    @pytest.mark.asyncio
    async def test_close_cancels_inflight_drain(self, store, dispatcher):
        started = asyncio.Event()

        async def hang():
            started.set()
            await asyncio.Event().wait()

        dispatcher.drain = AsyncMock(side_effect=hang)
        queue = GenerationQueue(store, dispatcher)
        await queue.enqueue("p")
        await started.wait()

        await queue.close()

        assert not queue._tasks
