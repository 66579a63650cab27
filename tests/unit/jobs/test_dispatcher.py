"""Tests for the worker dispatcher."""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from jsongen.errors import GenerationFailure
from jsongen.jobs.dispatcher import DrainSummary, JobOutcome, WorkerDispatcher
from jsongen.jobs.types import JobStatus
from jsongen.repositories.jobs import InMemoryJobRepository
from jsongen.services.generation.engine import GenerationEngine, GenerationResult
from jsongen.services.model_registry import ModelRegistry


class TrackingEngine:
    """Engine stand-in that records how many jobs run at once."""

    def __init__(self, fail_prompts=()):
        self.fail_prompts = set(fail_prompts)
        self.active = 0
        self.group_sizes: list[int] = []
        self.prompts: list[str] = []

    async def generate(self, prompt, enhance=False):
        self.prompts.append(prompt)
        self.active += 1
        self.group_sizes.append(self.active)
        await asyncio.sleep(0)
        self.active -= 1
        if prompt in self.fail_prompts:
            raise GenerationFailure(f"All models failed for {prompt}")
        return GenerationResult(
            data=[{"id": 1}], model_used="model-a", metadata={"actual_count": 1}
        )


@pytest.fixture
def store():
    return InMemoryJobRepository()


async def create_jobs(store, n):
    return [await store.create(f"job {i}") for i in range(n)]


class TestDrain:
    @pytest.mark.asyncio
    async def test_empty_queue(self, store):
        summary = await WorkerDispatcher(store, TrackingEngine()).drain()

        assert summary.processed_jobs == 0
        assert summary.to_response() == {"message": "No pending jobs"}

    @pytest.mark.asyncio
    async def test_seven_jobs_run_in_groups_of_five_then_two(self, store):
        ids = await create_jobs(store, 7)
        engine = TrackingEngine()

        summary = await WorkerDispatcher(store, engine, concurrency=5).drain()

        assert summary.processed_jobs == 7
        assert summary.successful == 7
        assert max(engine.group_sizes) == 5
        assert engine.prompts[:5] == [f"job {i}" for i in range(5)]
        for job_id in ids:
            job = await store.get(job_id)
            assert job.status == JobStatus.COMPLETED
            assert job.result == [{"id": 1}]
            assert job.model_used == "model-a"

    @pytest.mark.asyncio
    async def test_batch_size_limits_claim(self, store):
        await create_jobs(store, 25)

        summary = await WorkerDispatcher(store, TrackingEngine(), batch_size=20).drain()

        assert summary.processed_jobs == 20
        assert len(await store.fetch_pending(100)) == 5

    @pytest.mark.asyncio
    async def test_overrides_per_call(self, store):
        await create_jobs(store, 4)

        summary = await WorkerDispatcher(store, TrackingEngine()).drain(
            batch_size=3, concurrency=1
        )

        assert summary.processed_jobs == 3

    @pytest.mark.asyncio
    async def test_one_failure_does_not_affect_siblings(self, store):
        ids = await create_jobs(store, 3)
        engine = TrackingEngine(fail_prompts={"job 1"})

        summary = await WorkerDispatcher(store, engine).drain()

        assert summary.successful == 2
        assert summary.failed == 1
        failed = await store.get(ids[1])
        assert failed.status == JobStatus.FAILED
        assert "All models failed" in failed.error
        assert (await store.get(ids[0])).status == JobStatus.COMPLETED
        assert (await store.get(ids[2])).status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_unexpected_exception_marks_job_failed(self, store):
        (job_id,) = await create_jobs(store, 1)
        engine = AsyncMock()
        engine.generate.side_effect = KeyError("boom")

        summary = await WorkerDispatcher(store, engine).drain()

        assert summary.failed == 1
        assert (await store.get(job_id)).status == JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_failure_recording_error_is_reported(self, store):
        (job_id,) = await create_jobs(store, 1)
        engine = TrackingEngine(fail_prompts={"job 0"})
        store.mark_failed = AsyncMock(side_effect=ConnectionError("db gone"))

        summary = await WorkerDispatcher(store, engine).drain()

        assert summary.failed == 1
        assert "failure not recorded" in summary.details[0].error

    @pytest.mark.asyncio
    async def test_concurrent_drains_process_each_job_once(self, store):
        await create_jobs(store, 10)
        engine = TrackingEngine()
        dispatcher = WorkerDispatcher(store, engine)

        first, second = await asyncio.gather(dispatcher.drain(), dispatcher.drain())

        assert first.processed_jobs + second.processed_jobs == 10
        assert sorted(engine.prompts) == sorted(f"job {i}" for i in range(10))

    @pytest.mark.asyncio
    async def test_all_models_failing_records_every_model(self, store, make_llm):
        (job_id,) = await create_jobs(store, 1)
        llm = make_llm(fail_models=["model-a", "model-b", "model-c"])
        engine = GenerationEngine(llm, ModelRegistry(["model-a", "model-b", "model-c"]))

        summary = await WorkerDispatcher(store, engine).drain()

        job = await store.get(job_id)
        assert summary.failed == 1
        assert job.status == JobStatus.FAILED
        for model in ("model-a", "model-b", "model-c"):
            assert model in job.error

    @pytest.mark.asyncio
    async def test_end_to_end_with_real_engine(self, store, make_llm):
        (job_id,) = await create_jobs(store, 1)
        llm = make_llm(replies=[json.dumps([{"id": i} for i in range(5)])])
        engine = GenerationEngine(llm, ModelRegistry(["model-a"]))

        summary = await WorkerDispatcher(store, engine).drain()

        view = await store.get_status(str(job_id))
        assert summary.to_response()["details"][0]["itemsGenerated"] == 5
        assert view.status == JobStatus.COMPLETED
        assert len(view.result) == 5


class TestSummary:
    def test_response_shape(self):
        summary = DrainSummary(processed_jobs=2)
        summary.add(JobOutcome(job_id="a", status="success", model_used="m", items_generated=3))
        summary.add(JobOutcome(job_id="b", status="failed", error="boom"))

        assert summary.to_response() == {
            "processedJobs": 2,
            "successful": 1,
            "failed": 1,
            "details": [
                {"jobId": "a", "status": "success", "modelUsed": "m", "itemsGenerated": 3},
                {"jobId": "b", "status": "failed", "error": "boom"},
            ],
        }
