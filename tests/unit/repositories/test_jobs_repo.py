"""Tests for the PostgreSQL job repository."""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from jsongen.errors import InvalidTransitionError, NotFound, ValidationError
from jsongen.jobs.types import JobStatus
from jsongen.repositories.jobs import JobRepository


def _row(job_id=None, status="pending", result=None, created_at=None, **overrides):
    row = {
        "id": job_id or uuid4(),
        "prompt": "Generate 5 users",
        "status": status,
        "result": result,
        "error": None,
        "model_used": None,
        "created_at": created_at or datetime(2024, 1, 1, tzinfo=timezone.utc),
        "started_at": None,
        "completed_at": None,
    }
    row.update(overrides)
    return row


class TestJobRepository:
    @pytest.fixture
    def mock_pool(self):
        pool = MagicMock()
        conn = AsyncMock()
        pool.acquire.return_value.__aenter__.return_value = conn
        return pool, conn

    @pytest.mark.asyncio
    async def test_create_inserts_pending_job(self, mock_pool):
        pool, conn = mock_pool
        job_id = uuid4()
        conn.fetchval.return_value = job_id

        repo = JobRepository(pool)
        result = await repo.create("Generate 5 users")

        assert result == job_id
        query, _, prompt = conn.fetchval.call_args.args
        assert "INSERT INTO generation_jobs" in query
        assert "'pending'" in query
        assert prompt == "Generate 5 users"

    @pytest.mark.asyncio
    async def test_create_rejects_long_prompt_without_touching_db(self, mock_pool):
        pool, conn = mock_pool
        repo = JobRepository(pool, max_prompt_length=10)

        with pytest.raises(ValidationError):
            await repo.create("x" * 11)

        pool.acquire.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_decodes_json_result(self, mock_pool):
        pool, conn = mock_pool
        job_id = uuid4()
        conn.fetchrow.return_value = _row(
            job_id, status="completed", result=json.dumps([{"id": 1}]), model_used="m"
        )

        job = await JobRepository(pool).get(job_id)

        assert job.id == job_id
        assert job.status == JobStatus.COMPLETED
        assert job.result == [{"id": 1}]

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, mock_pool):
        pool, conn = mock_pool
        conn.fetchrow.return_value = None

        assert await JobRepository(pool).get(uuid4()) is None

    @pytest.mark.asyncio
    async def test_get_status_unknown_id_is_not_found(self, mock_pool):
        pool, conn = mock_pool
        conn.fetchrow.return_value = None

        with pytest.raises(NotFound):
            await JobRepository(pool).get_status(str(uuid4()))

    @pytest.mark.asyncio
    async def test_get_status_malformed_id_skips_db(self, mock_pool):
        pool, conn = mock_pool

        with pytest.raises(ValidationError):
            await JobRepository(pool).get_status("nope")

        pool.acquire.assert_not_called()

    @pytest.mark.asyncio
    async def test_claim_pending_uses_skip_locked_and_sorts(self, mock_pool):
        pool, conn = mock_pool
        older = _row(status="processing", created_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
        newer = _row(status="processing", created_at=datetime(2024, 1, 2, tzinfo=timezone.utc))
        conn.fetch.return_value = [newer, older]

        jobs = await JobRepository(pool).claim_pending(20)

        query, limit = conn.fetch.call_args.args
        assert "FOR UPDATE SKIP LOCKED" in query
        assert "status = 'processing'" in query
        assert limit == 20
        assert [j.id for j in jobs] == [older["id"], newer["id"]]
        assert all(j.status == JobStatus.PROCESSING for j in jobs)

    @pytest.mark.asyncio
    async def test_mark_completed_serializes_result(self, mock_pool):
        pool, conn = mock_pool
        job_id = uuid4()
        conn.fetchrow.return_value = _row(
            job_id, status="completed", result=[{"id": 1}], model_used="model-a"
        )

        job = await JobRepository(pool).mark_completed(job_id, [{"id": 1}], "model-a")

        query, passed_id, result_json, model = conn.fetchrow.call_args.args
        assert "status = 'processing'" in query
        assert passed_id == job_id
        assert json.loads(result_json) == [{"id": 1}]
        assert model == "model-a"
        assert job.status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_mark_failed_on_terminal_job_is_invalid_transition(self, mock_pool):
        pool, conn = mock_pool
        conn.fetchrow.return_value = None
        conn.fetchval.return_value = "completed"

        with pytest.raises(InvalidTransitionError):
            await JobRepository(pool).mark_failed(uuid4(), "boom")

    @pytest.mark.asyncio
    async def test_mark_processing_unknown_job_is_not_found(self, mock_pool):
        pool, conn = mock_pool
        conn.fetchrow.return_value = None
        conn.fetchval.return_value = None

        with pytest.raises(NotFound):
            await JobRepository(pool).mark_processing(uuid4())

    @pytest.mark.asyncio
    async def test_ensure_schema_creates_table(self, mock_pool):
        pool, conn = mock_pool

        await JobRepository(pool).ensure_schema()

        sql = conn.execute.call_args.args[0]
        assert "CREATE TABLE IF NOT EXISTS generation_jobs" in sql
