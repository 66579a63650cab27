"""Tests for service wiring and application lifespan."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI

from jsongen.config import Settings
from jsongen.core import lifespan as lifespan_module
from jsongen.core.lifespan import build_services, get_services, lifespan, set_services
from jsongen.errors import ServerError
from jsongen.repositories.jobs import InMemoryJobRepository, JobRepository


class TestBuildServices:
    def test_wires_settings_through(self, make_llm):
        settings = Settings(
            worker_batch_size=7,
            worker_concurrency=3,
            chunk_delay_s=0.25,
            gemini_primary_model="a",
            gemini_fallback_models="b,c",
            eager_drain_enabled=False,
        )

        services = build_services(settings, InMemoryJobRepository(), llm=make_llm())

        assert services.dispatcher.batch_size == 7
        assert services.dispatcher.concurrency == 3
        assert services.engine.chunk_delay_s == 0.25
        assert services.registry.models == ["a", "b", "c"]
        assert services.queue.eager is False
        assert services.llm_enabled is True
        assert services.engine.registry is services.registry

    def test_without_llm(self):
        services = build_services(Settings(), InMemoryJobRepository())
        assert services.llm_enabled is False


class TestGetServices:
    def test_uninitialized_raises(self):
        set_services(None)
        with pytest.raises(ServerError):
            get_services()


class TestLifespan:
    @pytest.mark.asyncio
    async def test_in_memory_store_without_database(self, monkeypatch):
        monkeypatch.setenv("WORKER_POLL_INTERVAL_S", "0")

        async with lifespan(FastAPI()):
            services = get_services()
            assert isinstance(services.store, InMemoryJobRepository)
            assert services.llm_enabled is False
            assert lifespan_module._drain_task is None

        with pytest.raises(ServerError):
            get_services()

    @pytest.mark.asyncio
    async def test_postgres_store_when_configured(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/jsongen")
        monkeypatch.setenv("WORKER_POLL_INTERVAL_S", "30")
        pool = MagicMock()
        conn = AsyncMock()
        pool.acquire.return_value.__aenter__.return_value = conn
        pool.close = AsyncMock()

        with patch(
            "jsongen.core.lifespan.asyncpg.create_pool", new=AsyncMock(return_value=pool)
        ) as create_pool:
            async with lifespan(FastAPI()):
                services = get_services()
                assert isinstance(services.store, JobRepository)
                assert lifespan_module.get_db_pool() is pool
                assert lifespan_module._drain_task is not None

        create_pool.assert_awaited_once()
        conn.execute.assert_awaited_once()
        pool.close.assert_awaited_once()
        assert lifespan_module.get_db_pool() is None
        assert lifespan_module._drain_task is None

    @pytest.mark.asyncio
    async def test_unreachable_database_fails_startup(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/jsongen")

        with patch(
            "jsongen.core.lifespan.asyncpg.create_pool",
            new=AsyncMock(side_effect=OSError("connection refused")),
        ):
            with pytest.raises(OSError):
                async with lifespan(FastAPI()):
                    pass
