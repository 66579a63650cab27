"""App fixtures for router tests.

Routers run on a bare FastAPI app with the real middleware and exception
handlers; the service container is built from an in-memory store and a
scripted LLM.
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from jsongen.config import Settings, get_settings
from jsongen.core.lifespan import build_services, get_services
from jsongen.core.middleware import setup_middleware
from jsongen.repositories.jobs import InMemoryJobRepository
from jsongen.routers import generate, health, jobs, metrics, worker


@pytest.fixture
def make_client(make_llm):
    """Build a TestClient; returns (client, services)."""
    clients = []

    def _make(llm=None, **overrides):
        params = {
            "environment": "test",
            "worker_secret": "s3cret",
            "eager_drain_enabled": False,
            "chunk_delay_s": 0.0,
            "gemini_primary_model": "model-a",
            "gemini_fallback_models": "model-b",
        }
        params.update(overrides)
        settings = Settings(**params)
        services = build_services(
            settings, InMemoryJobRepository(settings.max_prompt_length), llm=llm or make_llm()
        )

        app = FastAPI()
        setup_middleware(app)
        for module in (health, jobs, worker, generate, metrics):
            app.include_router(module.router)
        app.dependency_overrides[get_services] = lambda: services
        app.dependency_overrides[get_settings] = lambda: settings

        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client, services

    yield _make

    for client in clients:
        client.__exit__(None, None, None)
