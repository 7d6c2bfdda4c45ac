"""Shared pytest fixtures."""

from __future__ import annotations

import os

# Force settings to use test-safe defaults before any import
os.environ.setdefault("UPDATE_SERVERS", "")
os.environ.setdefault("UPDATE_SSH_KEY", "")
os.environ.setdefault("UPDATECTL_WEBHOOK_SECRET", "")
os.environ.setdefault("UPDATECTL_GOTIFY_KEY", "")
os.environ.setdefault("UPDATECTL_NTFY_TOPIC", "")

import pytest
from httpx import ASGITransport, AsyncClient

from tests.mock_executor import MockExecutor, RecordingSink, StaticDigests, make_settings


@pytest.fixture(autouse=True)
def _reset_structlog():
    """Undo setup_logging() so later tests don't log to a closed capture stream."""
    import structlog

    yield
    structlog.reset_defaults()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def mock_executor():
    """Provide a fresh MockExecutor."""
    return MockExecutor()


@pytest.fixture
def digests():
    return StaticDigests({
        "nginx:latest": "sha256:ccc",  # differs from local sha256:aaa
        "redis:7": "sha256:bbb",
    })


@pytest.fixture
def orchestrator(mock_executor, digests, settings):
    from updatectl.services.detector import UpdateDetector
    from updatectl.services.orchestrator import Orchestrator

    detector = UpdateDetector(mock_executor, digests, settings)
    return Orchestrator(mock_executor, detector=detector, cfg=settings)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def dispatcher(settings, orchestrator, sink):
    from updatectl.services.dispatcher import WebhookDispatcher
    from updatectl.services.registry import ServerRegistry

    return WebhookDispatcher(
        settings,
        registry=ServerRegistry.from_settings(settings),
        orchestrator=orchestrator,
        sink=sink,
    )


@pytest.fixture
async def client(dispatcher):
    """Async test client with the mock-backed dispatcher injected."""
    from updatectl.main import app as fastapi_app
    from updatectl.services.dispatcher import get_dispatcher

    fastapi_app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    transport = ASGITransport(app=fastapi_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    await dispatcher.drain()
    fastapi_app.dependency_overrides.clear()
