"""Shared test fixtures."""

from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

import beacon.main as main_module
from beacon.config import AppConfig

ADMIN_PASSWORD = "s3cret-test-password"


@pytest.fixture
def config(tmp_path) -> AppConfig:
    config = AppConfig()
    config.storage.path = str(tmp_path / "data" / "visits.jsonl")
    config.admin.password = ADMIN_PASSWORD
    config.admin.session_secret = "test-session-secret"
    config.logging.level = "warning"
    return config


@pytest.fixture(autouse=True)
def _init_server(config):
    """Initialize server singletons for every test, using a temp directory."""
    main_module.init_components(config)

    yield

    # Cleanup
    main_module.reset_components()


@pytest.fixture
async def client():
    from beacon.main import app

    transport = ASGITransport(app=app, client=("198.51.100.20", 50000))
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def admin_password() -> str:
    return ADMIN_PASSWORD


@pytest.fixture
async def admin_client(client):
    """A client holding a valid admin session cookie."""
    resp = await client.post("/login", data={"password": ADMIN_PASSWORD})
    assert resp.status_code == 303
    return client
