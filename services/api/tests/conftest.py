"""Shared test fixtures."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from pydantic import SecretStr

from visionboard.config import Settings
from visionboard.database import Database
from visionboard.main import create_app
from visionboard.services.crypto_service import CryptoService

CANVA_USER_ID = "canva-user-123"
CANVA_TEAM_ID = "canva-team-9"


def make_settings(tmp_path, **overrides) -> Settings:
    defaults = {
        "app_env": "development",
        "base_url": "http://testserver",
        "database_url": f"sqlite+aiosqlite:///{tmp_path / 'visionboard.db'}",
        "auto_create_schema": True,
        "data_dir": str(tmp_path / "data"),
        "redis_url": "redis://localhost:6379/0",
        "canva_client_id": "client-id",
        "canva_client_secret": SecretStr("client-secret"),
        "encryption_key": SecretStr(""),
        "rate_limit_per_minute": 0,
        "sentry_dsn": SecretStr(""),
        "export_poll_interval_seconds": 0.01,
        "export_poll_timeout_seconds": 1.0,
    }
    defaults.update(overrides)
    return Settings(**defaults)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def file_settings(tmp_path) -> Settings:
    """No database: identities live in JSON files."""
    return make_settings(tmp_path, database_url="")


@pytest.fixture
def crypto(settings) -> CryptoService:
    return CryptoService(settings)


@pytest_asyncio.fixture
async def database(settings):
    db = Database(settings.database_url).open()
    await db.create_schema()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def db_session(database):
    async with database.session() as session:
        yield session


@pytest.fixture
def fake_canva() -> MagicMock:
    """Stand-in for CanvaClient; async endpoints are AsyncMocks."""
    canva = MagicMock()
    canva.authorize_url.side_effect = (
        lambda *, state, code_challenge: f"https://www.canva.com/api/oauth/authorize?state={state}"
        f"&code_challenge={code_challenge}"
    )
    canva.exchange_authorization_code = AsyncMock(
        return_value={
            "access_token": "canva-access",
            "refresh_token": "canva-refresh",
            "expires_in": 14400,
            "token_type": "Bearer",
        }
    )
    canva.refresh_access_token = AsyncMock()
    canva.get_users_me = AsyncMock(
        return_value={"team_user": {"user_id": CANVA_USER_ID, "team_id": CANVA_TEAM_ID}}
    )
    canva.create_export_job = AsyncMock()
    canva.get_export_job = AsyncMock()
    canva.download = AsyncMock()
    canva.aclose = AsyncMock()
    return canva


def _client_for(app, fake_canva):
    with patch("visionboard.main.CanvaClient", return_value=fake_canva):
        with TestClient(app) as client:
            yield client


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app, fake_canva):
    """App backed by SQLite."""
    yield from _client_for(app, fake_canva)


@pytest.fixture
def file_app(file_settings):
    return create_app(file_settings)


@pytest.fixture
def file_client(file_app, fake_canva):
    """App without a database."""
    yield from _client_for(file_app, fake_canva)


def auth_header(user_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {user_token}"}


def connect_canva(client) -> dict:
    """Run the poll-flavoured OAuth flow against ``fake_canva``; returns the poll result."""
    start = client.post("/auth/canva/start", json={"poll": True}).json()
    client.get("/auth/canva/callback", params={"code": "auth-code", "state": start["state"]})
    return client.get(f"/auth/canva/poll/{start['poll_token']}").json()
