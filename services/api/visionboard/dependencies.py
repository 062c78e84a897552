"""FastAPI dependency injection.

Long-lived handles (database, identity store, Canva client) are created by
the application lifespan and kept on ``app.state``.
"""

from typing import AsyncGenerator

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from visionboard.config import Settings
from visionboard.database import Database
from visionboard.errors import DatabaseRequired, ExpiredAuth, Forbidden, InvalidAuth, MissingAuth
from visionboard.services.canva_client import CanvaClient
from visionboard.services.export_service import ExportPoller
from visionboard.services.identity_store import IdentityStore, UserRecord
from visionboard.services.oauth_service import OAuthConnector
from visionboard.services.token_service import TokenLifecycleManager

security = HTTPBearer(auto_error=False)


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_database(request: Request) -> Database:
    database: Database | None = request.app.state.database
    if database is None or not database.is_open:
        raise DatabaseRequired("This endpoint needs DATABASE_URL")
    return database


async def get_db(database: Database = Depends(get_database)) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with database.session() as session:
        yield session


def get_identity_store(request: Request) -> IdentityStore:
    return request.app.state.identity_store


def get_canva_client(request: Request) -> CanvaClient:
    return request.app.state.canva_client


def get_token_manager(canva: CanvaClient = Depends(get_canva_client)) -> TokenLifecycleManager:
    return TokenLifecycleManager(canva)


def get_oauth_connector(
    settings: Settings = Depends(get_app_settings),
    store: IdentityStore = Depends(get_identity_store),
    canva: CanvaClient = Depends(get_canva_client),
) -> OAuthConnector:
    return OAuthConnector(settings, store, canva)


def get_export_poller(
    settings: Settings = Depends(get_app_settings),
    canva: CanvaClient = Depends(get_canva_client),
) -> ExportPoller:
    return ExportPoller(
        canva,
        interval=settings.export_poll_interval_seconds,
        timeout=settings.export_poll_timeout_seconds,
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    store: IdentityStore = Depends(get_identity_store),
) -> UserRecord:
    """Resolve the bearer user token to its record; guest tokens expire."""
    if credentials is None or not credentials.credentials:
        raise MissingAuth("Missing bearer token")
    user = await store.find_user_by_token(credentials.credentials)
    if user is None:
        raise InvalidAuth("Unknown user token")
    if user.guest_expired():
        raise ExpiredAuth("Guest session expired", expiresAt=user.guest_expires_at.isoformat())
    return user


async def require_admin(
    user: UserRecord = Depends(get_current_user),
    settings: Settings = Depends(get_app_settings),
) -> UserRecord:
    if user.identity_id not in settings.admin_ids:
        raise Forbidden("Admin only")
    return user
