"""Sync routes: bootstrap snapshot, idempotent push and settings."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from visionboard.config import Settings
from visionboard.dependencies import get_app_settings, get_current_user, get_db
from visionboard.schemas.sync import SettingsUpdate, SyncPushRequest, SyncPushResponse
from visionboard.services import sync_service
from visionboard.services.identity_store import UserRecord

router = APIRouter(tags=["sync"])


@router.get("/sync/bootstrap")
async def bootstrap(
    user: UserRecord = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    """Everything a fresh client needs: settings, boards and recent events."""
    return await sync_service.bootstrap(db, user.identity_id, settings.retain_days)


@router.post("/sync/push", response_model=SyncPushResponse)
async def push(
    body: SyncPushRequest,
    user: UserRecord = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    """Apply a batch of offline mutations. Safe to retry."""
    result = await sync_service.push(db, user.identity_id, body, settings.retain_days)
    return SyncPushResponse(applied=result.applied, skipped=result.skipped)


@router.put("/user/settings")
async def put_user_settings(
    body: SettingsUpdate,
    user: UserRecord = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    saved = await sync_service.put_user_settings(db, user.identity_id, body)
    return {"ok": True, **saved}
