"""Affirmation routes. All of them need the database."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from visionboard.dependencies import get_current_user, get_db
from visionboard.errors import InvalidRequest
from visionboard.schemas.affirmation import AffirmationWrite, PinRequest
from visionboard.services import affirmation_service
from visionboard.services.identity_store import UserRecord

router = APIRouter(prefix="/affirmations", tags=["affirmations"])


def _affirmation_id(raw: str) -> str:
    affirmation_id = raw.strip()
    if not affirmation_id:
        raise InvalidRequest("id_required")
    return affirmation_id


@router.get("")
async def list_affirmations(
    category: str | None = None,
    user: UserRecord = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    category = category.strip() if category else None
    affirmations = await affirmation_service.list_affirmations(db, user.identity_id, category or None)
    return {"ok": True, "affirmations": affirmations}


@router.post("")
async def create_affirmation(
    body: AffirmationWrite,
    user: UserRecord = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    affirmation_id = await affirmation_service.upsert_affirmation(db, user.identity_id, body)
    return {"ok": True, "id": affirmation_id}


@router.put("/{affirmation_id}")
async def update_affirmation(
    affirmation_id: str,
    body: AffirmationWrite,
    user: UserRecord = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Overwrite by path id; creates the row when it does not exist yet."""
    body = body.model_copy(update={"id": _affirmation_id(affirmation_id)})
    await affirmation_service.upsert_affirmation(db, user.identity_id, body)
    return {"ok": True}


@router.delete("/{affirmation_id}")
async def delete_affirmation(
    affirmation_id: str,
    user: UserRecord = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await affirmation_service.delete_affirmation(db, user.identity_id, _affirmation_id(affirmation_id))
    return {"ok": True}


@router.put("/{affirmation_id}/pin")
async def pin_affirmation(
    affirmation_id: str,
    body: PinRequest | None = None,
    user: UserRecord = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    is_pinned = body.is_pinned if body is not None else True
    await affirmation_service.set_pinned(db, user.identity_id, _affirmation_id(affirmation_id), is_pinned)
    return {"ok": True, "is_pinned": is_pinned}
