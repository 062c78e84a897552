"""Gift code redemption."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from visionboard.dependencies import get_current_user, get_db
from visionboard.schemas.gift_code import RedeemRequest
from visionboard.services import gift_code_service
from visionboard.services.identity_store import UserRecord

router = APIRouter(prefix="/gift-codes", tags=["gift-codes"])


@router.post("/redeem")
async def redeem_gift_code(
    body: RedeemRequest,
    user: UserRecord = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Redeem a code for the caller; rejections come back as ``{ok: false, error}``."""
    result = await gift_code_service.redeem(db, body.code, user.identity_id)
    return JSONResponse(status_code=200 if result.ok else 400, content=result.to_dict())
