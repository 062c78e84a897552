"""Admin routes: gift code provisioning and design import."""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from visionboard.dependencies import (
    get_canva_client,
    get_db,
    get_export_poller,
    get_identity_store,
    get_token_manager,
    require_admin,
)
from visionboard.errors import InvalidRequest
from visionboard.schemas.canva import ImportCurrentPageRequest
from visionboard.schemas.gift_code import GiftCodeCreate, GiftCodeResponse
from visionboard.services import gift_code_service
from visionboard.services.canva_client import CanvaClient
from visionboard.services.export_service import ExportPoller
from visionboard.services.identity_store import IdentityStore, UserRecord
from visionboard.services.import_service import DesignImporter
from visionboard.services.package_service import resolve_design_id
from visionboard.services.token_service import TokenLifecycleManager, resolve_access_token

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])


def _gift_code_response(gift) -> GiftCodeResponse:
    return GiftCodeResponse(
        code=gift.code,
        plan_id=gift.plan_id,
        duration_days=gift.duration_days,
        max_uses=gift.max_uses,
        used_count=gift.used_count,
        active=gift.active,
        created_at=gift.created_at.isoformat() if gift.created_at else None,
    )


@router.get("/gift-codes", response_model=list[GiftCodeResponse])
async def list_gift_codes(
    admin: UserRecord = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return [_gift_code_response(g) for g in await gift_code_service.list_gift_codes(db)]


@router.post("/gift-codes", response_model=GiftCodeResponse, status_code=status.HTTP_201_CREATED)
async def create_gift_code(
    body: GiftCodeCreate,
    admin: UserRecord = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    gift = await gift_code_service.create_gift_code(
        db,
        code=body.code.strip(),
        plan_id=body.plan_id,
        duration_days=body.duration_days,
        max_uses=body.max_uses,
        active=body.active,
    )
    logger.info("Admin %s created gift code %s", admin.identity_id, gift.code)
    return _gift_code_response(gift)


@router.post("/canva/import/current-page")
async def import_current_page(
    body: ImportCurrentPageRequest,
    admin: UserRecord = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    store: IdentityStore = Depends(get_identity_store),
    manager: TokenLifecycleManager = Depends(get_token_manager),
    poller: ExportPoller = Depends(get_export_poller),
    canva: CanvaClient = Depends(get_canva_client),
):
    """Export the current design page and crop its elements into a template."""
    design_id = resolve_design_id(body.model_dump(by_alias=True))
    if body.elements is None:
        raise InvalidRequest("invalid_elements")

    access_token, admin = await resolve_access_token(admin, store, manager)
    return await DesignImporter(poller, canva).import_current_page(
        db,
        created_by=admin.identity_id,
        access_token=access_token,
        design_id=design_id,
        elements=body.elements,
    )
