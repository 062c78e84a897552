"""Habits, design packages and Canva export jobs."""

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from visionboard.dependencies import (
    get_current_user,
    get_db,
    get_export_poller,
    get_identity_store,
    get_token_manager,
)
from visionboard.errors import InvalidRequest, NotFound
from visionboard.models.export_job import ExportJob
from visionboard.schemas.canva import ExportRequest, HabitsUpdate
from visionboard.services import package_service
from visionboard.services.export_service import (
    DEFAULT_FORMAT,
    ExportPoller,
    ExportResult,
    create_export_job,
    export_summary,
    finish_export_job,
    job_to_dict,
)
from visionboard.services.identity_store import IdentityStore, UserRecord
from visionboard.services.token_service import TokenLifecycleManager, resolve_access_token

logger = logging.getLogger(__name__)
router = APIRouter(tags=["canva"])


@router.get("/habits")
async def get_habits(user: UserRecord = Depends(get_current_user)):
    return {"ok": True, "habits": user.habits}


@router.post("/habits")
async def replace_habits(
    body: HabitsUpdate,
    user: UserRecord = Depends(get_current_user),
    store: IdentityStore = Depends(get_identity_store),
):
    """Replace the caller's habit list."""
    habits = await package_service.replace_habits(store, user, body.habits)
    return {"ok": True, "habits": habits}


@router.post("/canva/sync")
async def store_package(
    body: dict[str, Any] = Body(...),
    user: UserRecord = Depends(get_current_user),
    store: IdentityStore = Depends(get_identity_store),
):
    """Store element to habit mappings captured in the design editor."""
    package = await package_service.create_package(store, user, body)
    return {"ok": True, "packageId": package["id"]}


@router.get("/canva/packages")
async def list_packages(user: UserRecord = Depends(get_current_user)):
    return {"packages": package_service.list_packages(user)}


@router.get("/canva/packages/latest")
async def latest_package(user: UserRecord = Depends(get_current_user)):
    return {"package": package_service.latest_package(user)}


@router.get("/canva/packages/{package_id}")
async def get_package(package_id: str, user: UserRecord = Depends(get_current_user)):
    return {"package": package_service.find_package(user, package_id)}


@router.post("/canva/export", status_code=status.HTTP_202_ACCEPTED)
async def submit_export(
    body: ExportRequest,
    user: UserRecord = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    store: IdentityStore = Depends(get_identity_store),
    manager: TokenLifecycleManager = Depends(get_token_manager),
    poller: ExportPoller = Depends(get_export_poller),
):
    """Submit an export of the package's design; poll the returned job."""
    package = package_service.find_package(user, body.package_id)
    design_id = package.get("designId")
    if not design_id:
        raise InvalidRequest("package_missing_designId")

    access_token, user = await resolve_access_token(user, store, manager)
    export_format = body.format or DEFAULT_FORMAT
    provider_job = await poller.submit(access_token, design_id, export_format)
    job = await create_export_job(
        db,
        identity_id=user.identity_id,
        design_id=design_id,
        format=export_format,
        provider_job=provider_job,
        package_id=body.package_id,
    )

    if provider_job.get("status") == "in_progress":
        from visionboard.tasks.export_tasks import poll_export_job

        poll_export_job.delay(job.id)
    else:
        # Canva settled the job synchronously
        await finish_export_job(db, job, ExportResult.from_job(provider_job, job.provider_job_id))
        await package_service.attach_export(store, user.identity_id, body.package_id, export_summary(job))

    return {"ok": True, "packageId": body.package_id, "job": job_to_dict(job)}


@router.get("/canva/export/{job_id}")
async def get_export(
    job_id: str,
    user: UserRecord = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    job = await db.get(ExportJob, job_id)
    if job is None or job.identity_id != user.identity_id:
        raise NotFound("export_job_not_found")
    return {"ok": True, "job": job_to_dict(job)}
