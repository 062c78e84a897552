"""Celery tasks driving the export job state machine."""

import asyncio
import logging

from celery import shared_task

from visionboard.config import get_settings
from visionboard.database import Database
from visionboard.errors import ServiceError
from visionboard.models.export_job import ExportJob
from visionboard.services.canva_client import CanvaClient
from visionboard.services.crypto_service import get_crypto_service
from visionboard.services.export_service import ExportPoller, export_summary, fail_export_job, finish_export_job
from visionboard.services.identity_store import SqlIdentityStore
from visionboard.services.package_service import attach_export
from visionboard.services.token_service import TokenLifecycleManager, resolve_access_token
from visionboard.tasks.celery_app import celery_app  # noqa: F401

logger = logging.getLogger(__name__)


async def run_export_job(database: Database, canva: CanvaClient, job_id: str) -> str | None:
    """Poll one persisted export job to a terminal state.

    Returns the final state, or None when the job does not exist.
    """
    settings = get_settings()
    store = SqlIdentityStore(database, get_crypto_service(settings))
    poller = ExportPoller(
        canva,
        interval=settings.export_poll_interval_seconds,
        timeout=settings.export_poll_timeout_seconds,
    )

    async with database.session() as db:
        job = await db.get(ExportJob, job_id)
        if job is None:
            logger.warning("Export job %s not found", job_id)
            return None
        if job.state.is_terminal:
            return job.state.value

        user = await store.get_user(job.identity_id)
        try:
            if user is None:
                raise ServiceError("Export owner no longer exists")
            access_token, _ = await resolve_access_token(user, store, TokenLifecycleManager(canva))
            result = await poller.poll_until_settled(
                access_token, {"id": job.provider_job_id, "status": job.provider_status or "in_progress"}
            )
        except ServiceError as e:
            await fail_export_job(db, job, e.code)
            return job.state.value

        await finish_export_job(db, job, result)
        if job.package_id:
            await attach_export(store, job.identity_id, job.package_id, export_summary(job))
        return job.state.value


@shared_task(name="visionboard.tasks.export_tasks.poll_export_job")
def poll_export_job(job_id: str):
    """Poll a submitted Canva export until it completes, fails or times out."""

    async def _run():
        settings = get_settings()
        database = Database(settings.database_url, pool_size=2).open()
        canva = CanvaClient(settings)
        try:
            return await run_export_job(database, canva, job_id)
        finally:
            await canva.aclose()
            await database.close()

    state = asyncio.run(_run())
    logger.info("Export job %s settled: %s", job_id, state)
    return state
