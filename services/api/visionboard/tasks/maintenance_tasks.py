"""Periodic cleanup: expired PKCE states and dated sync logs."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from celery import shared_task

from visionboard.config import get_settings
from visionboard.database import Database
from visionboard.services.crypto_service import get_crypto_service
from visionboard.services.identity_store import IdentityStore, SqlIdentityStore
from visionboard.services.sync_service import prune_logs, retention_cutoff
from visionboard.tasks.celery_app import celery_app  # noqa: F401

logger = logging.getLogger(__name__)


async def sweep_pkce_states(store: IdentityStore, ttl_seconds: int, now: datetime | None = None) -> int:
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(seconds=ttl_seconds)
    removed = await store.delete_pkce_states_before(cutoff)
    if removed:
        logger.info("Removed %d PKCE states older than %s", removed, cutoff.isoformat())
    return removed


async def prune_all_sync_logs(database: Database, retain_days: int) -> int:
    async with database.session() as db:
        return await prune_logs(db, retention_cutoff(retain_days))


@shared_task(name="visionboard.tasks.maintenance_tasks.sweep_expired_pkce_states")
def sweep_expired_pkce_states():
    """Delete PKCE states that outlived the authorization window."""

    async def _run():
        settings = get_settings()
        database = Database(settings.database_url, pool_size=1).open()
        try:
            store = SqlIdentityStore(database, get_crypto_service(settings))
            return await sweep_pkce_states(store, settings.pkce_state_ttl_seconds)
        finally:
            await database.close()

    return asyncio.run(_run())


@shared_task(name="visionboard.tasks.maintenance_tasks.prune_sync_logs")
def prune_sync_logs():
    """Delete habit completions and checklist events past the retention window."""

    async def _run():
        settings = get_settings()
        database = Database(settings.database_url, pool_size=1).open()
        try:
            return await prune_all_sync_logs(database, settings.retain_days)
        finally:
            await database.close()

    removed = asyncio.run(_run())
    logger.info("Sync log retention complete: %d rows removed", removed)
    return removed
