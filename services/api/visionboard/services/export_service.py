"""Canva export jobs: submit, poll to completion and persist the outcome."""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from visionboard.errors import ExportSubmitFailed
from visionboard.metrics import export_jobs_total, export_poll_duration_seconds
from visionboard.models.export_job import ExportJob, ExportState
from visionboard.services.canva_client import CanvaAPIError, CanvaClient

logger = logging.getLogger(__name__)

IN_PROGRESS = "in_progress"
SUCCESS = "success"
DEFAULT_FORMAT = {"type": "png"}


@dataclass(frozen=True)
class ExportResult:
    job_id: str
    status: str
    urls: list[str] | None = None
    error: Any = None

    @property
    def timed_out(self) -> bool:
        return self.status == IN_PROGRESS

    @property
    def first_url(self) -> str | None:
        if self.urls and isinstance(self.urls[0], str):
            return self.urls[0]
        return None

    @classmethod
    def from_job(cls, job: dict[str, Any], fallback_id: str) -> ExportResult:
        urls = job.get("urls")
        return cls(
            job_id=job.get("id") or fallback_id,
            status=job.get("status") or "unknown",
            urls=list(urls) if isinstance(urls, list) else None,
            error=job.get("error"),
        )


class ExportPoller:
    """Submits export jobs and polls them until they settle or time out.

    A timeout is reported as a result whose status is still ``in_progress``;
    the upstream job is never cancelled.
    """

    def __init__(
        self,
        canva: CanvaClient,
        *,
        interval: float = 2.0,
        timeout: float = 90.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._canva = canva
        self._interval = interval
        self._timeout = timeout
        self._sleep = sleep
        self._clock = clock

    async def submit(self, access_token: str, design_id: str, format: dict | None = None) -> dict[str, Any]:
        try:
            return await self._canva.create_export_job(
                access_token=access_token, design_id=design_id, format=format or DEFAULT_FORMAT
            )
        except CanvaAPIError as e:
            logger.warning("Export submit for design %s failed: %s", design_id, e)
            raise ExportSubmitFailed(str(e), upstream_status=e.upstream_status) from e

    async def poll_until_settled(self, access_token: str, job: dict[str, Any]) -> ExportResult:
        job_id = job["id"]
        started = self._clock()
        while job.get("status") == IN_PROGRESS and self._clock() - started < self._timeout:
            await self._sleep(self._interval)
            job = await self._canva.get_export_job(access_token=access_token, export_id=job_id)
        export_poll_duration_seconds.observe(self._clock() - started)
        result = ExportResult.from_job(job, job_id)
        if result.timed_out:
            logger.warning("Export %s still in progress after %.0fs", job_id, self._timeout)
        return result

    async def export_design(self, access_token: str, design_id: str, format: dict | None = None) -> ExportResult:
        created = await self.submit(access_token, design_id, format)
        return await self.poll_until_settled(access_token, created)


# ---------------------------------------------------------------------------
# Persisted state machine
# ---------------------------------------------------------------------------


def state_for(result: ExportResult) -> ExportState:
    if result.timed_out:
        return ExportState.TIMED_OUT
    if result.status == SUCCESS and result.first_url:
        return ExportState.COMPLETED
    return ExportState.FAILED


def new_job_id() -> str:
    return f"exp_{secrets.token_hex(12)}"


async def create_export_job(
    db: AsyncSession,
    *,
    identity_id: str,
    design_id: str,
    format: dict[str, Any],
    provider_job: dict[str, Any],
    package_id: str | None = None,
) -> ExportJob:
    """Record a submitted provider job in state ``polling``."""
    job = ExportJob(
        id=new_job_id(),
        identity_id=identity_id,
        package_id=package_id,
        design_id=design_id,
        format=format,
        provider_job_id=provider_job["id"],
        provider_status=provider_job.get("status"),
        state=ExportState.POLLING,
    )
    db.add(job)
    await db.commit()
    logger.info("Export job %s submitted (provider=%s, design=%s)", job.id, job.provider_job_id, design_id)
    return job


async def finish_export_job(db: AsyncSession, job: ExportJob, result: ExportResult) -> ExportJob:
    job.state = state_for(result)
    job.provider_status = result.status
    job.urls = result.urls
    job.error = result.error
    if job.state == ExportState.FAILED and result.status == SUCCESS and not result.first_url:
        job.error = {"code": "export_missing_urls"}
    job.finished_at = datetime.now(timezone.utc)
    await db.commit()
    export_jobs_total.labels(state=job.state.value).inc()
    logger.info("Export job %s finished: %s", job.id, job.state.value)
    return job


async def fail_export_job(db: AsyncSession, job: ExportJob, code: str) -> ExportJob:
    job.state = ExportState.FAILED
    job.error = {"code": code}
    job.finished_at = datetime.now(timezone.utc)
    await db.commit()
    export_jobs_total.labels(state=job.state.value).inc()
    logger.warning("Export job %s failed: %s", job.id, code)
    return job


def export_summary(job: ExportJob) -> dict[str, Any]:
    """Shape attached to a package once the job settles."""
    return {
        "jobId": job.provider_job_id,
        "status": job.provider_status or "unknown",
        "urls": job.urls,
        "error": job.error,
        "format": job.format,
        "finishedAt": job.finished_at.isoformat() if job.finished_at else None,
    }


def job_to_dict(job: ExportJob) -> dict[str, Any]:
    return {
        "id": job.id,
        "packageId": job.package_id,
        "designId": job.design_id,
        "state": job.state.value,
        "providerJobId": job.provider_job_id,
        "providerStatus": job.provider_status,
        "urls": job.urls,
        "error": job.error,
        "createdAt": job.created_at.isoformat() if job.created_at else None,
        "finishedAt": job.finished_at.isoformat() if job.finished_at else None,
    }
