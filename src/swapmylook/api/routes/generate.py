"""Generation job endpoints: create, poll status, cancel."""

from datetime import datetime
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from swapmylook.api.dependencies import get_caller_id, get_settings, get_storage, get_uow_factory
from swapmylook.core.config import Settings
from swapmylook.core.timezone import utc_now
from swapmylook.models.asset import AssetKind
from swapmylook.models.audit import AuditEntry
from swapmylook.models.job import GenerationJob, JobStatus
from swapmylook.services.exceptions import StorageError
from swapmylook.services.generation.params import GenerationParameters

logger = structlog.get_logger()
router = APIRouter(prefix="/generate", tags=["generate"])


class GenerateRequest(BaseModel):
    owner_id: UUID
    subject_asset_id: UUID
    style_asset_id: UUID
    prompt: str | None = Field(default=None, max_length=1000)
    parameters: GenerationParameters = Field(default_factory=GenerationParameters)
    priority: int | None = Field(default=None, ge=1, le=10)


class JobCreatedResponse(BaseModel):
    job_id: UUID
    status: JobStatus
    estimated_time: int


class JobOutput(BaseModel):
    asset_id: UUID
    url: str | None = None


class JobStatusResponse(BaseModel):
    job_id: UUID
    status: JobStatus
    attempts: int
    max_attempts: int
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    queue_time_ms: int
    processing_time_ms: int
    output: JobOutput | None = None
    error: str | None = None


class CancelResponse(BaseModel):
    job_id: UUID
    status: JobStatus


@router.post("", status_code=status.HTTP_202_ACCEPTED, response_model=JobCreatedResponse)
async def create_generation_job(
    request: GenerateRequest,
    settings: Settings = Depends(get_settings),
    uow_factory=Depends(get_uow_factory),
) -> JobCreatedResponse:
    """Create a generation job and enqueue it.

    Job creation, quota consumption, and the queue entry commit together, so a
    job is never visible without its queue entry.

    Raises:
        HTTPException: 404 if the user or an asset is missing or not owned,
            400 if an asset has the wrong kind, 429 if the monthly quota is used up
    """
    now = utc_now()

    async with await uow_factory() as uow:
        user = await uow.users.get_for_update(request.owner_id)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

        subject = await uow.assets.get_owned(request.subject_asset_id, user.id)
        style = await uow.assets.get_owned(request.style_asset_id, user.id)
        if subject is None or style is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Asset not found")
        if subject.kind != AssetKind.SUBJECT:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="subject_asset_id must reference a subject image",
            )
        if style.kind != AssetKind.STYLE:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="style_asset_id must reference a style image",
            )

        if not user.has_available_quota(now):
            logger.info(
                "job.quota_exceeded",
                user_id=str(user.id),
                used=user.used_this_month,
                quota=user.monthly_quota,
            )
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=f"Monthly quota of {user.monthly_quota} generations reached",
            )

        priority = request.priority or settings.job_default_priority
        job = GenerationJob(
            owner_id=user.id,
            subject_asset_id=subject.id,
            style_asset_id=style.id,
            prompt=request.prompt,
            parameters=request.parameters.model_dump(mode="json"),
            priority=priority,
            max_attempts=settings.job_max_attempts,
        )
        await uow.jobs.add(job)
        await uow.work_queue.enqueue(job.id, priority=priority, max_attempts=job.max_attempts)

        user.consume_quota(now)
        user.updated_at = now
        uow.session.add(user)

        await uow.audit.add(
            AuditEntry(
                user_id=user.id,
                type="generation",
                action="generation_requested",
                resource_type="job",
                resource_id=str(job.id),
                details={"priority": priority, "parameters": job.parameters},
            )
        )

    logger.info("job.created", job_id=str(job.id), owner_id=str(job.owner_id), priority=priority)

    return JobCreatedResponse(
        job_id=job.id, status=JobStatus.QUEUED, estimated_time=settings.job_estimated_seconds
    )


@router.get("/{job_id}/status", response_model=JobStatusResponse)
async def get_job_status(
    job_id: UUID,
    caller_id: UUID | None = Depends(get_caller_id),
    settings: Settings = Depends(get_settings),
    uow_factory=Depends(get_uow_factory),
    storage=Depends(get_storage),
) -> JobStatusResponse:
    """Current durable state of a job.

    Reflects the last committed state; a crashed worker's job may show
    ``processing`` until its lease expires and the queue redelivers it.

    Raises:
        HTTPException: 404 if the job is missing or owned by someone else
    """
    async with await uow_factory() as uow:
        job = await uow.jobs.get_by_id(job_id)
        if job is None or (caller_id is not None and job.owner_id != caller_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
        output_asset = (
            await uow.assets.get_by_id(job.output_asset_id) if job.output_asset_id else None
        )

    output = None
    if job.status == JobStatus.SUCCEEDED and job.output_asset_id is not None:
        url = None
        if output_asset is not None:
            try:
                url = await storage.get_signed_url(
                    output_asset.storage_key, settings.signed_url_ttl_seconds
                )
            except StorageError as e:
                logger.warning("job.output_url_failed", job_id=str(job.id), error=str(e))
        output = JobOutput(asset_id=job.output_asset_id, url=url)

    return JobStatusResponse(
        job_id=job.id,
        status=job.status,
        attempts=job.attempts,
        max_attempts=job.max_attempts,
        created_at=job.created_at,
        updated_at=job.updated_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
        queue_time_ms=job.queue_time_ms,
        processing_time_ms=job.processing_time_ms,
        output=output,
        error=job.error if job.status == JobStatus.FAILED else None,
    )


@router.post("/{job_id}/cancel", response_model=CancelResponse)
async def cancel_job(
    job_id: UUID,
    caller_id: UUID | None = Depends(get_caller_id),
    uow_factory=Depends(get_uow_factory),
) -> CancelResponse:
    """Cancel a job that no worker has started.

    Raises:
        HTTPException: 404 if the job is missing or owned by someone else,
            400 if the job is no longer queued
    """
    async with await uow_factory() as uow:
        job = await uow.jobs.get_by_id(job_id)
        if job is None or (caller_id is not None and job.owner_id != caller_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")

        if not await uow.jobs.mark_cancelled(job_id):
            current = await uow.jobs.get_by_id(job_id)
            current_status = current.status.value if current else "unknown"
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Job cannot be cancelled in status {current_status}",
            )

        # A worker holding a live lease acks the item itself once it sees the job cancelled
        removed = await uow.work_queue.remove(job_id)
        await uow.audit.add(
            AuditEntry(
                user_id=job.owner_id,
                type="generation",
                action="generation_cancelled",
                resource_type="job",
                resource_id=str(job_id),
            )
        )

    logger.info("job.cancelled", job_id=str(job_id), queue_entry_removed=removed)
    return CancelResponse(job_id=job_id, status=JobStatus.CANCELLED)
