"""Out-of-band job completion reported by the generation provider's webhook."""

from uuid import uuid4

import structlog

from swapmylook.core.config import Settings
from swapmylook.models.asset import AssetKind, ImageAsset
from swapmylook.models.audit import AuditEntry
from swapmylook.models.job import GenerationJob
from swapmylook.services.exceptions import ServiceError, UnmatchedCompletionError
from swapmylook.services.generation import replicate_client
from swapmylook.services.storage.s3_client import output_key
from swapmylook.services.webhooks.events import GenerationCompleted, GenerationFailed
from swapmylook.uow import UnitOfWork

logger = structlog.get_logger()


async def _locate_job(
    uow: UnitOfWork, event: GenerationCompleted | GenerationFailed
) -> GenerationJob:
    """Find the job a completion belongs to.

    The callback URL's job id is tried first, since the webhook can arrive
    before the worker has stored the prediction id; then the prediction id.

    Raises:
        UnmatchedCompletionError: No job matches, or the job already holds a
            different prediction id
    """
    job = None
    if event.job_id is not None:
        job = await uow.jobs.get_by_id(event.job_id)
    if job is None and event.prediction_id:
        job = await uow.jobs.get_by_external_id(event.prediction_id)

    if job is None:
        raise UnmatchedCompletionError(
            f"No job for completion (job_id={event.job_id}, "
            f"prediction_id={event.prediction_id})"
        )
    if (
        event.prediction_id
        and job.external_job_id
        and job.external_job_id != event.prediction_id
    ):
        raise UnmatchedCompletionError(
            f"Prediction {event.prediction_id} does not belong to job {job.id} "
            f"(expected {job.external_job_id})"
        )
    return job


class JobCompletionService:
    """Moves a queued or processing job straight to a terminal status.

    Bypasses the worker retry path. Whichever writer reaches the job row first
    wins; a completion for a job that is already terminal is discarded.
    """

    def __init__(self, uow_factory, storage, settings: Settings):
        """Initialize service.

        Args:
            uow_factory: Factory producing UnitOfWork instances
            storage: Object storage client (put/get/get_signed_url)
            settings: Application settings
        """
        self.uow_factory = uow_factory
        self.storage = storage
        self.settings = settings

    async def complete(self, event: GenerationCompleted) -> bool:
        """Download the provider output, store it, and mark the job succeeded.

        Args:
            event: Parsed completion event

        Returns:
            True if this call moved the job to succeeded
        """
        async with await self.uow_factory() as uow:
            job = await _locate_job(uow, event)

        if job.is_terminal:
            logger.info("job.completion_ignored", job_id=str(job.id), status=job.status.value)
            return False

        try:
            image = await replicate_client.download_output(
                event.output_url, timeout_seconds=self.settings.generation_timeout_seconds
            )
            key = output_key(job.owner_id, job.id, image.extension)
            await self.storage.put(image.content, key, image.content_type)
        except ServiceError as e:
            logger.error("job.completion_store_failed", job_id=str(job.id), error=str(e))
            return await self._fail(
                job, f"Failed to store provider result: {e}", event.prediction_id
            )

        asset_id = uuid4()
        async with await self.uow_factory() as uow:
            applied = await uow.jobs.mark_succeeded(
                job.id, asset_id, external_job_id=event.prediction_id
            )
            if not applied:
                # The stored blob has no asset row; left for storage cleanup
                logger.warning(
                    "job.result_discarded",
                    job_id=str(job.id),
                    source="webhook",
                    orphaned_output_key=key,
                )
                return False

            await uow.assets.add(
                ImageAsset(
                    id=asset_id,
                    owner_id=job.owner_id,
                    kind=AssetKind.OUTPUT,
                    storage_key=key,
                    content_type=image.content_type,
                    size_bytes=len(image.content),
                    source_job_id=job.id,
                )
            )
            await uow.audit.add(
                AuditEntry(
                    user_id=job.owner_id,
                    type="generation",
                    action="generation_completed",
                    resource_type="job",
                    resource_id=str(job.id),
                    details={"source": "webhook", "prediction_id": event.prediction_id},
                )
            )
            await uow.work_queue.remove(job.id)

        logger.info("job.succeeded", job_id=str(job.id), source="webhook", output_key=key)
        return True

    async def fail(self, event: GenerationFailed) -> bool:
        """Mark the job failed with the provider's reason.

        Returns:
            True if this call moved the job to failed
        """
        async with await self.uow_factory() as uow:
            job = await _locate_job(uow, event)

        if job.is_terminal:
            logger.info("job.completion_ignored", job_id=str(job.id), status=job.status.value)
            return False

        return await self._fail(job, event.error, event.prediction_id)

    async def _fail(self, job: GenerationJob, error: str, prediction_id: str | None) -> bool:
        async with await self.uow_factory() as uow:
            applied = await uow.jobs.mark_failed(
                job.id, error, details={"source": "webhook", "prediction_id": prediction_id}
            )
            if not applied:
                logger.info("job.result_discarded", job_id=str(job.id), source="webhook")
                return False
            await uow.audit.add(
                AuditEntry(
                    user_id=job.owner_id,
                    type="generation",
                    action="generation_failed",
                    resource_type="job",
                    resource_id=str(job.id),
                    details={"source": "webhook", "error": error[:500]},
                    is_success=False,
                )
            )
            await uow.work_queue.remove(job.id)

        logger.info("job.failed", job_id=str(job.id), source="webhook", error=error)
        return True
