"""Generation worker for processing queued try-on jobs.

Claims items from the durable work queue, runs the provider call, stores the
output, and moves the job to a terminal status. Several instances may run at
once (in the API process and as standalone processes); the queue lease is what
keeps two workers off the same job. The job's ``processing`` status is only
for display.

## Why This Worker Does NOT Use Unit of Work (UoW) Pattern

The UoW pattern assumes: one context = one transaction = automatic commit/rollback at exit.

This worker requires: one context = multiple decision points with conditional commits.

1. **The processing mark must be durable before the provider call**, so status
   polling shows progress during a call that may take minutes.

2. **Multiple error paths with different transaction outcomes**:
   - TransientError: rollback -> queue.fail (retry or exhausted) -> commit
   - PermanentError: rollback -> mark failed -> ack -> commit
   - Success: store asset -> compare-and-set succeeded -> ack -> commit

3. **Batch processing isolation**: each job in a batch gets its own session, so
   one job's failure never rolls back another job's changes.
"""

import asyncio
import os
import socket
import time
from typing import Callable
from uuid import UUID, uuid4

import structlog

from swapmylook.core.config import Settings
from swapmylook.models.asset import AssetKind, ImageAsset
from swapmylook.models.audit import AuditEntry
from swapmylook.models.job import GenerationJob
from swapmylook.models.queue_item import WorkQueueItem
from swapmylook.repositories.asset import ImageAssetRepository
from swapmylook.repositories.audit import AuditRepository
from swapmylook.repositories.job import GenerationJobRepository
from swapmylook.repositories.work_queue import RetryDecision, WorkQueueRepository
from swapmylook.services.exceptions import InvalidInputError, PermanentError
from swapmylook.services.generation.params import (
    GenerationParameters,
    build_prompt,
    build_provider_input,
)
from swapmylook.services.generation.replicate_client import generate_image, submit_prediction
from swapmylook.services.storage.s3_client import output_key

logger = structlog.get_logger(__name__)


def make_worker_id() -> str:
    """Lease owner id unique to this process and worker instance."""
    return f"{socket.gethostname()}-{os.getpid()}-{uuid4().hex[:6]}"


def generation_webhook_url(settings: Settings, job_id: UUID) -> str:
    """Completion callback for one job; the job id lets the webhook find it by id."""
    return f"{settings.public_base_url.rstrip('/')}/webhooks/generation?job_id={job_id}"


async def _provider_input(
    job: GenerationJob, assets: ImageAssetRepository, storage, settings: Settings
) -> dict:
    subject = await assets.get_by_id(job.subject_asset_id)
    style = await assets.get_by_id(job.style_asset_id)
    if subject is None or style is None:
        raise InvalidInputError("Input asset no longer exists")

    subject_url = await storage.get_signed_url(subject.storage_key, settings.signed_url_ttl_seconds)
    style_url = await storage.get_signed_url(style.storage_key, settings.signed_url_ttl_seconds)

    params = GenerationParameters.model_validate(job.parameters or {})
    prompt = build_prompt(settings.default_prompt, job.prompt, params)
    return build_provider_input(prompt, subject_url, style_url, params)


def _generation_audit(
    owner_id: UUID, job_id: UUID, action: str, is_success: bool, **details
) -> AuditEntry:
    return AuditEntry(
        user_id=owner_id,
        type="generation",
        action=action,
        resource_type="job",
        resource_id=str(job_id),
        details=details,
        is_success=is_success,
    )


async def process_single_job(
    item: WorkQueueItem,
    session_factory: Callable,
    settings: Settings,
    storage,
    worker_id: str,
) -> None:
    """Process one claimed queue item.

    Workflow:
    1. Load the job; ack and skip if it is missing or already terminal
    2. Mark the job processing (advisory) and commit
    3. Build provider input from signed URLs of the two input assets
    4. Inline mode: run the provider call, store the output, compare-and-set
       the job to succeeded (a lost race discards the result), ack
       Webhook mode: submit the prediction, store its id, ack; the job stays
       processing until the completion webhook arrives
    5. Handle errors:
       - PermanentError: fail the job immediately, ack
       - TransientError / unexpected: queue.fail decides retry or exhausted

    Args:
        item: Claimed queue item (detached; attempts already incremented)
        session_factory: Factory function to create new database sessions
        settings: Application settings
        storage: Object storage client
        worker_id: Lease owner id used when claiming
    """
    start_time = time.time()
    job_id = item.job_id

    async with session_factory() as session:
        jobs = GenerationJobRepository(session)
        queue = WorkQueueRepository(session)
        assets = ImageAssetRepository(session)
        audit = AuditRepository(session)

        job = await jobs.get_by_id(job_id)
        if job is None or job.is_terminal:
            await queue.ack(job_id, worker_id)
            await session.commit()
            logger.info(
                "job.skipped",
                job_id=str(job_id),
                reason="missing" if job is None else job.status.value,
            )
            return

        if settings.generation_mode == "webhook" and job.external_job_id:
            # Redelivery after a crash between submit and ack; never submit twice
            await queue.ack(job_id, worker_id)
            await session.commit()
            logger.info(
                "job.awaiting_webhook", job_id=str(job_id), prediction_id=job.external_job_id
            )
            return

        if not await jobs.mark_processing(job_id, attempts=item.attempts):
            await queue.ack(job_id, worker_id)
            await session.commit()
            logger.info("job.skipped", job_id=str(job_id), reason="transition_rejected")
            return
        # rollback expires loaded rows; keep what the error paths need
        owner_id = job.owner_id
        await session.commit()

        logger.info("job.processing.started", job_id=str(job_id), attempt_number=item.attempts)

        try:
            provider_input = await _provider_input(job, assets, storage, settings)

            if settings.generation_mode == "webhook":
                prediction_id = await submit_prediction(
                    api_token=settings.replicate_api_token,
                    model=settings.replicate_model_version,
                    provider_input=provider_input,
                    webhook_url=generation_webhook_url(settings, job_id),
                )
                stored = await jobs.set_external_job_id(job_id, prediction_id)
                await queue.ack(job_id, worker_id)
                await session.commit()
                if stored:
                    logger.info(
                        "job.submitted", job_id=str(job_id), prediction_id=prediction_id
                    )
                else:
                    # Completion webhook (or a cancel) landed before submit returned
                    logger.info(
                        "job.finished_before_submit_returned",
                        job_id=str(job_id),
                        prediction_id=prediction_id,
                    )
                return

            image = await generate_image(
                api_token=settings.replicate_api_token,
                model=settings.replicate_model_version,
                provider_input=provider_input,
                timeout_seconds=settings.generation_timeout_seconds,
            )

            key = output_key(owner_id, job_id, image.extension)
            await storage.put(image.content, key, image.content_type)

            asset_id = uuid4()
            if await jobs.mark_succeeded(job_id, asset_id):
                await assets.add(
                    ImageAsset(
                        id=asset_id,
                        owner_id=owner_id,
                        kind=AssetKind.OUTPUT,
                        storage_key=key,
                        content_type=image.content_type,
                        size_bytes=len(image.content),
                        source_job_id=job_id,
                    )
                )
                await audit.add(
                    _generation_audit(
                        owner_id, job_id, "generation_completed", True, attempts=item.attempts
                    )
                )
                logger.info(
                    "job.succeeded",
                    job_id=str(job_id),
                    output_key=key,
                    duration_seconds=time.time() - start_time,
                    attempt_number=item.attempts,
                )
            else:
                # Cancelled or completed by webhook while the provider call ran; the
                # stored blob has no asset row and is left for storage cleanup
                logger.warning(
                    "job.result_discarded", job_id=str(job_id), orphaned_output_key=key
                )

            await queue.ack(job_id, worker_id)
            await session.commit()

        except PermanentError as e:
            await session.rollback()
            if await jobs.mark_failed(
                job_id,
                str(e),
                details={"error_type": type(e).__name__, "attempt": item.attempts},
            ):
                await audit.add(
                    _generation_audit(
                        owner_id, job_id, "generation_failed", False, error=str(e)[:500]
                    )
                )
            await queue.ack(job_id, worker_id)
            await session.commit()
            logger.error(
                "job.failed",
                job_id=str(job_id),
                error_type=type(e).__name__,
                error_message=str(e),
                attempt_number=item.attempts,
            )

        except Exception as e:
            # Transient errors, and anything unexpected, go back through the queue
            await session.rollback()
            error_message = f"{type(e).__name__}: {e}"
            decision = await queue.fail(
                job_id, worker_id, error_message, settings.retry_backoff_seconds
            )

            if decision == RetryDecision.RETRY:
                await jobs.mark_requeued(job_id)
                logger.warning(
                    "job.retry",
                    job_id=str(job_id),
                    error_type=type(e).__name__,
                    error_message=str(e),
                    attempt_number=item.attempts,
                )
            elif decision == RetryDecision.EXHAUSTED:
                if await jobs.mark_failed(
                    job_id,
                    str(e),
                    details={
                        "error_type": type(e).__name__,
                        "attempt": item.attempts,
                        "exhausted": True,
                    },
                ):
                    await audit.add(
                        _generation_audit(
                            owner_id, job_id, "generation_failed", False, error=str(e)[:500]
                        )
                    )
                logger.error(
                    "job.failed",
                    job_id=str(job_id),
                    error_type=type(e).__name__,
                    error_message=str(e),
                    attempt_number=item.attempts,
                    exhausted=True,
                )
            else:
                logger.warning("job.lease_lost", job_id=str(job_id), worker_id=worker_id)

            await session.commit()


async def reap_exhausted_items(session_factory: Callable) -> int:
    """Fail jobs whose final delivery attempt expired without an ack.

    A worker that dies on the last attempt leaves an item that can never be
    claimed again; without this the job would stay processing forever.

    Returns:
        Number of jobs marked failed
    """
    async with session_factory() as session:
        queue = WorkQueueRepository(session)
        jobs = GenerationJobRepository(session)

        items = await queue.reap_exhausted()
        failed = 0
        for item in items:
            reason = item.last_error or "Worker lease expired on final attempt"
            details = {"exhausted": True, "lease_expired": True}
            if await jobs.mark_failed(item.job_id, reason, details=details):
                failed += 1
                logger.error(
                    "job.failed", job_id=str(item.job_id), error_message=reason, exhausted=True
                )
        await session.commit()

    return failed


async def process_batch(
    session_factory: Callable,
    settings: Settings,
    storage,
    worker_id: str,
) -> int:
    """Claim up to WORKER_CONCURRENCY items and process them concurrently.

    Workflow:
    1. Claim items in a short transaction (FOR UPDATE SKIP LOCKED + lease)
    2. Commit so the lease is visible to other workers
    3. Process items concurrently, one session per item
    4. Log unexpected failures (expected ones are logged per job)

    Returns:
        Number of items claimed
    """
    async with session_factory() as claim_session:
        queue = WorkQueueRepository(claim_session)
        items = await queue.claim(
            worker_id,
            limit=settings.worker_concurrency,
            lease_seconds=settings.queue_lease_seconds,
        )
        await claim_session.commit()

    if not items:
        return 0

    tasks = [
        process_single_job(item, session_factory, settings, storage, worker_id) for item in items
    ]
    results = await asyncio.gather(*tasks, return_exceptions=True)

    for item, result in zip(items, results):
        if isinstance(result, Exception):
            # Lease expiry will redeliver this item
            logger.error(
                "job.processing.crashed",
                job_id=str(item.job_id),
                error=str(result),
                error_type=type(result).__name__,
            )

    return len(items)


async def run_generation_worker(
    session_factory: Callable,
    settings: Settings,
    storage,
    worker_id: str | None = None,
) -> None:
    """Main worker loop.

    Reaps exhausted items, processes a batch, and sleeps POLL_INTERVAL_SECONDS
    when the queue is empty. Runs until cancelled.

    Args:
        session_factory: Factory function that creates database sessions
        settings: Application settings
        storage: Object storage client
        worker_id: Lease owner id (generated if omitted)
    """
    worker_id = worker_id or make_worker_id()

    logger.info(
        "worker.started",
        worker_id=worker_id,
        mode=settings.generation_mode,
        poll_interval=settings.poll_interval_seconds,
        concurrency=settings.worker_concurrency,
    )

    try:
        while True:
            try:
                await reap_exhausted_items(session_factory)
                claimed = await process_batch(session_factory, settings, storage, worker_id)

                # Drain without sleeping while there is work
                if claimed == 0:
                    await asyncio.sleep(settings.poll_interval_seconds)

            except asyncio.CancelledError:
                raise

            except Exception as e:
                logger.error(
                    "worker.error",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )
                await asyncio.sleep(5)

    except asyncio.CancelledError:
        logger.info("worker.stopped", worker_id=worker_id)
        raise
