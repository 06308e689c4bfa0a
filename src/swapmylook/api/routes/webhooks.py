"""Inbound webhook endpoints for the generation and payment providers.

Both providers post to ``/webhooks/{provider}``. The handler verifies the
signature, records the delivery id in the idempotency ledger, answers 200,
and leaves the business effect to a background task, because senders retry
deliveries that are not acknowledged quickly.
"""

import json

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status

from swapmylook.api.dependencies import (
    get_settings,
    get_storage,
    get_uow_factory,
    validate_webhook_request,
)
from swapmylook.core.config import Settings
from swapmylook.services.webhooks.events import EventParseError, event_type_of, parse_event
from swapmylook.services.webhooks.processor import WebhookProcessor

logger = structlog.get_logger()
router = APIRouter()


@router.post("/{provider}")
async def receive_webhook(
    provider: str,
    request: Request,
    background_tasks: BackgroundTasks,
    raw_body: bytes = Depends(validate_webhook_request),
    settings: Settings = Depends(get_settings),
    uow_factory=Depends(get_uow_factory),
    storage=Depends(get_storage),
):
    """Receive a signed webhook delivery.

    This endpoint:
    1. Validates the signature (via dependency)
    2. Parses the JSON payload into a typed event
    3. Inserts the delivery id into the idempotency ledger and commits
    4. Schedules processing as a background task
    5. Returns 200 without waiting for processing

    Args:
        provider: "generation" or "payments"
        request: FastAPI Request object (webhook-id header, job_id query parameter)
        background_tasks: Post-response task queue
        raw_body: Validated raw request body (from signature validation)
        settings: Application settings
        uow_factory: Unit of Work factory for database access
        storage: Object storage client

    Returns:
        {"status": "accepted"} for a new delivery, {"status": "duplicate"} for a redelivery

    HTTP Status Codes:
        200: Delivery accepted or duplicate
        400: Malformed payload
        401: Invalid signature (from dependency)
        404: Unknown provider (from dependency)
    """
    webhook_id = request.headers["webhook-id"]

    try:
        payload = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.error("webhook.invalid_json", provider=provider, webhook_id=webhook_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid JSON payload: {str(e)}",
        )

    try:
        event = parse_event(provider, payload, job_id=request.query_params.get("job_id"))
    except EventParseError as e:
        logger.error("webhook.malformed", provider=provider, webhook_id=webhook_id, error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    event_type = event_type_of(provider, payload)

    async with await uow_factory() as uow:
        is_new = await uow.webhook_receipts.record(provider, webhook_id, event_type)

    if not is_new:
        logger.info(
            "webhook.duplicate", provider=provider, webhook_id=webhook_id, event_type=event_type
        )
        return {"status": "duplicate"}

    logger.info("webhook.received", provider=provider, webhook_id=webhook_id, event_type=event_type)

    processor = WebhookProcessor(uow_factory, storage, settings)
    background_tasks.add_task(processor.process, provider, webhook_id, event)

    return {"status": "accepted"}
