"""FastAPI dependencies for request validation and common operations.

This module provides reusable FastAPI dependencies for:
- Webhook signature validation
- Caller identity from the X-User-Id header
- Access to app-scoped resources (UoW factory, object storage)
"""

from typing import Annotated, Callable
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status

from swapmylook.core.config import Settings
from swapmylook.services.webhooks.signature import verify_webhook_signature
from swapmylook.uow import UnitOfWork


def get_settings() -> Settings:
    """Get application settings instance.

    Returns:
        Settings instance loaded from environment variables.
    """
    return Settings()  # type: ignore[call-arg]  # Pydantic loads from env vars


async def validate_webhook_request(
    provider: str,
    request: Request,
    settings: Settings = Depends(get_settings),
) -> bytes:
    """Validate a Standard Webhooks signature before the body is touched.

    Unknown providers are 404. Missing headers, a stale timestamp, or a
    signature that matches none of the candidates is 401, raised before any
    parsing or state access.

    Args:
        provider: Path segment naming the sender ("generation" or "payments")
        request: FastAPI Request object (raw body and headers)
        settings: Application settings (injected via dependency)

    Returns:
        Raw request body bytes (for further processing by the endpoint)

    Raises:
        HTTPException: 404 for an unknown provider, 401 if the signature is invalid
    """
    secrets = settings.webhook_secrets
    if provider not in secrets:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Unknown webhook provider"
        )

    raw_body = await request.body()

    is_valid = verify_webhook_signature(
        raw_body=raw_body,
        headers=request.headers,
        secret=secrets[provider],
        tolerance_seconds=settings.webhook_tolerance_seconds,
    )
    if not is_valid:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature"
        )

    return raw_body


def get_uow_factory(request: Request) -> Callable[[], UnitOfWork]:
    """Get UnitOfWork factory from app state.

    Example:
        >>> @router.post("/endpoint")
        >>> async def endpoint(uow_factory=Depends(get_uow_factory)):
        ...     async with await uow_factory() as uow:
        ...         await uow.jobs.get_by_id(job_id)
    """
    return request.app.state.uow_factory


def get_storage(request: Request):
    """Get the object storage client from app state."""
    return request.app.state.storage


def get_caller_id(x_user_id: Annotated[str | None, Header()] = None) -> UUID | None:
    """Optional caller identity.

    Authentication happens upstream; when the gateway forwards X-User-Id, job
    endpoints hide jobs owned by anyone else.

    Raises:
        HTTPException: 400 if the header is present but not a UUID
    """
    if x_user_id is None:
        return None
    try:
        return UUID(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="X-User-Id must be a UUID"
        )
