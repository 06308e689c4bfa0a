"""Replicate API client for try-on generation with error classification."""

import asyncio
import mimetypes
from dataclasses import dataclass
from typing import Any

import httpx
import replicate
import structlog
from replicate.exceptions import ModelError
from replicate.exceptions import ReplicateError as ReplicateAPIError

from swapmylook.services.exceptions import (
    ContentPolicyError,
    GenerationTimeoutError,
    PermanentError,
    ResultDownloadError,
    ServiceError,
    TransientError,
)

logger = structlog.get_logger()


@dataclass
class GeneratedImage:
    """Result bytes from the provider."""

    content: bytes
    content_type: str = "image/png"

    @property
    def extension(self) -> str:
        return mimetypes.guess_extension(self.content_type) or ".png"


def classify_error(exception: Exception) -> ServiceError:
    """Classify exception into retry category.

    Args:
        exception: Original exception from Replicate SDK or network layer

    Returns:
        Classified ServiceError subclass instance

    Classification rules:
        - Timeout errors -> TransientError
        - 429 (rate limit) -> TransientError
        - 5xx (provider unavailable) -> TransientError
        - 401/403 (authentication) -> PermanentError
        - 400/422 (validation) -> PermanentError
        - Content policy violations -> ContentPolicyError
        - Connection errors -> TransientError
        - Anything else -> PermanentError
    """
    if isinstance(exception, ServiceError):
        return exception

    error_message = str(exception)
    error_message_lower = error_message.lower()
    status = getattr(exception, "status", None)

    is_timeout = isinstance(exception, (asyncio.TimeoutError, TimeoutError))
    if is_timeout or "timeout" in error_message_lower:
        return TransientError(f"Network timeout: {error_message}")

    if status == 429 or "429" in error_message or "rate limit" in error_message_lower:
        return TransientError(f"Rate limit exceeded: {error_message}")

    if (isinstance(status, int) and status >= 500) or "service unavailable" in error_message_lower:
        return TransientError(f"Provider unavailable: {error_message}")

    if (
        status in (401, 403)
        or "unauthorized" in error_message_lower
        or "forbidden" in error_message_lower
        or "invalid api token" in error_message_lower
    ):
        return PermanentError(f"Authentication failed: {error_message}")

    if (
        "content policy" in error_message_lower
        or "nsfw" in error_message_lower
        or "safety" in error_message_lower
        or "flagged" in error_message_lower
    ):
        return ContentPolicyError(f"Content policy violation: {error_message}")

    if status in (400, 404, 422):
        return PermanentError(f"Invalid request: {error_message}")

    if isinstance(exception, (ConnectionError, OSError, httpx.TransportError)):
        return TransientError(f"Connection error: {error_message}")

    return PermanentError(f"Permanent error: {error_message}")


def _split_model(model: str) -> dict[str, str]:
    # "owner/name:version" pins a version; "owner/name" runs the latest
    if ":" in model:
        return {"version": model.split(":", 1)[1]}
    return {"model": model}


def _first_output(output: Any) -> Any:
    if isinstance(output, (list, tuple)):
        if not output:
            raise PermanentError("Provider returned an empty output list")
        return output[0]
    return output


async def download_output(url: str, timeout_seconds: float = 60.0) -> GeneratedImage:
    """Fetch a result file from the provider CDN.

    Args:
        url: Output URL reported by the provider
        timeout_seconds: Total download timeout

    Returns:
        Downloaded image bytes and content type

    Raises:
        ResultDownloadError: Network failure or non-2xx response
    """
    try:
        async with httpx.AsyncClient(timeout=timeout_seconds, follow_redirects=True) as client:
            response = await client.get(url)
            response.raise_for_status()
    except httpx.HTTPError as e:
        raise ResultDownloadError(f"Failed to download result from {url}: {e}") from e

    content_type = response.headers.get("content-type", "").split(";")[0].strip()
    if not content_type.startswith("image/"):
        content_type = mimetypes.guess_type(url)[0] or "image/png"
    return GeneratedImage(content=response.content, content_type=content_type)


async def generate_image(
    api_token: str,
    model: str,
    provider_input: dict,
    timeout_seconds: float = 120.0,
) -> GeneratedImage:
    """Run a prediction and wait for its output.

    Args:
        api_token: Replicate API authentication token
        model: Model identifier ("owner/name" or "owner/name:version")
        provider_input: Model input (prompt, image URLs, parameters)
        timeout_seconds: Upper bound on the provider call

    Returns:
        Generated image bytes

    Raises:
        TransientError: Temporary failure, should retry
        ContentPolicyError: Provider rejected the inputs
        PermanentError: Permanent failure, should not retry
    """
    if not api_token:
        raise PermanentError("REPLICATE_API_TOKEN not configured")

    client = replicate.Client(api_token=api_token)

    def _run() -> Any:
        # SDK is synchronous; FileOutput.read() also blocks
        output = _first_output(client.run(model, input=provider_input))
        if hasattr(output, "read"):
            url = str(getattr(output, "url", ""))
            return GeneratedImage(
                content=output.read(),
                content_type=mimetypes.guess_type(url)[0] or "image/png",
            )
        return str(output)

    try:
        result = await asyncio.wait_for(asyncio.to_thread(_run), timeout=timeout_seconds)
    except asyncio.TimeoutError as e:
        raise GenerationTimeoutError(f"Provider call exceeded {timeout_seconds}s") from e
    except ModelError as e:
        prediction_error = getattr(getattr(e, "prediction", None), "error", None) or str(e)
        raise classify_error(Exception(prediction_error)) from e
    except (ReplicateAPIError, ConnectionError, OSError, httpx.HTTPError) as e:
        raise classify_error(e) from e
    except ServiceError:
        raise
    except Exception as e:
        # Unexpected errors - treat as permanent to avoid infinite retries
        raise PermanentError(f"Unexpected error: {e}") from e

    if isinstance(result, GeneratedImage):
        return result
    if not result.startswith("http"):
        raise PermanentError(f"Unexpected output format from Replicate: {result[:100]}")
    return await download_output(result, timeout_seconds=timeout_seconds)


async def submit_prediction(
    api_token: str,
    model: str,
    provider_input: dict,
    webhook_url: str,
) -> str:
    """Start a prediction that reports completion to ``webhook_url``.

    Args:
        api_token: Replicate API authentication token
        model: Model identifier ("owner/name" or "owner/name:version")
        provider_input: Model input
        webhook_url: Public URL of POST /webhooks/generation

    Returns:
        Provider prediction id

    Raises:
        TransientError: Temporary failure, should retry
        PermanentError: Permanent failure, should not retry
    """
    if not api_token:
        raise PermanentError("REPLICATE_API_TOKEN not configured")

    client = replicate.Client(api_token=api_token)

    def _create() -> str:
        prediction = client.predictions.create(
            input=provider_input,
            webhook=webhook_url,
            webhook_events_filter=["completed"],
            **_split_model(model),
        )
        return prediction.id

    try:
        prediction_id = await asyncio.to_thread(_create)
    except (ReplicateAPIError, ConnectionError, OSError, httpx.HTTPError) as e:
        raise classify_error(e) from e
    except Exception as e:
        raise PermanentError(f"Unexpected error: {e}") from e

    logger.info("generation.prediction_submitted", prediction_id=prediction_id, model=model)
    return prediction_id
