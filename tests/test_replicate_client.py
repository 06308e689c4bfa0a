"""Replicate client tests: error classification and provider calls (SDK mocked)."""

import asyncio
import time
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from swapmylook.services.exceptions import (
    ContentPolicyError,
    GenerationTimeoutError,
    PermanentError,
    ResultDownloadError,
    TransientError,
)
from swapmylook.services.generation.replicate_client import (
    GeneratedImage,
    classify_error,
    download_output,
    generate_image,
    submit_prediction,
)

CLIENT = "swapmylook.services.generation.replicate_client.replicate.Client"
DOWNLOAD = "swapmylook.services.generation.replicate_client.download_output"


class ProviderHTTPError(Exception):
    """Stand-in for an SDK error carrying an HTTP status."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class TestClassifyError:
    @pytest.mark.parametrize(
        "exception",
        [
            asyncio.TimeoutError(),
            ProviderHTTPError("Request timeout"),
            ProviderHTTPError("slow down", status=429),
            ProviderHTTPError("Rate limit exceeded"),
            ProviderHTTPError("bad gateway", status=502),
            ProviderHTTPError("Service Unavailable"),
            ConnectionResetError("connection reset by peer"),
            httpx.ConnectError("dns failure"),
        ],
    )
    def test_transient(self, exception):
        classified = classify_error(exception)

        assert isinstance(classified, TransientError)

    @pytest.mark.parametrize(
        "exception",
        [
            ProviderHTTPError("nope", status=401),
            ProviderHTTPError("Invalid API token"),
            ProviderHTTPError("bad input", status=422),
            ProviderHTTPError("model not found", status=404),
            ValueError("something odd"),
        ],
    )
    def test_permanent(self, exception):
        classified = classify_error(exception)

        assert isinstance(classified, PermanentError)
        assert not isinstance(classified, ContentPolicyError)

    @pytest.mark.parametrize("message", ["NSFW content detected", "Input flagged by safety filter"])
    def test_content_policy(self, message):
        assert isinstance(classify_error(Exception(message)), ContentPolicyError)

    def test_service_errors_pass_through(self):
        error = GenerationTimeoutError("took too long")

        assert classify_error(error) is error


def test_generated_image_extension():
    assert GeneratedImage(b"", "image/png").extension == ".png"
    assert GeneratedImage(b"", "image/jpeg").extension in (".jpg", ".jpeg")
    assert GeneratedImage(b"", "application/x-unknown").extension == ".png"


@pytest.mark.asyncio
class TestGenerateImage:
    async def test_missing_token_is_permanent(self):
        with pytest.raises(PermanentError, match="REPLICATE_API_TOKEN"):
            await generate_image("", "owner/model", {"prompt": "x"})

    async def test_file_output_is_read(self):
        output = MagicMock()
        output.read.return_value = b"jpeg-bytes"
        output.url = "https://replicate.delivery/abc/out.jpg"

        with patch(CLIENT) as client_cls:
            client_cls.return_value.run.return_value = [output]
            image = await generate_image("r8_token", "owner/model", {"prompt": "x"})

        assert image.content == b"jpeg-bytes"
        assert image.content_type == "image/jpeg"
        client_cls.assert_called_once_with(api_token="r8_token")
        client_cls.return_value.run.assert_called_once_with("owner/model", input={"prompt": "x"})

    async def test_url_output_is_downloaded(self):
        downloaded = GeneratedImage(b"png-bytes", "image/png")

        with patch(CLIENT) as client_cls, patch(
            DOWNLOAD, new=AsyncMock(return_value=downloaded)
        ) as download:
            client_cls.return_value.run.return_value = "https://replicate.delivery/out.png"
            image = await generate_image("r8_token", "owner/model", {}, timeout_seconds=30)

        assert image is downloaded
        download.assert_awaited_once_with("https://replicate.delivery/out.png", timeout_seconds=30)

    async def test_unexpected_output_is_permanent(self):
        with patch(CLIENT) as client_cls:
            client_cls.return_value.run.return_value = "not a url"

            with pytest.raises(PermanentError, match="Unexpected output format"):
                await generate_image("r8_token", "owner/model", {})

    async def test_empty_output_list_is_permanent(self):
        with patch(CLIENT) as client_cls:
            client_cls.return_value.run.return_value = []

            with pytest.raises(PermanentError, match="empty output"):
                await generate_image("r8_token", "owner/model", {})

    async def test_slow_call_times_out_as_transient(self):
        with patch(CLIENT) as client_cls:
            client_cls.return_value.run.side_effect = lambda *args, **kwargs: time.sleep(0.3)

            with pytest.raises(GenerationTimeoutError):
                await generate_image("r8_token", "owner/model", {}, timeout_seconds=0.05)

    async def test_connection_error_is_transient(self):
        with patch(CLIENT) as client_cls:
            client_cls.return_value.run.side_effect = ConnectionError("reset")

            with pytest.raises(TransientError):
                await generate_image("r8_token", "owner/model", {})


@pytest.mark.asyncio
class TestSubmitPrediction:
    async def test_latest_model_submission(self):
        with patch(CLIENT) as client_cls:
            client_cls.return_value.predictions.create.return_value = MagicMock(id="pred_42")

            prediction_id = await submit_prediction(
                "r8_token",
                "owner/model",
                {"prompt": "x"},
                "https://api.example.com/webhooks/generation",
            )

        assert prediction_id == "pred_42"
        client_cls.return_value.predictions.create.assert_called_once_with(
            input={"prompt": "x"},
            webhook="https://api.example.com/webhooks/generation",
            webhook_events_filter=["completed"],
            model="owner/model",
        )

    async def test_pinned_version_submission(self):
        with patch(CLIENT) as client_cls:
            client_cls.return_value.predictions.create.return_value = MagicMock(id="pred_43")

            await submit_prediction("r8_token", "owner/model:abc123", {}, "https://hook")

        kwargs = client_cls.return_value.predictions.create.call_args.kwargs
        assert kwargs["version"] == "abc123"
        assert "model" not in kwargs

    async def test_missing_token_is_permanent(self):
        with pytest.raises(PermanentError):
            await submit_prediction("", "owner/model", {}, "https://hook")


@pytest.mark.asyncio
class TestDownloadOutput:
    async def test_http_error_becomes_download_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404)

        transport = httpx.MockTransport(handler)
        real_client = httpx.AsyncClient

        with patch(
            "swapmylook.services.generation.replicate_client.httpx.AsyncClient",
            side_effect=lambda **kwargs: real_client(transport=transport, **kwargs),
        ):
            with pytest.raises(ResultDownloadError):
                await download_output("https://cdn.example/missing.png")

    async def test_content_type_from_response(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"jpg", headers={"content-type": "image/jpeg"})

        transport = httpx.MockTransport(handler)
        real_client = httpx.AsyncClient

        with patch(
            "swapmylook.services.generation.replicate_client.httpx.AsyncClient",
            side_effect=lambda **kwargs: real_client(transport=transport, **kwargs),
        ):
            image = await download_output("https://cdn.example/out")

        assert image.content == b"jpg"
        assert image.content_type == "image/jpeg"
