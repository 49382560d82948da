"""Tests for the image generation service."""

import base64
import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from lessongen.exceptions import TransportError
from lessongen.image_client import ImageGenerationService, is_overloaded, truncate_prompt

PRIMARY_PNG = b"primary-image"
SECONDARY_PNG = b"secondary-image"


def _primary_ok(request):
    return httpx.Response(
        200,
        json={
            "candidates": [
                {
                    "content": {
                        "parts": [
                            {"text": "Here is your image"},
                            {
                                "inlineData": {
                                    "mimeType": "image/png",
                                    "data": base64.b64encode(PRIMARY_PNG).decode(),
                                }
                            },
                        ]
                    }
                }
            ]
        },
    )


def _secondary_ok(request):
    return httpx.Response(
        200, json={"data": [{"b64_json": base64.b64encode(SECONDARY_PNG).decode()}]}
    )


class _Router:
    """Routes requests to per-provider handlers and records them."""

    def __init__(self, primary=None, secondary=None):
        self.primary = primary
        self.secondary = secondary
        self.calls = []

    def __call__(self, request):
        if ":generateContent" in request.url.path:
            self.calls.append("primary")
            return self.primary(request)
        self.calls.append("secondary")
        return self.secondary(request)


def _service(router, google_api_key="g-key"):
    service = ImageGenerationService(
        google_api_key=google_api_key, openai_api_key="o-key", demo_mode=False
    )
    service._client = httpx.AsyncClient(transport=httpx.MockTransport(router))
    return service


class TestHelpers:
    """Test overload detection and prompt truncation."""

    def test_overloaded_status_codes(self):
        """Test 503 and 429 count as overload."""
        request = httpx.Request("POST", "https://example.test")
        for code in (503, 429):
            error = httpx.HTTPStatusError(
                "boom", request=request, response=httpx.Response(code, request=request)
            )
            assert is_overloaded(error) is True

    def test_overloaded_message(self):
        """Test an 'overloaded' message counts as overload."""
        assert is_overloaded(RuntimeError("The model is overloaded")) is True
        assert is_overloaded(RuntimeError("bad request")) is False

    def test_truncate_prompt(self):
        """Test long prompts are cut and marked."""
        assert truncate_prompt("short", 10) == "short"
        assert truncate_prompt("x" * 20, 10) == "x" * 10 + "..."


class TestImageGeneration:
    """Test provider selection, retries and fallback."""

    @pytest.mark.asyncio
    async def test_primary_success(self):
        """Test the primary provider's inline image is returned."""
        router = _Router(primary=_primary_ok)

        image = await _service(router).generate("A leaf")

        assert image.data == PRIMARY_PNG
        assert image.model == "gemini-3-pro-image-preview"
        assert router.calls == ["primary"]

    @pytest.mark.asyncio
    async def test_overload_retried_with_backoff(self):
        """Test transient overloads are retried before succeeding."""
        responses = iter([httpx.Response(503), httpx.Response(503)])

        def primary(request):
            try:
                return next(responses)
            except StopIteration:
                return _primary_ok(request)

        router = _Router(primary=primary)

        with patch("lessongen.image_client.asyncio.sleep", new=AsyncMock()) as sleep:
            image = await _service(router).generate("A leaf")

        assert image.data == PRIMARY_PNG
        assert router.calls == ["primary"] * 3
        delays = [call.args[0] for call in sleep.await_args_list]
        assert delays == [3.0, 4.5]

    @pytest.mark.asyncio
    async def test_persistent_overload_falls_back(self):
        """Test exhausting retries falls back to the secondary provider."""
        router = _Router(
            primary=lambda request: httpx.Response(503), secondary=_secondary_ok
        )

        with patch("lessongen.image_client.asyncio.sleep", new=AsyncMock()):
            image = await _service(router).generate("A leaf")

        assert image.data == SECONDARY_PNG
        assert image.model == "dall-e-3"
        assert router.calls == ["primary", "primary", "primary", "secondary"]

    @pytest.mark.asyncio
    async def test_non_retryable_error_falls_back_immediately(self):
        """Test other primary errors skip the retries."""
        router = _Router(
            primary=lambda request: httpx.Response(400), secondary=_secondary_ok
        )

        image = await _service(router).generate("A leaf")

        assert image.data == SECONDARY_PNG
        assert router.calls == ["primary", "secondary"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [
            {"content": b"not json"},
            {
                "json": {
                    "candidates": [
                        {"content": {"parts": [{"inlineData": {"data": "%%%"}}]}}
                    ]
                }
            },
            {"json": {"candidates": "oops"}},
        ],
    )
    async def test_malformed_primary_body_falls_back(self, body):
        """Test an unreadable primary answer falls back to the secondary provider."""
        router = _Router(
            primary=lambda request: httpx.Response(200, **body), secondary=_secondary_ok
        )

        image = await _service(router).generate("A leaf")

        assert image.data == SECONDARY_PNG
        assert router.calls == ["primary", "secondary"]

    @pytest.mark.asyncio
    async def test_malformed_secondary_body_is_transport_error(self):
        """Test an unreadable secondary answer is a transport error."""
        router = _Router(
            primary=lambda request: httpx.Response(400),
            secondary=lambda request: httpx.Response(200, json={"data": None}),
        )

        with pytest.raises(TransportError):
            await _service(router).generate("A leaf")

    @pytest.mark.asyncio
    async def test_text_only_primary_response_falls_back(self):
        """Test a primary answer without image data falls back."""
        router = _Router(
            primary=lambda request: httpx.Response(
                200, json={"candidates": [{"content": {"parts": [{"text": "No"}]}}]}
            ),
            secondary=_secondary_ok,
        )

        image = await _service(router).generate("A leaf")

        assert image.data == SECONDARY_PNG

    @pytest.mark.asyncio
    async def test_no_primary_key_uses_secondary(self):
        """Test the primary provider is skipped without a key."""
        router = _Router(secondary=_secondary_ok)
        service = _service(router)
        service.google_api_key = None

        image = await service.generate("A leaf")

        assert image.data == SECONDARY_PNG
        assert router.calls == ["secondary"]

    @pytest.mark.asyncio
    async def test_both_providers_fail(self):
        """Test a secondary failure is a transport error."""
        router = _Router(
            primary=lambda request: httpx.Response(400),
            secondary=lambda request: httpx.Response(500),
        )

        with pytest.raises(TransportError):
            await _service(router).generate("A leaf")

    @pytest.mark.asyncio
    async def test_long_prompt_truncated(self):
        """Test the prompt sent to the provider is truncated."""
        sent = {}

        def secondary(request):
            sent.update(json.loads(request.content))
            return _secondary_ok(request)

        router = _Router(secondary=secondary)
        service = _service(router)
        service.google_api_key = None

        await service.generate("y" * 5000)

        assert len(sent["prompt"]) == 3503
        assert sent["response_format"] == "b64_json"

    @pytest.mark.asyncio
    async def test_demo_mode(self):
        """Test demo mode returns a placeholder without network access."""
        service = ImageGenerationService(demo_mode=True)
        image = await service.generate("A leaf")
        assert image.model == "demo"
        assert image.data.startswith(b"\x89PNG")
