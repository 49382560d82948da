"""Image generation with a primary provider and a fallback.

The primary provider (Gemini ``generateContent``) is retried while it reports a
transient overload. Any other primary failure, or a primary response without
image data, goes straight to the secondary provider (OpenAI images API).
"""

import asyncio
import base64
from typing import Any, Dict, Optional

import httpx

from lessongen.config import get_settings
from lessongen.exceptions import TransportError
from lessongen.logger import get_logger
from lessongen.models import GeneratedImage
from lessongen.prompts import IMAGE_SIZE_INSTRUCTION

logger = get_logger(__name__)

# 1x1 transparent PNG returned in demo mode
_DEMO_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)


def is_overloaded(error: Exception) -> bool:
    """True when an error signals a transient overload of the provider."""
    if isinstance(error, httpx.HTTPStatusError):
        if error.response.status_code in (429, 503):
            return True
    message = str(error)
    return "503" in message or "overloaded" in message.lower()


def truncate_prompt(prompt: str, max_length: int) -> str:
    """Cut an over-long image prompt and mark the cut with an ellipsis."""
    if len(prompt) <= max_length:
        return prompt
    logger.warning(
        "Image prompt too long, truncating",
        length=len(prompt),
        max_length=max_length,
    )
    return prompt[:max_length] + "..."


class ImageGenerationService:
    """Generates images, preferring the primary provider."""

    def __init__(
        self,
        google_api_key: Optional[str] = None,
        openai_api_key: Optional[str] = None,
        timeout: Optional[int] = None,
        demo_mode: Optional[bool] = None,
    ):
        settings = get_settings()
        self.google_api_key = google_api_key or settings.google_api_key
        self.openai_api_key = openai_api_key or settings.openai_api_key
        self.primary_model = settings.image_primary_model
        self.primary_base_url = settings.image_primary_base_url.rstrip("/")
        self.secondary_model = settings.image_secondary_model
        self.secondary_base_url = settings.image_secondary_base_url.rstrip("/")
        self.size = settings.image_size
        self.max_prompt_length = settings.image_prompt_max_length
        self.timeout = timeout or settings.image_timeout
        self.demo_mode = settings.demo_mode if demo_mode is None else demo_mode

        policy = settings.get_image_retry_policy()
        self.retry_attempts = policy["attempts"]
        self.retry_delay = policy["delay"]
        self.backoff_factor = policy["backoff_factor"]

        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        """Async context manager entry."""
        self._client = httpx.AsyncClient(timeout=self.timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def generate(self, prompt: str) -> GeneratedImage:
        """Generate one image for the prompt.

        Raises:
            TransportError: If neither provider produced an image
        """
        if self.demo_mode:
            logger.info("Demo mode: returning placeholder image")
            return GeneratedImage(data=_DEMO_PNG, model="demo")

        if not self._client:
            raise RuntimeError("Client not initialized. Use as async context manager.")

        image_prompt = truncate_prompt(prompt, self.max_prompt_length)

        if self.google_api_key:
            try:
                image = await self._generate_primary_with_retry(image_prompt)
                if image is not None:
                    return image
                logger.warning(
                    "Primary image provider returned no image, falling back",
                    model=self.primary_model,
                )
            except (
                httpx.HTTPError,
                KeyError,
                IndexError,
                TypeError,
                AttributeError,
                ValueError,
            ) as e:
                logger.error(
                    "Primary image provider failed, falling back",
                    model=self.primary_model,
                    error=str(e),
                )
        else:
            logger.info("No primary image provider key configured")

        try:
            return await self._generate_secondary(image_prompt)
        except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as e:
            logger.error(
                "Secondary image provider failed",
                model=self.secondary_model,
                error=str(e),
            )
            raise TransportError(f"Image generation failed: {e}") from e

    async def _generate_primary_with_retry(self, prompt: str) -> Optional[GeneratedImage]:
        delay = self.retry_delay
        for attempt in range(self.retry_attempts):
            try:
                return await self._generate_primary(prompt)
            except httpx.HTTPError as e:
                if is_overloaded(e) and attempt < self.retry_attempts - 1:
                    logger.warning(
                        "Primary image provider overloaded, retrying",
                        attempt=attempt + 1,
                        attempts=self.retry_attempts,
                        delay=delay,
                    )
                    await asyncio.sleep(delay)
                    delay *= self.backoff_factor
                    continue
                raise
        return None

    async def _generate_primary(self, prompt: str) -> Optional[GeneratedImage]:
        url = f"{self.primary_base_url}/models/{self.primary_model}:generateContent"
        payload = {
            "contents": [
                {"parts": [{"text": IMAGE_SIZE_INSTRUCTION.format(prompt=prompt)}]}
            ]
        }
        response = await self._client.post(
            url, params={"key": self.google_api_key}, json=payload
        )
        response.raise_for_status()
        return self._parse_primary_response(response.json())

    def _parse_primary_response(self, body: Dict[str, Any]) -> Optional[GeneratedImage]:
        candidates = body.get("candidates") or []
        if not candidates:
            return None

        text_parts = []
        for part in (candidates[0].get("content") or {}).get("parts") or []:
            inline = part.get("inlineData")
            if inline and inline.get("data"):
                logger.info("Image generated", model=self.primary_model)
                return GeneratedImage(
                    data=base64.b64decode(inline["data"], validate=True),
                    model=self.primary_model,
                    mime_type=inline.get("mimeType") or "image/png",
                )
            if part.get("text"):
                text_parts.append(part["text"])

        if text_parts:
            logger.warning(
                "Primary image provider returned text instead of an image",
                text="".join(text_parts)[:200],
            )
        return None

    async def _generate_secondary(self, prompt: str) -> GeneratedImage:
        logger.info("Generating image", model=self.secondary_model)
        response = await self._client.post(
            f"{self.secondary_base_url}/images/generations",
            headers={"Authorization": f"Bearer {self.openai_api_key or ''}"},
            json={
                "model": self.secondary_model,
                "prompt": prompt,
                "n": 1,
                "size": self.size,
                "quality": "standard",
                "response_format": "b64_json",
            },
        )
        response.raise_for_status()
        b64_data = response.json()["data"][0]["b64_json"]
        return GeneratedImage(
            data=base64.b64decode(b64_data), model=self.secondary_model
        )
