"""Turns a compiled prompt into a stored value for one field.

The dispatch follows the field type's generation kind:

- text kinds: one completion, cleaned up by the type handler
- item sets: one structured call for exactly N items, validated and encoded
  all-or-nothing
- images: primary/secondary image provider, optional alt text, asset upload
"""

import copy
from typing import Any, Optional

from lessongen.exceptions import TransportError
from lessongen.field_types import (
    ITEM_SET_INTERNAL_KEYS,
    GenerationKind,
    ItemSetHandler,
    handler_for,
)
from lessongen.image_client import ImageGenerationService
from lessongen.lesson_storage import AssetStorage
from lessongen.llm_client import LLMClient
from lessongen.logger import get_logger
from lessongen.models import GeneratedImage, ImageValue, LessonField
from lessongen.structured_output import (
    build_item_set_schema,
    canonicalize_items,
    canonicalize_single_item,
)

logger = get_logger(__name__)

_EXTENSIONS = {"image/png": "png", "image/jpeg": "jpg", "image/webp": "webp"}


def asset_path(lesson_id: str, field_id: str, mime_type: str = "image/png") -> str:
    """Storage path of a field's generated image."""
    return f"{lesson_id}/{field_id}.{_EXTENSIONS.get(mime_type, 'png')}"


class FieldGenerator:
    """Calls the AI services for one field and interprets the response."""

    def __init__(
        self,
        llm_client: LLMClient,
        image_service: Optional[ImageGenerationService] = None,
        asset_storage: Optional[AssetStorage] = None,
    ):
        self.llm_client = llm_client
        self.image_service = image_service
        self.asset_storage = asset_storage

    async def generate(
        self,
        lesson_id: str,
        field: LessonField,
        prompt: str,
        current_value: Any = None,
    ) -> Any:
        """Produce the new value of a field from its compiled prompt.

        Raises:
            TransportError: If an AI service failed
            SchemaViolation: If a structured response has the wrong shape
        """
        handler = handler_for(field.type)

        if handler.kind == GenerationKind.STRUCTURED:
            return await self._generate_item_set(field, handler, prompt, current_value)
        if handler.kind == GenerationKind.IMAGE:
            return await self._generate_image(lesson_id, field, prompt, current_value)

        raw = await self.llm_client.generate(prompt)
        return handler.parse_result(raw)

    async def _generate_item_set(
        self,
        field: LessonField,
        handler: ItemSetHandler,
        prompt: str,
        current_value: Any,
    ) -> dict:
        item_count = handler.item_count
        response = await self.llm_client.generate_structured(
            prompt, build_item_set_schema(item_count)
        )
        questions = canonicalize_items(response, item_count, field_id=field.id)

        value = copy.deepcopy(current_value) if isinstance(current_value, dict) else {}
        value["questions"] = questions
        for key in ITEM_SET_INTERNAL_KEYS:
            value.setdefault(key, {})
        logger.info("Generated item set", field_id=field.id, items=len(questions))
        return value

    async def generate_single_item(
        self, field: LessonField, prompt: str, index: int
    ) -> str:
        """Generate one replacement item, numbered for position ``index``."""
        response = await self.llm_client.generate_structured(
            prompt, build_item_set_schema(1)
        )
        return canonicalize_single_item(response, index, field_id=field.id)

    async def _generate_image(
        self,
        lesson_id: str,
        field: LessonField,
        prompt: str,
        current_value: Any,
    ) -> dict:
        if self.image_service is None or self.asset_storage is None:
            raise TransportError("No image service configured", field_id=field.id)

        image = await self.image_service.generate(prompt)
        alt_text, alt_text_model = await self._alt_text_for(field, image)

        try:
            url = await self.asset_storage.upload(
                asset_path(lesson_id, field.id, image.mime_type), image.data
            )
        except (OSError, ValueError) as e:
            raise TransportError(
                f"Failed to store generated image: {e}", field_id=field.id
            ) from e

        description = ""
        if isinstance(current_value, dict):
            description = current_value.get("description") or ""

        return ImageValue(
            url=url,
            alt_text=alt_text or "",
            image_model=image.model,
            alt_text_model=alt_text_model,
            description=description,
        ).model_dump()

    async def _alt_text_for(self, field: LessonField, image: GeneratedImage):
        if image.alt_text:
            return image.alt_text, image.model
        try:
            alt_text = await self.llm_client.describe_image(image.data, image.mime_type)
        except TransportError as e:
            # Alt text is optional; the image itself is kept
            logger.warning("Alt text generation failed", field_id=field.id, error=str(e))
            return None, ""
        return alt_text, self.llm_client.vision_model
