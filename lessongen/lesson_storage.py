"""
Lesson persistence

Stores each lesson's responses as a JSON document on local disk, next to a
second document holding its generation state (config overrides and context
snapshots). Generated image bytes go through a separate asset store.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Protocol, Tuple

import aiofiles

from lessongen.config import get_settings
from lessongen.exceptions import PersistenceError
from lessongen.field_types import empty_value_for
from lessongen.logger import get_logger
from lessongen.models import LessonField, LessonResponses, Section

logger = get_logger(__name__)


def build_field_responses(
    fields: Iterable[LessonField],
    values: Mapping[str, Any],
    key_by: str = "id",
) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Split field values into designer and builder responses.

    Fields without a value get the empty value of their type so the saved
    document always has one entry per field.

    Args:
        fields: Full field list of the lesson
        values: Current values keyed by field id
        key_by: ``"id"`` or ``"name"``, the field property used as response key

    Returns:
        Tuple of (designer_responses, builder_responses)
    """
    if key_by not in ("id", "name"):
        raise ValueError(f"key_by must be 'id' or 'name', got {key_by!r}")

    designer: Dict[str, Any] = {}
    builder: Dict[str, Any] = {}
    for field in fields:
        target = designer if field.section == Section.DESIGNER else builder
        key = field.name if key_by == "name" else field.id
        value = values.get(field.id)
        target[key] = value if value is not None else empty_value_for(field.type)
    return designer, builder


class LessonPersistence(Protocol):
    """Save collaborator used after every generated field."""

    async def save(
        self,
        lesson_id: str,
        designer_responses: Dict[str, Any],
        builder_responses: Dict[str, Any],
    ) -> None:
        ...

    async def save_state(self, lesson_id: str, state: Dict[str, Any]) -> None:
        ...


class LessonFileStorage:
    """File-based storage for lesson responses and generation state."""

    def __init__(self, storage_dir: Optional[str] = None):
        """Initialize storage.

        Args:
            storage_dir: Directory to store lessons. Defaults to LESSON_STORAGE_PATH.
        """
        self.storage_dir = Path(storage_dir or get_settings().lesson_storage_path)
        self._ensure_dir()

    def _ensure_dir(self) -> None:
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def _responses_path(self, lesson_id: str) -> Path:
        return self.storage_dir / f"{lesson_id}.json"

    def _state_path(self, lesson_id: str) -> Path:
        return self.storage_dir / f"{lesson_id}.state.json"

    async def _write_json(self, path: Path, data: Dict[str, Any]) -> None:
        # Serialise first so a bad value never truncates the existing document
        content = json.dumps(data, indent=2, ensure_ascii=False)
        async with aiofiles.open(path, "w") as f:
            await f.write(content)

    async def _read_json(self, path: Path) -> Optional[Dict[str, Any]]:
        if not path.exists():
            return None
        async with aiofiles.open(path, "r") as f:
            return json.loads(await f.read())

    async def save(
        self,
        lesson_id: str,
        designer_responses: Dict[str, Any],
        builder_responses: Dict[str, Any],
    ) -> None:
        """Upsert the responses of a lesson.

        Raises:
            PersistenceError: If the document could not be written
        """
        document = {
            "lesson_id": lesson_id,
            "designer_responses": designer_responses,
            "builder_responses": builder_responses,
            "updated_at": datetime.utcnow().isoformat(),
        }
        try:
            await self._write_json(self._responses_path(lesson_id), document)
        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to save lesson", lesson_id=lesson_id, error=str(e))
            raise PersistenceError(f"Failed to save lesson {lesson_id}: {e}") from e
        logger.info("Saved lesson responses", lesson_id=lesson_id)

    async def load(self, lesson_id: str) -> Optional[LessonResponses]:
        """Load the responses of a lesson, or None if it was never saved."""
        try:
            data = await self._read_json(self._responses_path(lesson_id))
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Failed to load lesson {lesson_id}: {e}") from e
        if data is None:
            return None
        return LessonResponses(
            lesson_id=lesson_id,
            designer_responses=data.get("designer_responses") or {},
            builder_responses=data.get("builder_responses") or {},
        )

    async def save_state(self, lesson_id: str, state: Dict[str, Any]) -> None:
        """Persist config overrides and context snapshots of a lesson.

        Raises:
            PersistenceError: If the document could not be written
        """
        try:
            await self._write_json(self._state_path(lesson_id), state)
        except (OSError, TypeError, ValueError) as e:
            logger.error(
                "Failed to save generation state", lesson_id=lesson_id, error=str(e)
            )
            raise PersistenceError(
                f"Failed to save generation state for {lesson_id}: {e}"
            ) from e

    async def load_state(self, lesson_id: str) -> Dict[str, Any]:
        """Load the generation state of a lesson; empty when none was saved."""
        try:
            data = await self._read_json(self._state_path(lesson_id))
        except (OSError, ValueError) as e:
            raise PersistenceError(
                f"Failed to load generation state for {lesson_id}: {e}"
            ) from e
        return data or {}

    async def delete(self, lesson_id: str) -> bool:
        """Delete a lesson and its state. Returns False if it did not exist."""
        found = False
        for path in (self._responses_path(lesson_id), self._state_path(lesson_id)):
            if path.exists():
                path.unlink()
                found = True
        if found:
            logger.info("Deleted lesson", lesson_id=lesson_id)
        return found


class AssetStorage(Protocol):
    """Binary asset store used for generated images."""

    async def upload(self, path: str, data: bytes) -> str:
        ...

    async def delete(self, path: str) -> None:
        ...


class LocalAssetStorage:
    """Asset store writing to a local directory served under a base URL."""

    def __init__(self, root: Optional[str] = None, base_url: Optional[str] = None):
        settings = get_settings()
        self.root = Path(root or settings.asset_storage_path)
        self.base_url = (base_url or settings.asset_base_url).rstrip("/")
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if self.root.resolve() not in target.parents:
            raise ValueError(f"Asset path escapes storage root: {path}")
        return target

    async def upload(self, path: str, data: bytes) -> str:
        """Write the asset and return its public URL."""
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(target, "wb") as f:
            await f.write(data)
        logger.info("Uploaded asset", path=path, size=len(data))
        return f"{self.base_url}/{path}"

    async def delete(self, path: str) -> None:
        target = self._resolve(path)
        if target.exists():
            target.unlink()
            logger.info("Deleted asset", path=path)


# Singleton instance
_lesson_storage: Optional[LessonFileStorage] = None


def get_lesson_storage() -> LessonFileStorage:
    """Get the singleton lesson storage instance."""
    global _lesson_storage
    if _lesson_storage is None:
        _lesson_storage = LessonFileStorage()
    return _lesson_storage
