"""Tests for lesson persistence."""

import json
from pathlib import Path
from tempfile import TemporaryDirectory

import pytest

from lessongen.exceptions import PersistenceError
from lessongen.lesson_storage import (
    LessonFileStorage,
    LocalAssetStorage,
    build_field_responses,
)
from lessongen.models import FieldType, LessonField, Section


def _fields():
    return [
        LessonField(id="topic", name="Topic"),
        LessonField(id="stds", name="Standards", type=FieldType.ASSIGN_STANDARDS),
        LessonField(id="quiz", name="Quiz", type=FieldType.MCQS, section=Section.BUILDER),
        LessonField(id="art", name="Art", type=FieldType.IMAGE, section=Section.BUILDER),
    ]


class TestBuildFieldResponses:
    """Test splitting values into designer and builder responses."""

    def test_split_by_section(self):
        """Test values land in their section keyed by id."""
        designer, builder = build_field_responses(
            _fields(), {"topic": "Leaves", "quiz": {"questions": ["q"]}}
        )

        assert designer["topic"] == "Leaves"
        assert builder["quiz"] == {"questions": ["q"]}

    def test_missing_values_filled_per_type(self):
        """Test absent values get the empty value of their type."""
        designer, builder = build_field_responses(_fields(), {})

        assert designer == {"topic": "", "stds": []}
        assert builder["quiz"]["questions"] == [""] * len(builder["quiz"]["questions"])
        assert builder["art"]["url"] == ""

    def test_key_by_name(self):
        """Test responses can be keyed by field name."""
        designer, _ = build_field_responses(_fields(), {"topic": "Leaves"}, key_by="name")
        assert designer["Topic"] == "Leaves"

    def test_invalid_key_by(self):
        """Test an unsupported key is rejected."""
        with pytest.raises(ValueError):
            build_field_responses(_fields(), {}, key_by="order")


class TestLessonFileStorage:
    """Test the file-backed lesson store."""

    @pytest.mark.asyncio
    async def test_save_and_load(self):
        """Test responses round-trip through disk."""
        with TemporaryDirectory() as tmpdir:
            storage = LessonFileStorage(tmpdir)

            await storage.save("lesson-1", {"topic": "Leaves"}, {"quiz": {}})
            loaded = await storage.load("lesson-1")

            assert loaded.lesson_id == "lesson-1"
            assert loaded.designer_responses == {"topic": "Leaves"}
            assert loaded.builder_responses == {"quiz": {}}

    @pytest.mark.asyncio
    async def test_save_is_upsert(self):
        """Test a second save replaces the first."""
        with TemporaryDirectory() as tmpdir:
            storage = LessonFileStorage(tmpdir)

            await storage.save("lesson-1", {"topic": "Old"}, {})
            await storage.save("lesson-1", {"topic": "New"}, {})

            loaded = await storage.load("lesson-1")
            assert loaded.designer_responses["topic"] == "New"
            assert len(list(Path(tmpdir).glob("lesson-1*.json"))) == 1

    @pytest.mark.asyncio
    async def test_load_missing(self):
        """Test loading an unknown lesson returns None."""
        with TemporaryDirectory() as tmpdir:
            assert await LessonFileStorage(tmpdir).load("nope") is None

    @pytest.mark.asyncio
    async def test_state_round_trip(self):
        """Test generation state is stored beside the responses."""
        with TemporaryDirectory() as tmpdir:
            storage = LessonFileStorage(tmpdir)
            state = {"overrides": {"materialized": True, "entries": {}}}

            await storage.save_state("lesson-1", state)

            assert await storage.load_state("lesson-1") == state
            assert await storage.load_state("other") == {}

    @pytest.mark.asyncio
    async def test_unserialisable_value_raises_persistence_error(self):
        """Test a failed write surfaces as PersistenceError."""
        with TemporaryDirectory() as tmpdir:
            storage = LessonFileStorage(tmpdir)

            with pytest.raises(PersistenceError):
                await storage.save("lesson-1", {"topic": object()}, {})

    @pytest.mark.asyncio
    async def test_corrupt_document_raises_persistence_error(self):
        """Test an unreadable document surfaces as PersistenceError."""
        with TemporaryDirectory() as tmpdir:
            (Path(tmpdir) / "lesson-1.json").write_text("{not json")

            with pytest.raises(PersistenceError):
                await LessonFileStorage(tmpdir).load("lesson-1")

    @pytest.mark.asyncio
    async def test_delete(self):
        """Test deleting removes responses and state."""
        with TemporaryDirectory() as tmpdir:
            storage = LessonFileStorage(tmpdir)
            await storage.save("lesson-1", {}, {})
            await storage.save_state("lesson-1", {"x": 1})

            assert await storage.delete("lesson-1") is True
            assert await storage.delete("lesson-1") is False
            assert list(Path(tmpdir).iterdir()) == []

    @pytest.mark.asyncio
    async def test_document_is_json(self):
        """Test the saved document is plain JSON."""
        with TemporaryDirectory() as tmpdir:
            storage = LessonFileStorage(tmpdir)
            await storage.save("lesson-1", {"topic": "Leaves"}, {})

            data = json.loads((Path(tmpdir) / "lesson-1.json").read_text())
            assert data["designer_responses"] == {"topic": "Leaves"}
            assert "updated_at" in data


class TestLocalAssetStorage:
    """Test the local asset store."""

    @pytest.mark.asyncio
    async def test_upload_returns_url(self):
        """Test uploads are written and addressed under the base URL."""
        with TemporaryDirectory() as tmpdir:
            assets = LocalAssetStorage(tmpdir, base_url="/assets/")

            url = await assets.upload("lesson-1/art.png", b"png-bytes")

            assert url == "/assets/lesson-1/art.png"
            assert (Path(tmpdir) / "lesson-1" / "art.png").read_bytes() == b"png-bytes"

    @pytest.mark.asyncio
    async def test_delete(self):
        """Test deleting an asset removes the file."""
        with TemporaryDirectory() as tmpdir:
            assets = LocalAssetStorage(tmpdir)
            await assets.upload("a.png", b"x")

            await assets.delete("a.png")
            await assets.delete("a.png")

            assert not (Path(tmpdir) / "a.png").exists()

    @pytest.mark.asyncio
    async def test_path_traversal_rejected(self):
        """Test paths outside the root are refused."""
        with TemporaryDirectory() as tmpdir:
            assets = LocalAssetStorage(tmpdir)
            with pytest.raises(ValueError):
                await assets.upload("../escape.png", b"x")
