"""Tests for data models."""

import pytest
from pydantic import ValidationError

from lessongen.models import (
    FieldType,
    GenerationConfig,
    GenerationProgress,
    ItemSetEntry,
    LessonField,
    Section,
    SessionStatus,
)


class TestEnums:
    """Test enum values."""

    def test_field_type_values(self):
        """Test the closed set of field types."""
        assert {t.value for t in FieldType} == {
            "text",
            "rich_text",
            "dropdown",
            "checklist",
            "assign_standards",
            "mcqs",
            "image",
        }

    def test_section_from_string(self):
        """Test sections can be created from strings."""
        assert Section("designer") == Section.DESIGNER
        assert Section("builder") == Section.BUILDER

    def test_session_status_values(self):
        """Test session states."""
        assert SessionStatus.PAUSED.value == "paused"
        assert SessionStatus.COMPLETED.value == "completed"


class TestLessonField:
    """Test LessonField model."""

    def test_defaults(self):
        """Test a minimal field."""
        field = LessonField(id="f1", name="Title")

        assert field.type == FieldType.TEXT
        assert field.section == Section.DESIGNER
        assert field.ai_enabled is False
        assert field.context_field_ids == []
        assert field.ai_config.context_field_ids is None

    def test_template_config_resolves_declared_context(self):
        """Test None context ids fall back to the declared list."""
        field = LessonField(id="b", name="B", context_field_ids=["a"])

        config = field.template_config()

        assert config.context_field_ids == ["a"]
        assert field.ai_config.context_field_ids is None

    def test_template_config_keeps_configured_context(self):
        """Test an explicit context list is kept, even when empty."""
        field = LessonField(
            id="b",
            name="B",
            context_field_ids=["a"],
            ai_config=GenerationConfig(context_field_ids=[]),
        )

        assert field.template_config().context_field_ids == []

    def test_template_config_is_a_copy(self):
        """Test mutating the returned config does not touch the template."""
        field = LessonField(
            id="b", name="B", ai_config=GenerationConfig(prompt="Original")
        )

        config = field.template_config()
        config.prompt = "Changed"

        assert field.ai_config.prompt == "Original"


class TestItemSetEntry:
    """Test multiple-choice item validation."""

    def _valid(self, **overrides):
        data = {
            "question_text": "What is 2 + 2?",
            "choices": {"A": "3", "B": "4", "C": "5", "D": "6"},
            "standards": ["MATH.1"],
            "correct_answer": "B",
        }
        data.update(overrides)
        return data

    def test_valid_item(self):
        """Test a complete item validates."""
        item = ItemSetEntry.model_validate(self._valid())
        assert item.choices.B == "4"

    def test_blank_question_rejected(self):
        """Test whitespace-only question text is rejected."""
        with pytest.raises(ValidationError):
            ItemSetEntry.model_validate(self._valid(question_text="   "))

    def test_missing_choice_rejected(self):
        """Test a missing choice is rejected."""
        with pytest.raises(ValidationError):
            ItemSetEntry.model_validate(
                self._valid(choices={"A": "3", "B": "4", "C": "5"})
            )

    def test_invalid_answer_rejected(self):
        """Test the answer must be one of A-D."""
        with pytest.raises(ValidationError):
            ItemSetEntry.model_validate(self._valid(correct_answer="E"))


class TestGenerationProgress:
    """Test progress report defaults."""

    def test_defaults(self):
        """Test an idle report."""
        progress = GenerationProgress()

        assert progress.status == SessionStatus.IDLE
        assert progress.missing_fields == []
        assert progress.persistence_errors == []
