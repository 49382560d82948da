"""Data models for lesson fields, generation configuration and session progress."""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class FieldType(str, Enum):
    """Closed set of field types a lesson template can contain."""

    TEXT = "text"
    RICH_TEXT = "rich_text"
    DROPDOWN = "dropdown"
    CHECKLIST = "checklist"
    ASSIGN_STANDARDS = "assign_standards"
    MCQS = "mcqs"
    IMAGE = "image"


class Section(str, Enum):
    """Template section a field belongs to. Designer fields generate first."""

    DESIGNER = "designer"
    BUILDER = "builder"


class SessionStatus(str, Enum):
    """States of a generation session."""

    IDLE = "idle"
    VALIDATING = "validating"
    GENERATING = "generating"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


class PauseReason(str, Enum):
    """Why a session stopped short of completion without failing."""

    MISSING_REQUIRED_CONTEXT = "missing_required_context"
    USER_REQUESTED = "user_requested"


class GenerationConfig(BaseModel):
    """Prompt configuration for one AI-enabled field."""

    system_instructions: str = Field(default="", description="System instructions")
    prompt: str = Field(default="", description="Task prompt")
    format_requirements: str = Field(default="", description="Output format requirements")
    context_instructions: str = Field(
        default="", description="How the model should use the context block"
    )
    context_field_ids: Optional[List[str]] = Field(
        default=None,
        description="Context fields used at generation time (None = field's declared list)",
    )
    question_prompts: Dict[str, str] = Field(
        default_factory=dict,
        description="Per-item task prompts for item sets, keyed q1..qN",
    )


class LessonField(BaseModel):
    """A named unit of lesson content, optionally generated by AI."""

    id: str = Field(..., description="Unique field identifier")
    name: str = Field(..., description="Display name, also used as the context label")
    type: FieldType = Field(default=FieldType.TEXT, description="Field type")
    section: Section = Field(default=Section.DESIGNER, description="Template section")
    ai_enabled: bool = Field(default=False, description="Generated by AI")
    required_for_generation: bool = Field(
        default=False,
        description="Must be filled before any field that depends on it is generated",
    )
    context_field_ids: List[str] = Field(
        default_factory=list, description="Declared dependencies, in order"
    )
    order: int = Field(default=0, description="Stable position within the section")
    ai_config: GenerationConfig = Field(
        default_factory=GenerationConfig,
        description="Template-level generation configuration",
    )

    def template_config(self) -> GenerationConfig:
        """Deep copy of the template configuration with context ids resolved."""
        config = self.ai_config.model_copy(deep=True)
        if config.context_field_ids is None:
            config.context_field_ids = list(self.context_field_ids)
        return config


class ItemChoices(BaseModel):
    """The four labelled choices of a multiple-choice item."""

    model_config = ConfigDict(str_strip_whitespace=True)

    A: str = Field(..., min_length=1)
    B: str = Field(..., min_length=1)
    C: str = Field(..., min_length=1)
    D: str = Field(..., min_length=1)


class ItemSetEntry(BaseModel):
    """One multiple-choice item as returned by structured generation."""

    model_config = ConfigDict(str_strip_whitespace=True)

    question_text: str = Field(..., min_length=1)
    choices: ItemChoices
    standards: List[str]
    correct_answer: str = Field(..., pattern="^[ABCD]$")


class ImageValue(BaseModel):
    """Stored value of an image field."""

    url: str = ""
    alt_text: str = ""
    image_model: str = ""
    alt_text_model: str = ""
    description: str = ""


class GeneratedImage(BaseModel):
    """Binary result of an image provider call."""

    data: bytes
    model: str
    mime_type: str = "image/png"
    alt_text: Optional[str] = None


class MissingField(BaseModel):
    """A dependency that blocked generation."""

    id: str
    name: str
    section: Section


class StaleReport(BaseModel):
    """Result of comparing a field's context snapshot with current values."""

    stale: bool = False
    changed: List[str] = Field(default_factory=list)


class GenerationProgress(BaseModel):
    """Progress report delivered to the caller on every state change."""

    status: SessionStatus = SessionStatus.IDLE
    current_index: int = 0
    total: int = 0
    field_id: Optional[str] = None
    field_name: Optional[str] = None
    pause_reason: Optional[PauseReason] = None
    missing_fields: List[MissingField] = Field(default_factory=list)
    stale_fields: Dict[str, List[str]] = Field(default_factory=dict)
    error: Optional[str] = None
    persistence_errors: List[str] = Field(default_factory=list)


class LessonResponses(BaseModel):
    """Persisted responses of a lesson, split by section."""

    lesson_id: str
    designer_responses: Dict[str, Any] = Field(default_factory=dict)
    builder_responses: Dict[str, Any] = Field(default_factory=dict)


class FieldGenerationResult(BaseModel):
    """Outcome of generating a single field outside a session."""

    field_id: str
    value: Any = None
    saved: bool = True
