"""Lesson Generation - dependency-aware AI generation of lesson fields."""

__version__ = "0.1.0"

from lessongen.config import Settings, get_settings
from lessongen.config_store import ConfigOverrideStore
from lessongen.field_generator import FieldGenerator
from lessongen.field_graph import FieldGraph
from lessongen.image_client import ImageGenerationService
from lessongen.lesson_storage import LessonFileStorage, LocalAssetStorage
from lessongen.llm_client import LLMClient
from lessongen.logger import get_logger, setup_logging
from lessongen.models import (
    FieldType,
    GenerationConfig,
    GenerationProgress,
    LessonField,
    PauseReason,
    Section,
    SessionStatus,
)
from lessongen.orchestrator import GenerationOrchestrator
from lessongen.prompt_compiler import compile_prompt
from lessongen.staleness import StalenessTracker
from lessongen.value_store import FieldValueStore
from lessongen.workspace import LessonWorkspace

__all__ = [
    "get_settings",
    "Settings",
    "get_logger",
    "setup_logging",
    "FieldType",
    "Section",
    "SessionStatus",
    "PauseReason",
    "LessonField",
    "GenerationConfig",
    "GenerationProgress",
    "FieldGraph",
    "FieldValueStore",
    "ConfigOverrideStore",
    "StalenessTracker",
    "compile_prompt",
    "LLMClient",
    "ImageGenerationService",
    "FieldGenerator",
    "LessonFileStorage",
    "LocalAssetStorage",
    "GenerationOrchestrator",
    "LessonWorkspace",
]
