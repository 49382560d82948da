"""API routes for lesson field generation."""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from lessongen.config import get_settings
from lessongen.exceptions import (
    CyclicDependency,
    DanglingDependency,
    GenerationError,
    InvalidTransition,
    MissingContextError,
    PersistenceError,
    SchemaViolation,
    TransportError,
    UnknownFieldError,
)
from lessongen.field_generator import FieldGenerator
from lessongen.lesson_storage import LessonFileStorage, get_lesson_storage
from lessongen.logger import get_logger
from lessongen.models import (
    FieldGenerationResult,
    GenerationConfig,
    GenerationProgress,
    LessonField,
    StaleReport,
)
from lessongen.workspace import LessonWorkspace

logger = get_logger(__name__)


# Pydantic models for API requests/responses
class ContextBlock(BaseModel):
    """Additional titled context appended to every prompt of a lesson."""

    title: str
    content: str


class CreateLessonRequest(BaseModel):
    """Request model for registering a lesson."""

    lesson_id: str
    fields: List[LessonField]
    extra_context_blocks: Optional[List[ContextBlock]] = Field(
        default=None,
        description="Context blocks added after the dependency values of every prompt",
    )


class LessonInfo(BaseModel):
    """Response model for a registered lesson."""

    lesson_id: str
    field_count: int
    ai_field_count: int
    progress: GenerationProgress


class SetValueRequest(BaseModel):
    """Request model for a user edit of a field value."""

    value: Any = None


class SetValueResponse(BaseModel):
    """Response model for a user edit."""

    field_id: str
    stale_fields: Dict[str, List[str]]


class StaleFieldsResponse(BaseModel):
    """Response model for the stale field listing."""

    stale_fields: Dict[str, List[str]]


class PromptPreviewResponse(BaseModel):
    """Response model for a compiled prompt preview."""

    field_id: str
    prompt: str


class DefaultModelConfig(BaseModel):
    """Default model configuration from environment."""

    model: str
    provider: str
    base_url: str
    temperature: float
    item_set_size: int
    image_model: str
    image_fallback_model: str


lesson_router = APIRouter()
config_router = APIRouter()


# Registered lesson workspaces, keyed by lesson id
_workspaces: Dict[str, LessonWorkspace] = {}
_field_generator: Optional[FieldGenerator] = None


def set_field_generator(generator: Optional[FieldGenerator]) -> None:
    """Install the generator shared by every lesson workspace."""
    global _field_generator
    _field_generator = generator


def get_field_generator() -> FieldGenerator:
    """Get the shared field generator."""
    if _field_generator is None:
        raise HTTPException(status_code=503, detail="Generation services not initialized")
    return _field_generator


def get_workspace(lesson_id: str) -> LessonWorkspace:
    """Get a registered workspace or answer 404."""
    workspace = _workspaces.get(lesson_id)
    if workspace is None:
        raise HTTPException(status_code=404, detail=f"Lesson {lesson_id} not found")
    return workspace


def clear_workspaces() -> None:
    _workspaces.clear()


_STATUS_CODES = (
    (InvalidTransition, 409),
    (UnknownFieldError, 404),
    (CyclicDependency, 422),
    (DanglingDependency, 422),
    (MissingContextError, 422),
    (SchemaViolation, 502),
    (TransportError, 502),
    (PersistenceError, 500),
)


async def generation_error_handler(request: Request, exc: GenerationError) -> JSONResponse:
    """Translate engine errors into HTTP responses."""
    status_code = 500
    for error_type, code in _STATUS_CODES:
        if isinstance(exc, error_type):
            status_code = code
            break

    content: Dict[str, Any] = {"detail": exc.message, "field_id": exc.field_id}
    if isinstance(exc, MissingContextError):
        content["missing"] = exc.missing
    logger.warning(
        "Request failed",
        path=request.url.path,
        error_type=type(exc).__name__,
        status_code=status_code,
        error=exc.message,
    )
    return JSONResponse(status_code=status_code, content=content)


@config_router.get("/config/model", response_model=DefaultModelConfig)
async def get_default_model_config():
    """Get the default model configuration from environment variables."""
    settings = get_settings()
    return DefaultModelConfig(
        model=settings.llm_model,
        provider=settings.llm_provider,
        base_url=settings.llm_base_url,
        temperature=settings.llm_temperature,
        item_set_size=settings.item_set_size,
        image_model=settings.image_primary_model,
        image_fallback_model=settings.image_secondary_model,
    )


def _lesson_info(workspace: LessonWorkspace) -> LessonInfo:
    return LessonInfo(
        lesson_id=workspace.lesson_id,
        field_count=len(workspace.graph.fields),
        ai_field_count=len(workspace.graph.ai_enabled_fields()),
        progress=workspace.orchestrator.progress(),
    )


@lesson_router.post("", response_model=LessonInfo, status_code=201)
async def create_lesson(
    request: CreateLessonRequest,
    storage: LessonFileStorage = Depends(get_lesson_storage),
    generator: FieldGenerator = Depends(get_field_generator),
):
    """Register a lesson from its template fields, restoring any saved state."""
    existing = _workspaces.get(request.lesson_id)
    if existing is not None and (
        existing.has_active_task or existing.orchestrator.is_running
    ):
        raise HTTPException(
            status_code=409,
            detail=f"Lesson {request.lesson_id} is generating and cannot be replaced",
        )

    blocks = [(b.title, b.content) for b in request.extra_context_blocks or []]
    workspace = await LessonWorkspace.load(
        request.lesson_id,
        request.fields,
        storage,
        generator,
        extra_context_blocks=blocks,
    )
    _workspaces[request.lesson_id] = workspace
    logger.info("Registered lesson", lesson_id=request.lesson_id)
    return _lesson_info(workspace)


@lesson_router.get("/{lesson_id}", response_model=LessonInfo)
async def get_lesson(lesson_id: str):
    """Get a registered lesson."""
    return _lesson_info(get_workspace(lesson_id))


@lesson_router.get("/{lesson_id}/values")
async def get_values(lesson_id: str):
    """Get the current value of every field."""
    workspace = get_workspace(lesson_id)
    return {"lesson_id": lesson_id, "values": workspace.values.snapshot()}


@lesson_router.put("/{lesson_id}/values/{field_id}", response_model=SetValueResponse)
async def set_value(lesson_id: str, field_id: str, request: SetValueRequest):
    """Store a user edit of a field value."""
    workspace = get_workspace(lesson_id)
    stale = await workspace.set_value(field_id, request.value)
    return SetValueResponse(field_id=field_id, stale_fields=stale)


# Generation session


@lesson_router.post("/{lesson_id}/generation/start", response_model=GenerationProgress, status_code=202)
async def start_generation(lesson_id: str):
    """Start generating every AI-enabled field in the background."""
    return get_workspace(lesson_id).launch("start")


@lesson_router.post("/{lesson_id}/generation/resume", response_model=GenerationProgress, status_code=202)
async def resume_generation(lesson_id: str):
    """Resume a paused session in the background."""
    return get_workspace(lesson_id).launch("resume")


@lesson_router.post("/{lesson_id}/generation/pause", response_model=GenerationProgress)
async def pause_generation(lesson_id: str):
    """Ask the running session to pause before its next field."""
    return get_workspace(lesson_id).orchestrator.request_pause()


@lesson_router.post("/{lesson_id}/generation/cancel", response_model=GenerationProgress)
async def cancel_generation(lesson_id: str):
    """Cancel the current session."""
    return await get_workspace(lesson_id).orchestrator.cancel()


@lesson_router.get("/{lesson_id}/generation/progress", response_model=GenerationProgress)
async def get_progress(lesson_id: str):
    """Get the progress of the current session."""
    return get_workspace(lesson_id).orchestrator.progress()


# Single fields


@lesson_router.post("/{lesson_id}/fields/{field_id}/generate", response_model=FieldGenerationResult)
async def generate_field(lesson_id: str, field_id: str):
    """Generate one field immediately."""
    workspace = get_workspace(lesson_id)
    try:
        return await workspace.orchestrator.generate_field(field_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@lesson_router.post(
    "/{lesson_id}/fields/{field_id}/items/{index}/regenerate",
    response_model=FieldGenerationResult,
)
async def regenerate_item(lesson_id: str, field_id: str, index: int):
    """Regenerate one item of an item-set field."""
    workspace = get_workspace(lesson_id)
    try:
        return await workspace.orchestrator.regenerate_item(field_id, index)
    except (ValueError, IndexError) as e:
        raise HTTPException(status_code=400, detail=str(e))


@lesson_router.get("/{lesson_id}/fields/{field_id}/prompt-preview", response_model=PromptPreviewResponse)
async def preview_prompt(lesson_id: str, field_id: str):
    """Compile the prompt a field would be generated with right now."""
    workspace = get_workspace(lesson_id)
    prompt = workspace.orchestrator.preview_prompt(field_id)
    return PromptPreviewResponse(field_id=field_id, prompt=prompt)


# Generation configuration


@lesson_router.get("/{lesson_id}/ai-config/{field_id}", response_model=GenerationConfig)
async def get_ai_config(lesson_id: str, field_id: str):
    """Get the effective generation configuration of a field."""
    return get_workspace(lesson_id).get_ai_config(field_id)


@lesson_router.put("/{lesson_id}/ai-config/{field_id}", response_model=GenerationConfig)
async def update_ai_config(lesson_id: str, field_id: str, config: GenerationConfig):
    """Save a lesson-level generation configuration for a field."""
    return await get_workspace(lesson_id).update_ai_config(field_id, config)


# Staleness


@lesson_router.get("/{lesson_id}/stale", response_model=StaleFieldsResponse)
async def list_stale_fields(lesson_id: str):
    """List generated fields whose context changed since generation."""
    return StaleFieldsResponse(stale_fields=get_workspace(lesson_id).stale_fields())


@lesson_router.get("/{lesson_id}/stale/{field_id}", response_model=StaleReport)
async def check_stale(lesson_id: str, field_id: str):
    """Check one field for stale context."""
    return get_workspace(lesson_id).check_stale(field_id)


@lesson_router.post("/{lesson_id}/stale/{field_id}/dismiss", response_model=StaleFieldsResponse)
async def dismiss_stale(lesson_id: str, field_id: str):
    """Hide a field's stale warning until its context changes again."""
    workspace = get_workspace(lesson_id)
    await workspace.dismiss_stale(field_id)
    return StaleFieldsResponse(stale_fields=workspace.stale_fields())
