"""Sequential generation of a lesson's AI-enabled fields.

A session walks the fixed generation queue one field at a time::

    Idle -> Validating -> Generating -> Completed
                 |            |
                 v            v
               Paused       Failed

Missing context pauses the session at the exact field that needs it, and
``resume()`` continues from there without touching fields already generated.
Transport failures and malformed structured responses end the session. A failed
save is logged and reported but never stops the loop.
"""

import inspect
from dataclasses import dataclass, field as dataclass_field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from lessongen.config_store import ConfigOverrideStore
from lessongen.exceptions import (
    InvalidTransition,
    MissingContextError,
    PersistenceError,
    SchemaViolation,
    TransportError,
)
from lessongen.field_generator import FieldGenerator
from lessongen.field_graph import FieldGraph
from lessongen.field_types import ItemSetHandler, handler_for, is_empty_value
from lessongen.lesson_storage import LessonPersistence, build_field_responses
from lessongen.logger import bind_lesson_context, get_logger
from lessongen.models import (
    FieldGenerationResult,
    FieldType,
    GenerationConfig,
    GenerationProgress,
    LessonField,
    MissingField,
    PauseReason,
    SessionStatus,
)
from lessongen.prompt_compiler import build_context_entries, compile_prompt
from lessongen.prompts import (
    DEFAULT_IMAGE_PROMPT,
    DEFAULT_ITEM_PROMPT,
    ITEM_SET_FORMAT_REQUIREMENTS,
)
from lessongen.staleness import StalenessTracker
from lessongen.structured_output import replace_item
from lessongen.value_store import FieldValueStore

logger = get_logger(__name__)

_ACTIVE = (SessionStatus.VALIDATING, SessionStatus.GENERATING, SessionStatus.PAUSED)


@dataclass
class GenerationSession:
    """Transient state of one run over the generation queue."""

    queue: List[LessonField]
    status: SessionStatus = SessionStatus.IDLE
    current_index: int = 0
    pause_reason: Optional[PauseReason] = None
    missing_fields: List[MissingField] = dataclass_field(default_factory=list)
    persistence_errors: List[str] = dataclass_field(default_factory=list)
    error: Optional[str] = None
    failed_field_id: Optional[str] = None
    cancel_requested: bool = False
    pause_requested: bool = False

    @property
    def total(self) -> int:
        return len(self.queue)

    def field_at(self, index: int) -> Optional[LessonField]:
        if 0 <= index < len(self.queue):
            return self.queue[index]
        return None


class GenerationOrchestrator:
    """Drives generation sessions for one lesson."""

    def __init__(
        self,
        lesson_id: str,
        graph: FieldGraph,
        values: FieldValueStore,
        config_store: ConfigOverrideStore,
        tracker: StalenessTracker,
        generator: FieldGenerator,
        persistence: LessonPersistence,
        progress_callback: Optional[Callable[[GenerationProgress], Any]] = None,
        extra_context_blocks: Optional[Sequence[Tuple[str, str]]] = None,
    ):
        """Initialize the orchestrator.

        Args:
            lesson_id: Lesson being generated
            graph: Template fields and their dependencies
            values: Current field values, written as fields complete
            config_store: Lesson-level generation configuration
            tracker: Context snapshots for staleness reporting
            generator: Performs the AI call for one field
            persistence: Save collaborator called after every field
            progress_callback: Optional function (sync or async) receiving a
                ``GenerationProgress`` on every state change
            extra_context_blocks: ``(title, content)`` pairs added to every prompt
        """
        self.lesson_id = lesson_id
        self.graph = graph
        self.values = values
        self.config_store = config_store
        self.tracker = tracker
        self.generator = generator
        self.persistence = persistence
        self.progress_callback = progress_callback
        self.extra_context_blocks = list(extra_context_blocks or [])

        self._session: Optional[GenerationSession] = None
        self._running = False

    @property
    def status(self) -> SessionStatus:
        if self._session is None:
            return SessionStatus.IDLE
        return self._session.status

    @property
    def is_running(self) -> bool:
        return self._running

    def progress(self) -> GenerationProgress:
        """Snapshot of the current session for the caller."""
        stale = self.tracker.stale_fields(self.values)
        session = self._session
        if session is None:
            return GenerationProgress(status=SessionStatus.IDLE, stale_fields=stale)

        current = session.field_at(session.current_index)
        if session.status == SessionStatus.FAILED and session.failed_field_id:
            current = self.graph.get(session.failed_field_id)

        return GenerationProgress(
            status=session.status,
            current_index=session.current_index,
            total=session.total,
            field_id=current.id if current else None,
            field_name=current.name if current else None,
            pause_reason=session.pause_reason,
            missing_fields=list(session.missing_fields),
            stale_fields=stale,
            error=session.error,
            persistence_errors=list(session.persistence_errors),
        )

    async def _notify(self) -> GenerationProgress:
        report = self.progress()
        if self.progress_callback:
            result = self.progress_callback(report)
            if inspect.isawaitable(result):
                await result
        return report

    # Session control

    def check_transition(self, operation: str) -> None:
        """Raise InvalidTransition unless ``start`` or ``resume`` is allowed now."""
        if operation == "start":
            allowed = not self._running and self.status not in _ACTIVE
        elif operation == "resume":
            allowed = not self._running and self.status == SessionStatus.PAUSED
        else:
            raise ValueError(f"Unknown session operation: {operation}")
        if not allowed:
            raise InvalidTransition(operation, self.status.value)

    async def start(self) -> GenerationProgress:
        """Start a new session over every AI-enabled field.

        Raises:
            InvalidTransition: If a session is already running or paused
        """
        self.check_transition("start")

        bind_lesson_context(self.lesson_id)
        queue = self.graph.ordered_generation_queue()
        self._session = GenerationSession(queue=queue)
        logger.info("Starting generation session", total=len(queue))
        return await self._run()

    async def resume(self) -> GenerationProgress:
        """Continue a paused session from the field it stopped at.

        Raises:
            InvalidTransition: If the session is not paused
        """
        self.check_transition("resume")

        bind_lesson_context(self.lesson_id)
        session = self._session
        session.pause_reason = None
        session.missing_fields = []
        session.error = None
        session.pause_requested = False
        logger.info("Resuming generation session", resume_index=session.current_index)
        return await self._run()

    async def cancel(self) -> GenerationProgress:
        """Abandon the session.

        A running loop stops at the next field boundary; the field being
        generated is allowed to finish.

        Raises:
            InvalidTransition: If there is no session to cancel
        """
        if self.status not in _ACTIVE:
            raise InvalidTransition("cancel", self.status.value)

        if self._running:
            self._session.cancel_requested = True
            logger.info("Cancellation requested")
            return self.progress()

        self._session = None
        logger.info("Generation session cancelled")
        return await self._notify()

    def request_pause(self) -> GenerationProgress:
        """Ask a running session to pause before its next field.

        Raises:
            InvalidTransition: If no session is running
        """
        if not self._running:
            raise InvalidTransition("pause", self.status.value)
        self._session.pause_requested = True
        logger.info("Pause requested")
        return self.progress()

    # Generation loop

    async def _run(self) -> GenerationProgress:
        session = self._session
        self._running = True
        try:
            session.status = SessionStatus.VALIDATING
            await self._notify()

            try:
                missing = self._preflight(session.queue[session.current_index:])
            except Exception as e:
                logger.exception("Pre-flight check failed")
                return await self._fail(self._field_for_error(e), e)
            if missing:
                return await self._pause(PauseReason.MISSING_REQUIRED_CONTEXT, missing)

            session.status = SessionStatus.GENERATING
            while session.current_index < session.total:
                field = session.queue[session.current_index]
                await self._notify()

                # Field boundary: honour requests made since the last step
                if session.cancel_requested:
                    self._session = None
                    logger.info("Generation session cancelled")
                    return await self._notify()
                if session.pause_requested:
                    session.pause_requested = False
                    return await self._pause(PauseReason.USER_REQUESTED)

                try:
                    missing = self._missing_dependencies(field)
                    if missing:
                        return await self._pause(
                            PauseReason.MISSING_REQUIRED_CONTEXT, missing
                        )
                    _, saved = await self._generate_step(field)
                except (TransportError, SchemaViolation) as e:
                    return await self._fail(field, e)
                except Exception as e:
                    logger.exception("Unexpected error during generation", field_id=field.id)
                    return await self._fail(field, e)

                if not saved:
                    session.persistence_errors.append(field.id)
                session.current_index += 1

            if session.cancel_requested or session.pause_requested:
                logger.warning(
                    "Session finished before the request could apply",
                    cancel_requested=session.cancel_requested,
                    pause_requested=session.pause_requested,
                )
                session.cancel_requested = False
                session.pause_requested = False
            session.status = SessionStatus.COMPLETED
            logger.info(
                "Generation session completed",
                total=session.total,
                persistence_errors=session.persistence_errors,
            )
            return await self._notify()
        finally:
            self._running = False

    async def _pause(
        self, reason: PauseReason, missing: Optional[List[MissingField]] = None
    ) -> GenerationProgress:
        session = self._session
        session.status = SessionStatus.PAUSED
        session.pause_reason = reason
        session.missing_fields = list(missing or [])
        field = session.field_at(session.current_index)
        if reason == PauseReason.MISSING_REQUIRED_CONTEXT:
            session.error = MissingContextError(
                [m.model_dump() for m in session.missing_fields],
                field_id=field.id if field else None,
            ).message
        else:
            session.error = "Generation paused by user"
        logger.info(
            "Generation session paused",
            reason=reason.value,
            resume_index=session.current_index,
            missing=[m.id for m in session.missing_fields],
        )
        return await self._notify()

    def _field_for_error(self, error: Exception) -> Optional[LessonField]:
        field_id = getattr(error, "field_id", None)
        if field_id and field_id in self.graph:
            return self.graph.get(field_id)
        return self._session.field_at(self._session.current_index)

    async def _fail(
        self, field: Optional[LessonField], error: Exception
    ) -> GenerationProgress:
        session = self._session
        session.status = SessionStatus.FAILED
        session.failed_field_id = field.id if field else None
        session.error = str(error)
        logger.error(
            "Generation session failed",
            field_id=session.failed_field_id,
            index=session.current_index,
            total=session.total,
            error=str(error),
        )
        return await self._notify()

    def _preflight(self, queue: Sequence[LessonField]) -> List[MissingField]:
        """Required dependencies of the queued fields that have no value yet."""
        missing: List[MissingField] = []
        seen = set()
        for field in queue:
            for dep in self._missing_dependencies(field, required_only=True):
                if dep.id not in seen:
                    seen.add(dep.id)
                    missing.append(dep)
        return missing

    def _missing_dependencies(
        self, field: LessonField, required_only: bool = False
    ) -> List[MissingField]:
        missing = []
        for dep_id in self.graph.dependencies_of(field.id, self.config_store):
            dep = self.graph.get(dep_id)
            if required_only and not dep.required_for_generation:
                continue
            if is_empty_value(dep.type, self.values.get(dep_id)):
                missing.append(MissingField(id=dep.id, name=dep.name, section=dep.section))
        return missing

    # Field steps

    def _task_config(self, field: LessonField) -> GenerationConfig:
        config = self.config_store.effective_config(field.id)
        if field.type == FieldType.MCQS and not config.format_requirements:
            config.format_requirements = ITEM_SET_FORMAT_REQUIREMENTS
        if field.type == FieldType.IMAGE:
            current = self.values.get(field.id)
            description = current.get("description") if isinstance(current, dict) else None
            if description:
                config.prompt = description
            elif not config.prompt:
                config.prompt = DEFAULT_IMAGE_PROMPT
        return config

    def _compile(
        self, field: LessonField, config: GenerationConfig
    ) -> Tuple[str, Dict[str, Any]]:
        dep_ids = self.graph.dependencies_of(field.id, self.config_store)
        dependency_values = self.values.subset(dep_ids)
        entries = build_context_entries(self.graph, dep_ids, dependency_values)
        prompt = compile_prompt(config, entries, self.extra_context_blocks)
        return prompt, dependency_values

    def preview_prompt(self, field_id: str) -> str:
        """Compile a field's prompt as it would be sent now, without validating."""
        field = self.graph.get(field_id)
        prompt, _ = self._compile(field, self._task_config(field))
        return prompt

    async def _generate_step(self, field: LessonField) -> Tuple[Any, bool]:
        prompt, dependency_values = self._compile(field, self._task_config(field))
        logger.info("Generating field", field_id=field.id, field_type=field.type.value)

        value = await self.generator.generate(
            self.lesson_id, field, prompt, current_value=self.values.get(field.id)
        )

        self.values.set_value(field.id, value, source="ai")
        self.tracker.record_snapshot(field.id, dependency_values)
        saved = await self._persist(field.id)
        return value, saved

    async def _persist(self, field_id: str) -> bool:
        designer, builder = build_field_responses(self.graph.fields, self.values)
        state = {
            "overrides": self.config_store.to_dict(),
            "staleness": self.tracker.to_dict(),
        }
        try:
            await self.persistence.save(self.lesson_id, designer, builder)
            await self.persistence.save_state(self.lesson_id, state)
        except PersistenceError as e:
            logger.error("Auto-save failed, continuing", field_id=field_id, error=str(e))
            return False
        return True

    # One-off generation

    def _ensure_idle_loop(self, operation: str) -> None:
        if self._running:
            raise InvalidTransition(operation, self.status.value)

    async def generate_field(self, field_id: str) -> FieldGenerationResult:
        """Generate one field immediately, outside any session.

        Raises:
            InvalidTransition: If a session loop is running
            MissingContextError: If a dependency has no value
            ValueError: If the field is not AI-enabled
        """
        self._ensure_idle_loop("generate a field")
        field = self.graph.get(field_id)
        if not field.ai_enabled:
            raise ValueError(f"Field {field_id} is not AI-enabled")

        missing = self._missing_dependencies(field)
        if missing:
            raise MissingContextError([m.model_dump() for m in missing], field_id=field_id)

        bind_lesson_context(self.lesson_id)
        value, saved = await self._generate_step(field)
        return FieldGenerationResult(field_id=field_id, value=value, saved=saved)

    async def regenerate_item(self, field_id: str, index: int) -> FieldGenerationResult:
        """Replace one item of an item-set field, keeping the others.

        Raises:
            InvalidTransition: If a session loop is running
            MissingContextError: If a dependency has no value
            ValueError: If the field is not an item set
            IndexError: If the index is outside the item set
        """
        self._ensure_idle_loop("regenerate an item")
        field = self.graph.get(field_id)
        handler = handler_for(field.type)
        if not isinstance(handler, ItemSetHandler):
            raise ValueError(f"Field {field_id} is not an item set")
        if not 0 <= index < handler.item_count:
            raise IndexError(
                f"Item index {index} out of range for {handler.item_count} items"
            )

        missing = self._missing_dependencies(field)
        if missing:
            raise MissingContextError([m.model_dump() for m in missing], field_id=field_id)

        bind_lesson_context(self.lesson_id)
        config = self._task_config(field)
        config.prompt = config.question_prompts.get(f"q{index + 1}") or DEFAULT_ITEM_PROMPT
        prompt, dependency_values = self._compile(field, config)
        logger.info("Regenerating item", field_id=field_id, index=index)

        item_text = await self.generator.generate_single_item(field, prompt, index)
        value = replace_item(
            self.values.get(field_id), index, item_text, handler.item_count
        )
        self.values.set_value(field_id, value, source="ai")
        self.tracker.record_snapshot(field_id, dependency_values)
        saved = await self._persist(field_id)
        return FieldGenerationResult(field_id=field_id, value=value, saved=saved)
