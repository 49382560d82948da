"""One lesson's generation components, wired together and persisted as a unit."""

import asyncio
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from lessongen.config_store import ConfigOverrideStore
from lessongen.exceptions import InvalidTransition
from lessongen.field_generator import FieldGenerator
from lessongen.field_graph import FieldGraph
from lessongen.lesson_storage import LessonFileStorage, build_field_responses
from lessongen.logger import get_logger
from lessongen.models import (
    GenerationConfig,
    GenerationProgress,
    LessonField,
    SessionStatus,
    StaleReport,
)
from lessongen.orchestrator import GenerationOrchestrator
from lessongen.staleness import StalenessTracker
from lessongen.value_store import FieldValueStore

logger = get_logger(__name__)


class LessonWorkspace:
    """Graph, values, overrides, snapshots and orchestrator of one lesson."""

    def __init__(
        self,
        lesson_id: str,
        fields: Iterable[LessonField],
        storage: LessonFileStorage,
        generator: FieldGenerator,
        values: Optional[Dict[str, Any]] = None,
        state: Optional[Dict[str, Any]] = None,
        extra_context_blocks: Optional[Sequence[Tuple[str, str]]] = None,
    ):
        state = state or {}
        self.lesson_id = lesson_id
        self.storage = storage
        self.graph = FieldGraph(fields)
        self.values = FieldValueStore(
            {k: v for k, v in (values or {}).items() if k in self.graph}
        )
        self.config_store = ConfigOverrideStore.from_dict(
            lesson_id, self.graph, state.get("overrides")
        )
        self.tracker = StalenessTracker.from_dict(self.graph, state.get("staleness"))
        self.orchestrator = GenerationOrchestrator(
            lesson_id=lesson_id,
            graph=self.graph,
            values=self.values,
            config_store=self.config_store,
            tracker=self.tracker,
            generator=generator,
            persistence=storage,
            extra_context_blocks=extra_context_blocks,
        )
        self._task: Optional[asyncio.Task] = None

    @classmethod
    async def load(
        cls,
        lesson_id: str,
        fields: List[LessonField],
        storage: LessonFileStorage,
        generator: FieldGenerator,
        extra_context_blocks: Optional[Sequence[Tuple[str, str]]] = None,
    ) -> "LessonWorkspace":
        """Build a workspace from whatever was previously saved for the lesson."""
        responses = await storage.load(lesson_id)
        state = await storage.load_state(lesson_id)
        values: Dict[str, Any] = {}
        if responses is not None:
            values.update(responses.designer_responses)
            values.update(responses.builder_responses)
        logger.info(
            "Loaded lesson workspace",
            lesson_id=lesson_id,
            saved=responses is not None,
            fields=len(fields),
        )
        return cls(
            lesson_id,
            fields,
            storage,
            generator,
            values=values,
            state=state,
            extra_context_blocks=extra_context_blocks,
        )

    def state(self) -> Dict[str, Any]:
        return {
            "overrides": self.config_store.to_dict(),
            "staleness": self.tracker.to_dict(),
        }

    async def save(self) -> None:
        """Save responses and generation state.

        Raises:
            PersistenceError: If either document could not be written
        """
        designer, builder = build_field_responses(self.graph.fields, self.values)
        await self.storage.save(self.lesson_id, designer, builder)
        await self.storage.save_state(self.lesson_id, self.state())

    # Values and staleness

    async def set_value(self, field_id: str, value: Any) -> Dict[str, List[str]]:
        """Store a user edit and return the stale fields it produced."""
        self.graph.get(field_id)
        self.values.set_value(field_id, value, source="user")
        await self.save()
        return self.stale_fields()

    def stale_fields(self) -> Dict[str, List[str]]:
        return self.tracker.stale_fields(self.values)

    def check_stale(self, field_id: str) -> StaleReport:
        self.graph.get(field_id)
        return self.tracker.check_stale(field_id, self.values)

    async def dismiss_stale(self, field_id: str) -> None:
        self.graph.get(field_id)
        self.tracker.dismiss(field_id, self.values)
        await self.storage.save_state(self.lesson_id, self.state())

    # Generation configuration

    def get_ai_config(self, field_id: str) -> GenerationConfig:
        return self.config_store.effective_config(field_id)

    async def update_ai_config(
        self, field_id: str, config: GenerationConfig
    ) -> GenerationConfig:
        await self.config_store.apply_edit(field_id, config)
        await self.storage.save_state(self.lesson_id, self.state())
        return self.config_store.effective_config(field_id)

    # Background sessions

    @property
    def has_active_task(self) -> bool:
        return self._task is not None and not self._task.done()

    def launch(self, operation: str) -> GenerationProgress:
        """Run ``start`` or ``resume`` as a background task.

        Raises:
            InvalidTransition: If the operation is not allowed right now
        """
        if self.has_active_task:
            raise InvalidTransition(operation, SessionStatus.GENERATING.value)
        self.orchestrator.check_transition(operation)

        if operation == "start":
            coro = self.orchestrator.start()
        else:
            coro = self.orchestrator.resume()
        self._task = asyncio.create_task(coro)
        self._task.add_done_callback(self._on_task_done)
        logger.info("Launched generation task", lesson_id=self.lesson_id, operation=operation)
        return self.orchestrator.progress()

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            logger.warning("Generation task cancelled", lesson_id=self.lesson_id)
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Generation task crashed",
                lesson_id=self.lesson_id,
                error=str(error),
            )

    async def wait(self) -> Optional[GenerationProgress]:
        """Wait for the background task, if any, and return its final report."""
        if self._task is None:
            return None
        return await self._task
