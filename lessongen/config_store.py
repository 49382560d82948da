"""Per-lesson generation configuration layered over the shared template.

A lesson reads its field configurations from the template until the author edits
one of them. The first edit materialises a copy of every AI-enabled field's
template configuration into the lesson, so later template edits no longer reach
a lesson that has started customising itself.
"""

import asyncio
from typing import Any, Dict, Optional

from lessongen.exceptions import DanglingDependency
from lessongen.field_graph import FieldGraph
from lessongen.logger import get_logger
from lessongen.models import GenerationConfig

logger = get_logger(__name__)


class ConfigOverrideStore:
    """Copy-on-write store of lesson-level ``GenerationConfig`` entries."""

    def __init__(
        self,
        lesson_id: str,
        graph: FieldGraph,
        entries: Optional[Dict[str, GenerationConfig]] = None,
        materialized: Optional[bool] = None,
    ):
        """Initialize the store.

        Args:
            lesson_id: Lesson the overrides belong to
            graph: Template fields supplying default configurations
            entries: Previously persisted overrides
            materialized: Persisted flag; defaults to "entries were given"
        """
        self.lesson_id = lesson_id
        self.graph = graph
        self._entries: Dict[str, GenerationConfig] = dict(entries or {})
        self._materialized = (
            bool(self._entries) if materialized is None else materialized
        )
        self._lock = asyncio.Lock()

    @property
    def is_materialized(self) -> bool:
        return self._materialized

    @property
    def entries(self) -> Dict[str, GenerationConfig]:
        """Deep copy of the lesson-level entries."""
        return {k: v.model_copy(deep=True) for k, v in self._entries.items()}

    def has_override(self, field_id: str) -> bool:
        return field_id in self._entries

    def effective_config(self, field_id: str) -> GenerationConfig:
        """Lesson entry when present, else the template default."""
        entry = self._entries.get(field_id)
        if entry is not None:
            return entry.model_copy(deep=True)
        return self.graph.get(field_id).template_config()

    def _template_snapshot(self) -> Dict[str, GenerationConfig]:
        return {
            field.id: field.template_config()
            for field in self.graph.ai_enabled_fields()
        }

    async def apply_edit(self, field_id: str, new_config: GenerationConfig) -> None:
        """Store an edited configuration for one field.

        The materialisation and the edit are prepared on a copy and swapped in
        together while holding the lock.

        Raises:
            UnknownFieldError: If the field is not in the template
            DanglingDependency: If the new context ids name unknown fields
            CyclicDependency: If the new context ids would create a cycle
        """
        self.graph.get(field_id)
        edited = new_config.model_copy(deep=True)
        if edited.context_field_ids is None:
            edited.context_field_ids = list(self.graph.get(field_id).context_field_ids)

        async with self._lock:
            staged = {k: v.model_copy(deep=True) for k, v in self._entries.items()}
            first_edit = not self._materialized
            if first_edit:
                staged.update(self._template_snapshot())

            staged[field_id] = edited
            edges = {k: list(v.context_field_ids or []) for k, v in staged.items()}
            self._validate_edges(field_id, edited, edges)

            self._entries = staged
            self._materialized = True

        if first_edit:
            logger.info(
                "Materialised template configuration for lesson",
                lesson_id=self.lesson_id,
                field_count=len(staged),
            )
        logger.info(
            "Saved lesson generation config", lesson_id=self.lesson_id, field_id=field_id
        )

    def _validate_edges(
        self, field_id: str, config: GenerationConfig, edges: Dict[str, list]
    ) -> None:
        for dep_id in config.context_field_ids or []:
            if dep_id not in self.graph:
                raise DanglingDependency(field_id, dep_id)
        self.graph.check_acyclic(edges)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "materialized": self._materialized,
            "entries": {
                field_id: config.model_dump(mode="json")
                for field_id, config in self._entries.items()
            },
        }

    @classmethod
    def from_dict(
        cls, lesson_id: str, graph: FieldGraph, data: Optional[Dict[str, Any]]
    ) -> "ConfigOverrideStore":
        data = data or {}
        entries: Dict[str, GenerationConfig] = {}
        for field_id, raw in (data.get("entries") or {}).items():
            if field_id not in graph:
                continue
            config = GenerationConfig.model_validate(raw)
            if config.context_field_ids:
                known = [d for d in config.context_field_ids if d in graph]
                if len(known) != len(config.context_field_ids):
                    logger.warning(
                        "Dropped unknown context fields from saved config",
                        lesson_id=lesson_id,
                        field_id=field_id,
                        dropped=[
                            d for d in config.context_field_ids if d not in graph
                        ],
                    )
                config.context_field_ids = known
            entries[field_id] = config
        return cls(
            lesson_id,
            graph,
            entries=entries,
            materialized=data.get("materialized"),
        )
