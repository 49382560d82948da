"""Static description of a lesson's fields and their context dependencies."""

from typing import TYPE_CHECKING, Dict, Iterable, List, Mapping, Optional

from lessongen.exceptions import CyclicDependency, DanglingDependency, UnknownFieldError
from lessongen.logger import get_logger
from lessongen.models import LessonField, Section

if TYPE_CHECKING:
    from lessongen.config_store import ConfigOverrideStore

logger = get_logger(__name__)

SECTION_ORDER = (Section.DESIGNER, Section.BUILDER)


class FieldGraph:
    """Fields of one lesson template and the edges between them.

    The graph never mutates the fields it is given. Edges come from each field's
    declared ``context_field_ids`` unless a per-lesson configuration override
    supplies a different list.
    """

    def __init__(self, fields: Iterable[LessonField]):
        self._fields: Dict[str, LessonField] = {}
        for field in fields:
            self._fields[field.id] = field

        for field in self._fields.values():
            for dep_id in field.context_field_ids:
                if dep_id not in self._fields:
                    raise DanglingDependency(field.id, dep_id)
            if field.ai_config.context_field_ids:
                for dep_id in field.ai_config.context_field_ids:
                    if dep_id not in self._fields:
                        raise DanglingDependency(field.id, dep_id)

        logger.debug("Field graph loaded", field_count=len(self._fields))

    @property
    def fields(self) -> List[LessonField]:
        """All fields in section order, then stored order."""
        return self._sorted(self._fields.values())

    def __contains__(self, field_id: str) -> bool:
        return field_id in self._fields

    def get(self, field_id: str) -> LessonField:
        try:
            return self._fields[field_id]
        except KeyError:
            raise UnknownFieldError(field_id) from None

    def name_of(self, field_id: str) -> str:
        return self.get(field_id).name

    def ai_enabled_fields(self) -> List[LessonField]:
        return [f for f in self.fields if f.ai_enabled]

    def ordered_generation_queue(self) -> List[LessonField]:
        """AI-enabled designer fields in stored order, then builder fields."""
        return self.ai_enabled_fields()

    def dependencies_of(
        self,
        field_id: str,
        config_store: Optional["ConfigOverrideStore"] = None,
    ) -> List[str]:
        """Effective context field ids for a field, honouring lesson overrides."""
        if config_store is not None:
            dep_ids = config_store.effective_config(field_id).context_field_ids or []
        else:
            dep_ids = self.get(field_id).template_config().context_field_ids or []

        for dep_id in dep_ids:
            if dep_id not in self._fields:
                raise DanglingDependency(field_id, dep_id)
        return list(dep_ids)

    def find_cycle(
        self, edges: Optional[Mapping[str, List[str]]] = None
    ) -> Optional[List[str]]:
        """Return one dependency cycle as a list of ids, or None.

        ``edges`` maps field id to context ids and replaces the declared edges of
        the fields it names.
        """
        adjacency = {
            field_id: list(field.template_config().context_field_ids or [])
            for field_id, field in self._fields.items()
        }
        if edges:
            adjacency.update({k: list(v) for k, v in edges.items()})

        visiting: List[str] = []
        done = set()

        def visit(node: str) -> Optional[List[str]]:
            if node in done:
                return None
            if node in visiting:
                return visiting[visiting.index(node):] + [node]
            visiting.append(node)
            for dep_id in adjacency.get(node, []):
                cycle = visit(dep_id)
                if cycle:
                    return cycle
            visiting.pop()
            done.add(node)
            return None

        for field in self.fields:
            cycle = visit(field.id)
            if cycle:
                return cycle
        return None

    def check_acyclic(self, edges: Optional[Mapping[str, List[str]]] = None) -> None:
        cycle = self.find_cycle(edges)
        if cycle:
            raise CyclicDependency(cycle)

    @staticmethod
    def _sorted(fields: Iterable[LessonField]) -> List[LessonField]:
        # sorted() is stable, so equal orders keep insertion order
        return sorted(
            fields, key=lambda f: (SECTION_ORDER.index(f.section), f.order)
        )
