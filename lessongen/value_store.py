"""Current field values of one lesson.

The store is the only channel through which field values reach the
orchestrator. Callers hand it in explicitly; reads return copies so a prompt
being compiled cannot be changed underneath by a concurrent edit.
"""

import copy
from typing import Any, Dict, Iterator, Mapping, Optional

from lessongen.logger import get_logger

logger = get_logger(__name__)


class FieldValueStore(Mapping[str, Any]):
    """Mutable mapping of field id to field value, shared by user edits and generation."""

    def __init__(self, values: Optional[Mapping[str, Any]] = None):
        self._values: Dict[str, Any] = copy.deepcopy(dict(values or {}))

    def __getitem__(self, field_id: str) -> Any:
        return copy.deepcopy(self._values[field_id])

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def set_value(self, field_id: str, value: Any, source: str = "user") -> None:
        self._values[field_id] = copy.deepcopy(value)
        logger.debug("Field value updated", field_id=field_id, source=source)

    def snapshot(self) -> Dict[str, Any]:
        """Deep copy of all values."""
        return copy.deepcopy(self._values)

    def subset(self, field_ids) -> Dict[str, Any]:
        """Deep copy of the values of the given fields, in the given order."""
        return {field_id: copy.deepcopy(self._values.get(field_id)) for field_id in field_ids}
