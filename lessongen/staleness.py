"""Advisory staleness tracking for generated fields.

After a field is generated, the values of the dependencies that went into its
prompt are fingerprinted. A later change to any of them marks the field stale.
Staleness never blocks anything; it only tells the author which generated fields
were produced from inputs that have since changed.
"""

import hashlib
import json
from typing import Any, Dict, List, Mapping, Optional

from lessongen.field_graph import FieldGraph
from lessongen.logger import get_logger
from lessongen.models import StaleReport

logger = get_logger(__name__)


def fingerprint(value: Any) -> str:
    """Stable hash of a JSON-compatible field value."""
    canonical = json.dumps(value, sort_keys=True, ensure_ascii=False, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class StalenessTracker:
    """Per-lesson context snapshots of generated fields."""

    def __init__(
        self,
        graph: FieldGraph,
        snapshots: Optional[Dict[str, Dict[str, str]]] = None,
        dismissed: Optional[Dict[str, Dict[str, str]]] = None,
    ):
        self.graph = graph
        # field id -> {dependency id -> fingerprint at generation time}
        self._snapshots: Dict[str, Dict[str, str]] = {
            k: dict(v) for k, v in (snapshots or {}).items()
        }
        # field id -> {dependency id -> fingerprint acknowledged by dismiss()}
        self._dismissed: Dict[str, Dict[str, str]] = {
            k: dict(v) for k, v in (dismissed or {}).items()
        }

    def has_generated(self, field_id: str) -> bool:
        return field_id in self._snapshots

    def generated_field_ids(self) -> List[str]:
        return list(self._snapshots)

    def record_snapshot(self, field_id: str, dependency_values: Mapping[str, Any]) -> None:
        """Remember the dependency values a field was just generated from."""
        self._snapshots[field_id] = {
            dep_id: fingerprint(value) for dep_id, value in dependency_values.items()
        }
        self._dismissed.pop(field_id, None)
        logger.debug(
            "Recorded context snapshot",
            field_id=field_id,
            dependencies=list(dependency_values),
        )

    def _changed_ids(
        self, recorded: Dict[str, str], current_values: Mapping[str, Any]
    ) -> List[str]:
        return [
            dep_id
            for dep_id, recorded_fp in recorded.items()
            if fingerprint(current_values.get(dep_id)) != recorded_fp
        ]

    def check_stale(
        self, field_id: str, current_values: Mapping[str, Any]
    ) -> StaleReport:
        """Compare a field's snapshot with the current dependency values.

        Fields that were never generated are never stale. A dismissed field
        stays quiet until a dependency changes again after the dismissal.
        """
        recorded = self._snapshots.get(field_id)
        if recorded is None:
            return StaleReport()

        changed_ids = self._changed_ids(recorded, current_values)
        if not changed_ids:
            return StaleReport()

        acknowledged = self._dismissed.get(field_id)
        if acknowledged is not None and not self._changed_ids(
            acknowledged, current_values
        ):
            return StaleReport()

        changed = [
            self.graph.name_of(dep_id) if dep_id in self.graph else dep_id
            for dep_id in changed_ids
        ]
        return StaleReport(stale=True, changed=changed)

    def dismiss(self, field_id: str, current_values: Mapping[str, Any]) -> None:
        """Hide the stale flag for the current values without refreshing the snapshot."""
        recorded = self._snapshots.get(field_id)
        if recorded is None:
            return
        self._dismissed[field_id] = {
            dep_id: fingerprint(current_values.get(dep_id)) for dep_id in recorded
        }
        logger.info("Dismissed stale context warning", field_id=field_id)

    def stale_fields(self, current_values: Mapping[str, Any]) -> Dict[str, List[str]]:
        """Map of stale field id to the names of its changed dependencies."""
        result = {}
        for field_id in self._snapshots:
            report = self.check_stale(field_id, current_values)
            if report.stale:
                result[field_id] = report.changed
        return result

    def to_dict(self) -> Dict[str, Any]:
        return {
            "snapshots": {k: dict(v) for k, v in self._snapshots.items()},
            "dismissed": {k: dict(v) for k, v in self._dismissed.items()},
        }

    @classmethod
    def from_dict(
        cls, graph: FieldGraph, data: Optional[Dict[str, Any]]
    ) -> "StalenessTracker":
        data = data or {}
        return cls(
            graph,
            snapshots=data.get("snapshots"),
            dismissed=data.get("dismissed"),
        )
