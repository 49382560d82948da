"""Deterministic prompt assembly from a field's configuration and its context.

The compiled prompt is made of labelled sections in a fixed order::

    === SYSTEM INSTRUCTIONS ===   (only when set)
    === TASK ===                  (only when set)
    === FORMAT REQUIREMENTS ===   (always)
    === CONTEXT ===               (only when context fields are selected)

Equal inputs always produce byte-identical output: values are rendered through
their field-type handler and structured values are serialised with sorted keys.
"""

from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from lessongen.field_graph import FieldGraph
from lessongen.field_types import handler_for, html_to_plain_text
from lessongen.models import FieldType, GenerationConfig
from lessongen.prompts import (
    DEFAULT_CONTEXT_INSTRUCTIONS,
    DEFAULT_FORMAT_REQUIREMENTS,
    NOT_FILLED_MARKER,
)


@dataclass(frozen=True)
class ContextEntry:
    """One dependency value as it will appear in the CONTEXT block."""

    field_id: str
    name: str
    field_type: FieldType
    value: Any


def build_context_entries(
    graph: FieldGraph, dependency_ids: Sequence[str], values: Mapping[str, Any]
) -> List[ContextEntry]:
    """Pair each dependency id with its field metadata and current value."""
    entries = []
    for dep_id in dependency_ids:
        field = graph.get(dep_id)
        entries.append(
            ContextEntry(
                field_id=dep_id,
                name=field.name,
                field_type=field.type,
                value=values.get(dep_id),
            )
        )
    return entries


def render_context_value(entry: ContextEntry) -> str:
    """Render a dependency value, or the not-filled marker when it is empty."""
    handler = handler_for(entry.field_type)
    if handler.is_empty(entry.value):
        return NOT_FILLED_MARKER
    return handler.serialize_for_prompt(entry.value)


def compile_prompt(
    config: GenerationConfig,
    context_entries: Sequence[ContextEntry],
    extra_context_blocks: Optional[Sequence[Tuple[str, str]]] = None,
) -> str:
    """Compile a generation request string.

    Args:
        config: Effective generation configuration of the field
        context_entries: Dependency values in the configured order
        extra_context_blocks: Optional ``(title, content)`` pairs appended to the
            context block

    Returns:
        The complete prompt text
    """
    extra_context_blocks = list(extra_context_blocks or [])

    system_instructions = html_to_plain_text(config.system_instructions)
    task = html_to_plain_text(config.prompt)
    format_requirements = html_to_plain_text(config.format_requirements)
    context_instructions = html_to_plain_text(config.context_instructions)

    parts: List[str] = []

    if system_instructions:
        parts.append("=== SYSTEM INSTRUCTIONS ===\n")
        parts.append(system_instructions + "\n\n")

    if task:
        parts.append("=== TASK ===\n")
        parts.append(task + "\n\n")

    parts.append("=== FORMAT REQUIREMENTS ===\n")
    parts.append((format_requirements or DEFAULT_FORMAT_REQUIREMENTS) + "\n\n")

    if context_entries or extra_context_blocks:
        parts.append("=== CONTEXT ===\n")
        parts.append((context_instructions or DEFAULT_CONTEXT_INSTRUCTIONS) + "\n\n")

        for entry in context_entries:
            parts.append(f"{entry.name}: {render_context_value(entry)}\n")

        for title, content in extra_context_blocks:
            if not title or not content:
                continue
            parts.append(f"\n{title}:\n{content}\n")

    return "".join(parts)
