"""Validation and canonical encoding of multiple-choice item sets.

Item sets are requested with an exact item count (``minItems == maxItems``).
Whatever comes back is checked here before anything is written: either every
item is valid and the whole set is encoded, or a ``SchemaViolation`` is raised
and the stored value stays as it was.

Canonical item encoding (one HTML paragraph, one line per part)::

    <p>1. Question text<br>A. ...<br>B. ...<br>C. ...<br>D. ...<br>[STD.1; STD.2]<br>KEY: B</p>
"""

import copy
import re
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from lessongen.exceptions import SchemaViolation
from lessongen.field_types import ITEM_SET_INTERNAL_KEYS
from lessongen.models import ItemChoices, ItemSetEntry
from lessongen.prompts import ITEM_SET_SCHEMA_DESCRIPTION, ITEM_SET_SCHEMA_NAME

CHOICE_LABELS = ("A", "B", "C", "D")

_ITEM_LINE_BREAK = re.compile(r"<br\s*/?>", re.IGNORECASE)
_QUESTION_LINE = re.compile(r"^(\d+)\.\s*(.*)$", re.DOTALL)
_CHOICE_LINE = re.compile(r"^([ABCD])\.\s*(.*)$", re.DOTALL)
_KEY_LINE = re.compile(r"^KEY:\s*([ABCD])$")


def build_item_set_schema(item_count: int) -> Dict[str, Any]:
    """Function-calling schema for exactly ``item_count`` items."""
    return {
        "name": ITEM_SET_SCHEMA_NAME,
        "description": ITEM_SET_SCHEMA_DESCRIPTION.format(
            count=item_count, plural="" if item_count == 1 else "s"
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "questions": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "question_text": {
                                "type": "string",
                                "description": "The question text",
                            },
                            "choices": {
                                "type": "object",
                                "properties": {
                                    label: {"type": "string"} for label in CHOICE_LABELS
                                },
                                "required": list(CHOICE_LABELS),
                            },
                            "standards": {
                                "type": "array",
                                "items": {"type": "string"},
                                "description": "List of relevant standards for this question",
                            },
                            "correct_answer": {
                                "type": "string",
                                "enum": list(CHOICE_LABELS),
                                "description": "The letter of the correct answer",
                            },
                        },
                        "required": [
                            "question_text",
                            "choices",
                            "standards",
                            "correct_answer",
                        ],
                    },
                    "minItems": item_count,
                    "maxItems": item_count,
                }
            },
            "required": ["questions"],
        },
    }


def _describe_validation_error(error: ValidationError) -> str:
    problems = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail["loc"])
        problems.append(f"{location}: {detail['msg']}")
    return "; ".join(problems)


def validate_items(
    response: Any, expected_count: int, field_id: Optional[str] = None
) -> List[ItemSetEntry]:
    """Check count and required sub-keys of a structured response."""
    if not isinstance(response, dict) or "questions" not in response:
        raise SchemaViolation("response has no 'questions' list", field_id=field_id)

    raw_items = response["questions"]
    if not isinstance(raw_items, list):
        raise SchemaViolation("'questions' is not a list", field_id=field_id)

    if len(raw_items) != expected_count:
        raise SchemaViolation(
            f"expected {expected_count} items, got {len(raw_items)}",
            field_id=field_id,
        )

    items = []
    for position, raw in enumerate(raw_items, start=1):
        try:
            items.append(ItemSetEntry.model_validate(raw))
        except ValidationError as e:
            raise SchemaViolation(
                f"item {position} is incomplete ({_describe_validation_error(e)})",
                field_id=field_id,
            ) from e
    return items


def format_item(number: int, item: ItemSetEntry) -> str:
    """Encode one validated item in the canonical stored form."""
    lines = [f"{number}. {item.question_text}"]
    for label in CHOICE_LABELS:
        lines.append(f"{label}. {getattr(item.choices, label)}")
    lines.append(f"[{'; '.join(item.standards)}]")
    lines.append(f"KEY: {item.correct_answer}")
    return "<p>" + "<br>".join(lines) + "</p>"


def canonicalize_items(
    response: Any,
    expected_count: int,
    field_id: Optional[str] = None,
    start_number: int = 1,
) -> List[str]:
    """Validate a structured response and encode all of its items.

    Raises:
        SchemaViolation: On a wrong item count or a missing required sub-key.
            Nothing is encoded in that case.
    """
    items = validate_items(response, expected_count, field_id=field_id)
    return [
        format_item(start_number + offset, item) for offset, item in enumerate(items)
    ]


def canonicalize_single_item(
    response: Any, index: int, field_id: Optional[str] = None
) -> str:
    """Validate a one-item response and encode it as item ``index`` (0-based)."""
    return canonicalize_items(response, 1, field_id=field_id, start_number=index + 1)[0]


def replace_item(
    current_value: Optional[Dict[str, Any]],
    index: int,
    item_text: str,
    item_count: int,
) -> Dict[str, Any]:
    """Return a new item-set value with one item replaced.

    The other items and every bookkeeping key are carried over unchanged.
    """
    if not 0 <= index < item_count:
        raise IndexError(f"Item index {index} out of range for {item_count} items")

    value = copy.deepcopy(current_value) if current_value else {}
    questions = list(value.get("questions") or [])
    if len(questions) < item_count:
        questions.extend([""] * (item_count - len(questions)))
    questions[index] = item_text
    value["questions"] = questions
    for key in ITEM_SET_INTERNAL_KEYS:
        value.setdefault(key, {})
    return value


def parse_canonical_item(text: str) -> ItemSetEntry:
    """Parse an item encoded by ``format_item`` back into its parts.

    Raises:
        ValueError: If the text is not in the canonical form.
    """
    body = text.strip()
    if body.lower().startswith("<p>") and body.lower().endswith("</p>"):
        body = body[3:-4]
    lines = [line.strip() for line in _ITEM_LINE_BREAK.split(body)]

    if len(lines) != 7:
        raise ValueError(f"Expected 7 lines in canonical item, found {len(lines)}")

    question_match = _QUESTION_LINE.match(lines[0])
    if not question_match:
        raise ValueError("Canonical item does not start with a numbered question")

    choices = {}
    for label, line in zip(CHOICE_LABELS, lines[1:5]):
        choice_match = _CHOICE_LINE.match(line)
        if not choice_match or choice_match.group(1) != label:
            raise ValueError(f"Expected choice {label}, found {line!r}")
        choices[label] = choice_match.group(2)

    standards_line = lines[5]
    if not (standards_line.startswith("[") and standards_line.endswith("]")):
        raise ValueError("Standards line must be bracketed")
    standards = [s.strip() for s in standards_line[1:-1].split(";") if s.strip()]

    key_match = _KEY_LINE.match(lines[6])
    if not key_match:
        raise ValueError("Canonical item is missing its KEY line")

    return ItemSetEntry(
        question_text=question_match.group(2),
        choices=ItemChoices(**choices),
        standards=standards,
        correct_answer=key_match.group(1),
    )
