"""Per-type behaviour of lesson fields.

Every ``FieldType`` maps to exactly one handler. A handler knows how to decide
whether a value is empty, how to render a value inside a prompt's context block,
how to turn a raw text completion into a stored value, and what an unfilled
value looks like. Item sets and images are generated through dedicated paths
(see ``field_generator``); their handlers only describe values.
"""

import html
import json
import re
from enum import Enum
from typing import Any, Dict, List, Optional

from lessongen.config import get_settings
from lessongen.models import FieldType

# Keys of an item-set value that are bookkeeping, never shown to the model.
ITEM_SET_INTERNAL_KEYS = ("source_standards", "filtered_out_standards", "standards")

_HTML_TAG = re.compile(r"</?[a-z][\s\S]*>", re.IGNORECASE)
_STRUCTURED_HTML = re.compile(
    r"^<(?:p|h[1-6]|ul|ol|div|blockquote|table)\b", re.IGNORECASE
)
_BULLET_PREFIX = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+")


class GenerationKind(str, Enum):
    """How a field's value is produced by the AI service."""

    TEXT = "text"
    STRUCTURED = "structured"
    IMAGE = "image"


def html_to_plain_text(value: Any) -> str:
    """Normalise editor HTML to a plain, markdown-like string.

    Plain text (including text that merely mentions tag names) is returned
    trimmed and otherwise untouched. Structured HTML has its block tags turned
    into newlines and inline emphasis into markdown markers, then entities are
    decoded so entity-encoded tag names typed by the author survive as text.
    """
    if not value or not isinstance(value, str):
        return ""
    trimmed = value.strip()
    if not trimmed or not _HTML_TAG.search(trimmed):
        return trimmed
    if not _STRUCTURED_HTML.match(trimmed):
        return trimmed

    text = re.sub(r"<br\s*/?>", "\n", trimmed, flags=re.IGNORECASE)
    text = re.sub(
        r"<h([1-6])[^>]*>",
        lambda m: "#" * int(m.group(1)) + " ",
        text,
        flags=re.IGNORECASE,
    )
    text = re.sub(r"<li[^>]*>", "- ", text, flags=re.IGNORECASE)
    text = re.sub(r"</?(?:strong|b)>", "**", text, flags=re.IGNORECASE)
    text = re.sub(r"</?(?:em|i)>", "*", text, flags=re.IGNORECASE)
    text = re.sub(
        r"</(?:p|div|li|h[1-6]|blockquote)>", "\n", text, flags=re.IGNORECASE
    )
    text = re.sub(r"<[^>]*>", "", text)

    text = html.unescape(text).replace("\xa0", " ")
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def _strip_tags(value: str) -> str:
    text = re.sub(r"<[^>]*>", " ", value)
    return text.replace("&nbsp;", " ").strip()


def _to_json(value: Any) -> str:
    return json.dumps(value, indent=2, sort_keys=True, ensure_ascii=False)


class FieldTypeHandler:
    """Behaviour shared by scalar text-like fields."""

    kind = GenerationKind.TEXT

    def is_empty(self, value: Any) -> bool:
        if value is None:
            return True
        if isinstance(value, str):
            return _strip_tags(value) == ""
        if isinstance(value, (list, tuple)):
            return len(value) == 0
        if isinstance(value, dict):
            return len(value) == 0
        return False

    def serialize_for_prompt(self, value: Any) -> str:
        if isinstance(value, str):
            return value
        return _to_json(value)

    def parse_result(self, raw: str) -> Any:
        return raw.strip()

    def empty_value(self) -> Any:
        return ""


class TextHandler(FieldTypeHandler):
    """Plain text and dropdown fields."""


class RichTextHandler(FieldTypeHandler):
    """Rich text is stored as editor HTML and sent to the model as plain text."""

    def serialize_for_prompt(self, value: Any) -> str:
        if isinstance(value, str):
            return html_to_plain_text(value)
        return _to_json(value)


class ListHandler(FieldTypeHandler):
    """Checklist and standards fields hold an ordered list of strings."""

    def serialize_for_prompt(self, value: Any) -> str:
        if isinstance(value, str):
            return value
        return _to_json(list(value))

    def parse_result(self, raw: str) -> List[str]:
        items = []
        for line in raw.splitlines():
            line = _BULLET_PREFIX.sub("", line).strip()
            if line:
                items.append(line)
        return items

    def empty_value(self) -> List[str]:
        return []


class ItemSetHandler(FieldTypeHandler):
    """Multiple-choice item sets: ``{"questions": [...], <bookkeeping>}``."""

    kind = GenerationKind.STRUCTURED

    def __init__(self, item_count: Optional[int] = None):
        self._item_count = item_count

    @property
    def item_count(self) -> int:
        return self._item_count or get_settings().item_set_size

    def is_empty(self, value: Any) -> bool:
        if isinstance(value, dict) and "questions" in value:
            questions = value["questions"]
            if not isinstance(questions, list):
                return super().is_empty(questions)
            return all(
                not isinstance(q, str) or _strip_tags(q) == "" for q in questions
            )
        return super().is_empty(value)

    def serialize_for_prompt(self, value: Any) -> str:
        if isinstance(value, dict):
            value = {
                key: item
                for key, item in value.items()
                if key not in ITEM_SET_INTERNAL_KEYS
            }
        return super().serialize_for_prompt(value)

    def parse_result(self, raw: str) -> Any:
        raise TypeError("Item sets are produced by structured generation only")

    def empty_value(self) -> Dict[str, Any]:
        return {
            "questions": [""] * self.item_count,
            "source_standards": {},
            "filtered_out_standards": {},
            "standards": {},
        }


class ImageHandler(FieldTypeHandler):
    """Image descriptors. Empty until an image URL exists."""

    kind = GenerationKind.IMAGE

    def is_empty(self, value: Any) -> bool:
        if isinstance(value, dict):
            return not (value.get("url") or "").strip()
        return super().is_empty(value)

    def serialize_for_prompt(self, value: Any) -> str:
        if isinstance(value, dict):
            value = {
                "alt_text": value.get("alt_text", ""),
                "description": value.get("description", ""),
            }
        return super().serialize_for_prompt(value)

    def parse_result(self, raw: str) -> Any:
        raise TypeError("Images are produced by image generation only")

    def empty_value(self) -> Dict[str, str]:
        return {
            "url": "",
            "alt_text": "",
            "image_model": "",
            "alt_text_model": "",
            "description": "",
        }


_HANDLERS: Dict[FieldType, FieldTypeHandler] = {
    FieldType.TEXT: TextHandler(),
    FieldType.DROPDOWN: TextHandler(),
    FieldType.RICH_TEXT: RichTextHandler(),
    FieldType.CHECKLIST: ListHandler(),
    FieldType.ASSIGN_STANDARDS: ListHandler(),
    FieldType.MCQS: ItemSetHandler(),
    FieldType.IMAGE: ImageHandler(),
}


def handler_for(field_type: FieldType) -> FieldTypeHandler:
    """Return the handler for a field type."""
    return _HANDLERS[FieldType(field_type)]


def is_empty_value(field_type: FieldType, value: Any) -> bool:
    """Type-aware emptiness check."""
    return handler_for(field_type).is_empty(value)


def empty_value_for(field_type: FieldType) -> Any:
    """Value stored for a field that has never been filled."""
    return handler_for(field_type).empty_value()
