"""Exception hierarchy for field generation.

Recoverable problems (missing context, failed saves) and terminal ones
(transport failures, schema violations) share the ``GenerationError`` root so
callers can catch the whole family at the API boundary.
"""

from typing import List, Optional


class GenerationError(Exception):
    """Base class for every error raised by the generation engine."""

    def __init__(self, message: str, field_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field_id = field_id


class MissingContextError(GenerationError):
    """One or more dependency fields have no value yet. Recoverable."""

    def __init__(self, missing: List[dict], field_id: Optional[str] = None):
        names = ", ".join(m["name"] for m in missing)
        super().__init__(f"Missing required context: {names}", field_id=field_id)
        self.missing = missing


class SchemaViolation(GenerationError):
    """The AI service answered, but not in the shape the field requires."""

    def __init__(self, reason: str, field_id: Optional[str] = None):
        prefix = f"Field {field_id}: " if field_id else ""
        super().__init__(f"{prefix}{reason}", field_id=field_id)
        self.reason = reason


class TransportError(GenerationError):
    """The AI or image service could not be reached or returned nothing."""


class PersistenceError(GenerationError):
    """Saving lesson responses failed. Logged and reported, never terminal."""


class DanglingDependency(GenerationError):
    """A field names a context field that does not exist."""

    def __init__(self, field_id: str, missing_id: str):
        super().__init__(
            f"Field {field_id} depends on unknown field {missing_id}",
            field_id=field_id,
        )
        self.missing_id = missing_id


class CyclicDependency(GenerationError):
    """Context field ids form a cycle."""

    def __init__(self, cycle: List[str]):
        super().__init__(
            "Context fields form a cycle: " + " -> ".join(cycle),
            field_id=cycle[0] if cycle else None,
        )
        self.cycle = cycle


class UnknownFieldError(GenerationError):
    """The requested field id is not part of the lesson template."""

    def __init__(self, field_id: str):
        super().__init__(f"Unknown field: {field_id}", field_id=field_id)


class InvalidTransition(GenerationError):
    """The requested operation is not valid in the session's current state."""

    def __init__(self, operation: str, status: str):
        super().__init__(f"Cannot {operation} while session is {status}")
        self.operation = operation
        self.status = status
