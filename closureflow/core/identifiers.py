"""Identifier helpers shared by the stores."""

import uuid
from typing import Any

from .exceptions import ValidationError


def new_id() -> str:
    """Generate a new opaque identifier."""
    return str(uuid.uuid4())


def parse_id(value: Any, entity: str = "node") -> str:
    """Normalise a UUID given as string or ``uuid.UUID``.

    Raises:
        ValidationError: If the value is not a valid UUID
    """
    if isinstance(value, uuid.UUID):
        return str(value)
    try:
        return str(uuid.UUID(str(value).strip()))
    except (ValueError, AttributeError, TypeError):
        raise ValidationError(f"Invalid {entity} id: {value!r}", field=f"{entity}_id")
