"""
Identifier coercion.

Store, batch and request ids arrive from callers as strings or UUIDs and
are stored as strings inside the embedded JSON documents.  Lookups go
through ``as_uuid`` so malformed ids behave exactly like unknown ones.
"""

from typing import Any
from uuid import UUID


def as_uuid(value: Any) -> UUID | None:
    """Return ``value`` as a UUID, or None if it is empty or malformed."""
    if value is None or value == "":
        return None
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None
