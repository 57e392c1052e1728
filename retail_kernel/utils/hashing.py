"""SHA-256 digests over canonical JSON, used by the audit chain."""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

GENESIS_MARKER = "GENESIS"


def _encode_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        # 10.50 and 10.5 must digest identically
        return str(value.normalize())
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Cannot hash value of type {type(value).__name__}")


def canonical_json(data: Any) -> str:
    """Sorted keys, no whitespace; stable across runs and platforms."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_encode_value)


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_payload(payload: Any) -> str:
    return _sha256(canonical_json(payload))


def hash_audit_event(
    entity_type: str,
    entity_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """Digest of one audit row, chained to its predecessor's digest."""
    return _sha256(
        "|".join(
            (entity_type, str(entity_id), action, payload_hash, prev_hash or GENESIS_MARKER)
        )
    )
