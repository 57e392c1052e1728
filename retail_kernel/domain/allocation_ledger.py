"""
Allocation ledger codec (``retail_kernel.domain.allocation_ledger``).

Responsibility
--------------
Encodes and decodes the per-store allocation map embedded on every
inventory batch, and provides the pure transforms every mutating
operation is expressed through: read ledger -> compute new ledger ->
persist.

Architecture position
---------------------
**Kernel domain layer** -- pure functions.  ZERO I/O.  No imports from
``db/``, ``models/`` or ``services/``.

Invariants enforced
-------------------
* Ledgers are immutable: every transform returns a new read-only mapping
  and never mutates its input.
* Every entry satisfies ``allocated >= reserved >= 0``.  The codec never
  produces a negative quantity.
* Callers enforce ``sum(allocated) <= remaining_quantity`` before calling
  ``update_store_allocation``; ``validate_total_allocations`` checks it.

Persisted shape (camelCase, stored as JSON on the batch row)::

    {"<storeId>": {"allocated": 60, "reserved": 0,
                   "lastUpdated": "2024-01-01T12:00:00+00:00",
                   "updatedBy": "user-1"}}
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType
from typing import Any

from retail_kernel.exceptions import InvalidAllocationError

AllocationLedger = Mapping[str, "StoreAllocation"]

EMPTY_LEDGER: AllocationLedger = MappingProxyType({})


@dataclass(frozen=True)
class StoreAllocation:
    """One store's slice of a batch."""

    allocated: int
    reserved: int = 0
    last_updated: datetime | None = None
    updated_by: str | None = None

    @property
    def available(self) -> int:
        """Allocated quantity not earmarked by a reservation."""
        return max(0, self.allocated - self.reserved)


# =========================================================================
# Codec
# =========================================================================


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def decode_store_allocations(raw: Mapping[str, Any] | None) -> AllocationLedger:
    """Decode the persisted JSON map into typed entries.

    A missing or null map decodes to the empty ledger.  Entries written
    before ``reserved`` existed decode with ``reserved=0``.
    """
    if not raw:
        return EMPTY_LEDGER
    return MappingProxyType({
        str(store_id): StoreAllocation(
            allocated=int(entry.get("allocated", 0)),
            reserved=int(entry.get("reserved", 0)),
            last_updated=_parse_timestamp(entry.get("lastUpdated")),
            updated_by=entry.get("updatedBy"),
        )
        for store_id, entry in raw.items()
    })


def encode_store_allocations(ledger: AllocationLedger) -> dict[str, Any]:
    """Encode typed entries into the persisted JSON map."""
    return {
        store_id: {
            "allocated": entry.allocated,
            "reserved": entry.reserved,
            "lastUpdated": entry.last_updated.isoformat() if entry.last_updated else None,
            "updatedBy": entry.updated_by,
        }
        for store_id, entry in ledger.items()
    }


# =========================================================================
# Queries
# =========================================================================


def get_store_allocation(ledger: AllocationLedger, store_id: str) -> StoreAllocation | None:
    if not store_id:
        return None
    return ledger.get(str(store_id))


def get_total_allocated(ledger: AllocationLedger) -> int:
    """Sum of ``allocated`` over all stores."""
    return sum(entry.allocated for entry in ledger.values())


def get_total_reserved(ledger: AllocationLedger) -> int:
    return sum(entry.reserved for entry in ledger.values())


def get_allocated_store_ids(ledger: AllocationLedger) -> list[str]:
    return list(ledger.keys())


def has_store_allocation(ledger: AllocationLedger, store_id: str) -> bool:
    return str(store_id) in ledger


def unallocated_quantity(ledger: AllocationLedger, remaining_quantity: int) -> int:
    """Portion of a batch's remaining quantity not yet allocated to any store."""
    return remaining_quantity - get_total_allocated(ledger)


def validate_total_allocations(ledger: AllocationLedger, batch_quantity: int) -> bool:
    """True when the ledger does not over-allocate ``batch_quantity``."""
    return get_total_allocated(ledger) <= batch_quantity


# =========================================================================
# Transforms
# =========================================================================


def update_store_allocation(
    ledger: AllocationLedger,
    store_id: str,
    allocated: int,
    reserved: int,
    actor_id: str,
    at: datetime,
) -> AllocationLedger:
    """Return a new ledger with ``store_id``'s entry replaced.

    Stamps ``last_updated`` and ``updated_by``.  The input ledger is left
    untouched; callers must persist the returned value.

    Raises:
        InvalidAllocationError: empty store/actor id, negative quantity,
            or ``reserved > allocated``.
    """
    if not store_id:
        raise InvalidAllocationError(str(store_id), "Store ID is required")
    if not actor_id:
        raise InvalidAllocationError(store_id, "User ID is required")
    if allocated < 0:
        raise InvalidAllocationError(store_id, "Allocated quantity cannot be negative")
    if reserved < 0:
        raise InvalidAllocationError(store_id, "Reserved quantity cannot be negative")
    if reserved > allocated:
        raise InvalidAllocationError(
            store_id,
            f"Reserved quantity {reserved} exceeds allocated quantity {allocated}",
        )

    updated = dict(ledger)
    updated[str(store_id)] = StoreAllocation(
        allocated=allocated,
        reserved=reserved,
        last_updated=at,
        updated_by=actor_id,
    )
    return MappingProxyType(updated)


def remove_store_allocation(ledger: AllocationLedger, store_id: str) -> AllocationLedger:
    """Return a new ledger without ``store_id``.  Unknown ids are a no-op."""
    if not store_id or str(store_id) not in ledger:
        return ledger
    updated = dict(ledger)
    del updated[str(store_id)]
    return MappingProxyType(updated)
