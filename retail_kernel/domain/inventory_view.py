"""
Store-scoped inventory view.

Pure projection of batch ledgers onto one store: how much of each batch
the store holds, how much of that is free, and which store "owns" the
batch for display.

Ownership is a display heuristic only: the store with the single largest
``allocated`` wins.  On a tie the first store in ledger order keeps it.
With no positive allocation the tenant's main store is shown.  Nothing in
the kernel makes decisions from it.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal

from retail_kernel.domain.allocation_ledger import AllocationLedger, get_store_allocation


@dataclass(frozen=True)
class BatchSnapshot:
    """What the view needs from one batch row."""

    batch_id: str
    inventory_id: str
    inventory_name: str
    batch_number: int
    number_of_stock: int
    price: Decimal
    ledger: AllocationLedger


@dataclass(frozen=True)
class StoreBatchView:
    batch_id: str
    batch_number: int
    total_quantity: int
    allocated_to_store: int
    reserved_in_store: int
    available_in_store: int
    unit_price: Decimal
    is_owned_by_store: bool
    owner_store_name: str


@dataclass(frozen=True)
class StoreInventoryView:
    inventory_id: str
    inventory_name: str
    batches: tuple[StoreBatchView, ...]
    total_allocated: int
    total_available: int


def determine_owner_store(ledger: AllocationLedger, main_store_id: str) -> str:
    owner: str | None = None
    largest = 0
    for store_id, entry in ledger.items():
        if entry.allocated > largest:
            largest = entry.allocated
            owner = store_id
    return owner if owner is not None else str(main_store_id)


def build_store_inventory_view(
    store_id: str,
    batches: Iterable[BatchSnapshot],
    store_names: Mapping[str, str],
    main_store_id: str,
    unknown_store_label: str = "Unknown Store",
) -> list[StoreInventoryView]:
    """Group batches by inventory item, preserving the input order.

    Callers pass batches already ordered by item name then batch number.
    """
    store_id = str(store_id)
    grouped: dict[str, tuple[str, list[StoreBatchView]]] = {}

    for batch in batches:
        entry = get_store_allocation(batch.ledger, store_id)
        allocated = entry.allocated if entry else 0
        reserved = entry.reserved if entry else 0
        owner = determine_owner_store(batch.ledger, main_store_id)

        row = StoreBatchView(
            batch_id=batch.batch_id,
            batch_number=batch.batch_number,
            total_quantity=batch.number_of_stock,
            allocated_to_store=allocated,
            reserved_in_store=reserved,
            available_in_store=max(0, allocated - reserved),
            unit_price=batch.price,
            is_owned_by_store=owner == store_id,
            owner_store_name=store_names.get(owner, unknown_store_label),
        )
        grouped.setdefault(batch.inventory_id, (batch.inventory_name, []))[1].append(row)

    return [
        StoreInventoryView(
            inventory_id=inventory_id,
            inventory_name=name,
            batches=tuple(rows),
            total_allocated=sum(r.allocated_to_store for r in rows),
            total_available=sum(r.available_in_store for r in rows),
        )
        for inventory_id, (name, rows) in grouped.items()
    ]
