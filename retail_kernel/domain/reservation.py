"""
Sale-time FIFO consumption planner.

Responsibility:
    Decides which batch slices a sale consumes from one store, oldest
    batch first, before anything is written.  The service applies the
    plan to the batch rows in a single bounded transaction.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - Each take is ``min(store available, batch remaining, still needed)``,
      net of what earlier lines of the same sale already took.
    - A plan is all-or-nothing: any shortfall raises before a plan exists.

Failure modes:
    - InsufficientInventoryError naming the product with the required and
      available quantities of the first component that falls short.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from retail_kernel.exceptions import InsufficientInventoryError, InvalidTransferRequestError


@dataclass(frozen=True)
class SaleComponent:
    """Inventory item consumed per unit of product sold."""

    inventory_id: str
    quantity_per_product: int = 1


@dataclass(frozen=True)
class SaleLineRequest:
    product_id: str
    product_name: str
    quantity: int
    components: tuple[SaleComponent, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class BatchCandidate:
    """A batch the store could sell from, as loaded for planning."""

    batch_id: str
    inventory_id: str
    created_at: datetime
    remaining_quantity: int
    store_available: int
    unit_price: Decimal


@dataclass(frozen=True)
class BatchTake:
    batch_id: str
    inventory_id: str
    product_id: str
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class SalePlan:
    takes: tuple[BatchTake, ...]

    @property
    def total_price(self) -> Decimal:
        return sum((take.line_total for take in self.takes), Decimal("0"))

    def quantity_by_batch(self) -> dict[str, int]:
        totals: dict[str, int] = {}
        for take in self.takes:
            totals[take.batch_id] = totals.get(take.batch_id, 0) + take.quantity
        return totals


def _fifo_order(candidates: Iterable[BatchCandidate]) -> list[BatchCandidate]:
    return sorted(candidates, key=lambda c: (c.created_at, c.batch_id))


def plan_fifo_consumption(
    candidates: Iterable[BatchCandidate],
    required: int,
    consumed: Mapping[str, int] | None = None,
) -> tuple[list[tuple[BatchCandidate, int]], int]:
    """Walk candidates oldest-first until ``required`` is covered.

    Returns ``(takes, shortfall)``.  ``consumed`` holds quantities already
    taken from each batch by earlier lines of the same sale.
    """
    consumed = consumed or {}
    takes: list[tuple[BatchCandidate, int]] = []
    needed = required
    for candidate in _fifo_order(candidates):
        if needed <= 0:
            break
        already = consumed.get(candidate.batch_id, 0)
        if candidate.remaining_quantity - already <= 0:
            continue
        quantity = min(
            candidate.store_available - already,
            candidate.remaining_quantity - already,
            needed,
        )
        if quantity > 0:
            takes.append((candidate, quantity))
            needed -= quantity
    return takes, max(0, needed)


def plan_sale(
    lines: Sequence[SaleLineRequest],
    candidates_by_inventory: Mapping[str, Sequence[BatchCandidate]],
    store_id: str | None = None,
) -> SalePlan:
    """Plan every line of a sale against the store's batches."""
    consumed: dict[str, int] = {}
    takes: list[BatchTake] = []

    for line in lines:
        if line.quantity <= 0:
            raise InvalidTransferRequestError(
                "Sale quantity must be positive",
                details={"product_id": str(line.product_id), "quantity": line.quantity},
            )
        for component in line.components:
            if component.quantity_per_product < 1:
                raise InvalidTransferRequestError(
                    "Component quantity per product must be positive",
                    details={
                        "product_id": str(line.product_id),
                        "inventory_id": str(component.inventory_id),
                        "quantity_per_product": component.quantity_per_product,
                    },
                )
            required = line.quantity * component.quantity_per_product
            planned, shortfall = plan_fifo_consumption(
                candidates_by_inventory.get(str(component.inventory_id), ()),
                required,
                consumed,
            )
            if shortfall:
                raise InsufficientInventoryError(
                    line.product_id,
                    line.product_name,
                    required,
                    required - shortfall,
                    store_id=store_id,
                )
            for candidate, quantity in planned:
                consumed[candidate.batch_id] = consumed.get(candidate.batch_id, 0) + quantity
                takes.append(BatchTake(
                    batch_id=candidate.batch_id,
                    inventory_id=candidate.inventory_id,
                    product_id=str(line.product_id),
                    quantity=quantity,
                    unit_price=candidate.unit_price,
                ))

    return SalePlan(takes=tuple(takes))
