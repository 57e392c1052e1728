"""
SaleReservationService -- FIFO consumption of store allocations at sale time.

Responsibility:
    Turns the lines of a sale into batch decrements for one store: oldest
    batch first, each take bounded by the store's available allocation and
    the batch's remaining quantity.  The whole sale is applied or none of it.

Architecture position:
    Kernel > Services.  Planning is the pure ``domain.reservation``
    planner; this service loads candidates, applies the plan and records
    what each batch gave up.  Called by the host's sales workflow.

Invariants enforced:
    - A plan covering every line exists before the first write.
    - Each take lowers ``remaining_quantity`` and the store's ``allocated``
      by the same amount, so sum(allocated) <= remaining_quantity holds.
    - All writes share one SAVEPOINT bounded by ``timeout_seconds``.
    - Every touched batch is written under its version check, so a sale
      racing a transfer confirm on the same batch loses cleanly.

Failure modes:
    - InsufficientInventoryError: a line cannot be covered (nothing written).
    - TransactionTimeoutError: deadline exceeded (everything rolled back).
    - OptimisticLockError: a batch changed between planning and writing.

Audit relevance:
    One SALE_RESERVED AuditEvent per sale listing quantities by batch, and
    one ``sale_batch_allocations`` row per take.
"""

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from retail_kernel.db.engine import atomic
from retail_kernel.domain.allocation_ledger import get_store_allocation, update_store_allocation
from retail_kernel.domain.clock import Clock, SystemClock
from retail_kernel.domain.request_context import RequestContext
from retail_kernel.domain.reservation import (
    BatchCandidate,
    BatchTake,
    SaleLineRequest,
    SalePlan,
    plan_sale,
)
from retail_kernel.exceptions import InsufficientInventoryError, InvalidTransferRequestError
from retail_kernel.logging_config import get_logger
from retail_kernel.models.inventory import InventoryBatchModel
from retail_kernel.models.sale_allocation import SaleBatchAllocationModel
from retail_kernel.services.auditor_service import AuditorService
from retail_kernel.services.base import BaseService
from retail_kernel.services.batch_repository import BatchRepository
from retail_kernel.services.store_directory import StoreDirectory

logger = get_logger("services.sale_reservation")


def _as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back naive; they were written as UTC
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class SaleReservationResult:
    sale_id: UUID
    store_id: str
    takes: tuple[BatchTake, ...]

    @property
    def total_price(self) -> Decimal:
        return sum((take.line_total for take in self.takes), Decimal("0"))


class SaleReservationService(BaseService[InventoryBatchModel]):
    """
    Store-scoped FIFO reservation for sales.

    Non-goals:
        - Does NOT create the sale record itself; the host owns sales.
        - Does NOT call ``session.commit()``.
    """

    def __init__(
        self,
        session: Session,
        directory: StoreDirectory | None = None,
        clock: Clock | None = None,
        auditor: AuditorService | None = None,
        timeout_seconds: float = 10.0,
        apply_margin: bool = False,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._directory = directory or StoreDirectory(session)
        self._auditor = auditor or AuditorService(session, self._clock)
        self._batches = BatchRepository(session)
        self._timeout_seconds = timeout_seconds
        self._apply_margin = apply_margin
        self._monotonic = monotonic

    def _resolve_store(self, store_id: Any | None) -> str:
        explicit = store_id or RequestContext.get_store_id()
        if explicit:
            return str(self._directory.find_one(explicit).id)
        return str(self._directory.find_main_store().id)

    def _unit_price(self, batch: InventoryBatchModel, apply_margin: bool) -> Decimal:
        if apply_margin:
            return batch.cost_of_item if batch.cost_of_item is not None else Decimal("0")
        return batch.price

    def _plan(
        self,
        tenant_id: str,
        store_key: str,
        lines: Sequence[SaleLineRequest],
        apply_margin: bool,
    ) -> tuple[SalePlan, dict[str, InventoryBatchModel]]:
        inventory_ids = {
            str(component.inventory_id) for line in lines for component in line.components
        }
        loaded = self._batches.list_sale_candidates(tenant_id, inventory_ids)

        candidates: dict[str, list[BatchCandidate]] = {}
        for batch in loaded:
            entry = get_store_allocation(self._batches.ledger_of(batch), store_key)
            if entry is None or entry.available <= 0:
                continue
            candidates.setdefault(str(batch.inventory_id), []).append(BatchCandidate(
                batch_id=str(batch.id),
                inventory_id=str(batch.inventory_id),
                created_at=_as_utc(batch.created_at),
                remaining_quantity=batch.remaining_quantity,
                store_available=entry.available,
                unit_price=self._unit_price(batch, apply_margin),
            ))

        try:
            plan = plan_sale(lines, candidates, store_id=store_key)
        except InsufficientInventoryError as exc:
            logger.warning(
                "sale_inventory_insufficient",
                extra={
                    "store_id": store_key,
                    "product_id": exc.product_id,
                    "required": exc.required,
                    "available": exc.available,
                },
            )
            raise
        return plan, {str(batch.id): batch for batch in loaded}

    def check_availability(
        self,
        lines: Sequence[SaleLineRequest],
        store_id: Any | None = None,
        apply_margin: bool | None = None,
    ) -> SalePlan:
        """Plan the sale without writing anything."""
        tenant_id = RequestContext.require_tenant_id()
        margin = self._apply_margin if apply_margin is None else apply_margin
        plan, _ = self._plan(tenant_id, self._resolve_store(store_id), lines, margin)
        return plan

    def reserve_for_sale(
        self,
        sale_id: UUID,
        lines: Sequence[SaleLineRequest],
        user_id: str,
        store_id: Any | None = None,
        apply_margin: bool | None = None,
    ) -> SaleReservationResult:
        """
        Consume store allocation for every line of a sale, oldest batch first.

        Store resolution: explicit ``store_id``, else the caller's store
        context, else the tenant's main store.
        """
        tenant_id = RequestContext.require_tenant_id()
        if not user_id:
            raise InvalidTransferRequestError("User ID is required")
        store_key = self._resolve_store(store_id)
        margin = self._apply_margin if apply_margin is None else apply_margin

        plan, batches = self._plan(tenant_id, store_key, lines, margin)
        quantities = plan.quantity_by_batch()
        now = self._clock.now()

        with atomic(
            self.session,
            operation="reserve_for_sale",
            timeout_seconds=self._timeout_seconds,
            monotonic=self._monotonic,
        ):
            for batch_id, quantity in quantities.items():
                batch = batches[batch_id]
                ledger = self._batches.ledger_of(batch)
                entry = get_store_allocation(ledger, store_key)
                ledger = update_store_allocation(
                    ledger,
                    store_key,
                    allocated=entry.allocated - quantity,
                    reserved=entry.reserved,
                    actor_id=user_id,
                    at=now,
                )
                batch.remaining_quantity -= quantity
                self._batches.save(batch, ledger=ledger)

            for take in plan.takes:
                self.session.add(SaleBatchAllocationModel(
                    sale_id=sale_id,
                    tenant_id=tenant_id,
                    store_id=UUID(store_key),
                    batch_id=UUID(take.batch_id),
                    inventory_id=UUID(take.inventory_id),
                    product_id=take.product_id,
                    quantity=take.quantity,
                    unit_price=take.unit_price,
                    created_at=now,
                ))
            self.session.flush()

            self._auditor.record_sale_reserved(
                sale_id=sale_id,
                store_id=store_key,
                quantities_by_batch=quantities,
                actor_id=user_id,
                tenant_id=tenant_id,
            )

        logger.info(
            "sale_reserved",
            extra={
                "sale_id": str(sale_id),
                "store_id": store_key,
                "batches": len(quantities),
                "units": sum(quantities.values()),
            },
        )
        return SaleReservationResult(sale_id=sale_id, store_id=store_key, takes=plan.takes)
