"""
AllocationService -- direct allocation of batch stock to stores.

Responsibility:
    Grants part of a batch's unallocated remainder to one store, and
    projects every batch of the tenant onto a single store for the
    store inventory view.

Architecture position:
    Kernel > Services -- imperative shell over the pure
    ``domain.allocation_ledger`` and ``domain.inventory_view``.

Invariants enforced:
    - sum(allocated) <= remaining_quantity: a grant never exceeds
      ``remaining_quantity - total_allocated``.
    - ``reserved`` is never touched by a grant.
    - The ledger write and its ALLOCATION_GRANTED audit event commit or
      roll back together (one SAVEPOINT).

Failure modes:
    - InvalidTransferRequestError: missing user or non-positive quantity.
    - StoreNotFoundError, InventoryBatchNotFoundError.
    - InsufficientStoreAllocationError: quantity exceeds the unallocated
      remainder; ``available`` carries that remainder.
    - OptimisticLockError: batch changed concurrently.

Audit relevance:
    One AuditEvent per grant, with the store's allocation after the grant.
"""

from typing import Any

from sqlalchemy.orm import Session

from retail_kernel.db.engine import atomic
from retail_kernel.domain.allocation_ledger import (
    StoreAllocation,
    get_store_allocation,
    unallocated_quantity,
    update_store_allocation,
)
from retail_kernel.domain.clock import Clock, SystemClock
from retail_kernel.domain.inventory_view import (
    BatchSnapshot,
    StoreInventoryView,
    build_store_inventory_view,
)
from retail_kernel.domain.request_context import RequestContext
from retail_kernel.exceptions import (
    InsufficientStoreAllocationError,
    InvalidTransferRequestError,
)
from retail_kernel.logging_config import get_logger
from retail_kernel.models.inventory import InventoryBatchModel
from retail_kernel.services.auditor_service import AuditorService
from retail_kernel.services.base import BaseService
from retail_kernel.services.batch_repository import BatchRepository
from retail_kernel.services.store_directory import StoreDirectory

logger = get_logger("services.allocation")


class AllocationService(BaseService[InventoryBatchModel]):
    """
    Allocates batch stock to stores and builds the store inventory view.

    Non-goals:
        - Does NOT move allocation between stores (TransferWorkflowService).
        - Does NOT call ``session.commit()``.
    """

    def __init__(
        self,
        session: Session,
        directory: StoreDirectory | None = None,
        clock: Clock | None = None,
        auditor: AuditorService | None = None,
        unknown_store_label: str = "Unknown Store",
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._directory = directory or StoreDirectory(session)
        self._auditor = auditor or AuditorService(session, self._clock)
        self._batches = BatchRepository(session)
        self._unknown_store_label = unknown_store_label

    def allocate_batch_to_store(
        self,
        batch_id: Any,
        store_id: Any,
        quantity: int,
        user_id: str,
    ) -> StoreAllocation:
        """
        Add ``quantity`` of the batch's unallocated remainder to a store.

        Returns:
            The store's ledger entry after the grant.
        """
        tenant_id = RequestContext.require_tenant_id()
        if not user_id:
            raise InvalidTransferRequestError("User ID is required")
        if quantity <= 0:
            raise InvalidTransferRequestError(
                "Quantity must be positive",
                details={"quantity": quantity},
            )

        store = self._directory.find_one(store_id)
        store_key = str(store.id)
        batch = self._batches.get_batch(batch_id, tenant_id)
        ledger = self._batches.ledger_of(batch)

        available = unallocated_quantity(ledger, batch.remaining_quantity)
        if quantity > available:
            logger.warning(
                "allocation_exceeds_unallocated",
                extra={
                    "batch_id": str(batch.id),
                    "store_id": store_key,
                    "requested": quantity,
                    "available": available,
                },
            )
            raise InsufficientStoreAllocationError(store_key, str(batch.id), quantity, available)

        current = get_store_allocation(ledger, store_key)
        updated = update_store_allocation(
            ledger,
            store_key,
            allocated=(current.allocated if current else 0) + quantity,
            reserved=current.reserved if current else 0,
            actor_id=user_id,
            at=self._clock.now(),
        )

        with atomic(self.session, operation="allocate_batch_to_store"):
            self._batches.save(batch, ledger=updated)
            self._auditor.record_allocation_granted(
                batch_id=batch.id,
                store_id=store_key,
                quantity=quantity,
                allocated_after=updated[store_key].allocated,
                actor_id=user_id,
                tenant_id=tenant_id,
            )

        logger.info(
            "batch_allocated_to_store",
            extra={
                "batch_id": str(batch.id),
                "store_id": store_key,
                "quantity": quantity,
                "allocated_after": updated[store_key].allocated,
            },
        )
        return updated[store_key]

    def get_store_inventory_view(self, store_id: Any) -> list[StoreInventoryView]:
        """Every live batch of the tenant as seen from one store."""
        tenant_id = RequestContext.require_tenant_id()
        store = self._directory.find_one(store_id)

        snapshots = [
            BatchSnapshot(
                batch_id=str(batch.id),
                inventory_id=str(batch.inventory_id),
                inventory_name=batch.inventory.name,
                batch_number=batch.batch_number,
                number_of_stock=batch.number_of_stock,
                price=batch.price,
                ledger=self._batches.ledger_of(batch),
            )
            for batch in self._batches.list_live_batches(tenant_id)
        ]

        # The main store is only consulted for batches nobody holds yet
        main_store_id = ""
        if any(
            not any(entry.allocated > 0 for entry in snapshot.ledger.values())
            for snapshot in snapshots
        ):
            main_store_id = str(self._directory.find_main_store().id)

        views = build_store_inventory_view(
            store_id=str(store.id),
            batches=snapshots,
            store_names=self._directory.store_names(),
            main_store_id=main_store_id,
            unknown_store_label=self._unknown_store_label,
        )
        logger.debug(
            "store_inventory_view_built",
            extra={"store_id": str(store.id), "items": len(views)},
        )
        return views
