"""
BatchRepository -- tenant-scoped persistence for inventory batches.

Responsibility:
    Loads batches for the current tenant, decodes and re-encodes their
    embedded allocation and transfer-request documents, and keeps the
    ``transfer_request_index`` in step with every write.

Architecture position:
    Kernel > Services.  Used by AllocationService, TransferWorkflowService,
    SaleReservationService and the allocation migration.  Flush-only.

Invariants enforced:
    - Every batch write is a single UPDATE guarded by the row ``version``
      (``version_id_col``).  A concurrent writer makes the UPDATE match no
      row; the resulting StaleDataError is re-raised as OptimisticLockError.
    - The batch is flushed before its index row, so a lost race never
      leaves an index row describing a write that did not happen.
    - Soft-deleted batches and batches of other tenants are never returned.

Failure modes:
    - InventoryBatchNotFoundError, TransferRequestNotFoundError.
    - OptimisticLockError (ConcurrencyError family).  Never retried here.
"""

from collections.abc import Iterable
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from retail_kernel.domain.allocation_ledger import (
    AllocationLedger,
    decode_store_allocations,
    encode_store_allocations,
)
from retail_kernel.domain.transfer import (
    TransferRequest,
    TransferRequestMap,
    decode_transfer_requests,
    encode_transfer_requests,
)
from retail_kernel.exceptions import (
    InventoryBatchNotFoundError,
    OptimisticLockError,
    TransferRequestNotFoundError,
)
from retail_kernel.logging_config import get_logger
from retail_kernel.models.inventory import InventoryBatchModel, InventoryItemModel
from retail_kernel.models.transfer_index import TransferRequestIndexModel
from retail_kernel.services.base import BaseService
from retail_kernel.utils.ids import as_uuid

logger = get_logger("services.batch_repository")


class BatchRepository(BaseService[InventoryBatchModel]):
    """Batch loading, versioned ledger writes and transfer index upkeep."""

    def _live_batches(self, tenant_id: str):
        return select(InventoryBatchModel).where(
            InventoryBatchModel.tenant_id == tenant_id,
            InventoryBatchModel.deleted_at.is_(None),
        )

    def get_batch(self, batch_id: Any, tenant_id: str) -> InventoryBatchModel:
        """
        Live batch by id within ``tenant_id``.

        Raises:
            InventoryBatchNotFoundError: Unknown, soft-deleted or foreign batch.
        """
        batch_uuid = as_uuid(batch_id)
        batch = None
        if batch_uuid is not None:
            batch = self.session.execute(
                self._live_batches(tenant_id).where(InventoryBatchModel.id == batch_uuid)
            ).scalar_one_or_none()
        if batch is None:
            raise InventoryBatchNotFoundError(str(batch_id), tenant_id)
        return batch

    def list_live_batches(self, tenant_id: str) -> list[InventoryBatchModel]:
        """All live batches, ordered by item name then batch number."""
        return list(
            self.session.execute(
                self._live_batches(tenant_id)
                .join(InventoryItemModel, InventoryBatchModel.inventory_id == InventoryItemModel.id)
                .where(InventoryItemModel.deleted_at.is_(None))
                .order_by(InventoryItemModel.name, InventoryBatchModel.batch_number)
            ).scalars().unique().all()
        )

    def list_sale_candidates(
        self,
        tenant_id: str,
        inventory_ids: Iterable[Any],
    ) -> list[InventoryBatchModel]:
        """Live batches with stock left for the given items, oldest first."""
        ids = [uuid for uuid in (as_uuid(i) for i in inventory_ids) if uuid is not None]
        if not ids:
            return []
        return list(
            self.session.execute(
                self._live_batches(tenant_id)
                .where(
                    InventoryBatchModel.inventory_id.in_(ids),
                    InventoryBatchModel.remaining_quantity > 0,
                )
                .order_by(InventoryBatchModel.created_at, InventoryBatchModel.id)
            ).scalars().unique().all()
        )

    # Embedded documents

    @staticmethod
    def ledger_of(batch: InventoryBatchModel) -> AllocationLedger:
        return decode_store_allocations(batch.store_allocations)

    @staticmethod
    def requests_of(batch: InventoryBatchModel) -> TransferRequestMap:
        return decode_transfer_requests(batch.transfer_requests)

    def save(
        self,
        batch: InventoryBatchModel,
        ledger: AllocationLedger | None = None,
        requests: TransferRequestMap | None = None,
    ) -> InventoryBatchModel:
        """
        Persist new ledger and/or request documents in one versioned UPDATE.

        Raises:
            OptimisticLockError: the row changed since it was loaded.
        """
        if ledger is not None:
            batch.store_allocations = encode_store_allocations(ledger)
        if requests is not None:
            batch.transfer_requests = encode_transfer_requests(requests)
        loaded_version = batch.version
        batch_key = str(batch.id)
        try:
            self.session.flush()
        except StaleDataError as exc:
            logger.warning(
                "batch_version_conflict",
                extra={"batch_id": batch_key, "version": loaded_version},
            )
            raise OptimisticLockError("InventoryBatch", batch_key) from exc
        return batch

    # Transfer request index

    def upsert_index(
        self,
        request: TransferRequest,
        batch: InventoryBatchModel,
    ) -> TransferRequestIndexModel:
        """Mirror ``request``'s listing fields into the index and flush."""
        row = self.session.execute(
            select(TransferRequestIndexModel).where(
                TransferRequestIndexModel.request_id == as_uuid(request.request_id),
            )
        ).scalar_one_or_none()
        if row is None:
            row = TransferRequestIndexModel(
                request_id=as_uuid(request.request_id),
                batch_id=batch.id,
                tenant_id=batch.tenant_id,
                requested_at=request.requested_at,
            )
            self.session.add(row)
        row.type = request.type.value
        row.source_store_id = as_uuid(request.source_store_id)
        row.target_store_id = as_uuid(request.target_store_id)
        row.status = request.status.value
        self.session.flush()
        return row

    def find_batch_for_request(
        self,
        request_id: Any,
        tenant_id: str,
    ) -> tuple[InventoryBatchModel, TransferRequest]:
        """
        The batch holding ``request_id`` and the decoded request.

        Raises:
            TransferRequestNotFoundError: no such request in this tenant.
        """
        request_uuid = as_uuid(request_id)
        row = None
        if request_uuid is not None:
            row = self.session.execute(
                select(TransferRequestIndexModel).where(
                    TransferRequestIndexModel.request_id == request_uuid,
                    TransferRequestIndexModel.tenant_id == tenant_id,
                )
            ).scalar_one_or_none()
        if row is None:
            raise TransferRequestNotFoundError(str(request_id))

        try:
            batch = self.get_batch(row.batch_id, tenant_id)
        except InventoryBatchNotFoundError:
            raise TransferRequestNotFoundError(str(request_id)) from None

        request = self.requests_of(batch).get(str(request_uuid))
        if request is None:
            logger.error(
                "transfer_index_orphan",
                extra={"request_id": str(request_id), "batch_id": str(batch.id)},
            )
            raise TransferRequestNotFoundError(str(request_id))
        return batch, request

    def list_index_rows_for_store(
        self,
        tenant_id: str,
        store_id: Any,
    ) -> list[TransferRequestIndexModel]:
        """Index rows where ``store_id`` is the source or the target."""
        store_uuid = as_uuid(store_id)
        if store_uuid is None:
            return []
        return list(
            self.session.execute(
                select(TransferRequestIndexModel).where(
                    TransferRequestIndexModel.tenant_id == tenant_id,
                    or_(
                        TransferRequestIndexModel.source_store_id == store_uuid,
                        TransferRequestIndexModel.target_store_id == store_uuid,
                    ),
                )
            ).scalars().all()
        )

    def get_batches(self, batch_ids: Iterable[Any], tenant_id: str) -> dict[str, InventoryBatchModel]:
        """Live batches by id string; missing ids are simply absent."""
        ids = list({uuid for uuid in (as_uuid(i) for i in batch_ids) if uuid is not None})
        if not ids:
            return {}
        batches = self.session.execute(
            self._live_batches(tenant_id).where(InventoryBatchModel.id.in_(ids))
        ).scalars().unique().all()
        return {str(batch.id): batch for batch in batches}
