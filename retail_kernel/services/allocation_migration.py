"""
BatchAllocationMigration -- one-off backfill of store ledgers.

Responsibility:
    Batches created before store-scoped allocation have no ledger.  The
    migration gives each of them to its tenant's MAIN store in full
    (``allocated = remaining_quantity``), validates the result, and can
    revert what it wrote.

Architecture position:
    Kernel > Services.  Runs across tenants, so it does not use
    ``RequestContext``; it is driven by ``scripts/allocate_batches.py``.

Invariants enforced:
    - Every tenant with a batch to migrate has a live MAIN store, checked
      for all tenants before the first write.
    - Batches that already carry a ledger are never touched.
    - Each batch is written in its own SAVEPOINT with its audit event; a
      version conflict on one batch is reported and does not undo others.

Failure modes:
    - MainStoreNotFoundError: some tenant lacks a MAIN store (no writes).
    - Conflicting batches are listed in ``MigrationReport.failed``.
"""

from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.orm import Session

from retail_kernel.db.engine import atomic
from retail_kernel.domain.allocation_ledger import (
    EMPTY_LEDGER,
    get_total_allocated,
    remove_store_allocation,
    update_store_allocation,
)
from retail_kernel.domain.clock import Clock, SystemClock
from retail_kernel.exceptions import MainStoreNotFoundError, OptimisticLockError
from retail_kernel.logging_config import get_logger
from retail_kernel.models.inventory import InventoryBatchModel
from retail_kernel.models.store import StoreClassification, StoreModel
from retail_kernel.services.auditor_service import AuditorService
from retail_kernel.services.batch_repository import BatchRepository

logger = get_logger("services.allocation_migration")


@dataclass(frozen=True)
class MigrationReport:
    total: int
    migrated: int
    failed: tuple[str, ...] = ()

    @property
    def succeeded(self) -> bool:
        return not self.failed


@dataclass(frozen=True)
class AllocationMismatch:
    batch_id: str
    total_allocated: int
    remaining_quantity: int


@dataclass(frozen=True)
class MigrationValidation:
    batches_without_allocations: tuple[str, ...] = ()
    mismatches: tuple[AllocationMismatch, ...] = field(default_factory=tuple)

    @property
    def is_valid(self) -> bool:
        return not self.batches_without_allocations and not self.mismatches


def _chunks(items: list, size: int):
    for start in range(0, len(items), size):
        yield items[start:start + size]


class BatchAllocationMigration:
    """Backfills, validates and reverts main-store ledgers for legacy batches."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        auditor: AuditorService | None = None,
        chunk_size: int = 100,
        system_actor: str = "SYSTEM_MIGRATION",
    ):
        self.session = session
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditorService(session, self._clock)
        self._batches = BatchRepository(session)
        self._chunk_size = chunk_size
        self._system_actor = system_actor

    def _live_batches(self) -> list[InventoryBatchModel]:
        return list(
            self.session.execute(
                select(InventoryBatchModel)
                .where(InventoryBatchModel.deleted_at.is_(None))
                .order_by(InventoryBatchModel.tenant_id, InventoryBatchModel.created_at)
            ).scalars().unique().all()
        )

    def _main_stores(self) -> dict[str, str]:
        stores = self.session.execute(
            select(StoreModel).where(
                StoreModel.classification == StoreClassification.MAIN.value,
                StoreModel.deleted_at.is_(None),
            )
        ).scalars().all()
        return {store.tenant_id: str(store.id) for store in stores}

    def _validate_main_stores(self, tenant_ids: set[str]) -> dict[str, str]:
        main_stores = self._main_stores()
        missing = sorted(tenant_ids - set(main_stores))
        if missing:
            logger.error(
                "migration_tenants_without_main_store",
                extra={"tenant_ids": missing, "count": len(missing)},
            )
            raise MainStoreNotFoundError(missing[0])
        return main_stores

    def migrate_existing_batches(self) -> MigrationReport:
        """Allocate every ledger-less live batch to its tenant's MAIN store."""
        pending = [
            batch for batch in self._live_batches()
            if not self._batches.ledger_of(batch)
        ]
        logger.info("migration_started", extra={"batches": len(pending)})
        if not pending:
            return MigrationReport(total=0, migrated=0)

        main_stores = self._validate_main_stores({batch.tenant_id for batch in pending})

        migrated = 0
        failed: list[str] = []
        for chunk in _chunks(pending, self._chunk_size):
            chunk_failed = 0
            for batch in chunk:
                main_store_id = main_stores[batch.tenant_id]
                ledger = update_store_allocation(
                    EMPTY_LEDGER,
                    main_store_id,
                    allocated=batch.remaining_quantity,
                    reserved=0,
                    actor_id=self._system_actor,
                    at=self._clock.now(),
                )
                batch_id = str(batch.id)
                try:
                    with atomic(self.session, operation="migrate_batch_allocation"):
                        self._batches.save(batch, ledger=ledger)
                        self._auditor.record_allocation_migrated(
                            batch_id=batch.id,
                            store_id=main_store_id,
                            quantity=batch.remaining_quantity,
                            actor_id=self._system_actor,
                            tenant_id=batch.tenant_id,
                        )
                except OptimisticLockError:
                    logger.error("migration_batch_failed", extra={"batch_id": batch_id})
                    failed.append(batch_id)
                    chunk_failed += 1
                    continue
                migrated += 1
            logger.info(
                "migration_chunk_processed",
                extra={
                    "successful": len(chunk) - chunk_failed,
                    "failed": chunk_failed,
                    "progress": migrated + len(failed),
                    "total": len(pending),
                },
            )

        report = MigrationReport(total=len(pending), migrated=migrated, failed=tuple(failed))
        log = logger.info if report.succeeded else logger.error
        log(
            "migration_completed",
            extra={"migrated": report.migrated, "failed": len(report.failed)},
        )
        return report

    def validate_migration(self) -> MigrationValidation:
        """List batches still without a ledger or whose ledger total drifts."""
        without: list[str] = []
        mismatches: list[AllocationMismatch] = []
        for batch in self._live_batches():
            ledger = self._batches.ledger_of(batch)
            if not ledger:
                without.append(str(batch.id))
                continue
            total = get_total_allocated(ledger)
            if total != batch.remaining_quantity:
                mismatches.append(AllocationMismatch(
                    batch_id=str(batch.id),
                    total_allocated=total,
                    remaining_quantity=batch.remaining_quantity,
                ))

        validation = MigrationValidation(
            batches_without_allocations=tuple(without),
            mismatches=tuple(mismatches),
        )
        if validation.is_valid:
            logger.info("migration_validation_passed")
        else:
            logger.error(
                "migration_validation_failed",
                extra={
                    "without_allocations": len(without),
                    "mismatches": len(mismatches),
                },
            )
        return validation

    def rollback_migration(self) -> int:
        """Remove ledger entries written by the migration actor.

        Returns:
            Number of batches changed.
        """
        reverted = 0
        for batch in self._live_batches():
            ledger = self._batches.ledger_of(batch)
            removed = [
                store_id for store_id, entry in ledger.items()
                if entry.updated_by == self._system_actor
            ]
            if not removed:
                continue
            for store_id in removed:
                ledger = remove_store_allocation(ledger, store_id)
            with atomic(self.session, operation="rollback_batch_allocation"):
                self._batches.save(batch, ledger=ledger)
                self._auditor.record_allocation_migration_reverted(
                    batch_id=batch.id,
                    removed_store_ids=removed,
                    actor_id=self._system_actor,
                    tenant_id=batch.tenant_id,
                )
            reverted += 1

        logger.info("migration_rolled_back", extra={"batches": reverted})
        return reverted
