"""
Main-store backfill migration tests.

Verifies:
- Ledger-less live batches go to their tenant's MAIN store in full
- Batches that already have a ledger are left alone
- A tenant without a MAIN store aborts the run before any write
- Validation reports missing ledgers and total mismatches
- Rollback removes exactly what the migration actor wrote
"""

import pytest

from retail_kernel.exceptions import MainStoreNotFoundError
from retail_kernel.models.audit_event import AuditAction
from retail_kernel.models.store import StoreClassification
from retail_kernel.services.allocation_migration import BatchAllocationMigration
from retail_kernel.services.batch_repository import BatchRepository
from tests.conftest import OTHER_TENANT_ID


@pytest.fixture
def migration(session, deterministic_clock, auditor_service):
    return BatchAllocationMigration(
        session,
        clock=deterministic_clock,
        auditor=auditor_service,
        chunk_size=2,
    )


def _ledger(batch, reload):
    return BatchRepository.ledger_of(reload(batch))


class TestMigrate:
    def test_backfills_main_store(self, migration, main_store, create_batch, reload):
        batch = create_batch(quantity=100, remaining=70)

        report = migration.migrate_existing_batches()

        assert (report.total, report.migrated, report.failed) == (1, 1, ())
        entry = _ledger(batch, reload)[str(main_store.id)]
        assert (entry.allocated, entry.reserved) == (70, 0)
        assert entry.updated_by == "SYSTEM_MIGRATION"

    def test_existing_ledgers_untouched(self, migration, main_store, store_a, create_batch, reload):
        allocated = create_batch(allocations={store_a: 30})

        report = migration.migrate_existing_batches()

        assert report.total == 0
        assert dict((k, v.allocated) for k, v in _ledger(allocated, reload).items()) == {str(store_a.id): 30}

    def test_each_tenant_uses_its_own_main_store(self, migration, main_store, create_store, create_batch, reload):
        other_main = create_store("Other HQ", StoreClassification.MAIN, tenant_id=OTHER_TENANT_ID)
        ours = create_batch()
        theirs = create_batch(tenant_id=OTHER_TENANT_ID)

        report = migration.migrate_existing_batches()

        assert report.migrated == 2
        assert list(_ledger(ours, reload)) == [str(main_store.id)]
        assert list(_ledger(theirs, reload)) == [str(other_main.id)]

    def test_missing_main_store_aborts_before_writing(self, migration, main_store, create_batch, reload):
        ours = create_batch()
        create_batch(tenant_id=OTHER_TENANT_ID)

        with pytest.raises(MainStoreNotFoundError) as exc_info:
            migration.migrate_existing_batches()

        assert exc_info.value.tenant_id == OTHER_TENANT_ID
        assert _ledger(ours, reload) == {}

    def test_deleted_batches_skipped(self, session, migration, main_store, create_batch, deterministic_clock):
        batch = create_batch()
        batch.deleted_at = deterministic_clock.now()
        session.flush()

        assert migration.migrate_existing_batches().total == 0

    def test_chunks_are_logged(self, migration, main_store, create_batch, captured_logs):
        for _ in range(5):
            create_batch()

        report = migration.migrate_existing_batches()

        assert report.migrated == 5
        chunks = [r for r in captured_logs() if r["message"] == "migration_chunk_processed"]
        assert [c["progress"] for c in chunks] == [2, 4, 5]

    def test_migration_is_audited(self, migration, auditor_service, main_store, create_batch):
        batch = create_batch(remaining=40)

        migration.migrate_existing_batches()

        trace = auditor_service.get_trace("InventoryBatch", batch.id)
        assert trace.actions == [AuditAction.ALLOCATION_MIGRATED]
        assert trace.entries[0].payload == {"store_id": str(main_store.id), "quantity": 40}


class TestValidate:
    def test_valid_after_migration(self, migration, main_store, create_batch):
        create_batch()
        migration.migrate_existing_batches()

        assert migration.validate_migration().is_valid

    def test_reports_missing_and_mismatched(self, migration, store_a, create_batch):
        missing = create_batch()
        drifted = create_batch(remaining=50, allocations={store_a: 20})

        validation = migration.validate_migration()

        assert not validation.is_valid
        assert validation.batches_without_allocations == (str(missing.id),)
        assert [(m.batch_id, m.total_allocated, m.remaining_quantity) for m in validation.mismatches] == [
            (str(drifted.id), 20, 50),
        ]


class TestRollback:
    def test_removes_only_migration_entries(self, migration, main_store, store_a, create_batch, reload):
        migrated = create_batch()
        manual = create_batch(allocations={store_a: 10})
        migration.migrate_existing_batches()

        reverted = migration.rollback_migration()

        assert reverted == 1
        assert _ledger(migrated, reload) == {}
        assert list(_ledger(manual, reload)) == [str(store_a.id)]

    def test_rollback_then_migrate_again(self, migration, main_store, create_batch):
        create_batch()
        migration.migrate_existing_batches()
        migration.rollback_migration()

        assert migration.migrate_existing_batches().migrated == 1
