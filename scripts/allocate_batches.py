#!/usr/bin/env python3
"""
Backfill store allocations for batches created before store-scoped stock.

Every live batch without a ledger is allocated in full to its tenant's
MAIN store, stamped by the migration actor.  Tenants without a MAIN store
abort the run before anything is written.

Usage:
  python3 scripts/allocate_batches.py [--database-url URL] [--config PATH]
                                      [--validate-only | --rollback]

Exit status is 0 when the run (or validation) succeeded, 1 otherwise.
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Allocate legacy inventory batches to main stores")
    p.add_argument("--database-url", help="Database URL (default: database.url from config)")
    p.add_argument("--config", type=Path, help="Operator YAML merged over the defaults")
    mode = p.add_mutually_exclusive_group()
    mode.add_argument(
        "--validate-only",
        action="store_true",
        help="Only report batches without ledgers or with mismatched totals",
    )
    mode.add_argument(
        "--rollback",
        action="store_true",
        help="Remove ledger entries written by the migration actor",
    )
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    from retail_config import get_active_config
    from retail_kernel.db.engine import init_engine_from_url, session_scope
    from retail_kernel.exceptions import MainStoreNotFoundError
    from retail_kernel.logging_config import configure_logging
    from retail_kernel.services.allocation_migration import BatchAllocationMigration

    config = get_active_config(config_path=args.config)
    configure_logging(level=config.logging.level.upper())
    init_engine_from_url(
        args.database_url or config.database.url,
        echo=config.database.echo,
        pool_size=config.database.pool_size,
        max_overflow=config.database.max_overflow,
        pool_timeout=config.database.pool_timeout,
    )

    with session_scope() as session:
        migration = BatchAllocationMigration(
            session,
            chunk_size=config.migration.chunk_size,
            system_actor=config.migration.system_actor,
        )

        if args.rollback:
            reverted = migration.rollback_migration()
            print(f"Reverted allocations on {reverted} batches")
            return 0

        if not args.validate_only:
            try:
                report = migration.migrate_existing_batches()
            except MainStoreNotFoundError as exc:
                print(f"ERROR: {exc}. Run the store migration first.", file=sys.stderr)
                return 1
            print(f"Migrated {report.migrated}/{report.total} batches")
            for batch_id in report.failed:
                print(f"  FAILED: {batch_id}", file=sys.stderr)
            if not report.succeeded:
                return 1

        validation = migration.validate_migration()
        for batch_id in validation.batches_without_allocations:
            print(f"  NO LEDGER: {batch_id}", file=sys.stderr)
        for mismatch in validation.mismatches:
            print(
                f"  MISMATCH: {mismatch.batch_id} allocated {mismatch.total_allocated}"
                f" != remaining {mismatch.remaining_quantity}",
                file=sys.stderr,
            )
        print("Validation passed" if validation.is_valid else "Validation failed")
        return 0 if validation.is_valid else 1


if __name__ == "__main__":
    sys.exit(main())
