"""
Pytest fixtures for the retail kernel test suite.

Provides:
- Database sessions with per-test rollback isolation
- Tenant/store request context, deterministic clock and user directory
- Factories for stores, inventory items and batches
- Service fixtures wired to the same session and clock

Environment Variables:
- DATABASE_URL: database to test against.  Defaults to in-memory SQLite;
  set a postgresql:// URL to run the suite (and the PostgreSQL-only
  concurrency tests) against a real server.
"""

import json
import logging
import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from io import StringIO
from typing import Generator

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session

from retail_kernel.db.base import Base
from retail_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from retail_kernel.domain.allocation_ledger import encode_store_allocations, update_store_allocation, EMPTY_LEDGER
from retail_kernel.domain.clock import DeterministicClock
from retail_kernel.domain.collaborators import MappingUserDirectory
from retail_kernel.domain.request_context import RequestContext
from retail_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from retail_kernel.models.inventory import InventoryBatchModel, InventoryItemModel
from retail_kernel.models.store import StoreClassification, StoreModel
from retail_kernel.services.allocation_service import AllocationService
from retail_kernel.services.auditor_service import AuditorService
from retail_kernel.services.sale_reservation import SaleReservationService
from retail_kernel.services.store_directory import StoreDirectory
from retail_kernel.services.transfer_workflow import TransferWorkflowService

TEST_TENANT_ID = "tenant-1"
OTHER_TENANT_ID = "tenant-2"
TEST_USER_ID = "user-1"
APPROVER_USER_ID = "user-2"

DEFAULT_DATABASE_URL = "sqlite:///:memory:"

BATCH_EPOCH = datetime(2024, 1, 1, 8, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture retail_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, allocation_service):
            allocation_service.allocate_batch_to_store(...)
            logs = captured_logs()
            assert any(r["message"] == "batch_allocated_to_store" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("retail_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )


def get_database_url() -> str:
    """Get database URL from environment, or use in-memory SQLite."""
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


def is_postgres_url() -> bool:
    return get_database_url().startswith("postgresql")


def _kill_orphaned_connections():
    """
    Kill connections a previous PostgreSQL run left open.

    Stale backends holding locks would otherwise block DROP TABLE.
    """
    if not is_postgres_url():
        return
    import psycopg2

    try:
        conn = psycopg2.connect(get_database_url())
    except psycopg2.OperationalError as e:
        print(f"\n[conftest] Could not clean orphaned connections: {e}")
        return
    conn.autocommit = True
    cur = conn.cursor()
    cur.execute("""
        SELECT pg_terminate_backend(pid)
        FROM pg_stat_activity
        WHERE datname = current_database()
        AND pid <> pg_backend_pid()
    """)
    terminated = cur.rowcount
    cur.close()
    conn.close()
    if terminated > 0:
        print(f"\n[conftest] Killed {terminated} orphaned DB connection(s)")


# =============================================================================
# Session-scoped DB infrastructure (create engine + tables ONCE per suite)
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    """Single engine for the entire test session."""
    _kill_orphaned_connections()
    eng = init_engine_from_url(
        get_database_url(), echo=False,
        pool_size=10, max_overflow=10, pool_timeout=10,
    )
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session, drop once at end."""
    drop_tables()
    create_tables()
    yield
    drop_tables()


def _truncate_all_tables(engine):
    """Delete every row; used by tests that really commit."""
    with engine.connect() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(text(f"DELETE FROM {table.name}"))
        conn.commit()


# =============================================================================
# Per-test session with automatic rollback
# =============================================================================


@pytest.fixture(scope="function")
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    Opens a dedicated connection with an outer transaction and a session
    that joins it with ``create_savepoint``.  Service-level SAVEPOINTs
    nest inside; at teardown the outer transaction is rolled back, undoing
    every change the test made.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


@pytest.fixture(scope="function")
def pg_session_factory(db_engine, db_tables):
    """Real-commit sessions for PostgreSQL concurrency tests.

    Data isolation is achieved by deleting every row at teardown.
    """
    if not is_postgres_url():
        pytest.skip("requires DATABASE_URL pointing at PostgreSQL")
    factory = get_session_factory()
    created: list[Session] = []

    def _factory() -> Session:
        s = factory()
        created.append(s)
        return s

    yield _factory

    for s in created:
        s.rollback()
        s.close()
    _truncate_all_tables(db_engine)


# =============================================================================
# Context fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


@pytest.fixture
def tenant_context():
    """Bind the test tenant for the duration of the test."""
    with RequestContext.bind(tenant_id=TEST_TENANT_ID, actor_id=TEST_USER_ID):
        yield TEST_TENANT_ID


@pytest.fixture
def users():
    directory = MappingUserDirectory()
    directory.add(TEST_USER_ID, "Jane", "Doe")
    directory.add(APPROVER_USER_ID, "Sam", "Okafor")
    directory.add("user-3", "Lee", "")
    return directory


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def create_store(session: Session, deterministic_clock):
    """Factory for stores; MAIN stores must be unique per tenant."""

    def _create_store(
        name: str,
        classification: StoreClassification = StoreClassification.BRANCH,
        tenant_id: str = TEST_TENANT_ID,
        deleted: bool = False,
    ) -> StoreModel:
        store = StoreModel(
            tenant_id=tenant_id,
            name=name,
            classification=classification.value,
            created_at=deterministic_clock.now(),
            deleted_at=deterministic_clock.now() if deleted else None,
        )
        session.add(store)
        session.flush()
        return store

    return _create_store


@pytest.fixture
def main_store(create_store):
    return create_store("Head Office", StoreClassification.MAIN)


@pytest.fixture
def store_a(create_store):
    return create_store("Accra Branch")


@pytest.fixture
def store_b(create_store):
    return create_store("Kumasi Branch")


@pytest.fixture
def create_item(session: Session):
    def _create_item(name: str = "Smart Meter", tenant_id: str = TEST_TENANT_ID) -> InventoryItemModel:
        item = InventoryItemModel(tenant_id=tenant_id, name=name)
        session.add(item)
        session.flush()
        return item

    return _create_item


@pytest.fixture
def create_batch(session: Session, create_item, deterministic_clock):
    """
    Factory for batches.

    ``allocations`` maps a store to ``allocated`` or ``(allocated, reserved)``.
    ``age`` orders batches: a higher age means an older batch.
    """
    counter = {"n": 0}

    def _create_batch(
        item: InventoryItemModel | None = None,
        quantity: int = 100,
        remaining: int | None = None,
        price: Decimal = Decimal("10.00"),
        cost_of_item: Decimal | None = None,
        allocations: dict | None = None,
        age: int = 0,
        tenant_id: str = TEST_TENANT_ID,
    ) -> InventoryBatchModel:
        counter["n"] += 1
        item = item or create_item(tenant_id=tenant_id)
        ledger = EMPTY_LEDGER
        for store, value in (allocations or {}).items():
            allocated, reserved = value if isinstance(value, tuple) else (value, 0)
            ledger = update_store_allocation(
                ledger, str(store.id), allocated, reserved, "seed", deterministic_clock.now(),
            )
        batch = InventoryBatchModel(
            inventory_id=item.id,
            tenant_id=tenant_id,
            batch_number=counter["n"],
            number_of_stock=quantity,
            remaining_quantity=quantity if remaining is None else remaining,
            price=price,
            cost_of_item=cost_of_item,
            created_at=BATCH_EPOCH + timedelta(days=counter["n"]) - timedelta(days=age * 100),
            store_allocations=encode_store_allocations(ledger) if ledger else None,
        )
        session.add(batch)
        session.flush()
        return batch

    return _create_batch


# =============================================================================
# Service fixtures
# =============================================================================


@pytest.fixture
def auditor_service(session: Session, deterministic_clock):
    """Provide an AuditorService instance."""
    return AuditorService(session, deterministic_clock)


@pytest.fixture
def store_directory(session: Session, tenant_context):
    return StoreDirectory(session)


@pytest.fixture
def allocation_service(session, store_directory, deterministic_clock, auditor_service):
    return AllocationService(session, store_directory, deterministic_clock, auditor_service)


@pytest.fixture
def transfer_service(session, users, store_directory, deterministic_clock, auditor_service):
    return TransferWorkflowService(
        session,
        users,
        directory=store_directory,
        clock=deterministic_clock,
        auditor=auditor_service,
    )


@pytest.fixture
def sale_service(session, store_directory, deterministic_clock, auditor_service):
    return SaleReservationService(
        session,
        directory=store_directory,
        clock=deterministic_clock,
        auditor=auditor_service,
    )


@pytest.fixture
def reload(session: Session):
    """Re-read a batch from the database, bypassing the identity map."""

    def _reload(batch: InventoryBatchModel) -> InventoryBatchModel:
        session.expire(batch)
        session.refresh(batch)
        return batch

    return _reload
