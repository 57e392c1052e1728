"""
Module: retail_kernel.models.inventory
Responsibility: ORM persistence for inventory items and their intake batches,
    including the two embedded JSON documents that carry all allocation state.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - The batch row is the sole durable owner of ``store_allocations`` and
      ``transfer_requests``.  No other table holds allocation state.
    - Optimistic concurrency: ``version`` is the mapper's version_id_col.
      Every UPDATE is ``... WHERE id = :id AND version = :loaded_version``;
      a lost race raises StaleDataError at flush.
    - remaining_quantity and number_of_stock are never negative (CHECK).

Failure modes:
    - StaleDataError on a concurrent write to the same batch (translated to
      OptimisticLockError by BatchRepository).
    - IntegrityError if a sale would drive remaining_quantity below zero.

Audit relevance:
    Every change to the embedded documents is paired with an AuditEvent in
    the same transaction by the owning service.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from retail_kernel.db.base import Base


class InventoryItemModel(Base):
    """A stocked inventory item (meter, panel, battery...)."""

    __tablename__ = "inventory_items"

    __table_args__ = (
        Index("idx_inventory_items_tenant", "tenant_id"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)


class InventoryBatchModel(Base):
    """One intake lot of an inventory item, with its embedded store ledgers."""

    __tablename__ = "inventory_batches"

    __table_args__ = (
        CheckConstraint("remaining_quantity >= 0", name="ck_batches_remaining_non_negative"),
        CheckConstraint("number_of_stock >= 0", name="ck_batches_stock_non_negative"),
        Index("idx_batches_tenant_created", "tenant_id", "created_at"),
        Index("idx_batches_inventory", "inventory_id", "batch_number"),
    )

    inventory_id: Mapped[UUID] = mapped_column(
        ForeignKey("inventory_items.id"), nullable=False,
    )
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    batch_number: Mapped[int] = mapped_column(nullable=False)
    number_of_stock: Mapped[int] = mapped_column(nullable=False)
    remaining_quantity: Mapped[int] = mapped_column(nullable=False)
    price: Mapped[Decimal] = mapped_column(nullable=False)
    cost_of_item: Mapped[Decimal | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Embedded documents (camelCase JSON, see domain.allocation_ledger / domain.transfer)
    store_allocations: Mapped[dict[str, Any] | None] = mapped_column(nullable=True)
    transfer_requests: Mapped[dict[str, Any] | None] = mapped_column(nullable=True)

    version: Mapped[int] = mapped_column(nullable=False)

    inventory: Mapped[InventoryItemModel] = relationship(lazy="joined")

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<InventoryBatch {self.id} #{self.batch_number} "
            f"remaining={self.remaining_quantity} v{self.version}>"
        )
