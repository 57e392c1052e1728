"""
Module: retail_kernel.models.sale_allocation
Responsibility: ORM persistence for the batch slices a sale consumed.
Architecture position: Kernel > Models.  May import from db/base.py only.

One row per (sale, batch, product) take produced by the FIFO planner.
Rows are written in the same bounded transaction that decrements the
batch and its store allocation, so they exist only if the sale did.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from retail_kernel.db.base import Base


class SaleBatchAllocationModel(Base):
    __tablename__ = "sale_batch_allocations"

    __table_args__ = (
        Index("idx_sale_allocations_sale", "sale_id"),
        Index("idx_sale_allocations_batch", "batch_id"),
    )

    sale_id: Mapped[UUID] = mapped_column(nullable=False)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    store_id: Mapped[UUID] = mapped_column(nullable=False)
    batch_id: Mapped[UUID] = mapped_column(
        ForeignKey("inventory_batches.id"), nullable=False,
    )
    inventory_id: Mapped[UUID] = mapped_column(nullable=False)
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    quantity: Mapped[int] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
