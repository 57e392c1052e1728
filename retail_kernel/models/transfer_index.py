"""
Module: retail_kernel.models.transfer_index
Responsibility: Secondary index over the transfer requests embedded on batches,
    keyed by request id, so approve/confirm/list never scan batch documents.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One row per request id (UNIQUE).
    - At most one PENDING row per (batch, target store) (partial unique index).
    - The embedded document on the batch is the source of truth.  The index
      row is rewritten in the same transaction as every batch write that
      touches the request.

Failure modes:
    - IntegrityError on a duplicate pending (batch, target) pair.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column

from retail_kernel.db.base import Base

_PENDING = text("status = 'PENDING'")


class TransferRequestIndexModel(Base):
    """Where a transfer request lives and the fields it is listed by."""

    __tablename__ = "transfer_request_index"

    __table_args__ = (
        Index(
            "uq_transfer_index_pending_target",
            "batch_id", "target_store_id",
            unique=True,
            postgresql_where=_PENDING,
            sqlite_where=_PENDING,
        ),
        Index("idx_transfer_index_source", "tenant_id", "source_store_id"),
        Index("idx_transfer_index_target", "tenant_id", "target_store_id"),
    )

    request_id: Mapped[UUID] = mapped_column(nullable=False, unique=True)
    batch_id: Mapped[UUID] = mapped_column(
        ForeignKey("inventory_batches.id"), nullable=False,
    )
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    source_store_id: Mapped[UUID] = mapped_column(nullable=False)
    target_store_id: Mapped[UUID] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    requested_at: Mapped[datetime] = mapped_column(nullable=False)
