"""
Module: retail_kernel.models.store
Responsibility: ORM persistence for stores and user-to-store assignments.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - At most one live MAIN store per tenant (partial unique index).
    - A user is assigned to at most one store per tenant.

Failure modes:
    - IntegrityError on a second live MAIN store or a duplicate assignment.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import Index, String, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from retail_kernel.db.base import Base


class StoreClassification(str, Enum):
    MAIN = "MAIN"
    BRANCH = "BRANCH"
    LEAFLET = "LEAFLET"


_LIVE_MAIN = text("classification = 'MAIN' AND deleted_at IS NULL")


class StoreModel(Base):
    """A tenant's stock location.  Soft-deleted via ``deleted_at``."""

    __tablename__ = "stores"

    __table_args__ = (
        Index(
            "uq_stores_live_main_per_tenant",
            "tenant_id",
            unique=True,
            postgresql_where=_LIVE_MAIN,
            sqlite_where=_LIVE_MAIN,
        ),
        Index("idx_stores_tenant", "tenant_id", "deleted_at"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    classification: Mapped[str] = mapped_column(
        String(20), nullable=False, default=StoreClassification.BRANCH.value,
    )
    created_at: Mapped[datetime | None] = mapped_column(nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def is_main(self) -> bool:
        return self.classification == StoreClassification.MAIN.value

    def __repr__(self) -> str:
        return f"<Store {self.name} ({self.classification}) tenant={self.tenant_id}>"


class StoreUserModel(Base):
    """Assignment of a user to the store they operate from."""

    __tablename__ = "store_users"

    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", name="uq_store_users_tenant_user"),
        Index("idx_store_users_store", "assigned_store_id"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    assigned_store_id: Mapped[UUID | None] = mapped_column(nullable=True)
