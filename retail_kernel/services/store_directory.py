"""
StoreDirectory -- tenant-scoped store lookup and user assignment.

Responsibility:
    Resolves store ids to live stores of the current tenant, finds the
    tenant's MAIN store, and answers which store a user operates from.
    Also provides the two ``StoreAccessPolicy`` implementations the
    transfer workflow authorizes against.

Architecture position:
    Kernel > Services.  Read-mostly; ``assign_user_to_store`` flushes.
    The tenant always comes from ``RequestContext``.

Invariants enforced:
    - Soft-deleted stores and stores of other tenants are invisible: they
      raise StoreNotFoundError exactly like ids that never existed.
    - A tenant has at most one live MAIN store (enforced by the
      ``uq_stores_live_main_per_tenant`` partial index).

Failure modes:
    - TenantContextMissingError: no tenant bound.
    - StoreNotFoundError / MainStoreNotFoundError.
"""

from typing import Any

from sqlalchemy import case, select
from sqlalchemy.orm import Session

from retail_kernel.domain.request_context import RequestContext
from retail_kernel.exceptions import MainStoreNotFoundError, StoreNotFoundError
from retail_kernel.logging_config import get_logger
from retail_kernel.models.store import StoreClassification, StoreModel, StoreUserModel
from retail_kernel.services.base import BaseService
from retail_kernel.utils.ids import as_uuid

logger = get_logger("services.store_directory")


class StoreDirectory(BaseService[StoreModel]):
    """Store lookups for the tenant bound to the current request."""

    def __init__(self, session: Session):
        super().__init__(session)

    def _live_stores(self, tenant_id: str):
        return select(StoreModel).where(
            StoreModel.tenant_id == tenant_id,
            StoreModel.deleted_at.is_(None),
        )

    def find_one(self, store_id: Any) -> StoreModel:
        """
        Live store by id within the current tenant.

        Raises:
            StoreNotFoundError: Unknown, soft-deleted or foreign store.
        """
        tenant_id = RequestContext.require_tenant_id()
        store_uuid = as_uuid(store_id)
        store = None
        if store_uuid is not None:
            store = self.session.execute(
                self._live_stores(tenant_id).where(StoreModel.id == store_uuid)
            ).scalar_one_or_none()
        if store is None:
            logger.warning(
                "store_not_found",
                extra={"store_id": str(store_id), "tenant_id": tenant_id},
            )
            raise StoreNotFoundError(str(store_id), tenant_id)
        return store

    def find_all_by_tenant(self) -> list[StoreModel]:
        """Live stores of the tenant, MAIN first, then by name."""
        tenant_id = RequestContext.require_tenant_id()
        main_first = case(
            (StoreModel.classification == StoreClassification.MAIN.value, 0),
            else_=1,
        )
        return list(
            self.session.execute(
                self._live_stores(tenant_id).order_by(main_first, StoreModel.name)
            ).scalars().all()
        )

    def find_main_store(self) -> StoreModel:
        tenant_id = RequestContext.require_tenant_id()
        store = self.session.execute(
            self._live_stores(tenant_id).where(
                StoreModel.classification == StoreClassification.MAIN.value,
            )
        ).scalar_one_or_none()
        if store is None:
            logger.error("main_store_missing", extra={"tenant_id": tenant_id})
            raise MainStoreNotFoundError(tenant_id)
        return store

    def store_names(self) -> dict[str, str]:
        """Display names keyed by store id string, for view assembly."""
        return {str(store.id): store.name for store in self.find_all_by_tenant()}

    # User assignment

    def _assignment(self, tenant_id: str, user_id: str) -> StoreUserModel | None:
        return self.session.execute(
            select(StoreUserModel).where(
                StoreUserModel.tenant_id == tenant_id,
                StoreUserModel.user_id == user_id,
            )
        ).scalar_one_or_none()

    def get_user_store(self, user_id: str) -> StoreModel | None:
        """The live store ``user_id`` is assigned to, if any."""
        tenant_id = RequestContext.require_tenant_id()
        assignment = self._assignment(tenant_id, user_id)
        if assignment is None or assignment.assigned_store_id is None:
            return None
        return self.session.execute(
            self._live_stores(tenant_id).where(StoreModel.id == assignment.assigned_store_id)
        ).scalar_one_or_none()

    def user_has_store_access(self, user_id: str, store_id: Any) -> bool:
        store = self.get_user_store(user_id)
        return store is not None and store.id == as_uuid(store_id)

    def assign_user_to_store(self, user_id: str, store_id: Any) -> StoreUserModel:
        """Assign (or reassign) a user to a live store of the tenant."""
        tenant_id = RequestContext.require_tenant_id()
        store = self.find_one(store_id)
        assignment = self._assignment(tenant_id, user_id)
        if assignment is None:
            assignment = StoreUserModel(tenant_id=tenant_id, user_id=user_id)
            self.session.add(assignment)
        assignment.assigned_store_id = store.id
        self.session.flush()

        logger.info(
            "user_assigned_to_store",
            extra={"user_id": user_id, "store_id": str(store.id)},
        )
        return assignment


# Access policies


class TenantStoreAccessPolicy:
    """Any user of the tenant may act on any live store of the tenant."""

    def __init__(self, directory: StoreDirectory):
        self._directory = directory

    def can_access(self, user_id: str, store_id: Any, action: str) -> bool:
        try:
            self._directory.find_one(store_id)
        except StoreNotFoundError:
            return False
        return True


class AssignedStoreAccessPolicy:
    """Only users assigned to a store may act on it."""

    def __init__(self, directory: StoreDirectory):
        self._directory = directory

    def can_access(self, user_id: str, store_id: Any, action: str) -> bool:
        return self._directory.user_has_store_access(user_id, store_id)


_ACCESS_POLICIES = {
    "tenant": TenantStoreAccessPolicy,
    "assigned": AssignedStoreAccessPolicy,
}


def access_policy_for(mode: str, directory: StoreDirectory):
    """Build the access policy named by ``transfers.store_access_mode``."""
    try:
        return _ACCESS_POLICIES[mode](directory)
    except KeyError:
        raise ValueError(f"Unknown store access mode: {mode}") from None
