"""
StoreDirectory tests.

Verifies tenant isolation, soft-delete invisibility, MAIN-first ordering,
the single-main-store index and user-to-store assignment.
"""

import pytest
from sqlalchemy.exc import IntegrityError

from retail_kernel.domain.request_context import RequestContext
from retail_kernel.exceptions import (
    MainStoreNotFoundError,
    StoreNotFoundError,
    TenantContextMissingError,
)
from retail_kernel.models.store import StoreClassification
from retail_kernel.services.store_directory import (
    AssignedStoreAccessPolicy,
    StoreDirectory,
    TenantStoreAccessPolicy,
    access_policy_for,
)
from tests.conftest import OTHER_TENANT_ID, TEST_USER_ID


class TestFindOne:
    def test_finds_live_store(self, store_directory, store_a):
        assert store_directory.find_one(store_a.id).name == "Accra Branch"

    def test_accepts_string_id(self, store_directory, store_a):
        assert store_directory.find_one(str(store_a.id)).id == store_a.id

    def test_soft_deleted_store_not_found(self, store_directory, create_store):
        closed = create_store("Closed Branch", deleted=True)

        with pytest.raises(StoreNotFoundError):
            store_directory.find_one(closed.id)

    def test_other_tenant_store_not_found(self, store_directory, create_store):
        foreign = create_store("Foreign", tenant_id=OTHER_TENANT_ID)

        with pytest.raises(StoreNotFoundError) as exc_info:
            store_directory.find_one(foreign.id)

        assert exc_info.value.store_id == str(foreign.id)
        assert exc_info.value.http_status == 404

    def test_malformed_id_not_found(self, store_directory):
        with pytest.raises(StoreNotFoundError):
            store_directory.find_one("not-a-uuid")

    def test_requires_tenant(self, session, store_a):
        with pytest.raises(TenantContextMissingError):
            StoreDirectory(session).find_one(store_a.id)


class TestListing:
    def test_main_first_then_by_name(self, store_directory, store_b, store_a, main_store, create_store):
        create_store("Deleted", deleted=True)
        create_store("Elsewhere", tenant_id=OTHER_TENANT_ID)

        names = [s.name for s in store_directory.find_all_by_tenant()]

        assert names == ["Head Office", "Accra Branch", "Kumasi Branch"]

    def test_find_main_store(self, store_directory, main_store, store_a):
        assert store_directory.find_main_store().id == main_store.id

    def test_missing_main_store(self, store_directory, store_a):
        with pytest.raises(MainStoreNotFoundError) as exc_info:
            store_directory.find_main_store()

        assert exc_info.value.tenant_id == "tenant-1"

    def test_second_live_main_store_rejected(self, session, main_store, create_store):
        with pytest.raises(IntegrityError):
            create_store("Second HQ", StoreClassification.MAIN)
        session.rollback()

    def test_store_names(self, store_directory, main_store, store_a):
        assert store_directory.store_names() == {
            str(main_store.id): "Head Office",
            str(store_a.id): "Accra Branch",
        }


class TestAssignment:
    def test_unassigned_user(self, store_directory):
        assert store_directory.get_user_store(TEST_USER_ID) is None

    def test_assign_and_reassign(self, store_directory, store_a, store_b):
        store_directory.assign_user_to_store(TEST_USER_ID, store_a.id)
        assert store_directory.user_has_store_access(TEST_USER_ID, store_a.id)

        store_directory.assign_user_to_store(TEST_USER_ID, store_b.id)

        assert store_directory.get_user_store(TEST_USER_ID).id == store_b.id
        assert not store_directory.user_has_store_access(TEST_USER_ID, store_a.id)

    def test_assignment_is_tenant_scoped(self, store_directory, store_a):
        store_directory.assign_user_to_store(TEST_USER_ID, store_a.id)

        with RequestContext.bind(tenant_id=OTHER_TENANT_ID):
            assert store_directory.get_user_store(TEST_USER_ID) is None


class TestAccessPolicies:
    def test_tenant_policy_allows_any_live_store(self, store_directory, store_a, create_store):
        policy = TenantStoreAccessPolicy(store_directory)
        foreign = create_store("Foreign", tenant_id=OTHER_TENANT_ID)

        assert policy.can_access("anyone", store_a.id, "approve transfer request")
        assert not policy.can_access("anyone", foreign.id, "approve transfer request")

    def test_assigned_policy_requires_assignment(self, store_directory, store_a, store_b):
        policy = AssignedStoreAccessPolicy(store_directory)
        store_directory.assign_user_to_store(TEST_USER_ID, store_a.id)

        assert policy.can_access(TEST_USER_ID, store_a.id, "confirm transfer request")
        assert not policy.can_access(TEST_USER_ID, store_b.id, "confirm transfer request")

    def test_policy_factory(self, store_directory):
        assert isinstance(access_policy_for("tenant", store_directory), TenantStoreAccessPolicy)
        assert isinstance(access_policy_for("assigned", store_directory), AssignedStoreAccessPolicy)
        with pytest.raises(ValueError):
            access_policy_for("everyone", store_directory)
