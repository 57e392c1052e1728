"""Request context binding and collaborator contract tests."""

import pytest

from retail_kernel.domain.clock import DeterministicClock
from retail_kernel.domain.collaborators import MappingUserDirectory, UserRecord
from retail_kernel.domain.request_context import RequestContext
from retail_kernel.exceptions import (
    StoreContextMissingError,
    TenantContextMissingError,
    UserNotFoundError,
)
from retail_kernel.logging_config import LogContext


class TestRequestContext:
    def test_unbound_tenant_raises(self):
        with pytest.raises(TenantContextMissingError):
            RequestContext.require_tenant_id()

    def test_bind_and_restore(self):
        with RequestContext.bind(tenant_id="t-1", store_id="s-1", actor_id="u-1"):
            assert RequestContext.require_tenant_id() == "t-1"
            assert RequestContext.require_store_id() == "s-1"
            assert RequestContext.get_actor_id() == "u-1"

        assert RequestContext.get_tenant_id() is None
        assert RequestContext.get_store_id() is None

    def test_nested_bind_restores_outer(self):
        with RequestContext.bind(tenant_id="t-1", store_id="s-1"):
            with RequestContext.bind(tenant_id="t-2"):
                assert RequestContext.require_tenant_id() == "t-2"
                assert RequestContext.get_store_id() is None
            assert RequestContext.require_store_id() == "s-1"

    def test_missing_store_names_actor(self):
        with RequestContext.bind(tenant_id="t-1", actor_id="u-9"):
            with pytest.raises(StoreContextMissingError) as exc_info:
                RequestContext.require_store_id()

        assert exc_info.value.user_id == "u-9"

    def test_bind_stamps_log_context(self):
        with RequestContext.bind(tenant_id="t-1", store_id="s-1", correlation_id="c-1"):
            fields = LogContext.get_all()

        assert fields["tenant_id"] == "t-1"
        assert fields["store_id"] == "s-1"
        assert fields["correlation_id"] == "c-1"
        assert "tenant_id" not in LogContext.get_all()


class TestUserDirectory:
    def test_display_name_strips_missing_parts(self):
        assert UserRecord("u", "Jane", "Doe").display_name == "Jane Doe"
        assert UserRecord("u", "Lee", "").display_name == "Lee"

    def test_unknown_user_raises(self):
        with pytest.raises(UserNotFoundError):
            MappingUserDirectory().fetch_user_by_user_id("ghost")


class TestDeterministicClock:
    def test_fixed_until_advanced(self):
        clock = DeterministicClock()
        first = clock.now()

        assert clock.now() == first
        assert (clock.tick() - first).total_seconds() == 1
