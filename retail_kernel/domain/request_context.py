"""
Request-scoped tenant and store context.

Every service call runs on behalf of one tenant and, for store users, one
store.  The HTTP layer binds both once per request; services read them
through ``require_tenant_id()`` and ``get_store_id()``.  Binding also
stamps the same fields onto every structured log line via ``LogContext``.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator

from retail_kernel.exceptions import StoreContextMissingError, TenantContextMissingError
from retail_kernel.logging_config import LogContext

_tenant_id: ContextVar[str | None] = ContextVar("request_tenant_id", default=None)
_store_id: ContextVar[str | None] = ContextVar("request_store_id", default=None)
_actor_id: ContextVar[str | None] = ContextVar("request_actor_id", default=None)


class RequestContext:
    """Accessors for the current request's tenant, store and actor."""

    @staticmethod
    @contextmanager
    def bind(
        *,
        tenant_id: Any,
        store_id: Any | None = None,
        actor_id: str | None = None,
        correlation_id: str | None = None,
    ) -> Iterator[None]:
        """Bind context for the duration of the block, restoring on exit."""
        tokens = [
            (_tenant_id, _tenant_id.set(str(tenant_id) if tenant_id is not None else None)),
            (_store_id, _store_id.set(str(store_id) if store_id is not None else None)),
            (_actor_id, _actor_id.set(actor_id)),
        ]
        try:
            with LogContext.bind(
                tenant_id=tenant_id,
                store_id=store_id,
                actor_id=actor_id,
                correlation_id=correlation_id,
            ):
                yield
        finally:
            for var, token in reversed(tokens):
                var.reset(token)

    @staticmethod
    def get_tenant_id() -> str | None:
        return _tenant_id.get()

    @staticmethod
    def require_tenant_id() -> str:
        tenant_id = _tenant_id.get()
        if not tenant_id:
            raise TenantContextMissingError()
        return tenant_id

    @staticmethod
    def get_store_id() -> str | None:
        return _store_id.get()

    @staticmethod
    def require_store_id() -> str:
        store_id = _store_id.get()
        if not store_id:
            raise StoreContextMissingError(_actor_id.get())
        return store_id

    @staticmethod
    def get_actor_id() -> str | None:
        return _actor_id.get()


require_tenant_id = RequestContext.require_tenant_id
get_store_id = RequestContext.get_store_id
require_store_id = RequestContext.require_store_id
