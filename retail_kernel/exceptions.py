"""
Typed Exception Hierarchy for the Retail Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Allocation and transfer failures must be actionable by the calling layer.
A client rendering "insufficient stock in store X: requested 10, available 5"
needs the store, the requested quantity, and the available quantity as data,
not as a sentence to be parsed.

Every exception in this module:
  1. Has a TYPED class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Has an HTTP_STATUS class attribute (the 4xx/409 family the API layer
     should answer with)
  4. Carries structured DATA as instance attributes, exported by to_dict()

Example:
    try:
        allocation.allocate_batch_to_store(batch_id, store_id, 50, user_id)
    except InsufficientStoreAllocationError as e:
        return {"error": e.code, "available": e.available}

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    RetailKernelError (base)
    |
    +-- ContextError
    |   +-- TenantContextMissingError
    |   +-- StoreContextMissingError
    |
    +-- StoreError
    |   +-- StoreNotFoundError
    |   +-- MainStoreNotFoundError
    |   +-- StoreAccessDeniedError
    |
    +-- InventoryError
    |   +-- InventoryBatchNotFoundError
    |   +-- InsufficientStoreAllocationError
    |   +-- InsufficientInventoryError
    |   +-- InvalidAllocationError
    |
    +-- TransferError
    |   +-- InvalidTransferRequestError
    |   +-- TransferRequestNotFoundError
    |   +-- InvalidTransferRequestStateError
    |   +-- TransferRequestConflictError
    |
    +-- UserError
    |   +-- UserNotFoundError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |   +-- TransactionTimeoutError
    |
    +-- AuditError
        +-- AuditChainBrokenError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                            | HTTP | When Raised
-------------|---------------------------------|------|---------------------------------
Context      | TENANT_CONTEXT_MISSING          | 400  | No tenant bound to the request
             | STORE_CONTEXT_MISSING           | 400  | No caller store bound/assigned
-------------|---------------------------------|------|---------------------------------
Store        | STORE_NOT_FOUND                 | 404  | Store absent or in another tenant
             | MAIN_STORE_NOT_FOUND            | 404  | Tenant has no MAIN store
             | STORE_ACCESS_DENIED             | 403  | Actor lacks rights over a store
-------------|---------------------------------|------|---------------------------------
Inventory    | INVENTORY_BATCH_NOT_FOUND       | 404  | Batch absent or in another tenant
             | INSUFFICIENT_STORE_ALLOCATION   | 400  | Store/batch lacks allocated stock
             | INSUFFICIENT_INVENTORY          | 400  | Sale shortfall across batches
             | INVALID_ALLOCATION              | 400  | Ledger entry would be malformed
-------------|---------------------------------|------|---------------------------------
Transfer     | INVALID_TRANSFER_REQUEST        | 400  | Malformed transfer/allocation input
             | TRANSFER_REQUEST_NOT_FOUND      | 404  | Unknown request id
             | INVALID_TRANSFER_REQUEST_STATE  | 400  | Operation from the wrong state
             | TRANSFER_REQUEST_CONFLICT       | 409  | Pending request for batch/target
-------------|---------------------------------|------|---------------------------------
User         | USER_NOT_FOUND                  | 404  | User directory has no such user
-------------|---------------------------------|------|---------------------------------
Concurrency  | OPTIMISTIC_LOCK_CONFLICT        | 409  | Batch modified by another writer
             | TRANSACTION_TIMEOUT             | 503  | Sale transaction exceeded deadline
-------------|---------------------------------|------|---------------------------------
Audit        | AUDIT_CHAIN_BROKEN              | 500  | Hash chain validation failed

===============================================================================
PROPAGATION
===============================================================================

Domain errors are raised synchronously and never swallowed inside the
kernel.  Infrastructure errors (SQLAlchemy ``OperationalError`` and
friends) are NOT wrapped; they propagate opaque to the caller.  Nothing in
the kernel retries: a ConcurrencyError means the client resubmits.
"""

from typing import Any


class RetailKernelError(Exception):
    """
    Base exception for all retail kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "RETAIL_KERNEL_ERROR"
    http_status: int = 400

    def to_dict(self) -> dict[str, Any]:
        """Structured payload for API layers: code, message and attributes."""
        payload: dict[str, Any] = {"error": self.code, "message": str(self)}
        for key, value in vars(self).items():
            if not key.startswith("_"):
                payload[key] = value
        return payload


# Context exceptions


class ContextError(RetailKernelError):
    """Base exception for request-context errors."""

    code: str = "CONTEXT_ERROR"


class TenantContextMissingError(ContextError):
    """No tenant is bound to the current request."""

    code: str = "TENANT_CONTEXT_MISSING"

    def __init__(self):
        super().__init__("Tenant context is required but not set")


class StoreContextMissingError(ContextError):
    """No caller store is bound to the current request."""

    code: str = "STORE_CONTEXT_MISSING"

    def __init__(self, user_id: str | None = None):
        self.user_id = user_id
        super().__init__(
            "Store context is required. User must be assigned to a store."
        )


# Store exceptions


class StoreError(RetailKernelError):
    """Base exception for store-related errors."""

    code: str = "STORE_ERROR"


class StoreNotFoundError(StoreError):
    """Store is absent, soft-deleted, or belongs to another tenant."""

    code: str = "STORE_NOT_FOUND"
    http_status: int = 404

    def __init__(self, store_id: str, tenant_id: str | None = None):
        self.store_id = str(store_id)
        self.tenant_id = tenant_id
        super().__init__(f"Store with ID {store_id} not found")


class MainStoreNotFoundError(StoreError):
    """Tenant has no live MAIN store."""

    code: str = "MAIN_STORE_NOT_FOUND"
    http_status: int = 404

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(f"No main store configured for tenant {tenant_id}")


class StoreAccessDeniedError(StoreError):
    """Actor lacks rights over a store for the attempted action."""

    code: str = "STORE_ACCESS_DENIED"
    http_status: int = 403

    def __init__(self, store_id: str, action: str, user_id: str | None = None):
        self.store_id = str(store_id)
        self.action = action
        self.user_id = user_id
        super().__init__(f"Access denied for store operation: {action}")


# Inventory exceptions


class InventoryError(RetailKernelError):
    """Base exception for inventory-related errors."""

    code: str = "INVENTORY_ERROR"


class InventoryBatchNotFoundError(InventoryError):
    """Batch is absent, soft-deleted, or belongs to another tenant."""

    code: str = "INVENTORY_BATCH_NOT_FOUND"
    http_status: int = 404

    def __init__(self, batch_id: str, tenant_id: str | None = None):
        self.batch_id = str(batch_id)
        self.tenant_id = tenant_id
        super().__init__(f"Inventory batch with ID {batch_id} not found")


class InsufficientStoreAllocationError(InventoryError):
    """
    Store (or the unallocated remainder of a batch) cannot cover a quantity.

    Raised by allocation, transfer creation, approval, and confirmation.
    ``available`` is the quantity that was available at check time.
    """

    code: str = "INSUFFICIENT_STORE_ALLOCATION"

    def __init__(self, store_id: str, batch_id: str, requested: int, available: int):
        self.store_id = str(store_id)
        self.batch_id = str(batch_id)
        self.requested = requested
        self.available = available
        super().__init__(
            "Insufficient inventory allocation for store. "
            f"Requested: {requested}, Available: {available}"
        )


class InsufficientInventoryError(InventoryError):
    """Sale shortfall: the store's batches cannot cover a product line."""

    code: str = "INSUFFICIENT_INVENTORY"

    def __init__(
        self,
        product_id: str,
        product_name: str,
        required: int,
        available: int,
        store_id: str | None = None,
    ):
        self.product_id = str(product_id)
        self.product_name = product_name
        self.required = required
        self.available = available
        self.store_id = str(store_id) if store_id is not None else None
        super().__init__(
            f"Insufficient inventory in store for product {product_name}. "
            f"Required: {required}, Available: {available}"
        )


class InvalidAllocationError(InventoryError):
    """A ledger entry would violate allocated >= reserved >= 0."""

    code: str = "INVALID_ALLOCATION"

    def __init__(self, store_id: str, reason: str):
        self.store_id = str(store_id)
        self.reason = reason
        super().__init__(f"Invalid allocation for store {store_id}: {reason}")


# Transfer exceptions


class TransferError(RetailKernelError):
    """Base exception for transfer-request errors."""

    code: str = "TRANSFER_ERROR"


class InvalidTransferRequestError(TransferError):
    """Malformed input: missing user, non-positive quantity, missing field."""

    code: str = "INVALID_TRANSFER_REQUEST"

    def __init__(
        self,
        reason: str,
        request_id: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.reason = reason
        self.request_id = str(request_id) if request_id is not None else None
        self.details = details or {}
        super().__init__(reason)


class TransferRequestNotFoundError(TransferError):
    """No transfer request with this id exists in the tenant."""

    code: str = "TRANSFER_REQUEST_NOT_FOUND"
    http_status: int = 404

    def __init__(self, request_id: str):
        self.request_id = str(request_id)
        super().__init__(f"Transfer request with ID {request_id} not found")


class InvalidTransferRequestStateError(TransferError):
    """
    Operation attempted from the wrong lifecycle state.

    Terminal requests (REJECTED, COMPLETED, CANCELLED) always raise this.
    """

    code: str = "INVALID_TRANSFER_REQUEST_STATE"

    def __init__(
        self,
        request_id: str,
        current_state: str,
        required_state: str,
        operation: str,
    ):
        self.request_id = str(request_id)
        self.current_state = current_state
        self.required_state = required_state
        self.operation = operation
        super().__init__(
            f"Cannot perform {operation} on transfer request in state "
            f"{current_state}. Required state: {required_state}"
        )


class TransferRequestConflictError(TransferError):
    """A PENDING request already exists for the same (batch, target store)."""

    code: str = "TRANSFER_REQUEST_CONFLICT"
    http_status: int = 409

    def __init__(
        self,
        conflicting_request_id: str,
        source_store_id: str,
        target_store_id: str,
        batch_id: str,
    ):
        self.conflicting_request_id = str(conflicting_request_id)
        self.source_store_id = str(source_store_id)
        self.target_store_id = str(target_store_id)
        self.batch_id = str(batch_id)
        super().__init__(
            "A pending transfer request already exists for this batch "
            "from the same store"
        )


# User exceptions


class UserError(RetailKernelError):
    """Base exception for user-directory errors."""

    code: str = "USER_ERROR"


class UserNotFoundError(UserError):
    """User directory has no user with this id."""

    code: str = "USER_NOT_FOUND"
    http_status: int = 404

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


# Concurrency exceptions


class ConcurrencyError(RetailKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"
    http_status: int = 409


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


class TransactionTimeoutError(ConcurrencyError):
    """A bounded transaction exceeded its deadline and was rolled back."""

    code: str = "TRANSACTION_TIMEOUT"
    http_status: int = 503

    def __init__(self, operation: str, timeout_seconds: float):
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Transaction for {operation} exceeded {timeout_seconds}s and was rolled back"
        )


# Audit exceptions


class AuditError(RetailKernelError):
    """Base exception for audit-trail errors."""

    code: str = "AUDIT_ERROR"
    http_status: int = 500


class AuditChainBrokenError(AuditError):
    """Recomputed audit hash does not match the stored chain."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = str(audit_event_id)
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at event {audit_event_id}: "
            f"expected {expected_hash}, got {actual_hash}"
        )
