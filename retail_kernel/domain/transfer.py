"""
Transfer request domain types (``retail_kernel.domain.transfer``).

Responsibility
--------------
Pure value objects and transitions for the request -> approve -> confirm
workflow that moves allocation between stores.  Also the JSON codec for
the transfer-request map embedded on each batch.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/`` or ``services/``.

Invariants enforced
-------------------
* ``TRANSFER_TRANSITIONS`` defines the only valid status transitions.
  REJECTED, COMPLETED and CANCELLED have no outgoing edges.
* Every transition returns a new ``TransferRequest``; records are never
  mutated in place.
* ``transfer_quantity`` is the approved quantity when set, otherwise the
  requested quantity.

Lifecycle::

    PENDING --approve--> APPROVED --confirm--> COMPLETED
    PENDING --reject---> REJECTED
    PENDING --cancel---> CANCELLED
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any

from retail_kernel.exceptions import (
    InvalidTransferRequestError,
    InvalidTransferRequestStateError,
)


# =========================================================================
# Status lifecycle
# =========================================================================


class TransferRequestType(str, Enum):
    """ALLOCATION pulls from the main store; TRANSFER pulls from a peer store."""

    ALLOCATION = "ALLOCATION"
    TRANSFER = "TRANSFER"


class TransferRequestStatus(str, Enum):
    """Transfer request lifecycle states."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ApprovalDecision(str, Enum):
    """Decision a source-store authority makes on a pending request."""

    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


TRANSFER_TRANSITIONS: dict[TransferRequestStatus, frozenset[TransferRequestStatus]] = {
    TransferRequestStatus.PENDING: frozenset({
        TransferRequestStatus.APPROVED,
        TransferRequestStatus.REJECTED,
        TransferRequestStatus.CANCELLED,
    }),
    TransferRequestStatus.APPROVED: frozenset({
        TransferRequestStatus.COMPLETED,
    }),
    TransferRequestStatus.REJECTED: frozenset(),
    TransferRequestStatus.COMPLETED: frozenset(),
    TransferRequestStatus.CANCELLED: frozenset(),
}

TERMINAL_TRANSFER_STATUSES: frozenset[TransferRequestStatus] = frozenset({
    TransferRequestStatus.REJECTED,
    TransferRequestStatus.COMPLETED,
    TransferRequestStatus.CANCELLED,
})

# Operation name -> (status it requires, status it produces)
_OPERATIONS: dict[str, tuple[TransferRequestStatus, TransferRequestStatus]] = {
    "approve": (TransferRequestStatus.PENDING, TransferRequestStatus.APPROVED),
    "reject": (TransferRequestStatus.PENDING, TransferRequestStatus.REJECTED),
    "confirm": (TransferRequestStatus.APPROVED, TransferRequestStatus.COMPLETED),
    "cancel": (TransferRequestStatus.PENDING, TransferRequestStatus.CANCELLED),
}


# =========================================================================
# Commands
# =========================================================================


@dataclass(frozen=True)
class CreateTransferRequest:
    """Input for creating a transfer request.

    ALLOCATION requires ``target_store_id``; TRANSFER requires
    ``source_store_id`` and resolves the target from the caller's store.
    """

    type: TransferRequestType
    inventory_batch_id: Any
    requested_quantity: int
    source_store_id: Any | None = None
    target_store_id: Any | None = None
    reason: str | None = None


@dataclass(frozen=True)
class ApproveTransferRequest:
    """Input for approving or rejecting a pending request."""

    decision: ApprovalDecision
    approved_quantity: int | None = None
    rejection_reason: str | None = None


@dataclass(frozen=True)
class TransferRequestFilters:
    status: TransferRequestStatus | None = None
    type: TransferRequestType | None = None
    source_store_id: str | None = None
    target_store_id: str | None = None


# =========================================================================
# Record
# =========================================================================


@dataclass(frozen=True)
class TransferRequest:
    """One transfer request as embedded on its batch.  Immutable."""

    request_id: str
    type: TransferRequestType
    source_store_id: str
    target_store_id: str
    requested_quantity: int
    status: TransferRequestStatus
    requested_by: str
    requested_by_name: str
    requested_at: datetime
    reason: str | None = None
    approved_quantity: int | None = None
    approved_by: str | None = None
    approved_by_name: str | None = None
    approved_at: datetime | None = None
    confirmed_by: str | None = None
    confirmed_by_name: str | None = None
    confirmed_at: datetime | None = None
    rejection_reason: str | None = None

    @property
    def transfer_quantity(self) -> int:
        """Quantity that moves on confirmation."""
        if self.approved_quantity is not None:
            return self.approved_quantity
        return self.requested_quantity

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TRANSFER_STATUSES

    def involves_store(self, store_id: str) -> bool:
        return store_id in (self.source_store_id, self.target_store_id)

    def matches(self, filters: TransferRequestFilters | None) -> bool:
        if filters is None:
            return True
        if filters.status is not None and self.status != filters.status:
            return False
        if filters.type is not None and self.type != filters.type:
            return False
        if filters.source_store_id and self.source_store_id != str(filters.source_store_id):
            return False
        if filters.target_store_id and self.target_store_id != str(filters.target_store_id):
            return False
        return True


def new_transfer_request(
    request_id: str,
    request_type: TransferRequestType,
    source_store_id: str,
    target_store_id: str,
    requested_quantity: int,
    requested_by: str,
    requested_by_name: str,
    requested_at: datetime,
    reason: str | None = None,
) -> TransferRequest:
    """Build a fresh PENDING request."""
    if requested_quantity <= 0:
        raise InvalidTransferRequestError(
            "Requested quantity must be positive",
            details={"requested_quantity": requested_quantity},
        )
    return TransferRequest(
        request_id=str(request_id),
        type=TransferRequestType(request_type),
        source_store_id=str(source_store_id),
        target_store_id=str(target_store_id),
        requested_quantity=requested_quantity,
        status=TransferRequestStatus.PENDING,
        requested_by=requested_by,
        requested_by_name=requested_by_name,
        requested_at=requested_at,
        reason=reason,
    )


# =========================================================================
# Transitions
# =========================================================================


def require_status(request: TransferRequest, operation: str) -> None:
    """Raise unless ``request`` is in the state ``operation`` starts from."""
    required, target = _OPERATIONS[operation]
    if request.status != required or target not in TRANSFER_TRANSITIONS[request.status]:
        raise InvalidTransferRequestStateError(
            request.request_id,
            request.status.value,
            required.value,
            operation,
        )


def approve(
    request: TransferRequest,
    approved_quantity: int | None,
    actor_id: str,
    actor_name: str,
    at: datetime,
) -> TransferRequest:
    """PENDING -> APPROVED.  ``approved_quantity`` defaults to the requested quantity."""
    require_status(request, "approve")
    quantity = request.requested_quantity if approved_quantity is None else approved_quantity
    if quantity <= 0:
        raise InvalidTransferRequestError(
            "Approved quantity must be positive",
            request_id=request.request_id,
        )
    if quantity > request.requested_quantity:
        raise InvalidTransferRequestError(
            "Approved quantity cannot exceed requested quantity",
            request_id=request.request_id,
            details={
                "approved_quantity": quantity,
                "requested_quantity": request.requested_quantity,
            },
        )
    return replace(
        request,
        status=TransferRequestStatus.APPROVED,
        approved_quantity=quantity,
        approved_by=actor_id,
        approved_by_name=actor_name,
        approved_at=at,
    )


def reject(
    request: TransferRequest,
    rejection_reason: str | None,
    actor_id: str,
    actor_name: str,
    at: datetime,
) -> TransferRequest:
    """PENDING -> REJECTED.  A non-blank reason is mandatory."""
    require_status(request, "reject")
    if not rejection_reason or not rejection_reason.strip():
        raise InvalidTransferRequestError(
            "Rejection reason is required",
            request_id=request.request_id,
        )
    return replace(
        request,
        status=TransferRequestStatus.REJECTED,
        approved_by=actor_id,
        approved_by_name=actor_name,
        approved_at=at,
        rejection_reason=rejection_reason,
    )


def confirm(
    request: TransferRequest,
    actor_id: str,
    actor_name: str,
    at: datetime,
) -> TransferRequest:
    """APPROVED -> COMPLETED."""
    require_status(request, "confirm")
    return replace(
        request,
        status=TransferRequestStatus.COMPLETED,
        confirmed_by=actor_id,
        confirmed_by_name=actor_name,
        confirmed_at=at,
    )


def cancel(
    request: TransferRequest,
    reason: str | None,
    actor_id: str,
    actor_name: str,
    at: datetime,
) -> TransferRequest:
    """PENDING -> CANCELLED.  The decision stamp records who withdrew it."""
    require_status(request, "cancel")
    return replace(
        request,
        status=TransferRequestStatus.CANCELLED,
        approved_by=actor_id,
        approved_by_name=actor_name,
        approved_at=at,
        rejection_reason=reason,
    )


# =========================================================================
# Codec
# =========================================================================

TransferRequestMap = Mapping[str, TransferRequest]

EMPTY_REQUESTS: TransferRequestMap = MappingProxyType({})

# Python attribute -> persisted camelCase key
_FIELD_KEYS: tuple[tuple[str, str], ...] = (
    ("type", "type"),
    ("source_store_id", "sourceStoreId"),
    ("target_store_id", "targetStoreId"),
    ("requested_quantity", "requestedQuantity"),
    ("approved_quantity", "approvedQuantity"),
    ("status", "status"),
    ("reason", "reason"),
    ("requested_by", "requestedBy"),
    ("requested_by_name", "requestedByName"),
    ("requested_at", "requestedAt"),
    ("approved_by", "approvedBy"),
    ("approved_by_name", "approvedByName"),
    ("approved_at", "approvedAt"),
    ("confirmed_by", "confirmedBy"),
    ("confirmed_by_name", "confirmedByName"),
    ("confirmed_at", "confirmedAt"),
    ("rejection_reason", "rejectionReason"),
)

_TIMESTAMP_FIELDS = frozenset({"requested_at", "approved_at", "confirmed_at"})


def _encode_value(name: str, value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if name in _TIMESTAMP_FIELDS and value is not None:
        return value.isoformat()
    return value


def _decode_value(name: str, value: Any) -> Any:
    if value is None:
        return None
    if name == "type":
        return TransferRequestType(value)
    if name == "status":
        return TransferRequestStatus(value)
    if name in _TIMESTAMP_FIELDS:
        return value if isinstance(value, datetime) else datetime.fromisoformat(value)
    return value


def encode_transfer_request(request: TransferRequest) -> dict[str, Any]:
    """Encode one record.  Unset optional fields are omitted."""
    encoded: dict[str, Any] = {}
    for name, key in _FIELD_KEYS:
        value = getattr(request, name)
        if value is not None:
            encoded[key] = _encode_value(name, value)
    return encoded


def decode_transfer_request(request_id: str, raw: Mapping[str, Any]) -> TransferRequest:
    values = {name: _decode_value(name, raw.get(key)) for name, key in _FIELD_KEYS}
    return TransferRequest(request_id=str(request_id), **values)


def decode_transfer_requests(raw: Mapping[str, Any] | None) -> TransferRequestMap:
    if not raw:
        return EMPTY_REQUESTS
    return MappingProxyType({
        str(request_id): decode_transfer_request(request_id, entry)
        for request_id, entry in raw.items()
    })


def encode_transfer_requests(requests: TransferRequestMap) -> dict[str, Any]:
    return {
        request_id: encode_transfer_request(request)
        for request_id, request in requests.items()
    }


def with_request(requests: TransferRequestMap, request: TransferRequest) -> TransferRequestMap:
    """Return a new map with ``request`` inserted or replaced."""
    updated = dict(requests)
    updated[request.request_id] = request
    return MappingProxyType(updated)


def find_pending_for_target(
    requests: TransferRequestMap,
    target_store_id: str,
) -> TransferRequest | None:
    """The PENDING request on this batch targeting ``target_store_id``, if any."""
    for request in requests.values():
        if (
            request.target_store_id == str(target_store_id)
            and request.status == TransferRequestStatus.PENDING
        ):
            return request
    return None
