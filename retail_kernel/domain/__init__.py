"""
Pure domain layer.

Contains the allocation ledger codec, the transfer request state machine,
the store inventory projection and the FIFO sale planner, with NO
dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable and deterministic.
"""

from retail_kernel.domain.allocation_ledger import (
    AllocationLedger,
    StoreAllocation,
    decode_store_allocations,
    encode_store_allocations,
    get_store_allocation,
    get_total_allocated,
    update_store_allocation,
)
from retail_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from retail_kernel.domain.collaborators import (
    MappingUserDirectory,
    StoreAccessPolicy,
    UserDirectory,
    UserRecord,
)
from retail_kernel.domain.request_context import RequestContext
from retail_kernel.domain.transfer import (
    ApprovalDecision,
    ApproveTransferRequest,
    CreateTransferRequest,
    TransferRequest,
    TransferRequestFilters,
    TransferRequestStatus,
    TransferRequestType,
)

__all__ = [
    "AllocationLedger",
    "StoreAllocation",
    "decode_store_allocations",
    "encode_store_allocations",
    "get_store_allocation",
    "get_total_allocated",
    "update_store_allocation",
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "MappingUserDirectory",
    "StoreAccessPolicy",
    "UserDirectory",
    "UserRecord",
    "RequestContext",
    "ApprovalDecision",
    "ApproveTransferRequest",
    "CreateTransferRequest",
    "TransferRequest",
    "TransferRequestFilters",
    "TransferRequestStatus",
    "TransferRequestType",
]
