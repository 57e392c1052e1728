"""Kernel services: store lookup, allocation, transfer workflow, sales and audit."""

from retail_kernel.services.allocation_migration import (
    BatchAllocationMigration,
    MigrationReport,
    MigrationValidation,
)
from retail_kernel.services.allocation_service import AllocationService
from retail_kernel.services.auditor_service import AuditorService
from retail_kernel.services.batch_repository import BatchRepository
from retail_kernel.services.sale_reservation import SaleReservationResult, SaleReservationService
from retail_kernel.services.sequence_service import SequenceService
from retail_kernel.services.store_directory import (
    AssignedStoreAccessPolicy,
    StoreDirectory,
    TenantStoreAccessPolicy,
    access_policy_for,
)
from retail_kernel.services.transfer_workflow import TransferRequestView, TransferWorkflowService

__all__ = [
    "AllocationService",
    "AssignedStoreAccessPolicy",
    "AuditorService",
    "BatchAllocationMigration",
    "BatchRepository",
    "MigrationReport",
    "MigrationValidation",
    "SaleReservationResult",
    "SaleReservationService",
    "SequenceService",
    "StoreDirectory",
    "TenantStoreAccessPolicy",
    "TransferRequestView",
    "TransferWorkflowService",
    "access_policy_for",
]
