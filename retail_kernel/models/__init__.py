"""ORM models for the retail kernel."""

from retail_kernel.models.audit_event import AuditAction, AuditEvent, SequenceCounter
from retail_kernel.models.inventory import InventoryBatchModel, InventoryItemModel
from retail_kernel.models.sale_allocation import SaleBatchAllocationModel
from retail_kernel.models.store import StoreClassification, StoreModel, StoreUserModel
from retail_kernel.models.transfer_index import TransferRequestIndexModel

__all__ = [
    "AuditAction",
    "AuditEvent",
    "SequenceCounter",
    "InventoryBatchModel",
    "InventoryItemModel",
    "SaleBatchAllocationModel",
    "StoreClassification",
    "StoreModel",
    "StoreUserModel",
    "TransferRequestIndexModel",
]
