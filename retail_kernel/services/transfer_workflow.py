"""
TransferWorkflowService -- request, approve and confirm allocation moves.

Responsibility:
    Drives the transfer request lifecycle embedded on each batch:

        create   -> PENDING           (no allocation change)
        approve  -> APPROVED/REJECTED (no allocation change)
        confirm  -> COMPLETED         (the only cross-store allocation move)
        cancel   -> CANCELLED         (requester withdraws a pending request)

    and lists the requests a store takes part in.

Architecture position:
    Kernel > Services -- imperative shell over ``domain.transfer`` and
    ``domain.allocation_ledger``.  Batches are loaded and saved through
    BatchRepository; requests are located through the
    ``transfer_request_index`` table instead of scanning batch documents.

Invariants enforced:
    - Transitions follow ``TRANSFER_TRANSITIONS`` exactly; anything else is
      InvalidTransferRequestStateError.
    - At most one PENDING request per (batch, target store): checked on the
      batch document and backstopped by a partial unique index.
    - Confirm writes the new ledger and the COMPLETED record in ONE versioned
      UPDATE of the batch row.  Source loses exactly what target gains, and
      both stores keep ``reserved`` unchanged.
    - Source coverage is checked against ``available`` (allocated minus
      reserved) at create, approve, and authoritatively at confirm.

Failure modes:
    - InvalidTransferRequestError, UserNotFoundError, StoreNotFoundError,
      MainStoreNotFoundError, StoreContextMissingError,
      InventoryBatchNotFoundError, InsufficientStoreAllocationError,
      TransferRequestConflictError, TransferRequestNotFoundError,
      InvalidTransferRequestStateError, StoreAccessDeniedError.
    - OptimisticLockError when the batch changed under us.  The client
      resubmits; nothing is retried here.

Audit relevance:
    Every transition writes one AuditEvent keyed by the request id, in the
    same SAVEPOINT as the batch write.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from retail_kernel.db.engine import atomic
from retail_kernel.domain import transfer as transfers
from retail_kernel.domain.allocation_ledger import (
    AllocationLedger,
    get_store_allocation,
    update_store_allocation,
)
from retail_kernel.domain.clock import Clock, SystemClock
from retail_kernel.domain.collaborators import StoreAccessPolicy, UserDirectory
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
from retail_kernel.exceptions import (
    InsufficientStoreAllocationError,
    InvalidTransferRequestError,
    StoreAccessDeniedError,
    StoreContextMissingError,
    TransferRequestConflictError,
)
from retail_kernel.logging_config import get_logger
from retail_kernel.models.inventory import InventoryBatchModel
from retail_kernel.models.transfer_index import TransferRequestIndexModel
from retail_kernel.services.auditor_service import AuditorService
from retail_kernel.services.base import BaseService
from retail_kernel.services.batch_repository import BatchRepository
from retail_kernel.services.store_directory import StoreDirectory, TenantStoreAccessPolicy
from retail_kernel.utils.ids import as_uuid

logger = get_logger("services.transfer_workflow")


@dataclass(frozen=True)
class TransferRequestView:
    """A transfer request with its batch and store names resolved."""

    request_id: str
    type: TransferRequestType
    source_store_id: str
    source_store_name: str
    target_store_id: str
    target_store_name: str
    inventory_batch_id: str
    inventory_name: str
    batch_number: int
    requested_quantity: int
    approved_quantity: int | None
    status: TransferRequestStatus
    reason: str | None
    requested_by: str
    requested_by_name: str
    requested_at: datetime
    approved_by: str | None
    approved_by_name: str | None
    approved_at: datetime | None
    confirmed_by: str | None
    confirmed_by_name: str | None
    confirmed_at: datetime | None
    rejection_reason: str | None


class TransferWorkflowService(BaseService[InventoryBatchModel]):
    """
    Transfer request workflow for the tenant bound to the current request.

    Contract:
        Every mutating method loads the batch, computes the new documents
        with pure domain functions, and saves them in one versioned UPDATE
        inside a SAVEPOINT together with the index row and the audit event.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT retry on OptimisticLockError.
    """

    def __init__(
        self,
        session: Session,
        users: UserDirectory,
        directory: StoreDirectory | None = None,
        access_policy: StoreAccessPolicy | None = None,
        clock: Clock | None = None,
        auditor: AuditorService | None = None,
        unknown_store_label: str = "Unknown Store",
    ):
        super().__init__(session)
        self._users = users
        self._clock = clock or SystemClock()
        self._directory = directory or StoreDirectory(session)
        self._access_policy = access_policy or TenantStoreAccessPolicy(self._directory)
        self._auditor = auditor or AuditorService(session, self._clock)
        self._batches = BatchRepository(session)
        self._unknown_store_label = unknown_store_label

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _actor_name(self, user_id: str) -> str:
        if not user_id:
            raise InvalidTransferRequestError("User ID is required")
        return self._users.fetch_user_by_user_id(user_id).display_name

    def _require_access(self, user_id: str, store_id: str, action: str) -> None:
        if not self._access_policy.can_access(user_id, store_id, action):
            logger.warning(
                "store_access_denied",
                extra={"store_id": store_id, "user_id": user_id, "action": action},
            )
            raise StoreAccessDeniedError(store_id, action, user_id)

    def _require_source_covers(
        self,
        ledger: AllocationLedger,
        source_store_id: str,
        batch_id: str,
        quantity: int,
    ) -> None:
        entry = get_store_allocation(ledger, source_store_id)
        available = entry.available if entry else 0
        if available < quantity:
            logger.warning(
                "source_allocation_insufficient",
                extra={
                    "store_id": source_store_id,
                    "batch_id": batch_id,
                    "requested": quantity,
                    "available": available,
                },
            )
            raise InsufficientStoreAllocationError(source_store_id, batch_id, quantity, available)

    def _resolve_target_for_transfer(self, dto: CreateTransferRequest, user_id: str) -> str:
        target = RequestContext.get_store_id() or dto.target_store_id
        if target:
            return str(target)
        assigned = self._directory.get_user_store(user_id)
        if assigned is None:
            raise StoreContextMissingError(user_id)
        return str(assigned.id)

    def _conflict_from_index(
        self,
        batch: InventoryBatchModel,
        source_store_id: str,
        target_store_id: str,
    ) -> TransferRequestConflictError:
        existing = self.session.execute(
            select(TransferRequestIndexModel.request_id).where(
                TransferRequestIndexModel.batch_id == batch.id,
                TransferRequestIndexModel.target_store_id == as_uuid(target_store_id),
                TransferRequestIndexModel.status == TransferRequestStatus.PENDING.value,
            )
        ).scalar_one_or_none()
        return TransferRequestConflictError(
            str(existing), source_store_id, target_store_id, str(batch.id),
        )

    def _persist_transition(
        self,
        batch: InventoryBatchModel,
        updated: TransferRequest,
        actor_id: str,
        tenant_id: str,
        operation: str,
        ledger: AllocationLedger | None = None,
    ) -> None:
        requests = transfers.with_request(self._batches.requests_of(batch), updated)
        with atomic(self.session, operation=operation):
            self._batches.save(batch, ledger=ledger, requests=requests)
            self._batches.upsert_index(updated, batch)
            self._auditor.record_transfer_transition(
                updated, batch_id=batch.id, actor_id=actor_id, tenant_id=tenant_id,
            )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create_transfer_request(self, dto: CreateTransferRequest, user_id: str) -> str:
        """
        Record a PENDING request on the batch.  Allocations are unchanged.

        Returns:
            The new request id.
        """
        tenant_id = RequestContext.require_tenant_id()
        actor_name = self._actor_name(user_id)
        if dto.requested_quantity <= 0:
            raise InvalidTransferRequestError(
                "Requested quantity must be positive",
                details={"requested_quantity": dto.requested_quantity},
            )

        batch = self._batches.get_batch(dto.inventory_batch_id, tenant_id)
        batch_key = str(batch.id)

        request_type = TransferRequestType(dto.type)
        if request_type == TransferRequestType.ALLOCATION:
            if not dto.target_store_id:
                raise InvalidTransferRequestError(
                    "Target store ID is required for allocation requests",
                )
            source_store_id = str(self._directory.find_main_store().id)
            target_store_id = str(dto.target_store_id)
        else:
            if not dto.source_store_id:
                raise InvalidTransferRequestError(
                    "Source store ID is required for transfer requests",
                )
            source_store_id = str(dto.source_store_id)
            target_store_id = self._resolve_target_for_transfer(dto, user_id)

        source_store_id = str(self._directory.find_one(source_store_id).id)
        target_store_id = str(self._directory.find_one(target_store_id).id)
        if source_store_id == target_store_id:
            raise InvalidTransferRequestError(
                "Source and target store must differ",
                details={"store_id": source_store_id},
            )

        ledger = self._batches.ledger_of(batch)
        self._require_source_covers(ledger, source_store_id, batch_key, dto.requested_quantity)

        requests = self._batches.requests_of(batch)
        pending = transfers.find_pending_for_target(requests, target_store_id)
        if pending is not None:
            logger.warning(
                "transfer_request_conflict",
                extra={
                    "batch_id": batch_key,
                    "target_store_id": target_store_id,
                    "conflicting_request_id": pending.request_id,
                },
            )
            raise TransferRequestConflictError(
                pending.request_id, source_store_id, target_store_id, batch_key,
            )

        request = transfers.new_transfer_request(
            request_id=str(uuid4()),
            request_type=request_type,
            source_store_id=source_store_id,
            target_store_id=target_store_id,
            requested_quantity=dto.requested_quantity,
            requested_by=user_id,
            requested_by_name=actor_name,
            requested_at=self._clock.now(),
            reason=dto.reason,
        )

        try:
            with atomic(self.session, operation="create_transfer_request"):
                self._batches.save(batch, requests=transfers.with_request(requests, request))
                self._batches.upsert_index(request, batch)
                self._auditor.record_transfer_requested(
                    request, batch_id=batch.id, tenant_id=tenant_id,
                )
        except IntegrityError:
            # A concurrent create won the pending (batch, target) slot
            raise self._conflict_from_index(batch, source_store_id, target_store_id) from None

        logger.info(
            "transfer_request_created",
            extra={
                "request_id": request.request_id,
                "batch_id": batch_key,
                "type": request.type.value,
                "source_store_id": source_store_id,
                "target_store_id": target_store_id,
                "requested_quantity": request.requested_quantity,
            },
        )
        return request.request_id

    def approve_transfer_request(
        self,
        request_id: Any,
        dto: ApproveTransferRequest,
        user_id: str,
    ) -> TransferRequest:
        """Approve or reject a PENDING request.  Allocations are unchanged."""
        tenant_id = RequestContext.require_tenant_id()
        actor_name = self._actor_name(user_id)
        batch, request = self._batches.find_batch_for_request(request_id, tenant_id)

        operation = "approve" if dto.decision == ApprovalDecision.APPROVED else "reject"
        transfers.require_status(request, operation)
        self._require_access(user_id, request.source_store_id, "approve transfer request")

        now = self._clock.now()
        if dto.decision == ApprovalDecision.APPROVED:
            updated = transfers.approve(request, dto.approved_quantity, user_id, actor_name, now)
            self._require_source_covers(
                self._batches.ledger_of(batch),
                request.source_store_id,
                str(batch.id),
                updated.transfer_quantity,
            )
        else:
            updated = transfers.reject(request, dto.rejection_reason, user_id, actor_name, now)

        self._persist_transition(batch, updated, user_id, tenant_id, f"{operation}_transfer_request")

        logger.info(
            "transfer_request_decided",
            extra={
                "request_id": updated.request_id,
                "batch_id": str(batch.id),
                "status": updated.status.value,
                "approved_quantity": updated.approved_quantity,
            },
        )
        return updated

    def confirm_transfer_request(self, request_id: Any, user_id: str) -> TransferRequest:
        """
        Move the approved quantity from source to target and complete.

        Preconditions:
            Request is APPROVED; confirmer may act on the target store.

        Postconditions:
            source.allocated decreased and target.allocated increased by
            ``transfer_quantity``; request COMPLETED; one batch UPDATE.
        """
        tenant_id = RequestContext.require_tenant_id()
        actor_name = self._actor_name(user_id)
        batch, request = self._batches.find_batch_for_request(request_id, tenant_id)

        transfers.require_status(request, "confirm")
        self._require_access(user_id, request.target_store_id, "confirm transfer request")

        quantity = request.transfer_quantity
        ledger = self._batches.ledger_of(batch)
        self._require_source_covers(ledger, request.source_store_id, str(batch.id), quantity)

        now = self._clock.now()
        source = get_store_allocation(ledger, request.source_store_id)
        target = get_store_allocation(ledger, request.target_store_id)
        ledger = update_store_allocation(
            ledger,
            request.source_store_id,
            allocated=source.allocated - quantity,
            reserved=source.reserved,
            actor_id=user_id,
            at=now,
        )
        ledger = update_store_allocation(
            ledger,
            request.target_store_id,
            allocated=(target.allocated if target else 0) + quantity,
            reserved=target.reserved if target else 0,
            actor_id=user_id,
            at=now,
        )
        updated = transfers.confirm(request, user_id, actor_name, now)

        self._persist_transition(
            batch, updated, user_id, tenant_id, "confirm_transfer_request", ledger=ledger,
        )

        logger.info(
            "transfer_request_completed",
            extra={
                "request_id": updated.request_id,
                "batch_id": str(batch.id),
                "source_store_id": updated.source_store_id,
                "target_store_id": updated.target_store_id,
                "quantity": quantity,
            },
        )
        return updated

    def cancel_transfer_request(
        self,
        request_id: Any,
        user_id: str,
        reason: str | None = None,
    ) -> TransferRequest:
        """Withdraw a PENDING request.  Requester or target-store users only."""
        tenant_id = RequestContext.require_tenant_id()
        actor_name = self._actor_name(user_id)
        batch, request = self._batches.find_batch_for_request(request_id, tenant_id)

        transfers.require_status(request, "cancel")
        if user_id != request.requested_by:
            self._require_access(user_id, request.target_store_id, "cancel transfer request")

        updated = transfers.cancel(request, reason, user_id, actor_name, self._clock.now())
        self._persist_transition(batch, updated, user_id, tenant_id, "cancel_transfer_request")

        logger.info(
            "transfer_request_cancelled",
            extra={"request_id": updated.request_id, "batch_id": str(batch.id)},
        )
        return updated

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _to_view(
        self,
        request: TransferRequest,
        batch: InventoryBatchModel,
        store_names: dict[str, str],
    ) -> TransferRequestView:
        return TransferRequestView(
            request_id=request.request_id,
            type=request.type,
            source_store_id=request.source_store_id,
            source_store_name=store_names.get(request.source_store_id, self._unknown_store_label),
            target_store_id=request.target_store_id,
            target_store_name=store_names.get(request.target_store_id, self._unknown_store_label),
            inventory_batch_id=str(batch.id),
            inventory_name=batch.inventory.name,
            batch_number=batch.batch_number,
            requested_quantity=request.requested_quantity,
            approved_quantity=request.approved_quantity,
            status=request.status,
            reason=request.reason,
            requested_by=request.requested_by,
            requested_by_name=request.requested_by_name,
            requested_at=request.requested_at,
            approved_by=request.approved_by,
            approved_by_name=request.approved_by_name,
            approved_at=request.approved_at,
            confirmed_by=request.confirmed_by,
            confirmed_by_name=request.confirmed_by_name,
            confirmed_at=request.confirmed_at,
            rejection_reason=request.rejection_reason,
        )

    def get_pending_requests(
        self,
        store_id: Any,
        filters: TransferRequestFilters | None = None,
    ) -> list[TransferRequestView]:
        """
        Requests where ``store_id`` is source or target, newest first.

        Despite the name, every status is returned unless ``filters.status``
        narrows it.
        """
        tenant_id = RequestContext.require_tenant_id()
        store = self._directory.find_one(store_id)

        rows = self._batches.list_index_rows_for_store(tenant_id, store.id)
        batches = self._batches.get_batches({row.batch_id for row in rows}, tenant_id)
        store_names = self._directory.store_names()

        views: list[TransferRequestView] = []
        for row in rows:
            batch = batches.get(str(row.batch_id))
            if batch is None:
                continue
            request = self._batches.requests_of(batch).get(str(row.request_id))
            if request is None or not request.matches(filters):
                continue
            views.append(self._to_view(request, batch, store_names))

        views.sort(key=lambda view: view.requested_at, reverse=True)
        return views

    def get_transfer_request(self, request_id: Any) -> TransferRequestView:
        tenant_id = RequestContext.require_tenant_id()
        batch, request = self._batches.find_batch_for_request(request_id, tenant_id)
        return self._to_view(request, batch, self._directory.store_names())
