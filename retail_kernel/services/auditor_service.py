"""
Append-only, hash-chained audit log.

Every allocation grant, migration step, transfer transition and sale
reservation lands here as one ``AuditEvent``.  Each row's hash covers its
entity, action, payload digest and the previous row's hash, so editing or
removing any row breaks every link after it; ``validate_chain`` finds the
first such break.  Rows are numbered by ``SequenceService`` and flushed in
the caller's transaction.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from retail_kernel.domain.clock import Clock, SystemClock
from retail_kernel.domain.transfer import TransferRequest, TransferRequestStatus
from retail_kernel.exceptions import AuditChainBrokenError
from retail_kernel.logging_config import get_logger
from retail_kernel.models.audit_event import AuditAction, AuditEvent
from retail_kernel.services.sequence_service import SequenceService
from retail_kernel.utils.hashing import hash_audit_event, hash_payload

logger = get_logger("services.auditor")

_DECISION_ACTIONS = {
    TransferRequestStatus.APPROVED: AuditAction.TRANSFER_APPROVED,
    TransferRequestStatus.REJECTED: AuditAction.TRANSFER_REJECTED,
    TransferRequestStatus.COMPLETED: AuditAction.TRANSFER_COMPLETED,
    TransferRequestStatus.CANCELLED: AuditAction.TRANSFER_CANCELLED,
}


@dataclass(frozen=True)
class AuditTraceEntry:
    seq: int
    action: AuditAction
    occurred_at: datetime
    actor_id: str
    payload: dict[str, Any]
    hash: str

    @classmethod
    def from_event(cls, event: AuditEvent) -> "AuditTraceEntry":
        return cls(
            seq=event.seq,
            action=AuditAction(event.action),
            occurred_at=event.occurred_at,
            actor_id=event.actor_id,
            payload=event.payload or {},
            hash=event.hash,
        )


@dataclass(frozen=True)
class AuditTrace:
    """One entity's events, oldest first."""

    entity_type: str
    entity_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def actions(self) -> list[AuditAction]:
        return [entry.action for entry in self.entries]

    @property
    def last_action(self) -> AuditAction | None:
        return self.entries[-1].action if self.entries else None


def _expected_hash(event: AuditEvent) -> str:
    return hash_audit_event(
        entity_type=event.entity_type,
        entity_id=str(event.entity_id),
        action=event.action,
        payload_hash=hash_payload(event.payload or {}),
        prev_hash=event.prev_hash,
    )


class AuditorService:
    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequences = SequenceService(session)

    def _chain_head(self) -> str | None:
        return self._session.execute(
            select(AuditEvent.hash).order_by(AuditEvent.seq.desc()).limit(1)
        ).scalar_one_or_none()

    def _append(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: str,
        tenant_id: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        body = payload or {}
        seq = self._sequences.next_value(SequenceService.AUDIT_EVENT)
        event = AuditEvent(
            seq=seq,
            tenant_id=tenant_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action.value,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            payload=body,
            payload_hash=hash_payload(body),
            prev_hash=self._chain_head(),
        )
        event.hash = _expected_hash(event)
        self._session.add(event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
                "seq": seq,
            },
        )
        return event

    def record_allocation_granted(
        self,
        batch_id: UUID,
        store_id: str,
        quantity: int,
        allocated_after: int,
        actor_id: str,
        tenant_id: str,
    ) -> AuditEvent:
        return self._append(
            entity_type="InventoryBatch",
            entity_id=batch_id,
            action=AuditAction.ALLOCATION_GRANTED,
            actor_id=actor_id,
            tenant_id=tenant_id,
            payload={
                "store_id": str(store_id),
                "quantity": quantity,
                "allocated_after": allocated_after,
            },
        )

    def record_allocation_migrated(
        self,
        batch_id: UUID,
        store_id: str,
        quantity: int,
        actor_id: str,
        tenant_id: str,
    ) -> AuditEvent:
        return self._append(
            entity_type="InventoryBatch",
            entity_id=batch_id,
            action=AuditAction.ALLOCATION_MIGRATED,
            actor_id=actor_id,
            tenant_id=tenant_id,
            payload={"store_id": str(store_id), "quantity": quantity},
        )

    def record_allocation_migration_reverted(
        self,
        batch_id: UUID,
        removed_store_ids: list[str],
        actor_id: str,
        tenant_id: str,
    ) -> AuditEvent:
        return self._append(
            entity_type="InventoryBatch",
            entity_id=batch_id,
            action=AuditAction.ALLOCATION_MIGRATION_REVERTED,
            actor_id=actor_id,
            tenant_id=tenant_id,
            payload={"removed_store_ids": sorted(removed_store_ids)},
        )

    def record_transfer_requested(
        self,
        request: TransferRequest,
        batch_id: UUID,
        tenant_id: str,
    ) -> AuditEvent:
        return self._append(
            entity_type="TransferRequest",
            entity_id=UUID(request.request_id),
            action=AuditAction.TRANSFER_REQUESTED,
            actor_id=request.requested_by,
            tenant_id=tenant_id,
            payload={
                "batch_id": str(batch_id),
                "type": request.type.value,
                "source_store_id": request.source_store_id,
                "target_store_id": request.target_store_id,
                "requested_quantity": request.requested_quantity,
                "reason": request.reason,
            },
        )

    def record_transfer_transition(
        self,
        request: TransferRequest,
        batch_id: UUID,
        actor_id: str,
        tenant_id: str,
    ) -> AuditEvent:
        """Record an approve, reject, confirm or cancel on a request."""
        payload: dict[str, Any] = {
            "batch_id": str(batch_id),
            "status": request.status.value,
            "source_store_id": request.source_store_id,
            "target_store_id": request.target_store_id,
        }
        if request.status in (TransferRequestStatus.APPROVED, TransferRequestStatus.COMPLETED):
            payload["quantity"] = request.transfer_quantity
        if request.rejection_reason:
            payload["reason"] = request.rejection_reason
        return self._append(
            entity_type="TransferRequest",
            entity_id=UUID(request.request_id),
            action=_DECISION_ACTIONS[request.status],
            actor_id=actor_id,
            tenant_id=tenant_id,
            payload=payload,
        )

    def record_sale_reserved(
        self,
        sale_id: UUID,
        store_id: str,
        quantities_by_batch: dict[str, int],
        actor_id: str,
        tenant_id: str,
    ) -> AuditEvent:
        return self._append(
            entity_type="Sale",
            entity_id=sale_id,
            action=AuditAction.SALE_RESERVED,
            actor_id=actor_id,
            tenant_id=tenant_id,
            payload={
                "store_id": str(store_id),
                "batches": quantities_by_batch,
            },
        )

    def validate_chain(self) -> bool:
        """
        Recompute every hash in ``seq`` order.

        Returns True for an intact (or empty) chain.

        Raises:
            AuditChainBrokenError: at the first row whose hash or
                predecessor link does not match.
        """
        events = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq)
        ).scalars().all()

        previous_hash: str | None = None
        for event in events:
            if event.prev_hash != previous_hash:
                self._chain_broken(event, previous_hash or "None", event.prev_hash or "None")
            expected = _expected_hash(event)
            if event.hash != expected:
                self._chain_broken(event, expected, event.hash)
            previous_hash = event.hash

        logger.info("audit_chain_valid", extra={"event_count": len(events)})
        return True

    @staticmethod
    def _chain_broken(event: AuditEvent, expected: str, actual: str) -> None:
        logger.critical("audit_chain_broken", extra={"seq": event.seq})
        raise AuditChainBrokenError(str(event.id), expected, actual)

    def get_trace(self, entity_type: str, entity_id: UUID) -> AuditTrace:
        events = self._session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == entity_id,
            )
            .order_by(AuditEvent.seq)
        ).scalars()
        return AuditTrace(
            entity_type=entity_type,
            entity_id=entity_id,
            entries=tuple(AuditTraceEntry.from_event(event) for event in events),
        )
