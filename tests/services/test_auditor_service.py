"""
Audit chain tests.

Verifies:
- Events are sequenced and linked to their predecessor
- Tampering with a stored payload or hash is detected
- Traces return one entity's events in chain order
"""

from uuid import uuid4

import pytest
from sqlalchemy import select, update

from retail_kernel.exceptions import AuditChainBrokenError
from retail_kernel.models.audit_event import AuditAction, AuditEvent


def _grant(auditor, batch_id, quantity=5):
    return auditor.record_allocation_granted(
        batch_id=batch_id,
        store_id="store-a",
        quantity=quantity,
        allocated_after=quantity,
        actor_id="user-1",
        tenant_id="tenant-1",
    )


class TestChain:
    def test_empty_chain_is_valid(self, auditor_service):
        assert auditor_service.validate_chain()

    def test_events_are_linked(self, auditor_service):
        first = _grant(auditor_service, uuid4())
        second = _grant(auditor_service, uuid4())

        assert first.prev_hash is None
        assert second.prev_hash == first.hash
        assert second.seq == first.seq + 1
        assert auditor_service.validate_chain()

    def test_payload_tamper_detected(self, session, auditor_service):
        _grant(auditor_service, uuid4())
        victim = _grant(auditor_service, uuid4(), quantity=7)
        session.execute(
            update(AuditEvent)
            .where(AuditEvent.id == victim.id)
            .values(payload={"store_id": "store-a", "quantity": 700, "allocated_after": 700})
        )
        session.expire_all()

        with pytest.raises(AuditChainBrokenError) as exc_info:
            auditor_service.validate_chain()

        assert exc_info.value.audit_event_id == str(victim.id)

    def test_broken_link_detected(self, session, auditor_service):
        _grant(auditor_service, uuid4())
        victim = _grant(auditor_service, uuid4())
        session.execute(
            update(AuditEvent).where(AuditEvent.id == victim.id).values(prev_hash="0" * 64)
        )
        session.expire_all()

        with pytest.raises(AuditChainBrokenError):
            auditor_service.validate_chain()


class TestTrace:
    def test_trace_for_entity(self, session, auditor_service):
        batch_id = uuid4()
        _grant(auditor_service, batch_id, quantity=1)
        _grant(auditor_service, uuid4())
        _grant(auditor_service, batch_id, quantity=2)

        trace = auditor_service.get_trace("InventoryBatch", batch_id)

        assert trace.actions == [AuditAction.ALLOCATION_GRANTED, AuditAction.ALLOCATION_GRANTED]
        assert [e.payload["quantity"] for e in trace.entries] == [1, 2]
        assert trace.last_action == AuditAction.ALLOCATION_GRANTED

    def test_unknown_entity_has_empty_trace(self, auditor_service):
        trace = auditor_service.get_trace("InventoryBatch", uuid4())

        assert trace.entries == ()
        assert trace.last_action is None

    def test_events_carry_tenant(self, session, auditor_service):
        event = _grant(auditor_service, uuid4())

        stored = session.execute(select(AuditEvent).where(AuditEvent.id == event.id)).scalar_one()
        assert stored.tenant_id == "tenant-1"
        assert stored.action == AuditAction.ALLOCATION_GRANTED.value
