"""
Audit log tests.

Verifies the invariants from accrual_kernel/models/system.py and
accrual_kernel/services/audit_service.py:
- Entries are written in the caller's transaction (rollback removes them)
- Entries are append-only through the ORM
- Details are stored JSON-safe (UUID, Decimal, dates, enums as strings)
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from accrual_kernel.domain.accrual import PoLineStatus
from accrual_kernel.models.system import AuditLogModel


class TestRecordAndHistory:

    def test_record_and_read_back(self, auditor_service, test_actor_id):
        entity_id = uuid4()
        auditor_service.record("line_assigned", "po_line", entity_id, test_actor_id, {"count": 2})

        [entry] = auditor_service.history("po_line", entity_id)
        assert entry.action == "line_assigned"
        assert entry.entity_id == str(entity_id)
        assert entry.actor_id == test_actor_id
        assert entry.details == {"count": 2}
        assert entry.occurred_at is not None

    def test_details_made_json_safe(self, auditor_service):
        ref = uuid4()
        auditor_service.record("x", "po_line", "1", details={
            "id": ref,
            "amount": Decimal("12.50"),
            "day": date(2026, 2, 1),
            "status": PoLineStatus.APPROVED,
            "ids": (ref,),
        })
        [entry] = auditor_service.history("po_line", "1")
        assert entry.details == {
            "id": str(ref),
            "amount": "12.50",
            "day": "2026-02-01",
            "status": "Approved",
            "ids": [str(ref)],
        }

    def test_history_filters(self, auditor_service, deterministic_clock):
        auditor_service.record("a", "po_line", "1")
        deterministic_clock.advance(1)
        auditor_service.record("b", "po_line", "2")
        deterministic_clock.advance(1)
        auditor_service.record("c", "approval_rule", "1")

        assert [e.action for e in auditor_service.history()] == ["a", "b", "c"]
        assert [e.action for e in auditor_service.history("po_line")] == ["a", "b"]
        assert [e.action for e in auditor_service.history("po_line", "2")] == ["b"]

    def test_entity_less_entry(self, auditor_service):
        auditor_service.record("po_data_cleared", "po_line", None)
        [entry] = auditor_service.history("po_line")
        assert entry.entity_id is None


class TestTransactionality:

    def test_rollback_discards_entries(self, session, auditor_service):
        auditor_service.record("a", "po_line", "1")
        session.flush()
        session.rollback()
        assert auditor_service.history() == []


class TestImmutability:

    def test_update_through_orm_rejected(self, session, auditor_service):
        auditor_service.record("a", "po_line", "1")
        session.flush()
        row = session.query(AuditLogModel).one()
        row.action = "tampered"
        with pytest.raises(ValueError, match="append-only"):
            session.flush()
