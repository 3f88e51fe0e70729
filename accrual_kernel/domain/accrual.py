"""
Accrual domain types (``accrual_kernel.domain.accrual``).

Responsibility
--------------
Pure value objects for PO lines, GRN transactions, persisted true-up
adjustments, activity assignments and responses, approval submissions and
non-PO forms.  ORM models convert to these through ``to_dto()``; engines
and views only ever see these frozen records.

Architecture position
---------------------
**Kernel domain layer** -- ZERO I/O.  No imports from ``db/``,
``models/``, ``services/`` or outer layers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class PoCategory(str, Enum):
    """Which provision calculator branch applies to a PO line."""

    PERIOD = "Period"
    ACTIVITY = "Activity"


class PoLineStatus(str, Enum):
    DRAFT = "Draft"
    SUBMITTED = "Submitted"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    RECALLED = "Recalled"
    RETURNED = "Returned"


class SubmissionStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    RECALLED = "Recalled"


class AssignmentStatus(str, Enum):
    ASSIGNED = "Assigned"
    RESPONDED = "Responded"
    SUBMITTED = "Submitted"
    APPROVED = "Approved"
    RETURNED = "Returned"
    RECALLED = "Recalled"


# Assignments that still hold the line open; zero of these => line Recalled.
ACTIVE_ASSIGNMENT_STATUSES: frozenset[AssignmentStatus] = frozenset({
    AssignmentStatus.ASSIGNED,
    AssignmentStatus.RESPONDED,
    AssignmentStatus.APPROVED,
})


class NonPoAssignmentStatus(str, Enum):
    ASSIGNED = "Assigned"
    RESPONDED = "Responded"
    SUBMITTED = "Submitted"
    RETURNED = "Returned"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class NonPoSubmissionStatus(str, Enum):
    SUBMITTED = "Submitted"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class CompletionStatus(str, Enum):
    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    DISCONTINUED = "Discontinued"


@dataclass(frozen=True)
class PoLine:
    """One purchase-order line item.

    ``start_date`` / ``end_date`` keep the raw uploaded strings; parsing is
    done by the calendar engine so a bad value never blocks ingestion.
    """

    id: UUID
    unique_id: str
    po_number: str
    po_line_item: str
    net_amount: Decimal
    category: PoCategory
    status: PoLineStatus
    vendor_name: str | None = None
    item_description: str | None = None
    gl_account: str | None = None
    cost_center: str | None = None
    profit_center: str | None = None
    plant: str | None = None
    wbs_element: str | None = None
    project_name: str | None = None
    requester: str | None = None
    start_date: str | None = None
    end_date: str | None = None


@dataclass(frozen=True)
class PoLineRecord:
    """A parsed PO-line row handed over by the CSV collaborator."""

    po_number: str
    po_line_item: str
    net_amount: Decimal = Decimal("0")
    unique_id: str | None = None
    vendor_name: str | None = None
    item_description: str | None = None
    gl_account: str | None = None
    cost_center: str | None = None
    profit_center: str | None = None
    plant: str | None = None
    wbs_element: str | None = None
    project_name: str | None = None
    requester: str | None = None
    start_date: str | None = None
    end_date: str | None = None

    @property
    def business_key(self) -> str:
        if self.unique_id:
            return self.unique_id
        return f"{self.po_number}-{self.po_line_item}"


@dataclass(frozen=True)
class GrnTransaction:
    """One cumulative-to-date delivery snapshot for a PO line.

    ``grn_date`` is None when the uploaded date could not be parsed; such
    rows are kept but never selected as the latest snapshot.
    """

    po_line_id: UUID
    grn_date: date | None
    grn_doc: str | None
    grn_value: Decimal


@dataclass(frozen=True)
class GrnRecord:
    """A parsed GRN row handed over by the CSV collaborator."""

    po_number: str
    po_line_item: str
    grn_date: str | None
    grn_doc: str | None
    grn_value: Decimal = Decimal("0")
    grn_line: str | None = None


@dataclass(frozen=True)
class PeriodCalculation:
    """User adjustments persisted per (PO line, processing month)."""

    po_line_id: UUID
    processing_month: str
    prev_month_true_up: Decimal = Decimal("0")
    current_month_true_up: Decimal = Decimal("0")
    remarks: str | None = None
    activity_final_provision: Decimal | None = None


@dataclass(frozen=True)
class BusinessResponse:
    assignment_id: UUID
    completion_status: str | None
    provision_amount: Decimal | None
    provision_percent: Decimal | None
    comments: str | None
    response_date: datetime


@dataclass(frozen=True)
class ActivityAssignment:
    id: UUID
    po_line_id: UUID
    assigned_to: UUID
    assigned_by: UUID | None
    status: AssignmentStatus
    is_primary: bool
    assigned_date: datetime
    nudge_count: int = 0
    last_nudge_at: datetime | None = None
    return_comments: str | None = None
    returned_at: datetime | None = None
    response: BusinessResponse | None = None


@dataclass(frozen=True)
class ApprovalSubmission:
    id: UUID
    po_line_id: UUID
    submitted_by: UUID
    approver_ids: tuple[UUID, ...]
    status: SubmissionStatus
    processing_month: str
    submitted_at: datetime
    nudge_count: int = 0
    last_nudge_at: datetime | None = None
    approved_by: UUID | None = None
    decided_at: datetime | None = None
    rejection_reason: str | None = None


@dataclass(frozen=True)
class NonPoSubmission:
    id: UUID
    assignment_id: UUID
    form_id: UUID
    submitted_by: UUID
    status: NonPoSubmissionStatus
    submitted_at: datetime
    standard_fields: dict = field(default_factory=dict)
    custom_fields: dict = field(default_factory=dict)
    reviewed_by: UUID | None = None
    reviewed_at: datetime | None = None


@dataclass(frozen=True)
class NonPoAssignment:
    id: UUID
    form_id: UUID
    assigned_to: UUID
    assigned_by: UUID | None
    status: NonPoAssignmentStatus
    assigned_at: datetime
    nudge_count: int = 0
    last_nudge_at: datetime | None = None
    return_comments: str | None = None
    returned_at: datetime | None = None


@dataclass(frozen=True)
class NonPoForm:
    id: UUID
    form_name: str
    created_by: UUID
    description: str | None = None
    due_date: date | None = None
    priority: str = "Medium"
    fields_config: dict = field(default_factory=dict)
