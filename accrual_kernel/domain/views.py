"""
Computed line views (``accrual_kernel.domain.views``).

Responsibility
--------------
Read-only records produced by the provision calculator for one PO line in
one processing month, plus the enriched line shape consumed by the rule
matcher.  Views carry every figure of the provision formulas next to the
identifying attributes of the line.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any
from uuid import UUID

from accrual_kernel.domain.accrual import (
    AssignmentStatus,
    PoCategory,
    PoLine,
    PoLineStatus,
)


@dataclass(frozen=True)
class LatestGrn:
    """Overall latest GRN snapshot of a line, with its month label."""

    value: Decimal
    month_label: str

    @classmethod
    def empty(cls) -> LatestGrn:
        return cls(Decimal("0"), "")


@dataclass(frozen=True)
class PeriodLineView:
    line: PoLine
    processing_month: str
    prev_month_label: str
    total_days: int
    prev_month_days: int
    prev_month_provision: Decimal
    prev_month_true_up: Decimal
    prev_month_grn: Decimal
    current_month_days: int
    suggested_provision: Decimal
    current_month_grn: Decimal
    current_month_true_up: Decimal
    final_provision: Decimal
    total_grn_to_date: Decimal
    total_grn_date_label: str
    pending_po_value: Decimal
    remarks: str | None = None
    carry_forward: Decimal = Decimal("0")

    @property
    def po_line_id(self) -> UUID:
        return self.line.id

    @property
    def status(self) -> PoLineStatus:
        return self.line.status


@dataclass(frozen=True)
class ActivityLineView:
    """Activity figures for one line.

    ``final_provision`` is None while no business response with a
    completion percentage exists: the figure is pending, not zero.
    """

    line: PoLine
    processing_month: str
    prev_month_label: str
    assignment_id: UUID | None
    assigned_to: UUID | None
    assignment_status: AssignmentStatus | None
    assignee_count: int
    completion_status: str | None
    provision_percent: Decimal | None
    business_provision_amount: Decimal | None
    business_comments: str | None
    prev_month_final_provision: Decimal | None
    prev_month_true_up: Decimal
    current_month_true_up: Decimal
    total_grn_to_date: Decimal
    total_grn_date_label: str
    final_provision: Decimal | None
    remarks: str | None = None

    @property
    def po_line_id(self) -> UUID:
        return self.line.id

    @property
    def is_pending(self) -> bool:
        return self.final_provision is None


# camelCase names used by rule conditions -> EnrichedLine attribute names
RULE_FIELD_ALIASES: dict[str, str] = {
    "poNumber": "po_number",
    "poLineItem": "po_line_item",
    "vendorName": "vendor_name",
    "itemDescription": "item_description",
    "netAmount": "net_amount",
    "glAccount": "gl_account",
    "costCenter": "cost_center",
    "profitCenter": "profit_center",
    "plant": "plant",
    "wbsElement": "wbs_element",
    "projectName": "project_name",
    "requester": "requester",
    "category": "category",
    "status": "status",
    "startDate": "start_date",
    "endDate": "end_date",
    "currentMonthTrueUp": "current_month_true_up",
    "prevMonthTrueUp": "prev_month_true_up",
    "finalProvision": "final_provision",
    "suggestedProvision": "suggested_provision",
}


@dataclass(frozen=True)
class EnrichedLine:
    """A PO line plus the calculated fields rules may reference."""

    line: PoLine
    current_month_true_up: Decimal | None = None
    prev_month_true_up: Decimal | None = None
    final_provision: Decimal | None = None
    suggested_provision: Decimal | None = None

    @property
    def id(self) -> UUID:
        return self.line.id

    @property
    def category(self) -> PoCategory:
        return self.line.category

    def field_value(self, name: str) -> Any:
        """Value of a rule field (camelCase or snake_case); None if unknown."""
        attr = RULE_FIELD_ALIASES.get(name, name)
        if attr in ("current_month_true_up", "prev_month_true_up",
                    "final_provision", "suggested_provision"):
            return getattr(self, attr)
        value = getattr(self.line, attr, None)
        if isinstance(value, (PoCategory, PoLineStatus)):
            return value.value
        return value
