"""
accrual_engines.provision -- Provision calculator.

Responsibility:
    Compute the per-line, per-month provision figures for both accrual
    types from a PO line, its GRN history and the persisted user
    adjustments.

    Period (time-prorated)::

        total_days      = max(1, overlap(start, end, start, end))
        daily_rate      = net / total_days
        suggested       = round(daily_rate * current_days)
        final_provision = suggested - round(latest_grn) + current_true_up

    Activity (percentage of completion reported by the business user)::

        final_provision = round(net * pct / 100 - latest_grn + current_true_up)

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Lines with a missing or unparseable start/end date are in scope for
      every month; their day counts are 0 and total days is 1.
    - An activity line without a response percentage has a pending
      (None) final provision, never zero.
    - Rounding is half-up toward positive infinity on whole currency units.
"""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal
from typing import Iterable, Sequence

from accrual_engines.calendar import overlap_days, parse_flexible_date
from accrual_engines.grn import latest_known_value, month_value
from accrual_kernel.domain.accrual import (
    ActivityAssignment,
    GrnTransaction,
    PeriodCalculation,
    PoLine,
)
from accrual_kernel.domain.values import ProcessingMonth
from accrual_kernel.domain.views import ActivityLineView, PeriodLineView

_ZERO = Decimal("0")
_HALF = Decimal("0.5")


def round_amount(value: Decimal) -> Decimal:
    """Round to a whole unit, halves toward positive infinity (2.5 -> 3, -2.5 -> -2)."""
    return (value + _HALF).to_integral_value(rounding=ROUND_FLOOR)


def contract_dates(line: PoLine):
    """Parsed (start, end) of a line; either may be None."""
    return parse_flexible_date(line.start_date), parse_flexible_date(line.end_date)


def period_line_in_scope(line: PoLine, month: ProcessingMonth) -> bool:
    """True if the contract overlaps the month, or if either date is unknown."""
    start, end = contract_dates(line)
    if start is None or end is None:
        return True
    return start <= month.month_end and end >= month.month_start


def period_final_provision(
    suggested: Decimal,
    latest_grn: Decimal,
    current_true_up: Decimal,
) -> Decimal:
    return suggested - round_amount(latest_grn) + current_true_up


def activity_final_provision(
    net_amount: Decimal,
    provision_percent: Decimal | None,
    latest_grn: Decimal,
    current_true_up: Decimal,
) -> Decimal | None:
    if provision_percent is None:
        return None
    return round_amount(
        net_amount * provision_percent / Decimal(100) - latest_grn + current_true_up
    )


def compute_period_line(
    line: PoLine,
    month: ProcessingMonth,
    transactions: Sequence[GrnTransaction],
    calculation: PeriodCalculation | None,
) -> PeriodLineView:
    """Compute the time-prorated view of one line for one processing month."""
    start, end = contract_dates(line)
    net = line.net_amount

    if start is not None and end is not None:
        total_days = max(1, overlap_days(start, end, start, end))
        current_days = overlap_days(start, end, month.month_start, month.month_end)
        prev_days = overlap_days(start, end, month.prev_month_start, month.prev_month_end)
    else:
        total_days, current_days, prev_days = 1, 0, 0

    daily_rate = net / Decimal(total_days)
    suggested = round_amount(daily_rate * current_days)
    prev_provision = round_amount(daily_rate * prev_days)

    latest = latest_known_value(transactions)
    current_true_up = calculation.current_month_true_up if calculation else _ZERO
    prev_true_up = calculation.prev_month_true_up if calculation else _ZERO

    return PeriodLineView(
        line=line,
        processing_month=month.label,
        prev_month_label=month.prev_month_label,
        total_days=total_days,
        prev_month_days=prev_days,
        prev_month_provision=prev_provision,
        prev_month_true_up=prev_true_up,
        prev_month_grn=month_value(transactions, month.prev_month_start, month.prev_month_end),
        current_month_days=current_days,
        suggested_provision=suggested,
        current_month_grn=month_value(transactions, month.month_start, month.month_end),
        current_month_true_up=current_true_up,
        final_provision=period_final_provision(suggested, latest.value, current_true_up),
        total_grn_to_date=latest.value,
        total_grn_date_label=latest.month_label,
        pending_po_value=round_amount(net - latest.value),
        remarks=calculation.remarks if calculation else None,
    )


def primary_assignment(
    assignments: Iterable[ActivityAssignment],
) -> ActivityAssignment | None:
    """The primary assignment, else the earliest assigned one."""
    ordered = sorted(assignments, key=lambda a: a.assigned_date)
    for assignment in ordered:
        if assignment.is_primary:
            return assignment
    return ordered[0] if ordered else None


def compute_activity_line(
    line: PoLine,
    month: ProcessingMonth,
    transactions: Sequence[GrnTransaction],
    assignments: Sequence[ActivityAssignment],
    calculation: PeriodCalculation | None,
    previous_calculation: PeriodCalculation | None,
) -> ActivityLineView:
    """Compute the activity view of one line for one processing month.

    ``previous_calculation`` is the row persisted for the previous month;
    its cached ``activity_final_provision`` is shown as last month's figure.
    """
    primary = primary_assignment(assignments)
    response = primary.response if primary else None
    percent = response.provision_percent if response else None

    latest = latest_known_value(transactions)
    current_true_up = calculation.current_month_true_up if calculation else _ZERO

    return ActivityLineView(
        line=line,
        processing_month=month.label,
        prev_month_label=month.prev_month_label,
        assignment_id=primary.id if primary else None,
        assigned_to=primary.assigned_to if primary else None,
        assignment_status=primary.status if primary else None,
        assignee_count=len(assignments),
        completion_status=response.completion_status if response else None,
        provision_percent=percent,
        business_provision_amount=response.provision_amount if response else None,
        business_comments=response.comments if response else None,
        prev_month_final_provision=(
            previous_calculation.activity_final_provision if previous_calculation else None
        ),
        prev_month_true_up=calculation.prev_month_true_up if calculation else _ZERO,
        current_month_true_up=current_true_up,
        total_grn_to_date=latest.value,
        total_grn_date_label=latest.month_label,
        final_provision=activity_final_provision(
            line.net_amount, percent, latest.value, current_true_up,
        ),
        remarks=calculation.remarks if calculation else None,
    )
