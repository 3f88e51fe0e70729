"""
Tests for the provision calculator.

Tests cover:
- round_amount: half-up toward positive infinity
- compute_period_line: prorated figures, GRN and true-up, missing dates
- period_line_in_scope: overlap and the inclusive fallback
- compute_activity_line: pending without a response, percentage formula,
  cached previous-month figure, primary assignment selection
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from accrual_engines.provision import (
    activity_final_provision,
    compute_activity_line,
    compute_period_line,
    period_line_in_scope,
    primary_assignment,
    round_amount,
)
from accrual_kernel.domain.accrual import (
    ActivityAssignment,
    AssignmentStatus,
    BusinessResponse,
    GrnTransaction,
    PeriodCalculation,
    PoCategory,
    PoLine,
    PoLineStatus,
)
from accrual_kernel.domain.values import ProcessingMonth

FEB_2026 = ProcessingMonth(2026, 2)
T0 = datetime(2026, 2, 1, 9, 0, tzinfo=timezone.utc)


# =========================================================================
# Factory helpers
# =========================================================================


def make_line(
    net_amount: str = "90000",
    category: PoCategory = PoCategory.PERIOD,
    start_date: str | None = "2026-01-15",
    end_date: str | None = "2026-03-10",
) -> PoLine:
    return PoLine(
        id=uuid4(),
        unique_id="4500001234-10",
        po_number="4500001234",
        po_line_item="10",
        net_amount=Decimal(net_amount),
        category=category,
        status=PoLineStatus.DRAFT,
        start_date=start_date,
        end_date=end_date,
    )


def make_grn(line: PoLine, grn_date: date, value: str, doc: str = "G1") -> GrnTransaction:
    return GrnTransaction(line.id, grn_date, doc, Decimal(value))


def make_calc(line: PoLine, current: str = "0", prev: str = "0", cached: str | None = None,
              month: str = "Feb 2026") -> PeriodCalculation:
    return PeriodCalculation(
        po_line_id=line.id,
        processing_month=month,
        prev_month_true_up=Decimal(prev),
        current_month_true_up=Decimal(current),
        activity_final_provision=Decimal(cached) if cached is not None else None,
    )


def make_assignment(
    line: PoLine,
    percent: str | None = None,
    is_primary: bool = True,
    assigned_date: datetime = T0,
    status: AssignmentStatus = AssignmentStatus.ASSIGNED,
) -> ActivityAssignment:
    assignment_id = uuid4()
    response = None
    if percent is not None:
        response = BusinessResponse(
            assignment_id=assignment_id,
            completion_status="In Progress",
            provision_amount=None,
            provision_percent=Decimal(percent),
            comments="on track",
            response_date=assigned_date,
        )
    return ActivityAssignment(
        id=assignment_id,
        po_line_id=line.id,
        assigned_to=uuid4(),
        assigned_by=None,
        status=status,
        is_primary=is_primary,
        assigned_date=assigned_date,
        response=response,
    )


# =========================================================================
# Rounding
# =========================================================================


class TestRoundAmount:

    @pytest.mark.parametrize("raw, expected", [
        ("45818.18", "45818"),
        ("2.5", "3"),
        ("2.49", "2"),
        ("-2.5", "-2"),
        ("-2.51", "-3"),
        ("0", "0"),
    ])
    def test_half_up_toward_positive_infinity(self, raw, expected):
        assert round_amount(Decimal(raw)) == Decimal(expected)


# =========================================================================
# Period lines
# =========================================================================


class TestComputePeriodLine:

    def test_prorated_suggestion(self):
        """55-day contract, Feb fully inside: round(90000 / 55 * 28) = 45818."""
        line = make_line()
        view = compute_period_line(line, FEB_2026, [], None)
        assert view.total_days == 55
        assert view.current_month_days == 28
        assert view.prev_month_days == 17
        assert view.suggested_provision == Decimal("45818")
        assert view.prev_month_provision == Decimal("27818")
        assert view.final_provision == Decimal("45818")
        assert view.processing_month == "Feb 2026"
        assert view.prev_month_label == "Jan 2026"

    def test_grn_and_true_up_adjust_final_provision(self):
        line = make_line()
        txns = [
            make_grn(line, date(2026, 1, 20), "10000", "G1"),
            make_grn(line, date(2026, 2, 5), "25000", "G2"),
        ]
        view = compute_period_line(line, FEB_2026, txns, make_calc(line, current="500", prev="100"))
        assert view.current_month_grn == Decimal("25000")
        assert view.prev_month_grn == Decimal("10000")
        assert view.total_grn_to_date == Decimal("25000")
        assert view.total_grn_date_label == "Feb 2026"
        assert view.current_month_true_up == Decimal("500")
        assert view.prev_month_true_up == Decimal("100")
        assert view.final_provision == Decimal("45818") - Decimal("25000") + Decimal("500")
        assert view.pending_po_value == Decimal("65000")

    def test_latest_grn_outside_month_still_counts(self):
        """Final provision uses the overall latest GRN, not this month's."""
        line = make_line()
        txns = [make_grn(line, date(2026, 3, 2), "50000")]
        view = compute_period_line(line, FEB_2026, txns, None)
        assert view.current_month_grn == Decimal("0")
        assert view.final_provision == Decimal("45818") - Decimal("50000")

    def test_missing_dates_are_zero_day_in_scope(self):
        line = make_line(start_date=None, end_date="not a date")
        view = compute_period_line(line, FEB_2026, [], make_calc(line, current="250"))
        assert view.total_days == 1
        assert view.current_month_days == 0
        assert view.suggested_provision == Decimal("0")
        assert view.final_provision == Decimal("250")

    def test_remarks_carried(self):
        line = make_line()
        calc = PeriodCalculation(line.id, "Feb 2026", remarks="check with vendor")
        assert compute_period_line(line, FEB_2026, [], calc).remarks == "check with vendor"


class TestPeriodLineInScope:

    def test_overlapping_month(self):
        assert period_line_in_scope(make_line(), FEB_2026)

    def test_contract_ending_before_month(self):
        line = make_line(start_date="2025-10-01", end_date="2026-01-31")
        assert not period_line_in_scope(line, FEB_2026)

    def test_contract_starting_after_month(self):
        line = make_line(start_date="03/01/2026", end_date="06/30/2026")
        assert not period_line_in_scope(line, FEB_2026)

    def test_unknown_dates_are_always_in_scope(self):
        assert period_line_in_scope(make_line(start_date=None, end_date=None), FEB_2026)
        assert period_line_in_scope(make_line(start_date="tbd", end_date="2020-01-01"), FEB_2026)


# =========================================================================
# Activity lines
# =========================================================================


class TestActivityFinalProvision:

    def test_formula(self):
        result = activity_final_provision(
            Decimal("90000"), Decimal("40"), Decimal("10000"), Decimal("500"),
        )
        assert result == Decimal("26500")

    def test_rounds_the_whole_expression(self):
        result = activity_final_provision(
            Decimal("1000"), Decimal("33.35"), Decimal("0.5"), Decimal("0"),
        )
        # 333.5 - 0.5 = 333.0
        assert result == Decimal("333")

    def test_pending_without_percent(self):
        assert activity_final_provision(Decimal("1000"), None, Decimal("0"), Decimal("0")) is None


class TestComputeActivityLine:

    def test_no_response_is_pending_not_zero(self):
        line = make_line(category=PoCategory.ACTIVITY, start_date=None, end_date=None)
        view = compute_activity_line(line, FEB_2026, [], [make_assignment(line)], None, None)
        assert view.final_provision is None
        assert view.is_pending
        assert view.assignee_count == 1

    def test_unassigned_line_is_pending(self):
        line = make_line(category=PoCategory.ACTIVITY)
        view = compute_activity_line(line, FEB_2026, [], [], None, None)
        assert view.assignment_id is None
        assert view.is_pending

    def test_final_provision_from_primary_response(self):
        line = make_line(category=PoCategory.ACTIVITY)
        primary = make_assignment(line, percent="40")
        txns = [make_grn(line, date(2026, 1, 20), "10000")]
        view = compute_activity_line(
            line, FEB_2026, txns, [primary], make_calc(line, current="500"), None,
        )
        assert view.final_provision == Decimal("26500")
        assert view.provision_percent == Decimal("40")
        assert view.assignment_id == primary.id
        assert view.completion_status == "In Progress"
        assert view.total_grn_date_label == "Jan 2026"

    def test_previous_month_cache_shown(self):
        line = make_line(category=PoCategory.ACTIVITY)
        prev = make_calc(line, cached="12000", month="Jan 2026")
        view = compute_activity_line(line, FEB_2026, [], [], None, prev)
        assert view.prev_month_final_provision == Decimal("12000")

    def test_secondary_response_is_not_used(self):
        line = make_line(category=PoCategory.ACTIVITY)
        primary = make_assignment(line, is_primary=True, assigned_date=T0 + timedelta(hours=1))
        secondary = make_assignment(line, percent="80", is_primary=False, assigned_date=T0)
        view = compute_activity_line(line, FEB_2026, [], [secondary, primary], None, None)
        assert view.assignment_id == primary.id
        assert view.is_pending
        assert view.assignee_count == 2


class TestPrimaryAssignment:

    def test_flagged_primary_wins(self):
        line = make_line(category=PoCategory.ACTIVITY)
        early = make_assignment(line, is_primary=False, assigned_date=T0)
        flagged = make_assignment(line, is_primary=True, assigned_date=T0 + timedelta(days=1))
        assert primary_assignment([early, flagged]) == flagged

    def test_earliest_when_none_flagged(self):
        line = make_line(category=PoCategory.ACTIVITY)
        late = make_assignment(line, is_primary=False, assigned_date=T0 + timedelta(days=1))
        early = make_assignment(line, is_primary=False, assigned_date=T0)
        assert primary_assignment([late, early]) == early

    def test_empty(self):
        assert primary_assignment([]) is None
