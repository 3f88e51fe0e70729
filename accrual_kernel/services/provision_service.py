"""
accrual_kernel.services.provision_service -- Computed line views and edits.

Responsibility:
    Builds the per-line provision views for a processing month (pure reads
    over the selector and the provision engine) and applies the user edits
    that feed them: true-ups, remarks, category and contract dates.

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/, db/
    and the pure engines.

Invariants enforced:
    - Reads never write.  The activity provision cache is materialized by
      ProvisionCacheService, optionally scheduled from ``activity_lines``
      without waiting for it.
    - Only the current-month true-up is editable; it must be >= 0 and must
      not push the final provision below zero.
    - Editing a Recalled line (true-up, remarks, category or dates) moves
      it back to Draft.
    - Moving a line to Period requires parseable start and end dates.

Failure modes:
    - PoLineNotFoundError for an unknown line id.
    - NegativeTrueUpError, NegativeFinalProvisionError, ImmutableTrueUpError,
      InvalidTrueUpFieldError, InvalidCategoryError, InvalidAmountError,
      MissingContractDatesError on rejected edits.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from accrual_engines.calendar import parse_flexible_date, resolve_processing_month
from accrual_engines.provision import (
    compute_activity_line,
    compute_period_line,
    period_line_in_scope,
)
from accrual_engines.workflow import find_transition
from accrual_kernel.db.engine import dialect_insert
from accrual_kernel.domain.accrual import (
    PeriodCalculation,
    PoCategory,
    PoLine,
    PoLineStatus,
)
from accrual_kernel.domain.clock import Clock, SystemClock
from accrual_kernel.domain.values import (
    DEFAULT_MONTH_POLICY,
    MonthFallbackPolicy,
    ProcessingMonth,
)
from accrual_kernel.domain.views import ActivityLineView, PeriodLineView
from accrual_kernel.domain.workflow import PERIOD_LINE_WORKFLOW
from accrual_kernel.exceptions import (
    ImmutableTrueUpError,
    InvalidAmountError,
    InvalidCategoryError,
    InvalidTrueUpFieldError,
    MissingContractDatesError,
    NegativeFinalProvisionError,
    NegativeTrueUpError,
    PoLineNotFoundError,
)
from accrual_kernel.logging_config import LogContext, get_logger
from accrual_kernel.models.period_calculation import PeriodCalculationModel
from accrual_kernel.models.po_line import PoLineModel
from accrual_kernel.selectors.accrual_selector import AccrualSelector
from accrual_kernel.services.audit_service import AuditService

if TYPE_CHECKING:
    from accrual_kernel.services.provision_cache_service import ProvisionCacheService

logger = get_logger("services.provision")

CURRENT_TRUE_UP_FIELDS = frozenset({"current_month_true_up", "currentMonthTrueUp"})
PREVIOUS_TRUE_UP_FIELDS = frozenset({"prev_month_true_up", "prevMonthTrueUp"})


def _to_decimal(value: object) -> Decimal:
    if value is None:
        return Decimal("0")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise InvalidAmountError(value) from None
    if not amount.is_finite():
        raise InvalidAmountError(value)
    return amount


class ProvisionService:
    """Computes provision views and applies line-level edits."""

    def __init__(
        self,
        session: Session,
        auditor: AuditService | None = None,
        clock: Clock | None = None,
        month_policy: MonthFallbackPolicy = DEFAULT_MONTH_POLICY,
    ) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditService(session, self._clock)
        self._month_policy = month_policy
        self._selector = AccrualSelector(session)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def resolve_month(self, label: str) -> ProcessingMonth:
        month, error = resolve_processing_month(label, self._month_policy)
        if error is not None:
            logger.warning(
                "processing_month_fallback",
                extra={"raw_label": label, "fallback": month.label, "error_code": error.code},
            )
        return month

    def _load_line_model(self, line_id: UUID) -> PoLineModel:
        model = self._session.get(PoLineModel, line_id)
        if model is None:
            raise PoLineNotFoundError(str(line_id))
        return model

    def _calculation_model(self, line_id: UUID, month: ProcessingMonth) -> PeriodCalculationModel | None:
        return self._session.execute(
            select(PeriodCalculationModel).where(
                PeriodCalculationModel.po_line_id == line_id,
                PeriodCalculationModel.processing_month == month.label,
            )
        ).scalar_one_or_none()

    def upsert_calculation(
        self,
        line_id: UUID,
        month: ProcessingMonth,
        actor_id: UUID | None,
        **values: Any,
    ) -> PeriodCalculationModel:
        """Write ``values`` to the (line, month) row, creating it if needed.

        One INSERT .. ON CONFLICT statement on (po_line_id,
        processing_month).  Only the named columns change on an existing row.
        """
        # Last month's current true-up becomes this month's read-only previous one.
        previous = self._calculation_model(line_id, month.previous())
        table = PeriodCalculationModel.__table__
        insert = dialect_insert(self._session)
        stmt = insert(table).values(
            id=uuid4(),
            po_line_id=line_id,
            processing_month=month.label,
            prev_month_true_up=previous.current_month_true_up if previous else Decimal("0"),
            current_month_true_up=Decimal("0"),
            calculated_by=actor_id,
            **values,
        )
        updated = {name: stmt.excluded[name] for name in values}
        if actor_id is not None:
            updated["calculated_by"] = stmt.excluded.calculated_by
        key = [table.c.po_line_id, table.c.processing_month]
        if updated:
            stmt = stmt.on_conflict_do_update(
                index_elements=key, set_={**updated, "updated_at": func.now()},
            )
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=key)
        self._session.execute(stmt)

        return self._session.execute(
            select(PeriodCalculationModel)
            .where(
                PeriodCalculationModel.po_line_id == line_id,
                PeriodCalculationModel.processing_month == month.label,
            )
            .execution_options(populate_existing=True)
        ).scalar_one()

    def _reopen_if_recalled(self, line: PoLineModel, actor_id: UUID | None) -> bool:
        transition = find_transition(PERIOD_LINE_WORKFLOW, line.status, "edit")
        if transition is None:
            return False
        line.status = transition.to_state
        self._auditor.record(
            "line_reopened", "po_line", line.id, actor_id,
            {"from_status": PoLineStatus.RECALLED.value, "to_status": line.status},
        )
        logger.info("line_reopened_after_edit", extra={"po_line_id": str(line.id)})
        return True

    # ------------------------------------------------------------------
    # Views (pure reads)
    # ------------------------------------------------------------------

    def period_lines(self, processing_month: str) -> list[PeriodLineView]:
        """Period-category lines in scope for the month, with computed figures."""
        month = self.resolve_month(processing_month)
        lines = [
            line for line in self._selector.lines(category=PoCategory.PERIOD)
            if period_line_in_scope(line, month)
        ]
        ids = [line.id for line in lines]
        grns = self._selector.grn_by_line(ids)
        calcs = self._selector.calculations(month.label, ids)
        return [
            compute_period_line(line, month, grns.get(line.id, []), calcs.get(line.id))
            for line in lines
        ]

    def activity_lines(
        self,
        processing_month: str,
        materializer: ProvisionCacheService | None = None,
    ) -> list[ActivityLineView]:
        """Activity-category lines with computed figures.

        When ``materializer`` is given, the computed final provisions are
        handed to it for background caching; this call does not wait for
        (or fail because of) that write.
        """
        month = self.resolve_month(processing_month)
        lines = self._selector.lines(category=PoCategory.ACTIVITY)
        views = self._activity_views(lines, month)
        if materializer is not None:
            materializer.schedule(
                month.label,
                {v.po_line_id: v.final_provision for v in views if v.final_provision is not None},
            )
        return views

    def _activity_views(self, lines: list[PoLine], month: ProcessingMonth) -> list[ActivityLineView]:
        ids = [line.id for line in lines]
        grns = self._selector.grn_by_line(ids)
        assignments = self._selector.assignments_by_line(ids)
        calcs = self._selector.calculations(month.label, ids)
        prev_calcs = self._selector.calculations(month.prev_month_label, ids)
        return [
            compute_activity_line(
                line, month,
                grns.get(line.id, []),
                assignments.get(line.id, []),
                calcs.get(line.id),
                prev_calcs.get(line.id),
            )
            for line in lines
        ]

    def line_view(self, line_id: UUID, processing_month: str) -> PeriodLineView | ActivityLineView:
        """The view of a single line, whatever its category."""
        month = self.resolve_month(processing_month)
        line = self._load_line_model(line_id).to_dto()
        return self._view_for(line, month, self._selector.calculations(month.label, [line.id]).get(line.id))

    def _view_for(
        self,
        line: PoLine,
        month: ProcessingMonth,
        calculation: PeriodCalculation | None,
    ) -> PeriodLineView | ActivityLineView:
        grns = self._selector.grn_by_line([line.id]).get(line.id, [])
        if line.category is PoCategory.PERIOD:
            return compute_period_line(line, month, grns, calculation)
        prev = self._selector.calculations(month.prev_month_label, [line.id]).get(line.id)
        assignments = self._selector.assignments_by_line([line.id]).get(line.id, [])
        return compute_activity_line(line, month, grns, assignments, calculation, prev)

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def update_true_up(
        self,
        line_id: UUID,
        processing_month: str,
        field: str,
        value: object,
        actor_id: UUID | None = None,
    ) -> PeriodCalculation:
        """Set the current-month true-up of a line.

        Raises:
            ImmutableTrueUpError: ``field`` names the previous-month true-up.
            InvalidTrueUpFieldError: ``field`` is not a true-up field.
            NegativeTrueUpError: ``value`` is below zero.
            NegativeFinalProvisionError: the edit would make the final
                provision negative.
        """
        month = self.resolve_month(processing_month)
        if field in PREVIOUS_TRUE_UP_FIELDS:
            raise ImmutableTrueUpError(str(line_id), month.label)
        if field not in CURRENT_TRUE_UP_FIELDS:
            raise InvalidTrueUpFieldError(field)

        amount = _to_decimal(value)
        if amount < 0:
            raise NegativeTrueUpError(str(line_id), amount)

        with LogContext.bind(po_line_id=str(line_id), processing_month=month.label):
            line = self._load_line_model(line_id)
            existing = self._calculation_model(line_id, month)
            if existing is not None:
                prev_true_up = existing.prev_month_true_up
            else:
                carried = self._calculation_model(line_id, month.previous())
                prev_true_up = carried.current_month_true_up if carried else Decimal("0")
            proposed = PeriodCalculation(
                po_line_id=line_id,
                processing_month=month.label,
                prev_month_true_up=prev_true_up,
                current_month_true_up=amount,
                remarks=existing.remarks if existing else None,
                activity_final_provision=existing.activity_final_provision if existing else None,
            )
            view = self._view_for(line.to_dto(), month, proposed)
            if view.final_provision is not None and view.final_provision < 0:
                raise NegativeFinalProvisionError(str(line_id), view.final_provision)

            previous_value = existing.current_month_true_up if existing else Decimal("0")
            calc = self.upsert_calculation(line_id, month, actor_id, current_month_true_up=amount)
            self._reopen_if_recalled(line, actor_id)
            self._session.flush()

            self._auditor.record(
                "true_up_updated", "po_line", line_id, actor_id,
                {"processing_month": month.label, "previous": previous_value, "value": amount},
            )
            logger.info(
                "true_up_updated",
                extra={"value": str(amount), "final_provision": str(view.final_provision)},
            )
            return calc.to_dto()

    def update_remarks(
        self,
        line_id: UUID,
        processing_month: str,
        remarks: str,
        actor_id: UUID | None = None,
    ) -> PeriodCalculation:
        month = self.resolve_month(processing_month)
        line = self._load_line_model(line_id)
        calc = self.upsert_calculation(line_id, month, actor_id, remarks=remarks)
        self._reopen_if_recalled(line, actor_id)
        self._session.flush()

        self._auditor.record(
            "remarks_updated", "po_line", line_id, actor_id,
            {"processing_month": month.label},
        )
        logger.info("remarks_updated", extra={"po_line_id": str(line_id)})
        return calc.to_dto()

    def change_category(
        self,
        line_id: UUID,
        category: str,
        start_date: str | None = None,
        end_date: str | None = None,
        actor_id: UUID | None = None,
    ) -> PoLine:
        """Switch a line between Period and Activity.

        New dates, when given, are stored with the change.  Period requires
        both dates (new or existing) to parse.
        """
        try:
            target = PoCategory(category)
        except ValueError:
            raise InvalidCategoryError(category) from None

        line = self._load_line_model(line_id)
        new_start = start_date if start_date is not None else line.start_date
        new_end = end_date if end_date is not None else line.end_date
        if target is PoCategory.PERIOD and (
            parse_flexible_date(new_start) is None or parse_flexible_date(new_end) is None
        ):
            raise MissingContractDatesError(str(line_id))

        previous = line.category
        line.category = target.value
        line.start_date = new_start
        line.end_date = new_end
        self._reopen_if_recalled(line, actor_id)
        self._session.flush()

        self._auditor.record(
            "category_changed", "po_line", line_id, actor_id,
            {"from": previous, "to": target.value},
        )
        logger.info(
            "category_changed",
            extra={"po_line_id": str(line_id), "from_category": previous, "to_category": target.value},
        )
        return line.to_dto()

    def update_dates(
        self,
        line_id: UUID,
        start_date: str | None,
        end_date: str | None,
        actor_id: UUID | None = None,
    ) -> PoLine:
        line = self._load_line_model(line_id)
        if line.category == PoCategory.PERIOD.value and (
            parse_flexible_date(start_date) is None or parse_flexible_date(end_date) is None
        ):
            raise MissingContractDatesError(str(line_id))

        line.start_date = start_date
        line.end_date = end_date
        self._reopen_if_recalled(line, actor_id)
        self._session.flush()

        self._auditor.record(
            "dates_updated", "po_line", line_id, actor_id,
            {"start_date": start_date, "end_date": end_date},
        )
        logger.info("dates_updated", extra={"po_line_id": str(line_id)})
        return line.to_dto()
