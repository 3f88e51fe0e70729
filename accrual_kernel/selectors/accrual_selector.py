"""
Module: accrual_kernel.selectors.accrual_selector
Responsibility: Read paths feeding the provision calculator and the rule
    matcher: PO lines, GRN history per line, persisted adjustments per
    month, and activity assignments with their responses.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - GRN dates are parsed here with the calendar engine; unparseable dates
      become None and are never chosen as a latest snapshot.
    - Results are ordered deterministically (PO number, line item).
"""

from __future__ import annotations

from collections import defaultdict
from typing import Iterable
from uuid import UUID

from sqlalchemy import select

from accrual_engines.calendar import parse_flexible_date
from accrual_kernel.domain.accrual import (
    ActivityAssignment,
    ApprovalSubmission,
    GrnTransaction,
    PeriodCalculation,
    PoCategory,
    PoLine,
    SubmissionStatus,
)
from accrual_kernel.models.activity import ActivityAssignmentModel
from accrual_kernel.models.approval import ApprovalSubmissionModel
from accrual_kernel.models.period_calculation import PeriodCalculationModel
from accrual_kernel.models.po_line import GrnTransactionModel, PoLineModel
from accrual_kernel.selectors.base import BaseSelector


class AccrualSelector(BaseSelector):
    """Read-only queries over PO lines and everything hanging off them."""

    def lines(
        self,
        category: PoCategory | None = None,
        line_ids: Iterable[UUID] | None = None,
    ) -> list[PoLine]:
        stmt = select(PoLineModel).order_by(PoLineModel.po_number, PoLineModel.po_line_item)
        if category is not None:
            stmt = stmt.where(PoLineModel.category == category.value)
        if line_ids is not None:
            stmt = stmt.where(PoLineModel.id.in_(list(line_ids)))
        return [m.to_dto() for m in self.session.scalars(stmt)]

    def line(self, line_id: UUID) -> PoLine | None:
        model = self.session.get(PoLineModel, line_id)
        return model.to_dto() if model is not None else None

    def grn_by_line(
        self, line_ids: Iterable[UUID] | None = None,
    ) -> dict[UUID, list[GrnTransaction]]:
        stmt = select(GrnTransactionModel).order_by(
            GrnTransactionModel.po_line_id, GrnTransactionModel.grn_doc,
        )
        if line_ids is not None:
            stmt = stmt.where(GrnTransactionModel.po_line_id.in_(list(line_ids)))

        grouped: dict[UUID, list[GrnTransaction]] = defaultdict(list)
        for model in self.session.scalars(stmt):
            grouped[model.po_line_id].append(model.to_dto(parse_flexible_date(model.grn_date)))
        return grouped

    def calculations(
        self,
        processing_month: str,
        line_ids: Iterable[UUID] | None = None,
    ) -> dict[UUID, PeriodCalculation]:
        stmt = select(PeriodCalculationModel).where(
            PeriodCalculationModel.processing_month == processing_month,
        )
        if line_ids is not None:
            stmt = stmt.where(PeriodCalculationModel.po_line_id.in_(list(line_ids)))
        return {m.po_line_id: m.to_dto() for m in self.session.scalars(stmt)}

    def assignments_by_line(
        self, line_ids: Iterable[UUID] | None = None,
    ) -> dict[UUID, list[ActivityAssignment]]:
        stmt = select(ActivityAssignmentModel).order_by(
            ActivityAssignmentModel.assigned_date, ActivityAssignmentModel.id,
        )
        if line_ids is not None:
            stmt = stmt.where(ActivityAssignmentModel.po_line_id.in_(list(line_ids)))

        grouped: dict[UUID, list[ActivityAssignment]] = defaultdict(list)
        for model in self.session.scalars(stmt):
            grouped[model.po_line_id].append(model.to_dto())
        return grouped

    def submissions(
        self,
        status: SubmissionStatus | None = None,
        approver_id: UUID | None = None,
        submitted_by: UUID | None = None,
    ) -> list[ApprovalSubmission]:
        stmt = select(ApprovalSubmissionModel).order_by(
            ApprovalSubmissionModel.submitted_at.desc(), ApprovalSubmissionModel.id,
        )
        if status is not None:
            stmt = stmt.where(ApprovalSubmissionModel.status == status.value)
        if submitted_by is not None:
            stmt = stmt.where(ApprovalSubmissionModel.submitted_by == submitted_by)
        rows = [m.to_dto() for m in self.session.scalars(stmt)]
        if approver_id is not None:
            # approver ids live in a JSON list; filter portably in Python
            rows = [r for r in rows if approver_id in r.approver_ids]
        return rows

    def pending_submission(
        self, line_id: UUID, processing_month: str,
    ) -> ApprovalSubmission | None:
        model = self.session.execute(
            select(ApprovalSubmissionModel).where(
                ApprovalSubmissionModel.po_line_id == line_id,
                ApprovalSubmissionModel.processing_month == processing_month,
                ApprovalSubmissionModel.status == SubmissionStatus.PENDING.value,
            )
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None
