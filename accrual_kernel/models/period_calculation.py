"""
Module: accrual_kernel.models.period_calculation
Responsibility: ORM persistence for the user adjustments of one PO line in
    one processing month (true-ups, remarks) and the cached activity final
    provision used as next month's "previous month" figure.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - UNIQUE(po_line_id, processing_month): edits and cache writes upsert
      one row per line per month.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from accrual_kernel.db.base import TrackedBase, UUIDString
from accrual_kernel.domain.accrual import PeriodCalculation


class PeriodCalculationModel(TrackedBase):
    __tablename__ = "period_calculations"

    __table_args__ = (
        UniqueConstraint(
            "po_line_id", "processing_month",
            name="uq_period_calculations_line_month",
        ),
    )

    po_line_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("po_lines.id", ondelete="CASCADE"), nullable=False,
    )
    processing_month: Mapped[str] = mapped_column(String(20), nullable=False)
    prev_month_true_up: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    current_month_true_up: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    activity_final_provision: Mapped[Decimal | None] = mapped_column(nullable=True)
    calculated_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return f"<PeriodCalculation {self.po_line_id} {self.processing_month}>"

    def to_dto(self) -> PeriodCalculation:
        return PeriodCalculation(
            po_line_id=self.po_line_id,
            processing_month=self.processing_month,
            prev_month_true_up=self.prev_month_true_up,
            current_month_true_up=self.current_month_true_up,
            remarks=self.remarks,
            activity_final_provision=self.activity_final_provision,
        )
