"""
Module: accrual_kernel.models.po_line
Responsibility: ORM persistence for PO lines, their GRN transactions and
    the upload log of both files.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - One PoLine per business key (UNIQUE unique_id); ingestion upserts on it.
    - category and status are limited to their enum values by CHECK
      constraints.
    - GRN rows are keyed for replacement by grn_doc: a re-upload deletes
      rows with the same document number before inserting.

Failure modes:
    - IntegrityError on a duplicate business key outside the upsert path.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from accrual_kernel.db.base import Base, TrackedBase, UUIDString
from accrual_kernel.domain.accrual import (
    GrnTransaction,
    PoCategory,
    PoLine,
    PoLineStatus,
)


class PoLineModel(TrackedBase):
    """One purchase-order line item."""

    __tablename__ = "po_lines"

    __table_args__ = (
        CheckConstraint(
            "category IN ('Period', 'Activity')",
            name="ck_po_lines_valid_category",
        ),
        CheckConstraint(
            "status IN ('Draft', 'Submitted', 'Approved', 'Rejected', "
            "'Recalled', 'Returned')",
            name="ck_po_lines_valid_status",
        ),
        Index("ix_po_lines_po_number_item", "po_number", "po_line_item"),
        Index("ix_po_lines_category_status", "category", "status"),
    )

    unique_id: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    po_number: Mapped[str] = mapped_column(String(100), nullable=False)
    po_line_item: Mapped[str] = mapped_column(String(50), nullable=False)
    vendor_name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    item_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    net_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    gl_account: Mapped[str | None] = mapped_column(String(50), nullable=True)
    cost_center: Mapped[str | None] = mapped_column(String(50), nullable=True)
    profit_center: Mapped[str | None] = mapped_column(String(50), nullable=True)
    plant: Mapped[str | None] = mapped_column(String(50), nullable=True)
    wbs_element: Mapped[str | None] = mapped_column(String(100), nullable=True)
    project_name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    requester: Mapped[str | None] = mapped_column(String(200), nullable=True)
    start_date: Mapped[str | None] = mapped_column(String(40), nullable=True)
    end_date: Mapped[str | None] = mapped_column(String(40), nullable=True)
    category: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PoCategory.ACTIVITY.value,
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PoLineStatus.DRAFT.value,
    )
    upload_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("po_uploads.id", ondelete="SET NULL"), nullable=True,
    )

    def __repr__(self) -> str:
        return f"<PoLine {self.unique_id} {self.category}/{self.status}>"

    def to_dto(self) -> PoLine:
        return PoLine(
            id=self.id,
            unique_id=self.unique_id,
            po_number=self.po_number,
            po_line_item=self.po_line_item,
            net_amount=self.net_amount,
            category=PoCategory(self.category),
            status=PoLineStatus(self.status),
            vendor_name=self.vendor_name,
            item_description=self.item_description,
            gl_account=self.gl_account,
            cost_center=self.cost_center,
            profit_center=self.profit_center,
            plant=self.plant,
            wbs_element=self.wbs_element,
            project_name=self.project_name,
            requester=self.requester,
            start_date=self.start_date,
            end_date=self.end_date,
        )


class GrnTransactionModel(Base):
    """One cumulative GRN snapshot.  Dates are kept as uploaded."""

    __tablename__ = "grn_transactions"

    __table_args__ = (
        Index("ix_grn_transactions_line", "po_line_id"),
        Index("ix_grn_transactions_doc", "grn_doc"),
    )

    po_line_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("po_lines.id", ondelete="CASCADE"), nullable=False,
    )
    grn_date: Mapped[str | None] = mapped_column(String(40), nullable=True)
    grn_doc: Mapped[str | None] = mapped_column(String(100), nullable=True)
    grn_line: Mapped[str | None] = mapped_column(String(50), nullable=True)
    grn_value: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    upload_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("grn_uploads.id", ondelete="SET NULL"), nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    def to_dto(self, grn_date: date | None) -> GrnTransaction:
        """Convert to the domain record; the caller supplies the parsed date."""
        return GrnTransaction(
            po_line_id=self.po_line_id,
            grn_date=grn_date,
            grn_doc=self.grn_doc,
            grn_value=self.grn_value,
        )


class PoUploadModel(Base):
    """Upload log entry for a PO-line file."""

    __tablename__ = "po_uploads"

    filename: Mapped[str] = mapped_column(String(300), nullable=False)
    uploaded_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    processing_month: Mapped[str | None] = mapped_column(String(20), nullable=True)
    total_rows: Mapped[int] = mapped_column(nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="Processing")
    uploaded_at: Mapped[datetime] = mapped_column(nullable=False)


class GrnUploadModel(Base):
    """Upload log entry for a GRN file, with its match counts."""

    __tablename__ = "grn_uploads"

    filename: Mapped[str] = mapped_column(String(300), nullable=False)
    uploaded_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    total_rows: Mapped[int] = mapped_column(nullable=False, default=0)
    matched_rows: Mapped[int] = mapped_column(nullable=False, default=0)
    unmatched_rows: Mapped[int] = mapped_column(nullable=False, default=0)
    uploaded_at: Mapped[datetime] = mapped_column(nullable=False)
