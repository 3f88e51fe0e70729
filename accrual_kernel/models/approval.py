"""
Module: accrual_kernel.models.approval
Responsibility: ORM persistence for approval submissions of PO lines.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - status limited to Pending/Approved/Rejected/Recalled (CHECK).
    - At most one Pending submission per (po_line_id, processing_month):
      partial unique index on PostgreSQL and SQLite, checked by the service
      first so a re-submit is a no-op rather than an IntegrityError.

Failure modes:
    - IntegrityError if two concurrent requests race past the service check;
      the losing transaction rolls back and nothing is duplicated.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from accrual_kernel.db.base import Base, UUIDString
from accrual_kernel.domain.accrual import ApprovalSubmission, SubmissionStatus


class ApprovalSubmissionModel(Base):
    __tablename__ = "approval_submissions"

    __table_args__ = (
        CheckConstraint(
            "status IN ('Pending', 'Approved', 'Rejected', 'Recalled')",
            name="ck_approval_submissions_valid_status",
        ),
        Index(
            "uq_approval_submissions_pending_line_month",
            "po_line_id", "processing_month",
            unique=True,
            postgresql_where=text("status = 'Pending'"),
            sqlite_where=text("status = 'Pending'"),
        ),
        Index("ix_approval_submissions_status", "status", "submitted_at"),
    )

    po_line_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("po_lines.id", ondelete="CASCADE"), nullable=False,
    )
    submitted_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    approver_ids: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SubmissionStatus.PENDING.value,
    )
    processing_month: Mapped[str] = mapped_column(String(20), nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(nullable=False)
    nudge_count: Mapped[int] = mapped_column(nullable=False, default=0)
    last_nudge_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<ApprovalSubmission {self.id} line={self.po_line_id} "
            f"{self.processing_month} status={self.status}>"
        )

    def to_dto(self) -> ApprovalSubmission:
        return ApprovalSubmission(
            id=self.id,
            po_line_id=self.po_line_id,
            submitted_by=self.submitted_by,
            approver_ids=tuple(UUID(str(a)) for a in self.approver_ids or ()),
            status=SubmissionStatus(self.status),
            processing_month=self.processing_month,
            submitted_at=self.submitted_at,
            nudge_count=self.nudge_count,
            last_nudge_at=self.last_nudge_at,
            approved_by=self.approved_by,
            decided_at=self.decided_at,
            rejection_reason=self.rejection_reason,
        )
