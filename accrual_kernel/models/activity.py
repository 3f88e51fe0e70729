"""
Module: accrual_kernel.models.activity
Responsibility: ORM persistence for activity-line assignments and the
    business user's response to each.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - status limited to the assignment lifecycle values (CHECK).
    - At most one response per assignment (UNIQUE assignment_id); the
      response is deleted together with its assignment.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from accrual_kernel.db.base import Base, UUIDString
from accrual_kernel.domain.accrual import (
    ActivityAssignment,
    AssignmentStatus,
    BusinessResponse,
)


class ActivityAssignmentModel(Base):
    """One business user's share of an activity-based PO line."""

    __tablename__ = "activity_assignments"

    __table_args__ = (
        CheckConstraint(
            "status IN ('Assigned', 'Responded', 'Submitted', 'Approved', "
            "'Returned', 'Recalled')",
            name="ck_activity_assignments_valid_status",
        ),
        Index("ix_activity_assignments_line", "po_line_id"),
        Index("ix_activity_assignments_user_status", "assigned_to", "status"),
    )

    po_line_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("po_lines.id", ondelete="CASCADE"), nullable=False,
    )
    assigned_to: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    assigned_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    assigned_date: Mapped[datetime] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AssignmentStatus.ASSIGNED.value,
    )
    is_primary: Mapped[bool] = mapped_column(nullable=False, default=False)
    nudge_count: Mapped[int] = mapped_column(nullable=False, default=0)
    last_nudge_at: Mapped[datetime | None] = mapped_column(nullable=True)
    return_comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    returned_at: Mapped[datetime | None] = mapped_column(nullable=True)

    response: Mapped[BusinessResponseModel | None] = relationship(
        "BusinessResponseModel",
        back_populates="assignment",
        uselist=False,
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<ActivityAssignment {self.id} line={self.po_line_id} {self.status}>"

    def to_dto(self) -> ActivityAssignment:
        return ActivityAssignment(
            id=self.id,
            po_line_id=self.po_line_id,
            assigned_to=self.assigned_to,
            assigned_by=self.assigned_by,
            status=AssignmentStatus(self.status),
            is_primary=self.is_primary,
            assigned_date=self.assigned_date,
            nudge_count=self.nudge_count,
            last_nudge_at=self.last_nudge_at,
            return_comments=self.return_comments,
            returned_at=self.returned_at,
            response=self.response.to_dto() if self.response is not None else None,
        )


class BusinessResponseModel(Base):
    """The business user's completion report for one assignment."""

    __tablename__ = "business_responses"

    __table_args__ = (
        CheckConstraint(
            "provision_percent IS NULL OR "
            "(provision_percent >= 0 AND provision_percent <= 100)",
            name="ck_business_responses_percent_range",
        ),
    )

    assignment_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("activity_assignments.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    completion_status: Mapped[str | None] = mapped_column(String(40), nullable=True)
    provision_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    provision_percent: Mapped[Decimal | None] = mapped_column(nullable=True)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    response_date: Mapped[datetime] = mapped_column(nullable=False)

    assignment: Mapped[ActivityAssignmentModel] = relationship(
        ActivityAssignmentModel, back_populates="response",
    )

    def to_dto(self) -> BusinessResponse:
        return BusinessResponse(
            assignment_id=self.assignment_id,
            completion_status=self.completion_status,
            provision_amount=self.provision_amount,
            provision_percent=self.provision_percent,
            comments=self.comments,
            response_date=self.response_date,
        )
