"""
Module: accrual_kernel.models.non_po
Responsibility: ORM persistence for ad-hoc (non-PO) accrual forms, their
    assignments to business users, and the submitted form contents.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - Assignment and submission statuses limited by CHECK constraints.
    - A submission always references the assignment it answers.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, Date, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from accrual_kernel.db.base import Base, TrackedBase, UUIDString
from accrual_kernel.domain.accrual import (
    NonPoAssignment,
    NonPoAssignmentStatus,
    NonPoForm,
    NonPoSubmission,
    NonPoSubmissionStatus,
)


class NonPoFormModel(TrackedBase):
    __tablename__ = "non_po_forms"

    form_name: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default="Medium")
    fields_config: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    def to_dto(self) -> NonPoForm:
        return NonPoForm(
            id=self.id,
            form_name=self.form_name,
            created_by=self.created_by,
            description=self.description,
            due_date=self.due_date,
            priority=self.priority,
            fields_config=dict(self.fields_config or {}),
        )


class NonPoAssignmentModel(Base):
    __tablename__ = "non_po_assignments"

    __table_args__ = (
        CheckConstraint(
            "status IN ('Assigned', 'Responded', 'Submitted', 'Returned', "
            "'Approved', 'Rejected')",
            name="ck_non_po_assignments_valid_status",
        ),
        Index("ix_non_po_assignments_user", "assigned_to", "status"),
    )

    form_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("non_po_forms.id", ondelete="CASCADE"), nullable=False,
    )
    assigned_to: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    assigned_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    assigned_at: Mapped[datetime] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=NonPoAssignmentStatus.ASSIGNED.value,
    )
    nudge_count: Mapped[int] = mapped_column(nullable=False, default=0)
    last_nudge_at: Mapped[datetime | None] = mapped_column(nullable=True)
    return_comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    returned_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self) -> NonPoAssignment:
        return NonPoAssignment(
            id=self.id,
            form_id=self.form_id,
            assigned_to=self.assigned_to,
            assigned_by=self.assigned_by,
            status=NonPoAssignmentStatus(self.status),
            assigned_at=self.assigned_at,
            nudge_count=self.nudge_count,
            last_nudge_at=self.last_nudge_at,
            return_comments=self.return_comments,
            returned_at=self.returned_at,
        )


class NonPoSubmissionModel(Base):
    __tablename__ = "non_po_submissions"

    __table_args__ = (
        CheckConstraint(
            "status IN ('Submitted', 'Approved', 'Rejected')",
            name="ck_non_po_submissions_valid_status",
        ),
        Index("ix_non_po_submissions_assignment", "assignment_id"),
    )

    assignment_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("non_po_assignments.id", ondelete="CASCADE"), nullable=False,
    )
    form_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("non_po_forms.id", ondelete="CASCADE"), nullable=False,
    )
    submitted_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    standard_fields: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    custom_fields: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=NonPoSubmissionStatus.SUBMITTED.value,
    )
    submitted_at: Mapped[datetime] = mapped_column(nullable=False)
    reviewed_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self) -> NonPoSubmission:
        return NonPoSubmission(
            id=self.id,
            assignment_id=self.assignment_id,
            form_id=self.form_id,
            submitted_by=self.submitted_by,
            status=NonPoSubmissionStatus(self.status),
            submitted_at=self.submitted_at,
            standard_fields=dict(self.standard_fields or {}),
            custom_fields=dict(self.custom_fields or {}),
            reviewed_by=self.reviewed_by,
            reviewed_at=self.reviewed_at,
        )
