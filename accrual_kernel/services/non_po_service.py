"""
accrual_kernel.services.non_po_service -- Ad-hoc (non-PO) accrual forms.

Responsibility:
    Creates non-PO accrual forms, assigns them to business users, stores
    their submitted contents and carries each assignment through
    NON_PO_ASSIGNMENT_WORKFLOW up to the reviewer's decision.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/ and the pure
    engines.

Invariants enforced:
    - A submitted provision amount is a finite number >= 0.
    - Submit-for-approval requires an existing form submission
      (SUBMISSION_EXISTS_GUARD).
    - A return needs a non-blank comment.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from accrual_engines.workflow import require_transition
from accrual_kernel.domain.accrual import (
    NonPoAssignment,
    NonPoAssignmentStatus,
    NonPoForm,
    NonPoSubmission,
    NonPoSubmissionStatus,
)
from accrual_kernel.domain.clock import Clock, SystemClock
from accrual_kernel.domain.workflow import NON_PO_ASSIGNMENT_WORKFLOW
from accrual_kernel.exceptions import (
    EmptySelectionError,
    InvalidAmountError,
    InvalidTransitionError,
    NegativeProvisionAmountError,
    NonPoAssignmentNotFoundError,
    NonPoFormNotFoundError,
    NonPoSubmissionMissingError,
    NonPoSubmissionNotFoundError,
    ReturnCommentRequiredError,
)
from accrual_kernel.logging_config import get_logger
from accrual_kernel.models.non_po import (
    NonPoAssignmentModel,
    NonPoFormModel,
    NonPoSubmissionModel,
)
from accrual_kernel.services.audit_service import AuditService

logger = get_logger("services.non_po")

_AMOUNT_KEYS = ("provision_amount", "provisionAmount")


def _provision_amount(standard_fields: dict[str, Any]) -> Decimal | None:
    for key in _AMOUNT_KEYS:
        raw = standard_fields.get(key)
        if raw is None or raw == "":
            continue
        try:
            amount = Decimal(str(raw).replace(",", "").strip())
        except InvalidOperation:
            raise InvalidAmountError(raw) from None
        if not amount.is_finite():
            raise InvalidAmountError(raw)
        return amount
    return None


class NonPoService:
    """Lifecycle of non-PO accrual forms."""

    def __init__(
        self,
        session: Session,
        auditor: AuditService | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditService(session, self._clock)

    def _load_assignment(self, assignment_id: UUID) -> NonPoAssignmentModel:
        model = self._session.get(NonPoAssignmentModel, assignment_id)
        if model is None:
            raise NonPoAssignmentNotFoundError(str(assignment_id))
        return model

    def _latest_submission(self, assignment_id: UUID) -> NonPoSubmissionModel | None:
        return self._session.scalars(
            select(NonPoSubmissionModel)
            .where(NonPoSubmissionModel.assignment_id == assignment_id)
            .order_by(NonPoSubmissionModel.submitted_at.desc(), NonPoSubmissionModel.id)
            .limit(1)
        ).first()

    # ------------------------------------------------------------------
    # Forms
    # ------------------------------------------------------------------

    def create_form(
        self,
        form_name: str,
        assignee_ids: Sequence[UUID],
        created_by: UUID,
        description: str | None = None,
        due_date: date | None = None,
        priority: str = "Medium",
        fields_config: dict[str, Any] | None = None,
    ) -> tuple[NonPoForm, list[NonPoAssignment]]:
        """Create a form and one assignment per distinct assignee."""
        if not assignee_ids:
            raise EmptySelectionError("assignees")

        form = NonPoFormModel(
            form_name=form_name,
            description=description,
            due_date=due_date,
            priority=priority,
            fields_config=dict(fields_config or {}),
            created_by=created_by,
        )
        self._session.add(form)
        self._session.flush()

        now = self._clock.now()
        assignments: list[NonPoAssignmentModel] = []
        seen: set[UUID] = set()
        for user_id in assignee_ids:
            if user_id in seen:
                continue
            seen.add(user_id)
            model = NonPoAssignmentModel(
                form_id=form.id,
                assigned_to=user_id,
                assigned_by=created_by,
                assigned_at=now,
                status=NonPoAssignmentStatus.ASSIGNED.value,
            )
            self._session.add(model)
            assignments.append(model)
        self._session.flush()

        self._auditor.record(
            "non_po_form_created", "non_po_form", form.id, created_by,
            {"form_name": form_name, "assignees": sorted(str(u) for u in seen)},
        )
        logger.info(
            "non_po_form_created",
            extra={"form_id": str(form.id), "assignees": len(assignments)},
        )
        return form.to_dto(), [a.to_dto() for a in assignments]

    def get_form(self, form_id: UUID) -> NonPoForm:
        model = self._session.get(NonPoFormModel, form_id)
        if model is None:
            raise NonPoFormNotFoundError(str(form_id))
        return model.to_dto()

    # ------------------------------------------------------------------
    # Assignee actions
    # ------------------------------------------------------------------

    def submit_form(
        self,
        assignment_id: UUID,
        submitted_by: UUID,
        standard_fields: dict[str, Any],
        custom_fields: dict[str, Any] | None = None,
    ) -> NonPoSubmission:
        """Store the filled-in form; the assignment becomes Responded."""
        amount = _provision_amount(standard_fields)
        if amount is not None and amount < 0:
            raise NegativeProvisionAmountError(amount)

        assignment = self._load_assignment(assignment_id)
        transition = require_transition(
            NON_PO_ASSIGNMENT_WORKFLOW, assignment.id, assignment.status, "respond",
        )

        submission = NonPoSubmissionModel(
            assignment_id=assignment.id,
            form_id=assignment.form_id,
            submitted_by=submitted_by,
            standard_fields=dict(standard_fields),
            custom_fields=dict(custom_fields or {}),
            status=NonPoSubmissionStatus.SUBMITTED.value,
            submitted_at=self._clock.now(),
        )
        self._session.add(submission)
        assignment.status = transition.to_state
        self._session.flush()

        self._auditor.record(
            "non_po_form_submitted", "non_po_assignment", assignment.id, submitted_by,
            {"submission_id": submission.id, "provision_amount": amount},
        )
        logger.info(
            "non_po_form_submitted",
            extra={"assignment_id": str(assignment.id), "submission_id": str(submission.id)},
        )
        return submission.to_dto()

    def submit_for_approval(self, assignment_id: UUID, actor_id: UUID | None = None) -> NonPoAssignment:
        assignment = self._load_assignment(assignment_id)
        # submission_exists guard, checked ahead of the status lookup
        if self._latest_submission(assignment.id) is None:
            raise NonPoSubmissionMissingError(str(assignment.id))
        transition = require_transition(
            NON_PO_ASSIGNMENT_WORKFLOW, assignment.id, assignment.status, "submit",
        )

        assignment.status = transition.to_state
        self._session.flush()

        self._auditor.record(
            "non_po_submitted_for_approval", "non_po_assignment", assignment.id, actor_id,
        )
        logger.info("non_po_submitted_for_approval", extra={"assignment_id": str(assignment.id)})
        return assignment.to_dto()

    def return_form(
        self,
        assignment_id: UUID,
        comments: str | None,
        actor_id: UUID | None = None,
    ) -> NonPoAssignment:
        text = (comments or "").strip()
        if not text:
            raise ReturnCommentRequiredError(str(assignment_id))

        assignment = self._load_assignment(assignment_id)
        transition = require_transition(
            NON_PO_ASSIGNMENT_WORKFLOW, assignment.id, assignment.status, "return",
        )
        assignment.status = transition.to_state
        assignment.return_comments = text
        assignment.returned_at = self._clock.now()
        self._session.flush()

        self._auditor.record(
            "non_po_form_returned", "non_po_assignment", assignment.id, actor_id,
            {"comments": text},
        )
        logger.info("non_po_form_returned", extra={"assignment_id": str(assignment.id)})
        return assignment.to_dto()

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def review_submission(
        self,
        submission_id: UUID,
        status: NonPoSubmissionStatus,
        reviewer_id: UUID,
    ) -> NonPoSubmission:
        """Approve or reject a form submission and its assignment."""
        submission = self._session.get(NonPoSubmissionModel, submission_id)
        if submission is None:
            raise NonPoSubmissionNotFoundError(str(submission_id))
        if status is NonPoSubmissionStatus.SUBMITTED or submission.status != NonPoSubmissionStatus.SUBMITTED.value:
            raise InvalidTransitionError(
                "non_po_submission", str(submission.id), submission.status, status.value,
            )

        assignment = self._load_assignment(submission.assignment_id)
        action = "approve" if status is NonPoSubmissionStatus.APPROVED else "reject"
        transition = require_transition(
            NON_PO_ASSIGNMENT_WORKFLOW, assignment.id, assignment.status, action,
        )

        submission.status = status.value
        submission.reviewed_by = reviewer_id
        submission.reviewed_at = self._clock.now()
        assignment.status = transition.to_state
        self._session.flush()

        self._auditor.record(
            f"non_po_submission_{status.value.lower()}", "non_po_submission", submission.id,
            reviewer_id, {"assignment_id": assignment.id},
        )
        logger.info(
            "non_po_submission_reviewed",
            extra={"submission_id": str(submission.id), "status": status.value},
        )
        return submission.to_dto()

    def nudge(self, assignment_id: UUID, actor_id: UUID | None = None) -> NonPoAssignment:
        assignment = self._load_assignment(assignment_id)
        assignment.nudge_count = (assignment.nudge_count or 0) + 1
        assignment.last_nudge_at = self._clock.now()
        self._session.flush()

        self._auditor.record(
            "non_po_assignment_nudged", "non_po_assignment", assignment.id, actor_id,
            {"nudge_count": assignment.nudge_count},
        )
        return assignment.to_dto()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def forms_for_user(self, user_id: UUID) -> list[tuple[NonPoForm, NonPoAssignment]]:
        rows = self._session.execute(
            select(NonPoFormModel, NonPoAssignmentModel)
            .join(NonPoAssignmentModel, NonPoAssignmentModel.form_id == NonPoFormModel.id)
            .where(NonPoAssignmentModel.assigned_to == user_id)
            .order_by(NonPoAssignmentModel.assigned_at.desc(), NonPoAssignmentModel.id)
        ).all()
        return [(form.to_dto(), assignment.to_dto()) for form, assignment in rows]

    def submissions_for_assignment(self, assignment_id: UUID) -> list[NonPoSubmission]:
        stmt = (
            select(NonPoSubmissionModel)
            .where(NonPoSubmissionModel.assignment_id == assignment_id)
            .order_by(NonPoSubmissionModel.submitted_at, NonPoSubmissionModel.id)
        )
        return [m.to_dto() for m in self._session.scalars(stmt)]
