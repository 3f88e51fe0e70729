"""
accrual_kernel.services.activity_service -- Activity-line assignments.

Responsibility:
    Hands activity-based PO lines to business users, records their
    completion responses, and moves assignments (and the line) through
    ASSIGNMENT_WORKFLOW: respond, submit for approval, approve, return,
    recall and reset.

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/, db/
    and the pure engines.

Invariants enforced:
    - Re-assigning a line keeps every assignment that already carries work
      (Responded, Submitted, Approved) and replaces only the rest.
    - A line has exactly one primary assignment while any assignment
      survives; recalling the primary promotes the earliest remaining one.
    - Recalling one assignment never touches its siblings.  The line is
      Recalled only when no Assigned, Responded or Approved assignment is
      left.
    - Approving or returning an assignment moves the line only when it is
      the primary, or the last active assignment left.
    - A Pending submission is recalled once no Submitted assignment of its
      line remains (after a recall or a reset).
    - Provision percent is within [0, 100]; provision amount is >= 0.
    - A return needs a non-blank comment.

Failure modes:
    - AssignmentNotFoundError / PoLineNotFoundError on unknown ids.
    - InvalidTransitionError on an illegal assignment status change.
    - EmptySelectionError, ApproverRequiredError, ReturnCommentRequiredError,
      InvalidProvisionPercentError, NegativeProvisionAmountError on bad input.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from accrual_engines.calendar import resolve_processing_month
from accrual_engines.workflow import is_fully_recalled, require_transition
from accrual_kernel.domain.accrual import (
    ACTIVE_ASSIGNMENT_STATUSES,
    ActivityAssignment,
    ApprovalSubmission,
    AssignmentStatus,
    BusinessResponse,
    PoLineStatus,
    SubmissionStatus,
)
from accrual_kernel.domain.clock import Clock, SystemClock
from accrual_kernel.domain.values import DEFAULT_MONTH_POLICY, MonthFallbackPolicy
from accrual_kernel.domain.workflow import ASSIGNMENT_WORKFLOW, SUBMISSION_WORKFLOW
from accrual_kernel.exceptions import (
    ApproverRequiredError,
    AssignmentNotFoundError,
    EmptySelectionError,
    InvalidAmountError,
    InvalidProvisionPercentError,
    NegativeProvisionAmountError,
    PoLineNotFoundError,
    ReturnCommentRequiredError,
)
from accrual_kernel.logging_config import LogContext, get_logger
from accrual_kernel.models.activity import ActivityAssignmentModel, BusinessResponseModel
from accrual_kernel.models.approval import ApprovalSubmissionModel
from accrual_kernel.models.po_line import PoLineModel
from accrual_kernel.selectors.accrual_selector import AccrualSelector
from accrual_kernel.services.audit_service import AuditService

logger = get_logger("services.activity")

# Assignments a new assign call may replace; anything else carries work.
_REPLACEABLE_STATUSES = frozenset({
    AssignmentStatus.ASSIGNED.value,
    AssignmentStatus.RECALLED.value,
    AssignmentStatus.RETURNED.value,
})


@dataclass(frozen=True)
class RecallResult:
    po_line_id: UUID
    fully_recalled: bool
    remaining_assignments: int
    promoted_assignment_id: UUID | None = None


@dataclass(frozen=True)
class ActivitySubmitResult:
    """Outcome of sending an assignment for approval.

    ``created`` is False when the line already had a pending submission for
    the month; the existing one is returned.
    """

    assignment: ActivityAssignment
    submission: ApprovalSubmission
    created: bool


class ActivityService:
    """Assignment lifecycle for activity-based PO lines."""

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

    def _load_assignment(self, assignment_id: UUID) -> ActivityAssignmentModel:
        model = self._session.get(ActivityAssignmentModel, assignment_id)
        if model is None:
            raise AssignmentNotFoundError(str(assignment_id))
        return model

    def _load_line(self, line_id: UUID) -> PoLineModel:
        model = self._session.get(PoLineModel, line_id)
        if model is None:
            raise PoLineNotFoundError(str(line_id))
        return model

    def _line_assignments(self, line_id: UUID) -> list[ActivityAssignmentModel]:
        return list(self._session.scalars(
            select(ActivityAssignmentModel)
            .where(ActivityAssignmentModel.po_line_id == line_id)
            .order_by(ActivityAssignmentModel.assigned_date, ActivityAssignmentModel.id)
        ))

    def _line_follows(self, assignment: ActivityAssignmentModel) -> bool:
        """True if ``assignment`` decides the line status.

        That is the primary assignment, or the last active one standing.
        """
        if assignment.is_primary:
            return True
        return not any(
            AssignmentStatus(a.status) in ACTIVE_ASSIGNMENT_STATUSES
            for a in self._line_assignments(assignment.po_line_id)
            if a.id != assignment.id
        )

    def _recall_orphaned_submissions(self, line_id: UUID, actor_id: UUID | None) -> int:
        """Recall Pending submissions of a line that no Submitted assignment backs."""
        if any(
            a.status == AssignmentStatus.SUBMITTED.value
            for a in self._line_assignments(line_id)
        ):
            return 0
        pending = list(self._session.scalars(
            select(ApprovalSubmissionModel).where(
                ApprovalSubmissionModel.po_line_id == line_id,
                ApprovalSubmissionModel.status == SubmissionStatus.PENDING.value,
            )
        ))
        for submission in pending:
            transition = require_transition(
                SUBMISSION_WORKFLOW, submission.id, submission.status, "recall",
            )
            submission.status = transition.to_state
            self._auditor.record(
                "submission_recalled", "approval_submission", submission.id, actor_id,
                {"po_line_id": line_id, "reason": "no submitted assignment left"},
            )
            logger.info(
                "orphaned_submission_recalled",
                extra={"submission_id": str(submission.id),
                       "processing_month": submission.processing_month},
            )
        return len(pending)

    # ------------------------------------------------------------------
    # Assign / recall
    # ------------------------------------------------------------------

    def assign(
        self,
        line_id: UUID,
        user_ids: Sequence[UUID],
        assigned_by: UUID | None = None,
    ) -> list[ActivityAssignment]:
        """Assign a line to one or more business users.

        Users who already hold a working assignment keep it; stale
        assignments (Assigned, Recalled, Returned) are replaced.  Returns
        the assignments created by this call.
        """
        if not user_ids:
            raise EmptySelectionError("assignees")
        line = self._load_line(line_id)

        existing = self._line_assignments(line_id)
        survivors = [a for a in existing if a.status not in _REPLACEABLE_STATUSES]
        for stale in existing:
            if stale.status in _REPLACEABLE_STATUSES:
                self._session.delete(stale)
        self._session.flush()

        kept_users = {a.assigned_to for a in survivors}
        new_users: list[UUID] = []
        for user_id in user_ids:
            if user_id not in kept_users and user_id not in new_users:
                new_users.append(user_id)

        needs_primary = not any(a.is_primary for a in survivors)
        now = self._clock.now()
        created: list[ActivityAssignmentModel] = []
        for user_id in new_users:
            model = ActivityAssignmentModel(
                po_line_id=line_id,
                assigned_to=user_id,
                assigned_by=assigned_by,
                assigned_date=now,
                status=AssignmentStatus.ASSIGNED.value,
                is_primary=needs_primary,
            )
            needs_primary = False
            self._session.add(model)
            created.append(model)
        if needs_primary and survivors:
            survivors[0].is_primary = True

        line.status = PoLineStatus.SUBMITTED.value
        self._session.flush()

        self._auditor.record(
            "line_assigned", "po_line", line_id, assigned_by,
            {"assigned_to": new_users, "kept": sorted(str(u) for u in kept_users),
             "replaced": len(existing) - len(survivors)},
        )
        logger.info(
            "line_assigned",
            extra={
                "po_line_id": str(line_id),
                "created_count": len(created),
                "kept": len(survivors),
                "replaced": len(existing) - len(survivors),
            },
        )
        return [m.to_dto() for m in created]

    def recall(self, assignment_id: UUID, actor_id: UUID | None = None) -> RecallResult:
        """Withdraw one assignment; siblings are left as they are."""
        assignment = self._load_assignment(assignment_id)
        line = self._load_line(assignment.po_line_id)
        was_primary = assignment.is_primary

        with LogContext.bind(po_line_id=str(line.id)):
            self._session.delete(assignment)
            self._session.flush()

            remaining = self._line_assignments(line.id)
            promoted: ActivityAssignmentModel | None = None
            if was_primary:
                active = [
                    a for a in remaining
                    if AssignmentStatus(a.status) in ACTIVE_ASSIGNMENT_STATUSES
                ]
                if active:
                    promoted = active[0]
                    promoted.is_primary = True

            orphaned = self._recall_orphaned_submissions(line.id, actor_id)
            fully_recalled = is_fully_recalled(AssignmentStatus(a.status) for a in remaining)
            if fully_recalled:
                line.status = PoLineStatus.RECALLED.value
            elif orphaned and line.status == PoLineStatus.SUBMITTED.value:
                line.status = PoLineStatus.DRAFT.value
            self._session.flush()

            self._auditor.record(
                "assignment_recalled", "activity_assignment", assignment_id, actor_id,
                {"po_line_id": line.id, "fully_recalled": fully_recalled,
                 "promoted_assignment_id": promoted.id if promoted else None},
            )
            logger.info(
                "assignment_recalled",
                extra={
                    "assignment_id": str(assignment_id),
                    "remaining": len(remaining),
                    "fully_recalled": fully_recalled,
                },
            )
            return RecallResult(
                po_line_id=line.id,
                fully_recalled=fully_recalled,
                remaining_assignments=len(remaining),
                promoted_assignment_id=promoted.id if promoted else None,
            )

    # ------------------------------------------------------------------
    # Business response
    # ------------------------------------------------------------------

    def respond(
        self,
        assignment_id: UUID,
        completion_status: str | None,
        provision_percent: Decimal | None,
        provision_amount: Decimal | None = None,
        comments: str | None = None,
        actor_id: UUID | None = None,
    ) -> BusinessResponse:
        """Record (or replace) the business user's completion report."""
        for value in (provision_percent, provision_amount):
            if value is not None and not value.is_finite():
                raise InvalidAmountError(value)
        if provision_percent is not None and not Decimal(0) <= provision_percent <= Decimal(100):
            raise InvalidProvisionPercentError(provision_percent)
        if provision_amount is not None and provision_amount < 0:
            raise NegativeProvisionAmountError(provision_amount)

        assignment = self._load_assignment(assignment_id)
        transition = require_transition(
            ASSIGNMENT_WORKFLOW, assignment.id, assignment.status, "respond",
        )

        now = self._clock.now()
        response = assignment.response
        if response is None:
            response = BusinessResponseModel(assignment_id=assignment.id, response_date=now)
            assignment.response = response
        response.completion_status = completion_status
        response.provision_percent = provision_percent
        response.provision_amount = provision_amount
        response.comments = comments
        response.response_date = now
        assignment.status = transition.to_state
        self._session.flush()

        self._auditor.record(
            "assignment_responded", "activity_assignment", assignment.id,
            actor_id or assignment.assigned_to,
            {"completion_status": completion_status, "provision_percent": provision_percent},
        )
        logger.info(
            "assignment_responded",
            extra={
                "assignment_id": str(assignment.id),
                "po_line_id": str(assignment.po_line_id),
                "provision_percent": str(provision_percent),
            },
        )
        return response.to_dto()

    def reset_responses(self, line_id: UUID, actor_id: UUID | None = None) -> int:
        """Discard all open responses of a line and put it back to Draft.

        Approved assignments are kept.  Returns the number of assignments
        reset.
        """
        line = self._load_line(line_id)
        reset = 0
        for assignment in self._line_assignments(line_id):
            if assignment.status in (AssignmentStatus.APPROVED.value, AssignmentStatus.RECALLED.value):
                continue
            transition = require_transition(
                ASSIGNMENT_WORKFLOW, assignment.id, assignment.status, "reset",
            )
            if assignment.response is not None:
                assignment.response = None
            assignment.status = transition.to_state
            reset += 1
        self._recall_orphaned_submissions(line_id, actor_id)
        line.status = PoLineStatus.DRAFT.value
        self._session.flush()

        self._auditor.record("responses_reset", "po_line", line_id, actor_id, {"reset": reset})
        logger.info("responses_reset", extra={"po_line_id": str(line_id), "reset": reset})
        return reset

    # ------------------------------------------------------------------
    # Approval flow
    # ------------------------------------------------------------------

    def submit_for_approval(
        self,
        assignment_id: UUID,
        approver_ids: Sequence[UUID],
        submitted_by: UUID,
        processing_month: str,
    ) -> ActivitySubmitResult:
        if not approver_ids:
            raise ApproverRequiredError()
        month, error = resolve_processing_month(processing_month, self._month_policy)
        if error is not None:
            logger.warning(
                "processing_month_fallback",
                extra={"raw_label": processing_month, "fallback": month.label,
                       "error_code": error.code},
            )

        assignment = self._load_assignment(assignment_id)
        line = self._load_line(assignment.po_line_id)
        transition = require_transition(
            ASSIGNMENT_WORKFLOW, assignment.id, assignment.status, "submit",
        )

        pending = self._session.execute(
            select(ApprovalSubmissionModel).where(
                ApprovalSubmissionModel.po_line_id == line.id,
                ApprovalSubmissionModel.processing_month == month.label,
                ApprovalSubmissionModel.status == SubmissionStatus.PENDING.value,
            )
        ).scalar_one_or_none()
        created = pending is None
        if created:
            approvers: list[str] = []
            for approver in approver_ids:
                if str(approver) not in approvers:
                    approvers.append(str(approver))
            pending = ApprovalSubmissionModel(
                po_line_id=line.id,
                submitted_by=submitted_by,
                approver_ids=approvers,
                status=SubmissionStatus.PENDING.value,
                processing_month=month.label,
                submitted_at=self._clock.now(),
            )
            self._session.add(pending)

        assignment.status = transition.to_state
        line.status = PoLineStatus.SUBMITTED.value
        self._session.flush()

        self._auditor.record(
            "assignment_submitted", "activity_assignment", assignment.id, submitted_by,
            {"submission_id": pending.id, "created": created, "processing_month": month.label},
        )
        logger.info(
            "assignment_submitted",
            extra={
                "assignment_id": str(assignment.id),
                "po_line_id": str(line.id),
                "processing_month": month.label,
                "submission_created": created,
            },
        )
        return ActivitySubmitResult(assignment.to_dto(), pending.to_dto(), created)

    def approve(self, assignment_id: UUID, approver_id: UUID | None = None) -> ActivityAssignment:
        assignment = self._load_assignment(assignment_id)
        line = self._load_line(assignment.po_line_id)
        transition = require_transition(
            ASSIGNMENT_WORKFLOW, assignment.id, assignment.status, "approve",
        )
        assignment.status = transition.to_state
        if self._line_follows(assignment):
            line.status = PoLineStatus.APPROVED.value
        self._session.flush()

        self._auditor.record(
            "assignment_approved", "activity_assignment", assignment.id, approver_id,
            {"po_line_id": line.id},
        )
        logger.info("assignment_approved", extra={"assignment_id": str(assignment.id)})
        return assignment.to_dto()

    def return_task(
        self,
        assignment_id: UUID,
        comments: str | None,
        actor_id: UUID | None = None,
    ) -> UUID:
        """Send an assignment back to finance with a mandatory comment.

        Returns the PO line id.
        """
        text = (comments or "").strip()
        if not text:
            raise ReturnCommentRequiredError(str(assignment_id))

        assignment = self._load_assignment(assignment_id)
        line = self._load_line(assignment.po_line_id)
        transition = require_transition(
            ASSIGNMENT_WORKFLOW, assignment.id, assignment.status, "return",
        )
        assignment.status = transition.to_state
        assignment.return_comments = text
        assignment.returned_at = self._clock.now()
        if self._line_follows(assignment):
            line.status = PoLineStatus.RETURNED.value
        self._session.flush()

        self._auditor.record(
            "assignment_returned", "activity_assignment", assignment.id,
            actor_id or assignment.assigned_to, {"comments": text},
        )
        logger.info(
            "assignment_returned",
            extra={"assignment_id": str(assignment.id), "po_line_id": str(line.id)},
        )
        return line.id

    def nudge(self, assignment_id: UUID, actor_id: UUID | None = None) -> ActivityAssignment:
        assignment = self._load_assignment(assignment_id)
        assignment.nudge_count = (assignment.nudge_count or 0) + 1
        assignment.last_nudge_at = self._clock.now()
        self._session.flush()

        self._auditor.record(
            "assignment_nudged", "activity_assignment", assignment.id, actor_id,
            {"nudge_count": assignment.nudge_count},
        )
        logger.info(
            "assignment_nudged",
            extra={"assignment_id": str(assignment.id), "nudge_count": assignment.nudge_count},
        )
        return assignment.to_dto()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def tasks_for_user(self, user_id: UUID) -> list[ActivityAssignment]:
        """Open and finished tasks of a business user; recalled ones are hidden."""
        stmt = (
            select(ActivityAssignmentModel)
            .where(
                ActivityAssignmentModel.assigned_to == user_id,
                ActivityAssignmentModel.status != AssignmentStatus.RECALLED.value,
            )
            .order_by(ActivityAssignmentModel.assigned_date.desc(), ActivityAssignmentModel.id)
        )
        return [m.to_dto() for m in self._session.scalars(stmt)]

    def responses_for_line(self, line_id: UUID) -> list[BusinessResponse]:
        return [
            a.response
            for a in self._selector.assignments_by_line([line_id]).get(line_id, [])
            if a.response is not None
        ]
