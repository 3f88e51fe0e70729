"""
accrual_kernel.services.approval_service -- Approval submission lifecycle.

Responsibility:
    Creates approval submissions for PO lines and applies the approver's
    decision (approve / reject) or the submitter's recall, keeping the PO
    line status (and, for activity lines, the submitted assignments) in
    step with the submission.

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/, db/
    and the pure engines.

Invariants enforced:
    - At most one Pending submission per (line, processing month):
      re-submitting a pending pair creates nothing.
    - Every transition is validated against SUBMISSION_WORKFLOW and
      PERIOD_LINE_WORKFLOW before any row changes, and the service only
      flushes, so the caller's transaction applies all or nothing.

Failure modes:
    - EmptySelectionError / ApproverRequiredError on empty input.
    - PoLineNotFoundError / SubmissionNotFoundError on unknown ids.
    - InvalidTransitionError on a decision for a non-pending submission or
      a submit of a Recalled (not yet edited) line.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from accrual_engines.calendar import resolve_processing_month
from accrual_engines.workflow import require_transition
from accrual_kernel.domain.accrual import (
    ApprovalSubmission,
    AssignmentStatus,
    PoCategory,
    PoLineStatus,
    SubmissionStatus,
)
from accrual_kernel.domain.clock import Clock, SystemClock
from accrual_kernel.domain.values import DEFAULT_MONTH_POLICY, MonthFallbackPolicy
from accrual_kernel.domain.workflow import (
    ASSIGNMENT_WORKFLOW,
    PERIOD_LINE_WORKFLOW,
    SUBMISSION_WORKFLOW,
)
from accrual_kernel.exceptions import (
    ApproverRequiredError,
    EmptySelectionError,
    InvalidTransitionError,
    PoLineNotFoundError,
    SubmissionNotFoundError,
)
from accrual_kernel.logging_config import LogContext, get_logger
from accrual_kernel.models.activity import ActivityAssignmentModel
from accrual_kernel.models.approval import ApprovalSubmissionModel
from accrual_kernel.models.po_line import PoLineModel
from accrual_kernel.selectors.accrual_selector import AccrualSelector
from accrual_kernel.services.audit_service import AuditService

logger = get_logger("services.approval")


@dataclass(frozen=True)
class SubmissionOutcome:
    """New state of a submission and its PO line after a decision or recall."""

    submission: ApprovalSubmission
    line_status: PoLineStatus

    @property
    def po_line_id(self) -> UUID:
        return self.submission.po_line_id

    @property
    def processing_month(self) -> str:
        return self.submission.processing_month

    @property
    def status(self) -> SubmissionStatus:
        return self.submission.status


def _unique(ids: Iterable[UUID]) -> list[UUID]:
    seen: list[UUID] = []
    for item in ids:
        if item not in seen:
            seen.append(item)
    return seen


class ApprovalService:
    """Manages approval submissions for PO lines."""

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
    # Loading
    # ------------------------------------------------------------------

    def _load_submission(self, submission_id: UUID) -> ApprovalSubmissionModel:
        model = self._session.get(ApprovalSubmissionModel, submission_id)
        if model is None:
            raise SubmissionNotFoundError(str(submission_id))
        return model

    def _load_line(self, line_id: UUID) -> PoLineModel:
        model = self._session.get(PoLineModel, line_id)
        if model is None:
            raise PoLineNotFoundError(str(line_id))
        return model

    def _submitted_assignments(self, line_id: UUID) -> list[ActivityAssignmentModel]:
        return list(self._session.scalars(
            select(ActivityAssignmentModel).where(
                ActivityAssignmentModel.po_line_id == line_id,
                ActivityAssignmentModel.status == AssignmentStatus.SUBMITTED.value,
            )
        ))

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    def submit_for_approval(
        self,
        line_ids: Sequence[UUID],
        approver_ids: Sequence[UUID],
        submitted_by: UUID,
        processing_month: str,
    ) -> list[ApprovalSubmission]:
        """Create one Pending submission per line that has none for the month.

        Lines already pending for the month are skipped.  Returns only the
        submissions created by this call.
        """
        if not line_ids:
            raise EmptySelectionError("PO lines")
        if not approver_ids:
            raise ApproverRequiredError()

        month, error = resolve_processing_month(processing_month, self._month_policy)
        if error is not None:
            logger.warning(
                "processing_month_fallback",
                extra={"raw_label": processing_month, "fallback": month.label,
                       "error_code": error.code},
            )
        approvers = [str(a) for a in _unique(approver_ids)]

        to_create: list[PoLineModel] = []
        for line_id in _unique(line_ids):
            line = self._load_line(line_id)
            if self._selector.pending_submission(line.id, month.label) is not None:
                logger.info(
                    "submission_already_pending",
                    extra={"po_line_id": str(line.id), "processing_month": month.label},
                )
                continue
            if line.category == PoCategory.PERIOD.value:
                require_transition(PERIOD_LINE_WORKFLOW, line.id, line.status, "submit")
            to_create.append(line)

        now = self._clock.now()
        created: list[ApprovalSubmissionModel] = []
        for line in to_create:
            submission = ApprovalSubmissionModel(
                po_line_id=line.id,
                submitted_by=submitted_by,
                approver_ids=approvers,
                status=SubmissionStatus.PENDING.value,
                processing_month=month.label,
                submitted_at=now,
            )
            self._session.add(submission)
            line.status = PoLineStatus.SUBMITTED.value
            created.append(submission)
        self._session.flush()

        for submission in created:
            self._auditor.record(
                "submitted_for_approval", "po_line", submission.po_line_id, submitted_by,
                {"submission_id": submission.id, "processing_month": month.label,
                 "approver_ids": approvers},
            )
        logger.info(
            "submissions_created",
            extra={
                "processing_month": month.label,
                "requested": len(line_ids),
                "created_count": len(created),
            },
        )
        return [s.to_dto() for s in created]

    # ------------------------------------------------------------------
    # Recall / decisions
    # ------------------------------------------------------------------

    def _apply(
        self,
        submission_id: UUID,
        action: str,
        actor_id: UUID | None,
        rejection_reason: str | None = None,
    ) -> SubmissionOutcome:
        submission = self._load_submission(submission_id)
        line = self._load_line(submission.po_line_id)

        with LogContext.bind(po_line_id=str(line.id), processing_month=submission.processing_month):
            sub_transition = require_transition(
                SUBMISSION_WORKFLOW, submission.id, submission.status, action,
            )

            assignments: list[ActivityAssignmentModel] = []
            if line.category == PoCategory.PERIOD.value:
                line_target = require_transition(
                    PERIOD_LINE_WORKFLOW, line.id, line.status, action,
                ).to_state
            else:
                assignment_action = {"approve": "approve", "reject": "reject", "recall": "withdraw"}[action]
                assignments = self._submitted_assignments(line.id)
                for assignment in assignments:
                    require_transition(
                        ASSIGNMENT_WORKFLOW, assignment.id, assignment.status, assignment_action,
                    )
                line_target = {
                    "approve": PoLineStatus.APPROVED,
                    "reject": PoLineStatus.RETURNED,
                    "recall": PoLineStatus.RECALLED,
                }[action].value

            now = self._clock.now()
            submission.status = sub_transition.to_state
            if action in ("approve", "reject"):
                submission.approved_by = actor_id
                submission.decided_at = now
            if action == "reject":
                submission.rejection_reason = rejection_reason
            line.status = line_target
            for assignment in assignments:
                if action == "approve":
                    assignment.status = AssignmentStatus.APPROVED.value
                elif action == "reject":
                    assignment.status = AssignmentStatus.RETURNED.value
                    assignment.return_comments = rejection_reason
                    assignment.returned_at = now
                else:
                    assignment.status = AssignmentStatus.RESPONDED.value
            self._session.flush()

            self._auditor.record(
                f"submission_{sub_transition.to_state.lower()}", "approval_submission",
                submission.id, actor_id,
                {"po_line_id": line.id, "line_status": line_target,
                 "rejection_reason": rejection_reason},
            )
            logger.info(
                "submission_transitioned",
                extra={
                    "submission_id": str(submission.id),
                    "action": action,
                    "to_status": submission.status,
                    "line_status": line_target,
                },
            )
            return SubmissionOutcome(submission.to_dto(), PoLineStatus(line_target))

    def recall_submission(self, submission_id: UUID, actor_id: UUID | None = None) -> SubmissionOutcome:
        """Pull a pending submission back; the line becomes Recalled."""
        return self._apply(submission_id, "recall", actor_id)

    def approve_submission(self, submission_id: UUID, approver_id: UUID) -> SubmissionOutcome:
        return self._apply(submission_id, "approve", approver_id)

    def reject_submission(
        self,
        submission_id: UUID,
        approver_id: UUID,
        reason: str | None = None,
    ) -> SubmissionOutcome:
        return self._apply(submission_id, "reject", approver_id, rejection_reason=reason)

    def nudge_submission(self, submission_id: UUID, actor_id: UUID | None = None) -> ApprovalSubmission:
        """Remind the approvers of a pending submission."""
        submission = self._load_submission(submission_id)
        if submission.status != SubmissionStatus.PENDING.value:
            raise InvalidTransitionError(
                SUBMISSION_WORKFLOW.name, str(submission.id), submission.status, "nudge",
            )
        submission.nudge_count = (submission.nudge_count or 0) + 1
        submission.last_nudge_at = self._clock.now()
        self._session.flush()

        self._auditor.record(
            "submission_nudged", "approval_submission", submission.id, actor_id,
            {"nudge_count": submission.nudge_count},
        )
        logger.info(
            "submission_nudged",
            extra={"submission_id": str(submission.id), "nudge_count": submission.nudge_count},
        )
        return submission.to_dto()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def submissions_for_approver(
        self,
        approver_id: UUID,
        status: SubmissionStatus | None = SubmissionStatus.PENDING,
    ) -> list[ApprovalSubmission]:
        return self._selector.submissions(status=status, approver_id=approver_id)

    def tracker(self, submitted_by: UUID | None = None) -> list[ApprovalSubmission]:
        """All submissions (optionally of one submitter), newest first."""
        return self._selector.submissions(submitted_by=submitted_by)
