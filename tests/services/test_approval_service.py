"""
Tests for ApprovalService: submission creation, decisions and recall.

Tests cover:
- One Pending submission per (line, month); re-submitting creates nothing
- Approve / reject / recall move submission and line together
- Decisions on a decided submission raise InvalidTransitionError
- Recalled Period lines must be edited before they can be re-submitted
- Activity lines carry their submitted assignments through the decision
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from accrual_kernel.domain.accrual import (
    AssignmentStatus,
    PoLineStatus,
    SubmissionStatus,
)
from accrual_kernel.exceptions import (
    ApproverRequiredError,
    EmptySelectionError,
    InvalidTransitionError,
    PoLineNotFoundError,
    SubmissionNotFoundError,
)
from accrual_kernel.models.activity import ActivityAssignmentModel
from accrual_kernel.models.approval import ApprovalSubmissionModel
from accrual_kernel.models.po_line import PoLineModel
from tests.conftest import PROCESSING_MONTH


@pytest.fixture
def approver_id():
    return uuid4()


def _submit(approval_service, line_ids, approver_id, actor_id, month=PROCESSING_MONTH):
    return approval_service.submit_for_approval(line_ids, [approver_id], actor_id, month)


# =============================================================================
# Submit
# =============================================================================


class TestSubmitForApproval:

    def test_creates_pending_submission(
        self, session, approval_service, make_period_line, approver_id, test_actor_id,
    ):
        line = make_period_line()
        [submission] = _submit(approval_service, [line.id], approver_id, test_actor_id)

        assert submission.status is SubmissionStatus.PENDING
        assert submission.processing_month == "Feb 2026"
        assert submission.approver_ids == (approver_id,)
        assert submission.submitted_by == test_actor_id
        assert session.get(PoLineModel, line.id).status == "Submitted"

    def test_resubmit_is_noop(
        self, session, approval_service, make_period_line, approver_id, test_actor_id, captured_logs,
    ):
        line = make_period_line()
        _submit(approval_service, [line.id], approver_id, test_actor_id)
        assert _submit(approval_service, [line.id], approver_id, test_actor_id) == []

        assert session.query(ApprovalSubmissionModel).count() == 1
        assert any(r["message"] == "submission_already_pending" for r in captured_logs())

    def test_duplicate_line_ids_collapsed(
        self, session, approval_service, make_period_line, approver_id, test_actor_id,
    ):
        line = make_period_line()
        created = _submit(approval_service, [line.id, line.id], approver_id, test_actor_id)
        assert len(created) == 1

    def test_mixed_batch_creates_only_missing(
        self, approval_service, make_period_line, approver_id, test_actor_id,
    ):
        first = make_period_line()
        second = make_period_line()
        _submit(approval_service, [first.id], approver_id, test_actor_id)

        created = _submit(approval_service, [first.id, second.id], approver_id, test_actor_id)
        assert [s.po_line_id for s in created] == [second.id]

    def test_other_month_gets_its_own_submission(
        self, session, approval_service, make_period_line, approver_id, test_actor_id,
    ):
        line = make_period_line()
        _submit(approval_service, [line.id], approver_id, test_actor_id)
        [march] = _submit(approval_service, [line.id], approver_id, test_actor_id, month="Mar 2026")
        assert march.processing_month == "Mar 2026"
        assert session.query(ApprovalSubmissionModel).count() == 2

    def test_empty_selection(self, approval_service, approver_id, test_actor_id):
        with pytest.raises(EmptySelectionError):
            _submit(approval_service, [], approver_id, test_actor_id)

    def test_approver_required(self, approval_service, make_period_line, test_actor_id):
        line = make_period_line()
        with pytest.raises(ApproverRequiredError):
            approval_service.submit_for_approval([line.id], [], test_actor_id, PROCESSING_MONTH)

    def test_unknown_line(self, approval_service, approver_id, test_actor_id):
        with pytest.raises(PoLineNotFoundError):
            _submit(approval_service, [uuid4()], approver_id, test_actor_id)

    @pytest.mark.parametrize("bad", ["recalled", "unknown"])
    def test_batch_is_all_or_nothing(
        self, session, approval_service, make_period_line, approver_id, test_actor_id, bad,
    ):
        good = make_period_line()
        other = (
            make_period_line(status=PoLineStatus.RECALLED).id if bad == "recalled" else uuid4()
        )
        expected = InvalidTransitionError if bad == "recalled" else PoLineNotFoundError

        with pytest.raises(expected):
            _submit(approval_service, [good.id, other], approver_id, test_actor_id)

        assert session.query(ApprovalSubmissionModel).count() == 0
        assert session.get(PoLineModel, good.id).status == "Draft"

    def test_recalled_period_line_must_be_edited_first(
        self, approval_service, provision_service, make_period_line, approver_id, test_actor_id,
    ):
        line = make_period_line(status=PoLineStatus.RECALLED)
        with pytest.raises(InvalidTransitionError):
            _submit(approval_service, [line.id], approver_id, test_actor_id)

        provision_service.update_remarks(line.id, PROCESSING_MONTH, "revised")
        assert len(_submit(approval_service, [line.id], approver_id, test_actor_id)) == 1

    def test_audited(
        self, approval_service, auditor_service, make_period_line, approver_id, test_actor_id,
    ):
        line = make_period_line()
        [submission] = _submit(approval_service, [line.id], approver_id, test_actor_id)
        [entry] = auditor_service.history("po_line", line.id)
        assert entry.action == "submitted_for_approval"
        assert entry.details["submission_id"] == str(submission.id)


# =============================================================================
# Decisions
# =============================================================================


class TestDecisions:

    def test_approve(self, approval_service, make_period_line, approver_id, test_actor_id):
        line = make_period_line()
        [submission] = _submit(approval_service, [line.id], approver_id, test_actor_id)

        outcome = approval_service.approve_submission(submission.id, approver_id)

        assert outcome.status is SubmissionStatus.APPROVED
        assert outcome.line_status is PoLineStatus.APPROVED
        assert outcome.po_line_id == line.id
        assert outcome.processing_month == "Feb 2026"
        assert outcome.submission.approved_by == approver_id
        assert outcome.submission.decided_at is not None

    def test_reject_with_reason(self, approval_service, make_period_line, approver_id, test_actor_id):
        line = make_period_line()
        [submission] = _submit(approval_service, [line.id], approver_id, test_actor_id)

        outcome = approval_service.reject_submission(submission.id, approver_id, "Over budget")

        assert outcome.status is SubmissionStatus.REJECTED
        assert outcome.line_status is PoLineStatus.REJECTED
        assert outcome.submission.rejection_reason == "Over budget"

    def test_recall(self, approval_service, make_period_line, approver_id, test_actor_id):
        line = make_period_line()
        [submission] = _submit(approval_service, [line.id], approver_id, test_actor_id)

        outcome = approval_service.recall_submission(submission.id, test_actor_id)

        assert outcome.status is SubmissionStatus.RECALLED
        assert outcome.line_status is PoLineStatus.RECALLED

    @pytest.mark.parametrize("second", ["approve", "reject", "recall"])
    def test_decided_submission_is_final(
        self, session, approval_service, make_period_line, approver_id, test_actor_id, second,
    ):
        line = make_period_line()
        [submission] = _submit(approval_service, [line.id], approver_id, test_actor_id)
        approval_service.approve_submission(submission.id, approver_id)

        calls = {
            "approve": lambda: approval_service.approve_submission(submission.id, approver_id),
            "reject": lambda: approval_service.reject_submission(submission.id, approver_id),
            "recall": lambda: approval_service.recall_submission(submission.id),
        }
        with pytest.raises(InvalidTransitionError):
            calls[second]()
        assert session.get(PoLineModel, line.id).status == "Approved"

    def test_rejected_line_can_be_resubmitted(
        self, session, approval_service, make_period_line, approver_id, test_actor_id,
    ):
        line = make_period_line()
        [submission] = _submit(approval_service, [line.id], approver_id, test_actor_id)
        approval_service.reject_submission(submission.id, approver_id)

        [again] = _submit(approval_service, [line.id], approver_id, test_actor_id)
        assert again.id != submission.id
        assert session.get(PoLineModel, line.id).status == "Submitted"

    @pytest.mark.parametrize("decision", ["approve", "reject", "recall"])
    def test_other_month_decidable_after_recall_and_edit(
        self, session, approval_service, provision_service, make_period_line,
        approver_id, test_actor_id, decision,
    ):
        line = make_period_line()
        [february] = _submit(approval_service, [line.id], approver_id, test_actor_id)
        [march] = _submit(approval_service, [line.id], approver_id, test_actor_id, month="Mar 2026")
        approval_service.recall_submission(february.id, test_actor_id)
        provision_service.update_remarks(line.id, PROCESSING_MONTH, "revised")
        assert session.get(PoLineModel, line.id).status == "Draft"

        calls = {
            "approve": lambda: approval_service.approve_submission(march.id, approver_id),
            "reject": lambda: approval_service.reject_submission(march.id, approver_id, "No"),
            "recall": lambda: approval_service.recall_submission(march.id, test_actor_id),
        }
        outcome = calls[decision]()

        assert outcome.processing_month == "Mar 2026"
        assert outcome.status is not SubmissionStatus.PENDING

    def test_unknown_submission(self, approval_service, approver_id):
        with pytest.raises(SubmissionNotFoundError):
            approval_service.approve_submission(uuid4(), approver_id)

    def test_decision_audited_and_logged(
        self, approval_service, auditor_service, make_period_line, approver_id, test_actor_id,
        captured_logs,
    ):
        line = make_period_line()
        [submission] = _submit(approval_service, [line.id], approver_id, test_actor_id)
        approval_service.approve_submission(submission.id, approver_id)

        [entry] = auditor_service.history("approval_submission", submission.id)
        assert entry.action == "submission_approved"
        assert entry.actor_id == approver_id

        transitioned = [r for r in captured_logs() if r["message"] == "submission_transitioned"]
        assert transitioned[0]["po_line_id"] == str(line.id)
        assert transitioned[0]["to_status"] == "Approved"


class TestActivityLineDecisions:

    def _submitted_activity_line(self, activity_service, make_po_line, actor_id):
        line = make_po_line()
        [assignment] = activity_service.assign(line.id, [uuid4()])
        activity_service.respond(assignment.id, "Completed", Decimal("100"))
        result = activity_service.submit_for_approval(
            assignment.id, [uuid4()], actor_id, PROCESSING_MONTH,
        )
        return line, assignment, result.submission

    def test_approve_approves_assignment(
        self, session, approval_service, activity_service, make_po_line, test_actor_id,
    ):
        line, assignment, submission = self._submitted_activity_line(
            activity_service, make_po_line, test_actor_id,
        )
        outcome = approval_service.approve_submission(submission.id, uuid4())

        assert outcome.line_status is PoLineStatus.APPROVED
        assert session.get(ActivityAssignmentModel, assignment.id).status == "Approved"

    def test_reject_returns_assignment(
        self, session, approval_service, activity_service, make_po_line, test_actor_id,
    ):
        line, assignment, submission = self._submitted_activity_line(
            activity_service, make_po_line, test_actor_id,
        )
        outcome = approval_service.reject_submission(submission.id, uuid4(), "Check GRN")

        assert outcome.line_status is PoLineStatus.RETURNED
        stored = session.get(ActivityAssignmentModel, assignment.id)
        assert stored.status == AssignmentStatus.RETURNED.value
        assert stored.return_comments == "Check GRN"

    def test_recall_withdraws_assignment(
        self, session, approval_service, activity_service, make_po_line, test_actor_id,
    ):
        line, assignment, submission = self._submitted_activity_line(
            activity_service, make_po_line, test_actor_id,
        )
        outcome = approval_service.recall_submission(submission.id, test_actor_id)

        assert outcome.line_status is PoLineStatus.RECALLED
        assert session.get(ActivityAssignmentModel, assignment.id).status == "Responded"


# =============================================================================
# Nudge and queries
# =============================================================================


class TestNudge:

    def test_nudge_pending(self, approval_service, make_period_line, approver_id, test_actor_id):
        line = make_period_line()
        [submission] = _submit(approval_service, [line.id], approver_id, test_actor_id)
        nudged = approval_service.nudge_submission(submission.id, test_actor_id)
        assert nudged.nudge_count == 1
        assert nudged.last_nudge_at is not None

    def test_nudge_decided_rejected(self, approval_service, make_period_line, approver_id, test_actor_id):
        line = make_period_line()
        [submission] = _submit(approval_service, [line.id], approver_id, test_actor_id)
        approval_service.approve_submission(submission.id, approver_id)
        with pytest.raises(InvalidTransitionError):
            approval_service.nudge_submission(submission.id)


class TestQueries:

    def test_submissions_for_approver(
        self, approval_service, make_period_line, approver_id, test_actor_id,
    ):
        mine = make_period_line()
        other = make_period_line()
        _submit(approval_service, [mine.id], approver_id, test_actor_id)
        _submit(approval_service, [other.id], uuid4(), test_actor_id)

        pending = approval_service.submissions_for_approver(approver_id)
        assert [s.po_line_id for s in pending] == [mine.id]

    def test_decided_not_in_pending_queue(
        self, approval_service, make_period_line, approver_id, test_actor_id,
    ):
        line = make_period_line()
        [submission] = _submit(approval_service, [line.id], approver_id, test_actor_id)
        approval_service.approve_submission(submission.id, approver_id)

        assert approval_service.submissions_for_approver(approver_id) == []
        [decided] = approval_service.submissions_for_approver(approver_id, status=None)
        assert decided.status is SubmissionStatus.APPROVED

    def test_tracker_by_submitter(
        self, approval_service, make_period_line, approver_id, test_actor_id, deterministic_clock,
    ):
        first = make_period_line()
        second = make_period_line()
        _submit(approval_service, [first.id], approver_id, test_actor_id)
        deterministic_clock.advance(60)
        _submit(approval_service, [second.id], approver_id, test_actor_id)

        tracked = approval_service.tracker(test_actor_id)
        assert [s.po_line_id for s in tracked] == [second.id, first.id]
        assert approval_service.tracker(uuid4()) == []
