"""
Tests for ActivityService: the assignment lifecycle of activity lines.

Recall semantics are the subtle part: recalling one of several
assignments must leave the line with the business, and only recalling
the last active one marks the line Recalled.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from accrual_kernel.domain.accrual import AssignmentStatus
from accrual_kernel.exceptions import (
    AssignmentNotFoundError,
    EmptySelectionError,
    InvalidAmountError,
    InvalidProvisionPercentError,
    InvalidTransitionError,
    NegativeProvisionAmountError,
    PoLineNotFoundError,
    ReturnCommentRequiredError,
)
from accrual_kernel.models.activity import ActivityAssignmentModel, BusinessResponseModel
from accrual_kernel.models.approval import ApprovalSubmissionModel
from accrual_kernel.models.po_line import PoLineModel
from tests.conftest import PROCESSING_MONTH


def _line_status(session, line_id) -> str:
    return session.get(PoLineModel, line_id).status


def _assignments(session, line_id) -> list[ActivityAssignmentModel]:
    return session.query(ActivityAssignmentModel).filter_by(po_line_id=line_id).all()


# =============================================================================
# Assign
# =============================================================================


class TestAssign:

    def test_assign_creates_one_primary(self, session, activity_service, make_po_line, test_actor_id):
        line = make_po_line()
        created = activity_service.assign(line.id, [uuid4(), uuid4(), uuid4()], test_actor_id)

        assert len(created) == 3
        assert sum(a.is_primary for a in created) == 1
        assert all(a.status is AssignmentStatus.ASSIGNED for a in created)
        assert _line_status(session, line.id) == "Submitted"

    def test_duplicate_users_collapsed(self, activity_service, make_po_line):
        line = make_po_line()
        user = uuid4()
        assert len(activity_service.assign(line.id, [user, user])) == 1

    def test_empty_selection(self, activity_service, make_po_line):
        line = make_po_line()
        with pytest.raises(EmptySelectionError):
            activity_service.assign(line.id, [])

    def test_unknown_line(self, activity_service):
        with pytest.raises(PoLineNotFoundError):
            activity_service.assign(uuid4(), [uuid4()])

    def test_reassign_keeps_working_assignments(self, session, activity_service, make_po_line):
        line = make_po_line()
        first, second = activity_service.assign(line.id, [uuid4(), uuid4()])
        activity_service.respond(first.id, "In Progress", Decimal("40"))

        newcomer = uuid4()
        [created] = activity_service.assign(line.id, [newcomer])

        remaining = _assignments(session, line.id)
        assert {a.id for a in remaining} == {first.id, created.id}
        assert second.id not in {a.id for a in remaining}
        assert sum(a.is_primary for a in remaining) == 1

    def test_reassign_skips_users_already_working(self, activity_service, make_po_line):
        line = make_po_line()
        user = uuid4()
        [assignment] = activity_service.assign(line.id, [user])
        activity_service.respond(assignment.id, "In Progress", Decimal("10"))
        assert activity_service.assign(line.id, [user]) == []


# =============================================================================
# Recall
# =============================================================================


class TestRecall:

    def test_recall_one_of_two_keeps_line_open(self, session, activity_service, make_po_line):
        line = make_po_line()
        first, second = activity_service.assign(line.id, [uuid4(), uuid4()])

        result = activity_service.recall(first.id)

        assert result.fully_recalled is False
        assert result.remaining_assignments == 1
        assert _line_status(session, line.id) == "Submitted"
        [survivor] = _assignments(session, line.id)
        assert survivor.id == second.id
        assert survivor.status == "Assigned"

    def test_recall_last_marks_line_recalled(self, session, activity_service, make_po_line):
        line = make_po_line()
        first, second = activity_service.assign(line.id, [uuid4(), uuid4()])
        activity_service.recall(first.id)
        result = activity_service.recall(second.id)

        assert result.fully_recalled is True
        assert result.remaining_assignments == 0
        assert _line_status(session, line.id) == "Recalled"

    def test_recalling_primary_promotes_a_sibling(self, session, activity_service, make_po_line):
        line = make_po_line()
        created = activity_service.assign(line.id, [uuid4(), uuid4(), uuid4()])
        primary = next(a for a in created if a.is_primary)

        result = activity_service.recall(primary.id)

        assert result.promoted_assignment_id is not None
        remaining = _assignments(session, line.id)
        [new_primary] = [a for a in remaining if a.is_primary]
        assert new_primary.id == result.promoted_assignment_id

    def test_recalling_non_primary_promotes_nothing(self, activity_service, make_po_line):
        line = make_po_line()
        created = activity_service.assign(line.id, [uuid4(), uuid4()])
        other = next(a for a in created if not a.is_primary)
        assert activity_service.recall(other.id).promoted_assignment_id is None

    def test_submitted_sibling_does_not_hold_line(
        self, session, activity_service, make_po_line, test_actor_id,
    ):
        line = make_po_line()
        first, second = activity_service.assign(line.id, [uuid4(), uuid4()])
        activity_service.respond(second.id, "Completed", Decimal("100"))
        activity_service.submit_for_approval(second.id, [uuid4()], test_actor_id, PROCESSING_MONTH)

        result = activity_service.recall(first.id)
        assert result.fully_recalled is True
        assert _line_status(session, line.id) == "Recalled"

    def test_recalling_only_submitted_assignment_recalls_submission(
        self, session, activity_service, approval_service, make_po_line, test_actor_id,
    ):
        line = make_po_line()
        [assignment] = activity_service.assign(line.id, [uuid4()])
        activity_service.respond(assignment.id, "Completed", Decimal("100"))
        approver = uuid4()
        sent = activity_service.submit_for_approval(
            assignment.id, [approver], test_actor_id, PROCESSING_MONTH,
        )

        activity_service.recall(assignment.id, test_actor_id)

        assert session.get(ApprovalSubmissionModel, sent.submission.id).status == "Recalled"
        with pytest.raises(InvalidTransitionError):
            approval_service.approve_submission(sent.submission.id, approver)
        assert _line_status(session, line.id) == "Recalled"

    def test_recalling_submitted_assignment_reopens_working_line(
        self, session, activity_service, make_po_line, test_actor_id,
    ):
        line = make_po_line()
        first, second = activity_service.assign(line.id, [uuid4(), uuid4()])
        activity_service.respond(first.id, "Completed", Decimal("100"))
        sent = activity_service.submit_for_approval(
            first.id, [uuid4()], test_actor_id, PROCESSING_MONTH,
        )

        result = activity_service.recall(first.id)

        assert result.fully_recalled is False
        assert session.get(ApprovalSubmissionModel, sent.submission.id).status == "Recalled"
        assert _line_status(session, line.id) == "Draft"

    def test_submission_kept_while_a_submitted_assignment_remains(
        self, session, activity_service, make_po_line, test_actor_id,
    ):
        line = make_po_line()
        first, second = activity_service.assign(line.id, [uuid4(), uuid4()])
        for assignment in (first, second):
            activity_service.respond(assignment.id, "Completed", Decimal("100"))
            sent = activity_service.submit_for_approval(
                assignment.id, [uuid4()], test_actor_id, PROCESSING_MONTH,
            )

        activity_service.recall(first.id)

        assert session.get(ApprovalSubmissionModel, sent.submission.id).status == "Pending"

    def test_unknown_assignment(self, activity_service):
        with pytest.raises(AssignmentNotFoundError):
            activity_service.recall(uuid4())


# =============================================================================
# Respond / reset
# =============================================================================


class TestRespond:

    def test_records_response(self, activity_service, make_po_line):
        line = make_po_line()
        [assignment] = activity_service.assign(line.id, [uuid4()])
        response = activity_service.respond(
            assignment.id, "In Progress", Decimal("35"), Decimal("1200"), "Half the sites done",
        )
        assert response.provision_percent == Decimal("35")
        assert response.provision_amount == Decimal("1200")
        assert response.comments == "Half the sites done"

        [stored] = activity_service.responses_for_line(line.id)
        assert stored.completion_status == "In Progress"

    def test_second_response_replaces_first(self, session, activity_service, make_po_line):
        line = make_po_line()
        [assignment] = activity_service.assign(line.id, [uuid4()])
        activity_service.respond(assignment.id, "In Progress", Decimal("20"))
        activity_service.respond(assignment.id, "Completed", Decimal("100"))

        assert session.query(BusinessResponseModel).count() == 1
        [stored] = activity_service.responses_for_line(line.id)
        assert stored.provision_percent == Decimal("100")

    @pytest.mark.parametrize("percent", [Decimal("-1"), Decimal("100.5")])
    def test_percent_out_of_range(self, activity_service, make_po_line, percent):
        line = make_po_line()
        [assignment] = activity_service.assign(line.id, [uuid4()])
        with pytest.raises(InvalidProvisionPercentError):
            activity_service.respond(assignment.id, "In Progress", percent)

    def test_negative_amount(self, activity_service, make_po_line):
        line = make_po_line()
        [assignment] = activity_service.assign(line.id, [uuid4()])
        with pytest.raises(NegativeProvisionAmountError):
            activity_service.respond(assignment.id, "In Progress", Decimal("10"), Decimal("-5"))

    @pytest.mark.parametrize("percent, amount", [
        (Decimal("NaN"), None), (Decimal("Infinity"), None), (Decimal("10"), Decimal("NaN")),
    ])
    def test_non_finite_figures_rejected(self, activity_service, make_po_line, percent, amount):
        line = make_po_line()
        [assignment] = activity_service.assign(line.id, [uuid4()])
        with pytest.raises(InvalidAmountError):
            activity_service.respond(assignment.id, "In Progress", percent, amount)
        assert activity_service.responses_for_line(line.id) == []


class TestResetResponses:

    def test_reset_discards_responses(self, session, activity_service, make_po_line):
        line = make_po_line()
        first, second = activity_service.assign(line.id, [uuid4(), uuid4()])
        activity_service.respond(first.id, "In Progress", Decimal("50"))

        assert activity_service.reset_responses(line.id) == 2
        assert _line_status(session, line.id) == "Draft"
        assert activity_service.responses_for_line(line.id) == []
        assert session.query(BusinessResponseModel).count() == 0

    def test_approved_assignment_survives_reset(self, session, activity_service, make_po_line):
        line = make_po_line()
        [assignment] = activity_service.assign(line.id, [uuid4()])
        activity_service.respond(assignment.id, "Completed", Decimal("100"))
        activity_service.approve(assignment.id)

        assert activity_service.reset_responses(line.id) == 0
        assert session.get(ActivityAssignmentModel, assignment.id).status == "Approved"

    def test_reset_recalls_pending_submission(
        self, session, activity_service, approval_service, make_po_line, test_actor_id,
    ):
        line = make_po_line()
        [assignment] = activity_service.assign(line.id, [uuid4()])
        activity_service.respond(assignment.id, "Completed", Decimal("100"))
        approver = uuid4()
        sent = activity_service.submit_for_approval(
            assignment.id, [approver], test_actor_id, PROCESSING_MONTH,
        )

        assert activity_service.reset_responses(line.id, test_actor_id) == 1

        assert session.get(ApprovalSubmissionModel, sent.submission.id).status == "Recalled"
        with pytest.raises(InvalidTransitionError):
            approval_service.reject_submission(sent.submission.id, approver, "late")
        assert _line_status(session, line.id) == "Draft"

    def test_reset_hides_tasks_from_user(self, activity_service, make_po_line):
        line = make_po_line()
        user = uuid4()
        activity_service.assign(line.id, [user])
        activity_service.reset_responses(line.id)
        assert activity_service.tasks_for_user(user) == []


# =============================================================================
# Approval flow
# =============================================================================


class TestSubmitForApproval:

    def test_requires_response(self, activity_service, make_po_line, test_actor_id):
        line = make_po_line()
        [assignment] = activity_service.assign(line.id, [uuid4()])
        with pytest.raises(InvalidTransitionError):
            activity_service.submit_for_approval(
                assignment.id, [uuid4()], test_actor_id, PROCESSING_MONTH,
            )

    def test_creates_pending_submission(self, activity_service, make_po_line, test_actor_id):
        line = make_po_line()
        [assignment] = activity_service.assign(line.id, [uuid4()])
        activity_service.respond(assignment.id, "Completed", Decimal("100"))
        approver = uuid4()

        result = activity_service.submit_for_approval(
            assignment.id, [approver, approver], test_actor_id, PROCESSING_MONTH,
        )

        assert result.created is True
        assert result.assignment.status is AssignmentStatus.SUBMITTED
        assert result.submission.approver_ids == (approver,)
        assert result.submission.processing_month == "Feb 2026"

    def test_second_assignment_reuses_pending(self, activity_service, make_po_line, test_actor_id):
        line = make_po_line()
        first, second = activity_service.assign(line.id, [uuid4(), uuid4()])
        for assignment in (first, second):
            activity_service.respond(assignment.id, "Completed", Decimal("100"))

        one = activity_service.submit_for_approval(first.id, [uuid4()], test_actor_id, PROCESSING_MONTH)
        two = activity_service.submit_for_approval(second.id, [uuid4()], test_actor_id, PROCESSING_MONTH)

        assert two.created is False
        assert two.submission.id == one.submission.id

    def test_approver_required(self, activity_service, make_po_line, test_actor_id):
        from accrual_kernel.exceptions import ApproverRequiredError

        line = make_po_line()
        [assignment] = activity_service.assign(line.id, [uuid4()])
        with pytest.raises(ApproverRequiredError):
            activity_service.submit_for_approval(assignment.id, [], test_actor_id, PROCESSING_MONTH)


class TestApproveAndReturn:

    def test_approve_marks_line_approved(self, session, activity_service, make_po_line):
        line = make_po_line()
        [assignment] = activity_service.assign(line.id, [uuid4()])
        activity_service.respond(assignment.id, "Completed", Decimal("100"))

        approved = activity_service.approve(assignment.id, uuid4())
        assert approved.status is AssignmentStatus.APPROVED
        assert _line_status(session, line.id) == "Approved"

    def test_approve_requires_response(self, activity_service, make_po_line):
        line = make_po_line()
        [assignment] = activity_service.assign(line.id, [uuid4()])
        with pytest.raises(InvalidTransitionError):
            activity_service.approve(assignment.id)

    @pytest.mark.parametrize("comments", [None, "", "   "])
    def test_return_needs_comment(self, activity_service, make_po_line, comments):
        line = make_po_line()
        [assignment] = activity_service.assign(line.id, [uuid4()])
        with pytest.raises(ReturnCommentRequiredError):
            activity_service.return_task(assignment.id, comments)

    def test_return_sends_line_back(self, session, activity_service, make_po_line):
        line = make_po_line()
        [assignment] = activity_service.assign(line.id, [uuid4()])

        line_id = activity_service.return_task(assignment.id, "  Wrong cost center  ")

        assert line_id == line.id
        assert _line_status(session, line.id) == "Returned"
        stored = session.get(ActivityAssignmentModel, assignment.id)
        assert stored.status == "Returned"
        assert stored.return_comments == "Wrong cost center"
        assert stored.returned_at is not None


    def test_secondary_return_leaves_line_with_primary(
        self, session, activity_service, make_po_line,
    ):
        line = make_po_line()
        created = activity_service.assign(line.id, [uuid4(), uuid4()])
        secondary = next(a for a in created if not a.is_primary)

        activity_service.return_task(secondary.id, "Not mine")

        assert session.get(ActivityAssignmentModel, secondary.id).status == "Returned"
        assert _line_status(session, line.id) == "Submitted"

    def test_primary_return_moves_line(self, session, activity_service, make_po_line):
        line = make_po_line()
        created = activity_service.assign(line.id, [uuid4(), uuid4()])
        primary = next(a for a in created if a.is_primary)

        activity_service.return_task(primary.id, "Wrong cost center")

        assert _line_status(session, line.id) == "Returned"

    def test_secondary_approval_moves_line_only_when_last_active(
        self, session, activity_service, make_po_line,
    ):
        line = make_po_line()
        created = activity_service.assign(line.id, [uuid4(), uuid4()])
        secondary = next(a for a in created if not a.is_primary)
        activity_service.respond(secondary.id, "Completed", Decimal("100"))

        activity_service.approve(secondary.id)
        assert _line_status(session, line.id) == "Submitted"

        other_line = make_po_line()
        created = activity_service.assign(other_line.id, [uuid4(), uuid4()])
        primary = next(a for a in created if a.is_primary)
        secondary = next(a for a in created if not a.is_primary)
        activity_service.return_task(primary.id, "Handled by the other team")
        activity_service.respond(secondary.id, "Completed", Decimal("100"))

        activity_service.approve(secondary.id)
        assert _line_status(session, other_line.id) == "Approved"


class TestNudgeAndQueries:

    def test_nudge_increments(self, activity_service, make_po_line):
        line = make_po_line()
        [assignment] = activity_service.assign(line.id, [uuid4()])
        activity_service.nudge(assignment.id)
        nudged = activity_service.nudge(assignment.id)
        assert nudged.nudge_count == 2
        assert nudged.last_nudge_at is not None

    def test_tasks_for_user(self, activity_service, make_po_line):
        user = uuid4()
        first = make_po_line()
        second = make_po_line()
        activity_service.assign(first.id, [user])
        activity_service.assign(second.id, [user, uuid4()])

        tasks = activity_service.tasks_for_user(user)
        assert {t.po_line_id for t in tasks} == {first.id, second.id}
        assert activity_service.tasks_for_user(uuid4()) == []
