"""
Workflow state machines (``accrual_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects describing which status changes are legal for PO lines
(Period category), approval submissions, activity assignments and non-PO
assignments.  Services look transitions up through
``accrual_engines.workflow`` before mutating anything, so an illegal
request fails before any row is touched.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* A Recalled Period line cannot be resubmitted until it is edited back to
  Draft.
* Non-PO submit-for-approval is guarded by the existence of a form
  submission.
"""

from __future__ import annotations

from dataclasses import dataclass

from accrual_kernel.domain.accrual import (
    AssignmentStatus,
    NonPoAssignmentStatus,
    PoLineStatus,
    SubmissionStatus,
)


@dataclass(frozen=True)
class Guard:
    """A named precondition checked by the service before the transition."""

    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for one entity type."""

    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(f"{self.name}: unknown initial state {self.initial_state}")
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"{self.name}: transition {t.action} references unknown state"
                )


def _fan_in(action: str, sources: tuple[str, ...], target: str,
            guard: Guard | None = None) -> tuple[Transition, ...]:
    return tuple(Transition(s, target, action, guard) for s in sources)


# ---------------------------------------------------------------------------
# PO line (Period category)
# ---------------------------------------------------------------------------

_L = PoLineStatus

# A line can carry a pending submission for more than one month, and another
# month may have been recalled and edited meanwhile.  A pending submission is
# decidable whatever status the line shows.
_DECIDABLE_LINE_STATES = tuple(s.value for s in _L if s is not _L.RETURNED)

PERIOD_LINE_WORKFLOW = Workflow(
    name="po_line_period",
    description="Approval lifecycle of a time-prorated PO line",
    initial_state=_L.DRAFT.value,
    states=tuple(s.value for s in (_L.DRAFT, _L.SUBMITTED, _L.APPROVED, _L.REJECTED, _L.RECALLED)),
    transitions=(
        *_fan_in(
            "submit",
            (_L.DRAFT.value, _L.SUBMITTED.value, _L.APPROVED.value, _L.REJECTED.value),
            _L.SUBMITTED.value,
        ),
        *_fan_in("approve", _DECIDABLE_LINE_STATES, _L.APPROVED.value),
        *_fan_in("reject", _DECIDABLE_LINE_STATES, _L.REJECTED.value),
        *_fan_in("recall", _DECIDABLE_LINE_STATES, _L.RECALLED.value),
        Transition(_L.RECALLED.value, _L.DRAFT.value, "edit"),
    ),
)

# ---------------------------------------------------------------------------
# Approval submission
# ---------------------------------------------------------------------------

_S = SubmissionStatus

SUBMISSION_WORKFLOW = Workflow(
    name="approval_submission",
    description="A single pending approval request for a line and month",
    initial_state=_S.PENDING.value,
    states=tuple(s.value for s in _S),
    transitions=(
        Transition(_S.PENDING.value, _S.APPROVED.value, "approve"),
        Transition(_S.PENDING.value, _S.REJECTED.value, "reject"),
        Transition(_S.PENDING.value, _S.RECALLED.value, "recall"),
    ),
    terminal_states=(_S.APPROVED.value, _S.REJECTED.value, _S.RECALLED.value),
)

# ---------------------------------------------------------------------------
# Activity assignment
# ---------------------------------------------------------------------------

_A = AssignmentStatus

ASSIGNMENT_WORKFLOW = Workflow(
    name="activity_assignment",
    description="A business user's share of an activity-based PO line",
    initial_state=_A.ASSIGNED.value,
    states=tuple(s.value for s in _A),
    transitions=(
        *_fan_in("respond", (_A.ASSIGNED.value, _A.RESPONDED.value), _A.RESPONDED.value),
        Transition(_A.RESPONDED.value, _A.SUBMITTED.value, "submit"),
        *_fan_in("approve", (_A.RESPONDED.value, _A.SUBMITTED.value), _A.APPROVED.value),
        *_fan_in("return", (_A.ASSIGNED.value, _A.RESPONDED.value), _A.RETURNED.value),
        # A rejected activity hand-off goes back to finance as a return.
        Transition(_A.SUBMITTED.value, _A.RETURNED.value, "reject"),
        Transition(_A.SUBMITTED.value, _A.RESPONDED.value, "withdraw"),
        *_fan_in(
            "reset",
            (_A.ASSIGNED.value, _A.RESPONDED.value, _A.SUBMITTED.value, _A.RETURNED.value),
            _A.RECALLED.value,
        ),
    ),
    terminal_states=(_A.APPROVED.value,),
)

# ---------------------------------------------------------------------------
# Non-PO form assignment
# ---------------------------------------------------------------------------

_N = NonPoAssignmentStatus

SUBMISSION_EXISTS_GUARD = Guard(
    name="submission_exists",
    description="A form submission must exist before it can go for approval",
)

NON_PO_ASSIGNMENT_WORKFLOW = Workflow(
    name="non_po_assignment",
    description="A business user's ad-hoc accrual form",
    initial_state=_N.ASSIGNED.value,
    states=tuple(s.value for s in _N),
    transitions=(
        *_fan_in(
            "respond",
            (_N.ASSIGNED.value, _N.RESPONDED.value, _N.RETURNED.value),
            _N.RESPONDED.value,
        ),
        Transition(_N.RESPONDED.value, _N.SUBMITTED.value, "submit", SUBMISSION_EXISTS_GUARD),
        *_fan_in("return", (_N.ASSIGNED.value, _N.RESPONDED.value), _N.RETURNED.value),
        *_fan_in("approve", (_N.RESPONDED.value, _N.SUBMITTED.value), _N.APPROVED.value),
        *_fan_in("reject", (_N.RESPONDED.value, _N.SUBMITTED.value), _N.REJECTED.value),
    ),
    terminal_states=(_N.APPROVED.value, _N.REJECTED.value),
)
