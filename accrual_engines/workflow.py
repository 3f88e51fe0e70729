"""
accrual_engines.workflow -- Transition lookup and recall arithmetic.

Responsibility:
    Answer "is this status change legal, and where does it lead" for the
    workflows declared in ``accrual_kernel.domain.workflow``, and decide
    the PO line outcome of an activity-assignment recall.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Services call ``require_transition`` before touching any row, so a
      rejected transition leaves the system as if nothing was attempted.
    - An activity line is fully recalled only when no remaining assignment
      is Assigned, Responded or Approved.
"""

from __future__ import annotations

from typing import Iterable

from accrual_kernel.domain.accrual import ACTIVE_ASSIGNMENT_STATUSES, AssignmentStatus
from accrual_kernel.domain.workflow import Transition, Workflow
from accrual_kernel.exceptions import InvalidTransitionError


def find_transition(workflow: Workflow, from_state: str, action: str) -> Transition | None:
    for transition in workflow.transitions:
        if transition.from_state == from_state and transition.action == action:
            return transition
    return None


def can_transition(workflow: Workflow, from_state: str, action: str) -> bool:
    return find_transition(workflow, from_state, action) is not None


def require_transition(
    workflow: Workflow,
    entity_id: object,
    from_state: str,
    action: str,
) -> Transition:
    """Return the transition or raise InvalidTransitionError."""
    transition = find_transition(workflow, from_state, action)
    if transition is None:
        raise InvalidTransitionError(workflow.name, str(entity_id), from_state, action)
    return transition


def is_fully_recalled(remaining: Iterable[AssignmentStatus]) -> bool:
    """True when none of the remaining assignments keeps the line active."""
    return not any(status in ACTIVE_ASSIGNMENT_STATUSES for status in remaining)
