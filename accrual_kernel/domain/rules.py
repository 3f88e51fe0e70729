"""
Approval rule domain types (``accrual_kernel.domain.rules``).

Responsibility
--------------
Structured conditions and actions of an approval rule (as produced by the
external rule-text interpreter), the approver directory contract, and the
result records of a rule-matching run.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Rules are evaluated in ascending ``priority`` (lower number first).
* Rule matching only ever *suggests* approvers; the submitter makes the
  final choice.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol
from uuid import UUID

from accrual_kernel.domain.accrual import PoCategory


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"
    BETWEEN = "between"


class ActionType(str, Enum):
    AUTO_ASSIGN = "autoAssign"
    ASSIGN_TO = "assignTo"
    REQUIRE_APPROVAL = "requireApproval"
    FLAG_FOR_REVIEW = "flagForReview"
    SET_STATUS = "setStatus"


class RuleScope(str, Enum):
    """Which PO line category a rule applies to."""

    PERIOD = "Period"
    ACTIVITY = "Activity"
    BOTH = "Both"

    def covers(self, category: PoCategory) -> bool:
        return self is RuleScope.BOTH or self.value == category.value


@dataclass(frozen=True)
class RuleCondition:
    field: str
    operator: ConditionOperator
    value: Any

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RuleCondition:
        return cls(
            field=str(data["field"]),
            operator=ConditionOperator(data["operator"]),
            value=data.get("value"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "operator": self.operator.value, "value": self.value}


@dataclass(frozen=True)
class RuleAction:
    """One action of a rule.

    ``user_id`` / ``user_name`` identify the approver for ``assignTo``;
    ``approver_id`` / ``approver_name`` for ``requireApproval``.  Other
    keys the interpreter produced are preserved in ``params``.
    """

    type: ActionType
    user_id: str | None = None
    user_name: str | None = None
    approver_id: str | None = None
    approver_name: str | None = None
    params: dict[str, Any] = field(default_factory=dict)

    _KNOWN_KEYS = ("type", "userId", "userName", "approverId", "approverName")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RuleAction:
        return cls(
            type=ActionType(data["type"]),
            user_id=data.get("userId"),
            user_name=data.get("userName"),
            approver_id=data.get("approverId"),
            approver_name=data.get("approverName"),
            params={k: v for k, v in data.items() if k not in cls._KNOWN_KEYS},
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type.value, **self.params}
        for key, val in (
            ("userId", self.user_id),
            ("userName", self.user_name),
            ("approverId", self.approver_id),
            ("approverName", self.approver_name),
        ):
            if val is not None:
                out[key] = val
        return out

    @property
    def target_id(self) -> str | None:
        if self.type is ActionType.ASSIGN_TO:
            return self.user_id
        if self.type is ActionType.REQUIRE_APPROVAL:
            return self.approver_id
        return None

    @property
    def target_name(self) -> str | None:
        if self.type is ActionType.ASSIGN_TO:
            return self.user_name
        if self.type is ActionType.REQUIRE_APPROVAL:
            return self.approver_name
        return None


@dataclass(frozen=True)
class ApprovalRule:
    id: UUID
    rule_name: str
    conditions: tuple[RuleCondition, ...]
    actions: tuple[RuleAction, ...]
    applies_to: RuleScope = RuleScope.BOTH
    priority: int = 0
    is_active: bool = True
    natural_language_text: str = ""


# ---------------------------------------------------------------------------
# Approver directory
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Approver:
    id: UUID
    name: str
    email: str | None = None
    roles: tuple[str, ...] = ()


class ApproverDirectory(Protocol):
    """Source of the users who may approve provisions."""

    def list_approvers(self) -> tuple[Approver, ...]:
        ...


class StaticApproverDirectory:
    """In-memory directory filtered to the configured approver roles."""

    def __init__(
        self,
        users: tuple[Approver, ...] | list[Approver],
        approver_roles: tuple[str, ...] = ("Finance Approver", "Finance Admin"),
    ) -> None:
        self._users = tuple(users)
        self._roles = frozenset(approver_roles)

    def list_approvers(self) -> tuple[Approver, ...]:
        return tuple(
            u for u in self._users
            if not u.roles or self._roles.intersection(u.roles)
        )


# ---------------------------------------------------------------------------
# Match results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApproverResolution:
    """How a named/id action was resolved against the directory."""

    reference: str
    approver_id: UUID | None
    method: str  # "id", "exact", "substring" or "unresolved"
    candidates: tuple[UUID, ...] = ()

    @property
    def ambiguous(self) -> bool:
        return len(self.candidates) > 1


@dataclass(frozen=True)
class RuleMatch:
    rule_id: UUID
    rule_name: str
    matching_line_count: int
    matching_line_ids: tuple[UUID, ...]
    suggested_approver_ids: tuple[UUID, ...]
    is_all_approvers: bool = False
    flags: tuple[str, ...] = ()
    resolutions: tuple[ApproverResolution, ...] = ()


@dataclass(frozen=True)
class RuleMatchResult:
    matched_rules: tuple[RuleMatch, ...]
    suggested_approver_ids: tuple[UUID, ...]
    all_approvers: tuple[Approver, ...]
