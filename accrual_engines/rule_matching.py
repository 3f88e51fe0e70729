"""
accrual_engines.rule_matching -- Approver suggestion from approval rules.

Responsibility:
    Evaluate active approval rules against a batch of enriched PO lines and
    collect the approvers their actions point to.  The output is a
    pre-selection for the submitter, never an authoritative assignment.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Rules are evaluated in ascending priority; inactive rules and rules
      whose scope excludes a line's category are ignored.
    - Conditions are AND-combined; an empty list matches every line.
    - A missing (None) line field fails the condition it is referenced by.
    - Approver references resolve by id, then exact name, then substring.
      Substring hits naming several approvers keep the first candidate and
      are reported as ambiguous in the rule's resolutions.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Sequence
from uuid import UUID

from accrual_kernel.domain.rules import (
    ActionType,
    ApprovalRule,
    Approver,
    ApproverResolution,
    ConditionOperator,
    RuleCondition,
    RuleMatch,
    RuleMatchResult,
)
from accrual_kernel.domain.views import EnrichedLine


def _to_number(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    try:
        number = Decimal(str(value).strip().replace(",", ""))
    except InvalidOperation:
        return None
    return number if number.is_finite() else None


def _to_text(value: Any) -> str:
    return str(value).strip().lower()


def _bounds(value: Any) -> tuple[Decimal, Decimal] | None:
    if isinstance(value, str):
        parts = value.split(",")
    elif isinstance(value, (list, tuple)):
        parts = list(value)
    else:
        return None
    if len(parts) != 2:
        return None
    low, high = _to_number(parts[0]), _to_number(parts[1])
    if low is None or high is None:
        return None
    return low, high


def _same(line_value: Any, cond_value: Any) -> bool:
    # Numeric line fields compare by value so 90000.000000000 equals "90000".
    if isinstance(line_value, (Decimal, int, float)) and not isinstance(line_value, bool):
        left, right = _to_number(line_value), _to_number(cond_value)
        if left is not None and right is not None:
            return left == right
    return _to_text(line_value) == _to_text(cond_value)


def evaluate_condition(line: EnrichedLine, condition: RuleCondition) -> bool:
    line_value = line.field_value(condition.field)
    if line_value is None:
        return False

    op = condition.operator
    if op is ConditionOperator.EQUALS:
        return _same(line_value, condition.value)
    if op is ConditionOperator.NOT_EQUALS:
        return not _same(line_value, condition.value)
    if op is ConditionOperator.CONTAINS:
        return _to_text(condition.value) in _to_text(line_value)
    if op is ConditionOperator.STARTS_WITH:
        return _to_text(line_value).startswith(_to_text(condition.value))

    number = _to_number(line_value)
    if number is None:
        return False
    if op is ConditionOperator.BETWEEN:
        bounds = _bounds(condition.value)
        return bounds is not None and bounds[0] <= number <= bounds[1]

    threshold = _to_number(condition.value)
    if threshold is None:
        return False
    if op is ConditionOperator.GREATER_THAN:
        return number > threshold
    if op is ConditionOperator.LESS_THAN:
        return number < threshold
    return False


def rule_matches_line(rule: ApprovalRule, line: EnrichedLine) -> bool:
    if not rule.applies_to.covers(line.category):
        return False
    return all(evaluate_condition(line, c) for c in rule.conditions)


def resolve_approver(
    reference_id: str | None,
    reference_name: str | None,
    approvers: Sequence[Approver],
) -> ApproverResolution:
    """Resolve an action's approver reference against the directory."""
    if reference_id:
        for approver in approvers:
            if str(approver.id) == str(reference_id).strip():
                return ApproverResolution(str(reference_id), approver.id, "id", (approver.id,))

    if not reference_name or not reference_name.strip():
        return ApproverResolution(str(reference_id or ""), None, "unresolved")

    wanted = _to_text(reference_name)
    exact = tuple(a.id for a in approvers if _to_text(a.name) == wanted)
    if exact:
        return ApproverResolution(reference_name, exact[0], "exact", exact)

    partial = tuple(
        a.id for a in approvers
        if wanted in _to_text(a.name) or (_to_text(a.name) and _to_text(a.name) in wanted)
    )
    if partial:
        return ApproverResolution(reference_name, partial[0], "substring", partial)
    return ApproverResolution(reference_name, None, "unresolved")


def _append_unique(target: list[UUID], ids: Iterable[UUID]) -> None:
    for approver_id in ids:
        if approver_id not in target:
            target.append(approver_id)


def match_rules(
    rules: Iterable[ApprovalRule],
    lines: Sequence[EnrichedLine],
    approvers: Sequence[Approver],
) -> RuleMatchResult:
    """Match active rules against ``lines`` and union the suggested approvers."""
    matched: list[RuleMatch] = []
    suggested: list[UUID] = []

    for rule in sorted(rules, key=lambda r: (r.priority, r.rule_name)):
        if not rule.is_active:
            continue
        hits = tuple(line.id for line in lines if rule_matches_line(rule, line))
        if not hits:
            continue

        rule_approvers: list[UUID] = []
        resolutions: list[ApproverResolution] = []
        flags: list[str] = []
        is_all = False
        for action in rule.actions:
            if action.type is ActionType.AUTO_ASSIGN:
                is_all = True
                _append_unique(rule_approvers, (a.id for a in approvers))
            elif action.type in (ActionType.ASSIGN_TO, ActionType.REQUIRE_APPROVAL):
                resolution = resolve_approver(action.target_id, action.target_name, approvers)
                resolutions.append(resolution)
                if resolution.approver_id is not None:
                    _append_unique(rule_approvers, (resolution.approver_id,))
            elif action.type is ActionType.SET_STATUS:
                flags.append(f"setStatus:{action.params.get('status', '')}")
            else:
                flags.append(action.type.value)

        _append_unique(suggested, rule_approvers)
        matched.append(RuleMatch(
            rule_id=rule.id,
            rule_name=rule.rule_name,
            matching_line_count=len(hits),
            matching_line_ids=hits,
            suggested_approver_ids=tuple(rule_approvers),
            is_all_approvers=is_all,
            flags=tuple(flags),
            resolutions=tuple(resolutions),
        ))

    return RuleMatchResult(
        matched_rules=tuple(matched),
        suggested_approver_ids=tuple(suggested),
        all_approvers=tuple(approvers),
    )
