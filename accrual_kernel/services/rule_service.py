"""
accrual_kernel.services.rule_service -- Approval rule maintenance and matching.

Responsibility:
    CRUD for administrator-defined approval rules, and matching the active
    rules against a selection of PO lines enriched with their calculated
    figures for a processing month.

Architecture position:
    Kernel > Services.  Matching itself is the pure
    ``accrual_engines.rule_matching.match_rules``; this service only loads
    rules, enriches lines and asks the approver directory.

Invariants enforced:
    - Conditions and actions are validated by parsing them into domain
      types before anything is stored.
    - Matching is read-only.
"""

from __future__ import annotations

from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from accrual_engines.rule_matching import match_rules
from accrual_kernel.domain.accrual import PoCategory
from accrual_kernel.domain.clock import Clock, SystemClock
from accrual_kernel.domain.rules import (
    ApprovalRule,
    ApproverDirectory,
    RuleAction,
    RuleCondition,
    RuleMatchResult,
    RuleScope,
)
from accrual_kernel.domain.values import DEFAULT_MONTH_POLICY, MonthFallbackPolicy
from accrual_kernel.domain.views import ActivityLineView, EnrichedLine, PeriodLineView
from accrual_kernel.exceptions import EmptySelectionError, InvalidRuleError, RuleNotFoundError
from accrual_kernel.logging_config import get_logger
from accrual_kernel.models.rules import ApprovalRuleModel
from accrual_kernel.selectors.accrual_selector import AccrualSelector
from accrual_kernel.services.audit_service import AuditService
from accrual_kernel.services.provision_service import ProvisionService

logger = get_logger("services.rules")


def _parse_conditions(raw: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
    try:
        return [RuleCondition.from_dict(c).to_dict() for c in raw]
    except (KeyError, ValueError, TypeError) as exc:
        raise InvalidRuleError(f"bad condition: {exc}") from exc


def _parse_actions(raw: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
    try:
        return [RuleAction.from_dict(a).to_dict() for a in raw]
    except (KeyError, ValueError, TypeError) as exc:
        raise InvalidRuleError(f"bad action: {exc}") from exc


def _parse_scope(raw: str) -> RuleScope:
    try:
        return RuleScope(raw)
    except ValueError:
        raise InvalidRuleError(f"unknown scope {raw!r}") from None


def enrich(view: PeriodLineView | ActivityLineView) -> EnrichedLine:
    """Project a computed line view onto the fields rules may reference."""
    if isinstance(view, PeriodLineView):
        suggested = view.suggested_provision
    else:
        suggested = view.final_provision
    return EnrichedLine(
        line=view.line,
        current_month_true_up=view.current_month_true_up,
        prev_month_true_up=view.prev_month_true_up,
        final_provision=view.final_provision,
        suggested_provision=suggested,
    )


class RuleService:
    """Maintains approval rules and suggests approvers for line selections."""

    def __init__(
        self,
        session: Session,
        directory: ApproverDirectory,
        auditor: AuditService | None = None,
        clock: Clock | None = None,
        month_policy: MonthFallbackPolicy = DEFAULT_MONTH_POLICY,
    ) -> None:
        self._session = session
        self._directory = directory
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditService(session, self._clock)
        self._month_policy = month_policy

    def _load(self, rule_id: UUID) -> ApprovalRuleModel:
        model = self._session.get(ApprovalRuleModel, rule_id)
        if model is None:
            raise RuleNotFoundError(str(rule_id))
        return model

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create_rule(
        self,
        rule_name: str,
        conditions: Sequence[dict[str, Any]],
        actions: Sequence[dict[str, Any]],
        applies_to: str = RuleScope.BOTH.value,
        priority: int = 0,
        natural_language_text: str = "",
        created_by: UUID | None = None,
    ) -> ApprovalRule:
        if not rule_name or not rule_name.strip():
            raise InvalidRuleError("rule name is required")
        model = ApprovalRuleModel(
            rule_name=rule_name.strip(),
            natural_language_text=natural_language_text,
            parsed_conditions=_parse_conditions(conditions),
            parsed_actions=_parse_actions(actions),
            applies_to=_parse_scope(applies_to).value,
            priority=priority,
            is_active=True,
            created_by=created_by,
        )
        self._session.add(model)
        self._session.flush()

        self._auditor.record(
            "rule_created", "approval_rule", model.id, created_by,
            {"rule_name": model.rule_name, "applies_to": model.applies_to},
        )
        logger.info("rule_created", extra={"rule_id": str(model.id), "rule_name": model.rule_name})
        return model.to_dto()

    def update_rule(
        self,
        rule_id: UUID,
        actor_id: UUID | None = None,
        *,
        rule_name: str | None = None,
        conditions: Sequence[dict[str, Any]] | None = None,
        actions: Sequence[dict[str, Any]] | None = None,
        applies_to: str | None = None,
        priority: int | None = None,
        natural_language_text: str | None = None,
    ) -> ApprovalRule:
        """Change the given attributes of a rule; omitted ones are kept."""
        model = self._load(rule_id)
        changes: dict[str, Any] = {}
        if rule_name is not None:
            if not rule_name.strip():
                raise InvalidRuleError("rule name is required")
            changes["rule_name"] = rule_name.strip()
        if conditions is not None:
            changes["parsed_conditions"] = _parse_conditions(conditions)
        if actions is not None:
            changes["parsed_actions"] = _parse_actions(actions)
        if applies_to is not None:
            changes["applies_to"] = _parse_scope(applies_to).value
        if priority is not None:
            changes["priority"] = priority
        if natural_language_text is not None:
            changes["natural_language_text"] = natural_language_text

        for attr, value in changes.items():
            setattr(model, attr, value)
        self._session.flush()

        self._auditor.record(
            "rule_updated", "approval_rule", model.id, actor_id, {"fields": sorted(changes)},
        )
        logger.info("rule_updated", extra={"rule_id": str(model.id), "fields": sorted(changes)})
        return model.to_dto()

    def set_rule_active(self, rule_id: UUID, is_active: bool, actor_id: UUID | None = None) -> ApprovalRule:
        model = self._load(rule_id)
        model.is_active = is_active
        self._session.flush()

        self._auditor.record(
            "rule_activated" if is_active else "rule_deactivated",
            "approval_rule", model.id, actor_id,
        )
        logger.info("rule_active_changed", extra={"rule_id": str(model.id), "is_active": is_active})
        return model.to_dto()

    def delete_rule(self, rule_id: UUID, actor_id: UUID | None = None) -> None:
        model = self._load(rule_id)
        name = model.rule_name
        self._session.delete(model)
        self._session.flush()

        self._auditor.record("rule_deleted", "approval_rule", rule_id, actor_id, {"rule_name": name})
        logger.info("rule_deleted", extra={"rule_id": str(rule_id)})

    def list_rules(self, active_only: bool = False) -> list[ApprovalRule]:
        stmt = select(ApprovalRuleModel).order_by(
            ApprovalRuleModel.priority, ApprovalRuleModel.rule_name,
        )
        if active_only:
            stmt = stmt.where(ApprovalRuleModel.is_active.is_(True))
        return [m.to_dto() for m in self._session.scalars(stmt)]

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def enriched_lines(self, line_ids: Sequence[UUID], processing_month: str) -> list[EnrichedLine]:
        """Selected lines with their figures for ``processing_month``.

        Period lines outside the month still get a view (zero days), so a
        rule on static attributes matches them too.
        """
        provisions = ProvisionService(
            self._session, auditor=self._auditor, clock=self._clock,
            month_policy=self._month_policy,
        )
        lines = AccrualSelector(self._session).lines(line_ids=line_ids)
        enriched: list[EnrichedLine] = []
        for line in lines:
            view = provisions.line_view(line.id, processing_month)
            enriched.append(enrich(view))
        return enriched

    def match_rules(self, line_ids: Sequence[UUID], processing_month: str) -> RuleMatchResult:
        """Suggest approvers for the selected lines from the active rules."""
        if not line_ids:
            raise EmptySelectionError("PO lines")

        lines = self.enriched_lines(line_ids, processing_month)
        rules = self.list_rules(active_only=True)
        approvers = self._directory.list_approvers()
        result = match_rules(rules, lines, approvers)

        ambiguous = [
            r for m in result.matched_rules for r in m.resolutions if r.ambiguous
        ]
        if ambiguous:
            logger.warning(
                "approver_name_ambiguous",
                extra={"references": sorted({r.reference for r in ambiguous})},
            )
        logger.info(
            "rules_matched",
            extra={
                "lines": len(lines),
                "period_lines": sum(1 for ln in lines if ln.category is PoCategory.PERIOD),
                "matched_rules": len(result.matched_rules),
                "suggested_approvers": len(result.suggested_approver_ids),
            },
        )
        return result
