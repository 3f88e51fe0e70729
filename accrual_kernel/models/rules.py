"""
Module: accrual_kernel.models.rules
Responsibility: ORM persistence for administrator-defined approval rules.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - applies_to limited to Period/Activity/Both (CHECK).
    - Conditions and actions are stored as the structured JSON produced by
      the rule-text interpreter and validated on conversion.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from accrual_kernel.db.base import TrackedBase, UUIDString
from accrual_kernel.domain.rules import (
    ApprovalRule,
    RuleAction,
    RuleCondition,
    RuleScope,
)


class ApprovalRuleModel(TrackedBase):
    __tablename__ = "approval_rules"

    __table_args__ = (
        CheckConstraint(
            "applies_to IN ('Period', 'Activity', 'Both')",
            name="ck_approval_rules_valid_scope",
        ),
        Index("ix_approval_rules_active_priority", "is_active", "priority"),
    )

    rule_name: Mapped[str] = mapped_column(String(200), nullable=False)
    natural_language_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    parsed_conditions: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    parsed_actions: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    applies_to: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RuleScope.BOTH.value,
    )
    priority: Mapped[int] = mapped_column(nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)
    created_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return f"<ApprovalRule {self.rule_name} priority={self.priority}>"

    def to_dto(self) -> ApprovalRule:
        return ApprovalRule(
            id=self.id,
            rule_name=self.rule_name,
            conditions=tuple(RuleCondition.from_dict(c) for c in self.parsed_conditions or ()),
            actions=tuple(RuleAction.from_dict(a) for a in self.parsed_actions or ()),
            applies_to=RuleScope(self.applies_to),
            priority=self.priority,
            is_active=self.is_active,
            natural_language_text=self.natural_language_text,
        )
