"""
Module: accrual_engines
Responsibility:
    Package entrypoint re-exporting the pure calculation engines: calendar
    arithmetic, GRN reconciliation, the provision calculator, rule matching
    and workflow transition lookup.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import accrual_kernel.domain types and accrual_kernel.exceptions.
    MUST NOT import accrual_kernel services, models, selectors or db.

Invariants enforced:
    - Purity: engines never read the clock; dates are passed in.
    - Decimal-only arithmetic for amounts.
    - Determinism: identical inputs always produce identical outputs.
"""

from accrual_engines.calendar import (
    month_label,
    overlap_days,
    parse_date,
    parse_flexible_date,
    parse_processing_month,
    resolve_processing_month,
)
from accrual_engines.grn import (
    GrnConflict,
    latest_known_value,
    month_value,
    same_date_conflicts,
)
from accrual_engines.provision import (
    activity_final_provision,
    compute_activity_line,
    compute_period_line,
    period_final_provision,
    period_line_in_scope,
    primary_assignment,
    round_amount,
)
from accrual_engines.rule_matching import (
    evaluate_condition,
    match_rules,
    resolve_approver,
    rule_matches_line,
)
from accrual_engines.workflow import (
    can_transition,
    find_transition,
    is_fully_recalled,
    require_transition,
)

__all__ = [
    "month_label",
    "overlap_days",
    "parse_date",
    "parse_flexible_date",
    "parse_processing_month",
    "resolve_processing_month",
    "GrnConflict",
    "latest_known_value",
    "month_value",
    "same_date_conflicts",
    "activity_final_provision",
    "compute_activity_line",
    "compute_period_line",
    "period_final_provision",
    "period_line_in_scope",
    "primary_assignment",
    "round_amount",
    "evaluate_condition",
    "match_rules",
    "resolve_approver",
    "rule_matches_line",
    "can_transition",
    "find_transition",
    "is_fully_recalled",
    "require_transition",
]
