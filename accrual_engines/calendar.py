"""
accrual_engines.calendar -- Date parsing and month arithmetic.

Responsibility:
    Parse the heterogeneous date strings found in uploaded PO/GRN files,
    count inclusive day overlaps between a contract and a calendar window,
    and turn a "Mon YYYY" processing-month label into month boundaries.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import accrual_kernel/domain types and exceptions.

Invariants enforced:
    - Parsing never raises on bad data: failures come back as
      ``Parsed.failure(...)`` (or None from ``parse_flexible_date``).
    - Overlap counts are inclusive of both endpoints and never negative, so
      consecutive month windows partition a contract without gaps or
      double counts.
    - A malformed processing-month label resolves through an explicit
      ``MonthFallbackPolicy``; substitution is reported to the caller.
"""

from __future__ import annotations

import calendar as _stdlib_calendar
from datetime import date, datetime

from accrual_kernel.domain.values import (
    DEFAULT_MONTH_POLICY,
    MONTH_ABBREVIATIONS,
    MonthFallbackPolicy,
    Parsed,
    ProcessingMonth,
)
from accrual_kernel.exceptions import (
    MalformedDateError,
    MalformedProcessingMonthError,
)

_FULL_MONTH_NAMES = tuple(name.lower() for name in _stdlib_calendar.month_name[1:])


def parse_date(raw: object) -> Parsed[date]:
    """Parse ``MM/DD/YYYY`` or an ISO-8601 date/datetime string.

    ``date``/``datetime`` instances pass through.  Anything else, including
    impossible calendar dates such as ``02/30/2026``, is a failure.
    """
    if isinstance(raw, datetime):
        return Parsed.success(raw.date())
    if isinstance(raw, date):
        return Parsed.success(raw)
    if not isinstance(raw, str) or not raw.strip():
        return Parsed.failure(MalformedDateError(raw))

    text = raw.strip()
    if "/" in text:
        parts = text.split("/")
        if len(parts) != 3:
            return Parsed.failure(MalformedDateError(raw))
        try:
            month, day, year = (int(p) for p in parts)
            return Parsed.success(date(year, month, day))
        except (ValueError, OverflowError):
            return Parsed.failure(MalformedDateError(raw))

    try:
        return Parsed.success(date.fromisoformat(text))
    except ValueError:
        pass
    try:
        return Parsed.success(datetime.fromisoformat(text).date())
    except ValueError:
        return Parsed.failure(MalformedDateError(raw))


def parse_flexible_date(raw: object) -> date | None:
    """Like ``parse_date`` but collapses failures to None ("unknown date")."""
    return parse_date(raw).value


def overlap_days(
    period_start: date,
    period_end: date,
    range_start: date,
    range_end: date,
) -> int:
    """Inclusive count of days shared by two closed date ranges (0 if disjoint)."""
    start = max(period_start, range_start)
    end = min(period_end, range_end)
    if start > end:
        return 0
    return (end - start).days + 1


def month_label(d: date) -> str:
    """``date(2026, 2, 5)`` -> ``"Feb 2026"``."""
    return f"{MONTH_ABBREVIATIONS[d.month - 1]} {d.year}"


def _month_number(token: str) -> int | None:
    lowered = token.strip().lower()
    for idx, abbr in enumerate(MONTH_ABBREVIATIONS):
        if lowered == abbr.lower() or lowered == _FULL_MONTH_NAMES[idx]:
            return idx + 1
    return None


def parse_processing_month(label: object) -> Parsed[ProcessingMonth]:
    """Parse a ``"Mon YYYY"`` label (full month names are accepted too)."""
    if not isinstance(label, str):
        return Parsed.failure(MalformedProcessingMonthError(label))
    parts = label.split()
    if len(parts) != 2:
        return Parsed.failure(MalformedProcessingMonthError(label))

    month = _month_number(parts[0])
    if month is None or not parts[1].isdigit() or len(parts[1]) != 4:
        return Parsed.failure(MalformedProcessingMonthError(label))
    return Parsed.success(ProcessingMonth(int(parts[1]), month))


def resolve_processing_month(
    label: object,
    policy: MonthFallbackPolicy = DEFAULT_MONTH_POLICY,
) -> tuple[ProcessingMonth, MalformedProcessingMonthError | None]:
    """Parse ``label`` and apply ``policy`` when it is malformed.

    Returns the month to process and the malformed-input error that caused
    a substitution (None when the label parsed).

    Raises:
        MalformedProcessingMonthError: label is malformed and the policy is
            strict (no fallback month).
    """
    parsed = parse_processing_month(label)
    if parsed.ok:
        return parsed.value, None
    if policy.fallback is None:
        raise parsed.error
    return policy.fallback, parsed.error
