"""
Value objects shared by engines and services (``accrual_kernel.domain.values``).

Responsibility
--------------
Immutable calendar values (``ProcessingMonth``), the ``Parsed`` result type
used to route malformed input through the boundary as data instead of
exceptions, and the explicit ``MonthFallbackPolicy`` applied when a
processing-month label cannot be parsed.

Architecture position
---------------------
**Kernel domain layer** -- ZERO I/O.  Imports only from ``exceptions``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Generic, TypeVar

from accrual_kernel.exceptions import MalformedInputError

T = TypeVar("T")

MONTH_ABBREVIATIONS: tuple[str, ...] = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)


@dataclass(frozen=True)
class Parsed(Generic[T]):
    """Outcome of parsing untrusted input.

    Exactly one of ``value`` / ``error`` is set.  ``error`` carries the
    malformed-input kind so callers decide the fallback explicitly.
    """

    value: T | None = None
    error: MalformedInputError | None = None

    def __post_init__(self) -> None:
        if (self.value is None) == (self.error is None):
            raise ValueError("Parsed requires exactly one of value or error")

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> Parsed[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: MalformedInputError) -> Parsed[T]:
        return cls(error=error)


@dataclass(frozen=True)
class ProcessingMonth:
    """A calendar month being processed, with its previous month."""

    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"month must be 1..12, got {self.month}")

    @property
    def month_start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def month_end(self) -> date:
        return self.next().month_start - timedelta(days=1)

    @property
    def label(self) -> str:
        return f"{MONTH_ABBREVIATIONS[self.month - 1]} {self.year}"

    def previous(self) -> ProcessingMonth:
        if self.month == 1:
            return ProcessingMonth(self.year - 1, 12)
        return ProcessingMonth(self.year, self.month - 1)

    def next(self) -> ProcessingMonth:
        if self.month == 12:
            return ProcessingMonth(self.year + 1, 1)
        return ProcessingMonth(self.year, self.month + 1)

    @property
    def prev_month_start(self) -> date:
        return self.previous().month_start

    @property
    def prev_month_end(self) -> date:
        return self.previous().month_end

    @property
    def prev_month_label(self) -> str:
        return self.previous().label

    def __str__(self) -> str:
        return self.label


@dataclass(frozen=True)
class MonthFallbackPolicy:
    """What to use when a processing-month label is malformed.

    ``fallback`` of None means "do not substitute": resolution raises the
    malformed-input error instead.
    """

    fallback: ProcessingMonth | None

    @classmethod
    def fixed(cls, year: int, month: int) -> MonthFallbackPolicy:
        return cls(fallback=ProcessingMonth(year, month))

    @classmethod
    def strict(cls) -> MonthFallbackPolicy:
        return cls(fallback=None)


DEFAULT_MONTH_POLICY = MonthFallbackPolicy.fixed(2026, 2)
