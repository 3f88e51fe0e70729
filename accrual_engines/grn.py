"""
accrual_engines.grn -- GRN reconciliation.

Responsibility:
    GRN values are cumulative-to-date snapshots, not deltas.  This engine
    picks the authoritative snapshot for a calendar window (latest dated
    row inside the window) and for "as of now" (latest dated row overall).

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Rows without a parseable date are never selected.
    - Same-date ties resolve by the highest GRN document number, compared
      numerically where it holds digits ("G10" beats "G9"), so the
      result does not depend on row order; ``same_date_conflicts`` reports
      such ties when their values differ.
    - Idempotent under re-upload: identical inputs yield identical outputs.
"""

from __future__ import annotations

import re
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable
from uuid import UUID

from accrual_engines.calendar import month_label
from accrual_kernel.domain.accrual import GrnTransaction
from accrual_kernel.domain.views import LatestGrn


_DIGIT_RUN = re.compile(r"([0-9]+)")


def _doc_order(doc: str) -> tuple[tuple[int, int | str], ...]:
    """Natural order for document numbers: "G10" sorts after "G9"."""
    return tuple(
        (0, int(part)) if _DIGIT_RUN.fullmatch(part) else (1, part)
        for part in _DIGIT_RUN.split(doc) if part
    )


def _snapshot_key(txn: GrnTransaction) -> tuple:
    doc = txn.grn_doc or ""
    return (txn.grn_date, _doc_order(doc), doc)


def _latest(transactions: Iterable[GrnTransaction]) -> GrnTransaction | None:
    dated = [t for t in transactions if t.grn_date is not None]
    if not dated:
        return None
    return max(dated, key=_snapshot_key)


def month_value(
    transactions: Iterable[GrnTransaction],
    month_start: date,
    month_end: date,
) -> Decimal:
    """Value of the latest snapshot dated within [month_start, month_end]; 0 if none."""
    latest = _latest(
        t for t in transactions
        if t.grn_date is not None and month_start <= t.grn_date <= month_end
    )
    return latest.grn_value if latest is not None else Decimal("0")


def latest_known_value(transactions: Iterable[GrnTransaction]) -> LatestGrn:
    """Overall latest snapshot with its month label; ``(0, "")`` when empty."""
    latest = _latest(transactions)
    if latest is None:
        return LatestGrn.empty()
    return LatestGrn(latest.grn_value, month_label(latest.grn_date))


@dataclass(frozen=True)
class GrnConflict:
    """Two or more snapshots for one line on one date with different values."""

    po_line_id: UUID
    grn_date: date
    values: tuple[Decimal, ...]
    documents: tuple[str, ...]


def same_date_conflicts(transactions: Iterable[GrnTransaction]) -> tuple[GrnConflict, ...]:
    groups: dict[tuple[UUID, date], list[GrnTransaction]] = defaultdict(list)
    for txn in transactions:
        if txn.grn_date is not None:
            groups[(txn.po_line_id, txn.grn_date)].append(txn)

    conflicts = []
    for (line_id, grn_date), rows in sorted(groups.items(), key=lambda kv: (str(kv[0][0]), kv[0][1])):
        values = {r.grn_value for r in rows}
        if len(values) > 1:
            ordered = sorted(rows, key=_snapshot_key)
            conflicts.append(GrnConflict(
                po_line_id=line_id,
                grn_date=grn_date,
                values=tuple(r.grn_value for r in ordered),
                documents=tuple(r.grn_doc or "" for r in ordered),
            ))
    return tuple(conflicts)
