"""
accrual_kernel.services.provision_cache_service -- Activity provision cache job.

Responsibility:
    Materializes this month's activity final provisions into
    ``period_calculations.activity_final_provision`` so next month's run can
    show them as "previous month final provision" without recomputing
    history.

Architecture position:
    Kernel > Services.  Owns its sessions (one per run, from the injected
    session factory) because it runs outside the request's transaction.

Invariants enforced:
    - ``materialize`` is an explicit, synchronous job.
    - ``schedule`` submits the job to a worker thread and returns at once;
      a failed write is logged as ProvisionCachePersistenceError and
      swallowed, never raised to the reader that scheduled it.
"""

from __future__ import annotations

from concurrent.futures import Executor, Future, ThreadPoolExecutor
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from accrual_kernel.db.engine import session_scope
from accrual_kernel.domain.clock import Clock, SystemClock
from accrual_kernel.domain.values import DEFAULT_MONTH_POLICY, MonthFallbackPolicy
from accrual_kernel.exceptions import ProvisionCachePersistenceError
from accrual_kernel.logging_config import get_logger
from accrual_kernel.services.provision_service import ProvisionService

logger = get_logger("services.provision_cache")


class ProvisionCacheService:
    """Writes the activity provision cache, in the foreground or background."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        month_policy: MonthFallbackPolicy = DEFAULT_MONTH_POLICY,
        executor: Executor | None = None,
        max_workers: int = 1,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._month_policy = month_policy
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="provision-cache",
        )

    def materialize(
        self,
        processing_month: str,
        figures: dict[UUID, Decimal] | None = None,
    ) -> int:
        """Upsert cached final provisions for ``processing_month``.

        ``figures`` maps line id to final provision; when omitted the
        activity views are recomputed inside the job.  Returns the number
        of rows written.
        """
        with session_scope(self._session_factory) as session:
            provisions = ProvisionService(session, clock=self._clock, month_policy=self._month_policy)
            month = provisions.resolve_month(processing_month)
            if figures is None:
                figures = {
                    v.po_line_id: v.final_provision
                    for v in provisions.activity_lines(month.label)
                    if v.final_provision is not None
                }

            for line_id, final_provision in figures.items():
                provisions.upsert_calculation(
                    line_id, month, None, activity_final_provision=final_provision,
                )

        logger.info(
            "provision_cache_materialized",
            extra={"processing_month": processing_month, "rows": len(figures)},
        )
        return len(figures)

    def _run_swallowing_failures(
        self,
        processing_month: str,
        figures: dict[UUID, Decimal] | None,
    ) -> int | None:
        try:
            return self.materialize(processing_month, figures)
        except Exception as exc:
            warning = ProvisionCachePersistenceError(processing_month, exc)
            logger.warning(
                "provision_cache_write_failed",
                extra={"error_code": warning.code, "processing_month": processing_month,
                       "cause": warning.cause},
            )
            return None

    def schedule(
        self,
        processing_month: str,
        figures: dict[UUID, Decimal] | None = None,
    ) -> Future:
        """Run ``materialize`` in the background; the future never raises."""
        return self._executor.submit(
            self._run_swallowing_failures, processing_month,
            dict(figures) if figures is not None else None,
        )

    def shutdown(self, wait: bool = True) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=wait)
