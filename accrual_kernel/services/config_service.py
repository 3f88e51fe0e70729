"""
accrual_kernel.services.config_service -- Runtime key/value configuration.

Responsibility:
    Serves the ``system_config`` table (chiefly the current processing
    month) through an injected ``TTLCache`` and invalidates it on update.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/, utils/.

Invariants enforced:
    - Reads within the TTL never touch the database.
    - ``update_config`` invalidates the cache in the same call, so the next
      read in this process sees the new value.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from accrual_engines.calendar import resolve_processing_month
from accrual_kernel.domain.clock import Clock, SystemClock
from accrual_kernel.domain.values import (
    DEFAULT_MONTH_POLICY,
    MonthFallbackPolicy,
    ProcessingMonth,
)
from accrual_kernel.logging_config import get_logger
from accrual_kernel.models.system import SystemConfigModel
from accrual_kernel.services.audit_service import AuditService
from accrual_kernel.utils.ttl_cache import TTLCache

logger = get_logger("services.config")

PROCESSING_MONTH_KEY = "processing_month"
_CONFIG_MAP_KEY = "config_map"


class ConfigService:
    """Cached access to the system_config table."""

    def __init__(
        self,
        session: Session,
        cache: TTLCache[dict[str, str]],
        auditor: AuditService | None = None,
        clock: Clock | None = None,
        default_processing_month: str = "Feb 2026",
        month_policy: MonthFallbackPolicy = DEFAULT_MONTH_POLICY,
    ) -> None:
        self._session = session
        self._cache = cache
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditService(session, self._clock)
        self._default_month = default_processing_month
        self._month_policy = month_policy

    def _load(self) -> dict[str, str]:
        rows = self._session.scalars(select(SystemConfigModel))
        config = {row.config_key: row.config_value for row in rows}
        logger.debug("config_map_loaded", extra={"keys": sorted(config)})
        return config

    def get_config_map(self) -> dict[str, str]:
        return dict(self._cache.get_or_load(_CONFIG_MAP_KEY, self._load))

    def get_value(self, key: str, default: str | None = None) -> str | None:
        return self.get_config_map().get(key, default)

    def processing_month_label(self) -> str:
        return self.get_value(PROCESSING_MONTH_KEY) or self._default_month

    def processing_month(self) -> ProcessingMonth:
        """The configured processing month, resolved through the fallback policy."""
        label = self.processing_month_label()
        month, error = resolve_processing_month(label, self._month_policy)
        if error is not None:
            logger.warning(
                "processing_month_fallback",
                extra={"raw_label": label, "fallback": month.label, "error_code": error.code},
            )
        return month

    def update_config(self, key: str, value: str, updated_by: UUID | None = None) -> None:
        model = self._session.execute(
            select(SystemConfigModel).where(SystemConfigModel.config_key == key)
        ).scalar_one_or_none()
        now = self._clock.now()
        if model is None:
            self._session.add(SystemConfigModel(
                config_key=key, config_value=value, updated_by=updated_by, updated_at=now,
            ))
            previous = None
        else:
            previous = model.config_value
            model.config_value = value
            model.updated_by = updated_by
            model.updated_at = now
        self._session.flush()
        self._cache.invalidate()

        self._auditor.record(
            "config_updated", "system_config", key, updated_by,
            {"previous": previous, "value": value},
        )
        logger.info("config_updated", extra={"config_key": key, "config_value": value})
