"""
accrual_config -- single public entrypoint for settings.

Responsibility:
    ``get_active_settings()`` is the only way runtime code obtains settings.
    ``month_fallback_policy()`` bridges the configured fallback month into
    the kernel's ``MonthFallbackPolicy``.

Architecture position:
    Configuration sits above ``accrual_kernel``.  The kernel never imports
    from this package; services receive plain values at construction.
"""

from __future__ import annotations

import logging
from pathlib import Path

from accrual_config.loader import load_settings
from accrual_config.schema import AccrualSettings, IngestionSettings
from accrual_engines.calendar import parse_processing_month
from accrual_kernel.domain.values import MonthFallbackPolicy

_logger = logging.getLogger("accrual_kernel.config")

DEFAULT_SETTINGS_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_settings(path: Path | None = None) -> AccrualSettings:
    """Load settings from ``path`` (or the packaged defaults)."""
    settings_path = path or DEFAULT_SETTINGS_PATH
    settings = load_settings(settings_path)
    _logger.info(
        "accrual_settings_loaded",
        extra={
            "path": str(settings_path),
            "default_processing_month": settings.default_processing_month,
            "config_cache_ttl_seconds": settings.config_cache_ttl_seconds,
            "ingestion_batch_size": settings.ingestion.batch_size,
        },
    )
    return settings


def month_fallback_policy(settings: AccrualSettings) -> MonthFallbackPolicy:
    """Translate ``fallback_processing_month`` into a kernel policy.

    Raises:
        ValueError: the configured fallback month itself is malformed.
    """
    if settings.fallback_processing_month is None:
        return MonthFallbackPolicy.strict()
    parsed = parse_processing_month(settings.fallback_processing_month)
    if not parsed.ok:
        raise ValueError(
            f"fallback_processing_month is malformed: {settings.fallback_processing_month!r}"
        )
    return MonthFallbackPolicy(fallback=parsed.value)


__all__ = [
    "AccrualSettings",
    "IngestionSettings",
    "DEFAULT_SETTINGS_PATH",
    "get_active_settings",
    "month_fallback_policy",
]
