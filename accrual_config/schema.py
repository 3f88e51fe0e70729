"""
Settings schema (``accrual_config.schema``).

Frozen dataclasses describing the YAML settings file.  Every field has a
default matching ``defaults.yaml`` so a partial file only overrides what
it names.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class IngestionSettings:
    batch_size: int = 100
    max_workers: int = 8

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("ingestion.batch_size must be >= 1")
        if self.max_workers < 1:
            raise ValueError("ingestion.max_workers must be >= 1")


@dataclass(frozen=True)
class AccrualSettings:
    """Runtime settings for the accrual kernel services."""

    database_url: str = "sqlite:///accrual.db"
    default_processing_month: str = "Feb 2026"
    # None => malformed processing-month labels raise instead of falling back
    fallback_processing_month: str | None = "Feb 2026"
    config_cache_ttl_seconds: float = 30.0
    provision_cache_workers: int = 1
    approver_roles: tuple[str, ...] = ("Finance Approver", "Finance Admin")
    ingestion: IngestionSettings = field(default_factory=IngestionSettings)

    def __post_init__(self) -> None:
        if self.config_cache_ttl_seconds <= 0:
            raise ValueError("config_cache_ttl_seconds must be positive")
