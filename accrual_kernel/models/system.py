"""
Module: accrual_kernel.models.system
Responsibility: ORM persistence for runtime key/value configuration and
    the append-only audit log of user actions.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One row per configuration key (UNIQUE config_key).
    - Audit log rows are never updated through the ORM (before_update
      listener).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Index, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column

from accrual_kernel.db.base import Base, UUIDString


class SystemConfigModel(Base):
    __tablename__ = "system_config"

    config_key: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    config_value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)


class AuditLogModel(Base):
    __tablename__ = "audit_log"

    __table_args__ = (
        Index("ix_audit_log_entity", "entity_type", "entity_id"),
    )

    actor_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<AuditLog {self.action} {self.entity_type}:{self.entity_id}>"


@event.listens_for(AuditLogModel, "before_update")
def prevent_audit_update(mapper, connection, target):
    raise ValueError("Audit log entries are append-only")
