"""
accrual_kernel.services.audit_service -- Append-only action log.

Responsibility:
    Records who did what to which entity, in the same transaction as the
    change itself, so a rolled-back operation leaves no audit row either.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from accrual_kernel.domain.clock import Clock, SystemClock
from accrual_kernel.logging_config import get_logger
from accrual_kernel.models.system import AuditLogModel

logger = get_logger("services.audit")


def _jsonable(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    return value


@dataclass(frozen=True)
class AuditEntry:
    action: str
    entity_type: str
    entity_id: str | None
    actor_id: UUID | None
    details: dict[str, Any]
    occurred_at: datetime


class AuditService:
    """Writes and reads the audit log."""

    def __init__(self, session: Session, clock: Clock | None = None) -> None:
        self._session = session
        self._clock = clock or SystemClock()

    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: object | None,
        actor_id: UUID | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self._session.add(AuditLogModel(
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            details=_jsonable(details or {}),
            occurred_at=self._clock.now(),
        ))
        logger.debug(
            "audit_recorded",
            extra={"action": action, "entity_type": entity_type, "entity_id": str(entity_id)},
        )

    def history(
        self,
        entity_type: str | None = None,
        entity_id: object | None = None,
    ) -> list[AuditEntry]:
        stmt = select(AuditLogModel).order_by(AuditLogModel.occurred_at, AuditLogModel.id)
        if entity_type is not None:
            stmt = stmt.where(AuditLogModel.entity_type == entity_type)
        if entity_id is not None:
            stmt = stmt.where(AuditLogModel.entity_id == str(entity_id))
        return [
            AuditEntry(
                action=m.action,
                entity_type=m.entity_type,
                entity_id=m.entity_id,
                actor_id=m.actor_id,
                details=dict(m.details or {}),
                occurred_at=m.occurred_at,
            )
            for m in self._session.scalars(stmt)
        ]
