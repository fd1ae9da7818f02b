from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel

from app import models
from app.services.audit import decode_payload


class AuditEventRead(BaseModel):
    id: int
    action: str
    entity_type: str
    entity_id: str
    company_id: Optional[str] = None
    previous_status: Optional[str] = None
    new_status: Optional[str] = None
    actor_id: Optional[str] = None
    actor_role: Optional[str] = None
    payload: dict[str, Any]
    request_id: Optional[str] = None
    occurred_at: datetime

    @classmethod
    def from_row(cls, row: models.AuditLog) -> "AuditEventRead":
        return cls(
            id=row.id,
            action=row.action,
            entity_type=row.entity_type,
            entity_id=row.entity_id,
            company_id=row.company_id,
            previous_status=row.previous_status,
            new_status=row.new_status,
            actor_id=row.actor_id,
            actor_role=row.actor_role,
            payload=decode_payload(row),
            request_id=row.request_id,
            occurred_at=row.occurred_at,
        )
