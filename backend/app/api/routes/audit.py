from __future__ import annotations

# ruff: noqa: B008
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app import models
from app.api.deps import require_capability_dep
from app.core.permissions import Actor
from app.database import get_db
from app.schemas.audit import AuditEventRead
from app.services import audit

router = APIRouter(prefix="/audit", tags=["audit"])

_DB_DEP = Depends(get_db)
_AUDIT_READER_DEP = Depends(require_capability_dep(models.Capability.view_audit_logs))


@router.get("", response_model=list[AuditEventRead])
def list_audit_events(
    entity_type: Optional[str] = Query(None),
    entity_id: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    company_id: Optional[str] = Query(None),
    limit: int = Query(200, ge=1, le=1000),
    db: Session = _DB_DEP,
    actor: Actor = _AUDIT_READER_DEP,
):
    # Audit readers are group-wide roles; company_id only narrows the view.
    company_ids = [company_id] if company_id else None

    rows = audit.query_events(
        db,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        company_ids=company_ids,
        limit=limit,
    )
    return [AuditEventRead.from_row(row) for row in rows]
