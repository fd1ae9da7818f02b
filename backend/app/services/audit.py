import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session

from app import models
from app.services.snapshots import LifecycleEvent


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if hasattr(value, "value"):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def record_events(
    db: Session,
    events: Iterable[LifecycleEvent],
    *,
    request_id: Optional[str] = None,
) -> list[models.AuditLog]:
    """Stage one ``AuditLog`` row per lifecycle event.

    Rows are added to the caller's session and committed together with the
    entity changes they describe; nothing is written on its own.
    """

    rows: list[models.AuditLog] = []
    for event in events:
        row = models.AuditLog(
            action=event.action,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            company_id=event.company_id,
            previous_status=event.previous_status,
            new_status=event.new_status,
            actor_id=event.actor_id,
            actor_role=event.actor_role,
            payload_json=json.dumps(dict(event.payload or {}), default=_json_default),
            request_id=request_id,
            occurred_at=event.occurred_at,
        )
        db.add(row)
        rows.append(row)
    return rows


def decode_payload(row: models.AuditLog) -> dict[str, Any]:
    if not row.payload_json:
        return {}
    try:
        data = json.loads(row.payload_json)
    except ValueError:
        return {"raw": row.payload_json}
    return data if isinstance(data, dict) else {"value": data}


def query_events(
    db: Session,
    *,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    entity_ids: Optional[Iterable[str]] = None,
    company_ids: Optional[Iterable[str]] = None,
    action: Optional[str] = None,
    limit: int = 200,
) -> list[models.AuditLog]:
    q = db.query(models.AuditLog)
    if entity_type:
        q = q.filter(models.AuditLog.entity_type == entity_type)
    if entity_id:
        q = q.filter(models.AuditLog.entity_id == str(entity_id))
    if entity_ids is not None:
        q = q.filter(models.AuditLog.entity_id.in_(list(entity_ids)))
    if company_ids is not None:
        q = q.filter(models.AuditLog.company_id.in_(list(company_ids)))
    if action:
        q = q.filter(models.AuditLog.action == action)
    return (
        q.order_by(models.AuditLog.occurred_at.asc(), models.AuditLog.id.asc())
        .limit(int(limit))
        .all()
    )
