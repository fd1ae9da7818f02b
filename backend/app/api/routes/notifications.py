from __future__ import annotations

# ruff: noqa: B008
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session

from app import models
from app.api.deps import get_action_context, get_current_actor, get_dispatcher
from app.core.errors import NotFound
from app.core.permissions import Actor, can_view_company, require_role_for
from app.database import get_db
from app.schemas.notifications import (
    DispatchResultRead,
    DueRulesRequest,
    DueRulesResult,
    NotificationRead,
)
from app.services import entity_store, lifecycle_service
from app.services.lifecycle_service import ActionContext
from app.services.notification_dispatcher import DispatchResult, NotificationDispatcher
from app.services.snapshots import PendingNotification, status_value

router = APIRouter(prefix="/notifications", tags=["notifications"])

_DB_DEP = Depends(get_db)
_ACTOR_DEP = Depends(get_current_actor)
_CTX_DEP = Depends(get_action_context)
_DISPATCHER_DEP = Depends(get_dispatcher)


def _pending_read(n: PendingNotification) -> NotificationRead:
    return NotificationRead(
        id=n.id,
        company_id=n.company_id,
        recipient_role=status_value(n.recipient_role),
        recipient_user_id=n.recipient_user_id,
        kind=n.kind,
        priority=n.priority,
        title=n.title,
        entity_type=n.entity_type,
        entity_id=n.entity_id,
        created_at=n.created_at,
        delivered=n.delivered,
    )


def _dispatch_read(result: DispatchResult) -> DispatchResultRead:
    return DispatchResultRead(
        status=result.status,
        delivered=result.delivered_count,
        notification_ids=[n.id for n in result.notifications],
        error=result.error,
    )


def _addressed_to(actor: Actor):
    """Notifications for one of the actor's roles or for the actor personally."""

    return or_(
        models.Notification.recipient_user_id == actor.user_id,
        models.Notification.recipient_role.in_(sorted(r.value for r in actor.roles)),
    )


@router.get("", response_model=list[NotificationRead])
def list_notifications(
    recipient_role: Optional[models.RoleName] = Query(None),
    recipient_user_id: Optional[str] = Query(None),
    kind: Optional[models.NotificationKind] = Query(None),
    unread: Optional[bool] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: Session = _DB_DEP,
    actor: Actor = _ACTOR_DEP,
):
    q = db.query(models.Notification).filter(_addressed_to(actor))
    q = entity_store.visible_company_filter(q, models.Notification.company_id, actor)
    if recipient_role:
        q = q.filter(models.Notification.recipient_role == recipient_role.value)
    if recipient_user_id:
        q = q.filter(models.Notification.recipient_user_id == recipient_user_id)
    if kind:
        q = q.filter(models.Notification.kind == kind)
    if unread is not None:
        q = q.filter(models.Notification.read == (not unread))
    return q.order_by(models.Notification.created_at.desc()).limit(limit).all()


@router.post("/{notification_id}/read", response_model=NotificationRead)
def mark_read(notification_id: str, db: Session = _DB_DEP, actor: Actor = _ACTOR_DEP):
    row = (
        db.query(models.Notification)
        .filter(models.Notification.id == notification_id)
        .filter(_addressed_to(actor))
        .first()
    )
    if row is None or (row.company_id and not can_view_company(actor, row.company_id)):
        raise NotFound(
            "Notification not found", entity_type="notification", entity_id=notification_id
        )
    if not row.read:
        row.read = True
        row.read_at = datetime.now(timezone.utc)
        db.commit()
        db.refresh(row)
    return row


@router.get("/pending", response_model=list[NotificationRead])
def list_pending(
    actor: Actor = _ACTOR_DEP,
    dispatcher: NotificationDispatcher = _DISPATCHER_DEP,
):
    require_role_for(actor, "notifications.dispatch")
    return [_pending_read(n) for n in dispatcher.pending()]


@router.post("/dispatch", response_model=DispatchResultRead)
def dispatch(
    db: Session = _DB_DEP,
    actor: Actor = _ACTOR_DEP,
    dispatcher: NotificationDispatcher = _DISPATCHER_DEP,
):
    require_role_for(actor, "notifications.dispatch")
    return _dispatch_read(lifecycle_service.dispatch_pending(db, dispatcher))


@router.post("/rules/due-payments", response_model=DueRulesResult)
def run_due_payment_rules(
    payload: Optional[DueRulesRequest] = None,
    db: Session = _DB_DEP,
    ctx: ActionContext = _CTX_DEP,
):
    payload = payload or DueRulesRequest()
    queued = lifecycle_service.run_due_payment_rules(
        db,
        ctx,
        today=payload.today,
        reminder_days=payload.reminder_days,
        company_id=payload.company_id,
    )
    return DueRulesResult(queued=len(queued), notifications=[_pending_read(n) for n in queued])
