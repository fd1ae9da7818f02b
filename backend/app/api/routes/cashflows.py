from __future__ import annotations

# ruff: noqa: B008
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app import models
from app.api.deps import get_action_context, get_current_actor
from app.core.permissions import Actor
from app.database import get_db
from app.schemas.cashflows import (
    BookRequest,
    CancelRequest,
    CashflowRead,
    ConfirmRequest,
    PostponeRequest,
    UnconfirmRequest,
)
from app.services import entity_store, lifecycle_service
from app.services.lifecycle_service import ActionContext

router = APIRouter(prefix="/cashflows", tags=["cashflows"])

_DB_DEP = Depends(get_db)
_ACTOR_DEP = Depends(get_current_actor)
_CTX_DEP = Depends(get_action_context)


def _read(db: Session, cashflow_id: str) -> CashflowRead:
    return CashflowRead.model_validate(entity_store.load_cashflow(db, cashflow_id))


@router.get("", response_model=list[CashflowRead])
def list_cashflows(
    company_id: Optional[str] = Query(None),
    investment_id: Optional[str] = Query(None),
    status_filter: Optional[models.CashflowStatus] = Query(None, alias="status"),
    year: Optional[int] = Query(None, ge=1900, le=2200),
    month: Optional[int] = Query(None, ge=1, le=12),
    due_from: Optional[date] = Query(None),
    due_to: Optional[date] = Query(None),
    limit: int = Query(500, ge=1, le=2000),
    db: Session = _DB_DEP,
    actor: Actor = _ACTOR_DEP,
):
    q = db.query(models.Cashflow)
    q = entity_store.visible_company_filter(q, models.Cashflow.company_id, actor)
    if company_id:
        q = q.filter(models.Cashflow.company_id == company_id)
    if investment_id:
        q = q.filter(models.Cashflow.investment_id == investment_id)
    if status_filter:
        q = q.filter(models.Cashflow.status == status_filter)
    if year:
        q = q.filter(models.Cashflow.year == year)
    if month:
        q = q.filter(models.Cashflow.month == month)
    if due_from:
        q = q.filter(models.Cashflow.due_date >= due_from)
    if due_to:
        q = q.filter(models.Cashflow.due_date <= due_to)

    rows = (
        q.order_by(models.Cashflow.due_date.asc(), models.Cashflow.sequence.asc())
        .limit(limit)
        .all()
    )
    return [CashflowRead.model_validate(entity_store.cashflow_snapshot(r)) for r in rows]


@router.get("/{cashflow_id}", response_model=CashflowRead)
def get_cashflow(cashflow_id: str, db: Session = _DB_DEP, actor: Actor = _ACTOR_DEP):
    return CashflowRead.model_validate(entity_store.load_cashflow(db, cashflow_id, actor=actor))


@router.post("/{cashflow_id}/confirm", response_model=CashflowRead)
def confirm_cashflow(
    cashflow_id: str,
    payload: ConfirmRequest,
    db: Session = _DB_DEP,
    ctx: ActionContext = _CTX_DEP,
):
    lifecycle_service.confirm_cashflow(
        db, ctx, cashflow_id, slot=payload.slot, comment=payload.comment
    )
    return _read(db, cashflow_id)


@router.post("/{cashflow_id}/unconfirm", response_model=CashflowRead)
def unconfirm_cashflow(
    cashflow_id: str,
    payload: UnconfirmRequest,
    db: Session = _DB_DEP,
    ctx: ActionContext = _CTX_DEP,
):
    lifecycle_service.unconfirm_cashflow(
        db, ctx, cashflow_id, slot=payload.slot, reason=payload.reason
    )
    return _read(db, cashflow_id)


@router.post("/{cashflow_id}/postpone", response_model=CashflowRead)
def postpone_cashflow(
    cashflow_id: str,
    payload: PostponeRequest,
    db: Session = _DB_DEP,
    ctx: ActionContext = _CTX_DEP,
):
    lifecycle_service.postpone_cashflow(
        db, ctx, cashflow_id, new_due_date=payload.new_due_date, reason=payload.reason
    )
    return _read(db, cashflow_id)


@router.post("/{cashflow_id}/cancel", response_model=CashflowRead)
def cancel_cashflow(
    cashflow_id: str,
    payload: Optional[CancelRequest] = None,
    db: Session = _DB_DEP,
    ctx: ActionContext = _CTX_DEP,
):
    reason = payload.reason if payload else None
    lifecycle_service.cancel_cashflow(db, ctx, cashflow_id, reason=reason)
    return _read(db, cashflow_id)


@router.post("/{cashflow_id}/book", response_model=CashflowRead)
def book_cashflow(
    cashflow_id: str,
    payload: BookRequest,
    db: Session = _DB_DEP,
    ctx: ActionContext = _CTX_DEP,
):
    lifecycle_service.book_cashflow(
        db, ctx, cashflow_id, accounting_reference=payload.accounting_reference
    )
    return _read(db, cashflow_id)
