from __future__ import annotations

# ruff: noqa: B008
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from app import models
from app.api.deps import get_action_context, get_current_actor
from app.core.permissions import Actor
from app.database import get_db
from app.schemas.audit import AuditEventRead
from app.schemas.cashflows import CashflowRead
from app.schemas.investments import (
    ApprovalRead,
    ApproveRequest,
    CashflowSummaryRead,
    InvestmentCreate,
    InvestmentRead,
    InvestmentUpdate,
    RejectRequest,
)
from app.services import audit, entity_store, lifecycle_service
from app.services.cascade import cashflow_statistics
from app.services.lifecycle_service import ActionContext

router = APIRouter(prefix="/investments", tags=["investments"])

_DB_DEP = Depends(get_db)
_ACTOR_DEP = Depends(get_current_actor)
_CTX_DEP = Depends(get_action_context)


def _read(snapshot) -> InvestmentRead:
    return InvestmentRead.model_validate(snapshot)


@router.post("", response_model=InvestmentRead, status_code=status.HTTP_201_CREATED)
def create_investment(payload: InvestmentCreate, db: Session = _DB_DEP, ctx: ActionContext = _CTX_DEP):
    created = lifecycle_service.create_investment(
        db,
        ctx,
        company_id=payload.company_id,
        name=payload.name,
        category=payload.category,
        financing_type=payload.financing_type,
        total_amount=payload.total_amount,
        schedule=payload.schedule_dicts(),
        description=payload.description,
        start_date=payload.start_date,
        meta=payload.meta,
    )
    return _read(entity_store.load_investment(db, created.id))


@router.get("", response_model=list[InvestmentRead])
def list_investments(
    company_id: Optional[str] = Query(None),
    status_filter: Optional[models.InvestmentStatus] = Query(None, alias="status"),
    category: Optional[models.InvestmentCategory] = Query(None),
    q: Optional[str] = Query(None, min_length=1, max_length=100),
    limit: int = Query(100, ge=1, le=500),
    db: Session = _DB_DEP,
    actor: Actor = _ACTOR_DEP,
):
    query = db.query(models.Investment).options(selectinload(models.Investment.schedule))
    query = entity_store.visible_company_filter(query, models.Investment.company_id, actor)
    if company_id:
        query = query.filter(models.Investment.company_id == company_id)
    if status_filter:
        query = query.filter(models.Investment.status == status_filter)
    if category:
        query = query.filter(models.Investment.category == category)
    if q:
        like = f"%{q.strip()}%"
        query = query.filter(
            or_(models.Investment.name.ilike(like), models.Investment.description.ilike(like))
        )
    rows = query.order_by(models.Investment.created_at.desc()).limit(limit).all()
    return [_read(entity_store.investment_snapshot(r)) for r in rows]


@router.get("/{investment_id}", response_model=InvestmentRead)
def get_investment(investment_id: str, db: Session = _DB_DEP, actor: Actor = _ACTOR_DEP):
    return _read(entity_store.load_investment(db, investment_id, actor=actor))


@router.patch("/{investment_id}", response_model=InvestmentRead)
def update_investment(
    investment_id: str,
    payload: InvestmentUpdate,
    db: Session = _DB_DEP,
    ctx: ActionContext = _CTX_DEP,
):
    lifecycle_service.update_investment(db, ctx, investment_id, payload.changes())
    return _read(entity_store.load_investment(db, investment_id))


@router.delete("/{investment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_investment(investment_id: str, db: Session = _DB_DEP, ctx: ActionContext = _CTX_DEP):
    lifecycle_service.delete_investment(db, ctx, investment_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{investment_id}/submit", response_model=InvestmentRead)
def submit_investment(investment_id: str, db: Session = _DB_DEP, ctx: ActionContext = _CTX_DEP):
    lifecycle_service.submit_investment(db, ctx, investment_id)
    return _read(entity_store.load_investment(db, investment_id))


@router.post("/{investment_id}/approve", response_model=InvestmentRead)
def approve_investment(
    investment_id: str,
    payload: Optional[ApproveRequest] = None,
    db: Session = _DB_DEP,
    ctx: ActionContext = _CTX_DEP,
):
    payload = payload or ApproveRequest()
    lifecycle_service.approve_investment(
        db,
        ctx,
        investment_id,
        comment=payload.comment,
        conditions=payload.conditions,
        valid_until=payload.valid_until,
    )
    return _read(entity_store.load_investment(db, investment_id))


@router.post("/{investment_id}/reject", response_model=InvestmentRead)
def reject_investment(
    investment_id: str,
    payload: RejectRequest,
    db: Session = _DB_DEP,
    ctx: ActionContext = _CTX_DEP,
):
    lifecycle_service.reject_investment(
        db, ctx, investment_id, comment=payload.comment, conditions=payload.conditions
    )
    return _read(entity_store.load_investment(db, investment_id))


@router.post("/{investment_id}/close", response_model=InvestmentRead)
def close_investment(investment_id: str, db: Session = _DB_DEP, ctx: ActionContext = _CTX_DEP):
    lifecycle_service.close_investment(db, ctx, investment_id)
    return _read(entity_store.load_investment(db, investment_id))


@router.post(
    "/{investment_id}/resubmit",
    response_model=InvestmentRead,
    status_code=status.HTTP_201_CREATED,
)
def resubmit_investment(investment_id: str, db: Session = _DB_DEP, ctx: ActionContext = _CTX_DEP):
    draft = lifecycle_service.resubmit_investment(db, ctx, investment_id)
    return _read(entity_store.load_investment(db, draft.id))


@router.get("/{investment_id}/approvals", response_model=list[ApprovalRead])
def list_approvals(investment_id: str, db: Session = _DB_DEP, actor: Actor = _ACTOR_DEP):
    entity_store.get_investment_row(db, investment_id, actor=actor)
    return [ApprovalRead.model_validate(a) for a in entity_store.load_approvals_for(db, investment_id)]


@router.get("/{investment_id}/cashflows", response_model=list[CashflowRead])
def list_investment_cashflows(investment_id: str, db: Session = _DB_DEP, actor: Actor = _ACTOR_DEP):
    entity_store.get_investment_row(db, investment_id, actor=actor)
    return [CashflowRead.model_validate(cf) for cf in entity_store.load_cashflows_for(db, investment_id)]


@router.get("/{investment_id}/cashflow-summary", response_model=CashflowSummaryRead)
def cashflow_summary(investment_id: str, db: Session = _DB_DEP, actor: Actor = _ACTOR_DEP):
    entity_store.get_investment_row(db, investment_id, actor=actor)
    return cashflow_statistics(entity_store.load_cashflows_for(db, investment_id))


@router.get("/{investment_id}/history", response_model=list[AuditEventRead])
def investment_history(investment_id: str, db: Session = _DB_DEP, actor: Actor = _ACTOR_DEP):
    """Status trail of the investment and all of its cashflows, oldest first."""

    entity_store.get_investment_row(db, investment_id, actor=actor)
    cashflow_ids = [
        cid
        for (cid,) in db.query(models.Cashflow.id)
        .filter(models.Cashflow.investment_id == investment_id)
        .all()
    ]
    rows = audit.query_events(db, entity_ids=[investment_id, *cashflow_ids], limit=1000)
    return [AuditEventRead.from_row(row) for row in rows]
