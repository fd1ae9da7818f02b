from __future__ import annotations

# ruff: noqa: B008
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import models
from app.api.deps import get_current_actor, require_capability_dep
from app.core.permissions import Actor
from app.database import get_db
from app.schemas.companies import CompanyCreate, CompanyRead
from app.services import entity_store

router = APIRouter(prefix="/companies", tags=["companies"])

_DB_DEP = Depends(get_db)
_ACTOR_DEP = Depends(get_current_actor)
_COMPANY_ADMIN_DEP = Depends(require_capability_dep(models.Capability.manage_companies))


@router.get("", response_model=list[CompanyRead])
def list_companies(db: Session = _DB_DEP, actor: Actor = _ACTOR_DEP):
    q = entity_store.visible_company_filter(db.query(models.Company), models.Company.id, actor)
    return q.order_by(models.Company.name.asc()).all()


@router.post("", response_model=CompanyRead, status_code=status.HTTP_201_CREATED)
def create_company(payload: CompanyCreate, db: Session = _DB_DEP, actor: Actor = _COMPANY_ADMIN_DEP):
    company = models.Company(
        name=payload.name.strip(),
        company_code=payload.company_code.strip().upper(),
        group_id=payload.group_id,
        is_active=True,
    )
    db.add(company)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Company code already exists")
    db.refresh(company)
    return company
