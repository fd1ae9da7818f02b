from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.domain import CashflowStatus, CashflowType, ConfirmationSlot


class CashflowRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    investment_id: str
    company_id: str
    sequence: int
    amount: Decimal
    cashflow_type: CashflowType
    period_number: Optional[int] = None
    total_periods: Optional[int] = None
    due_date: date
    original_due_date: Optional[date] = None
    month: int
    year: int
    status: CashflowStatus

    confirmed_by_cm: bool
    cm_user_id: Optional[str] = None
    cm_confirmed_at: Optional[datetime] = None
    cm_comment: Optional[str] = None
    confirmed_by_gf: bool
    gf_user_id: Optional[str] = None
    gf_confirmed_at: Optional[datetime] = None
    gf_comment: Optional[str] = None

    postponed_by: Optional[str] = None
    postponed_at: Optional[datetime] = None
    postpone_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None

    accounting_reference: Optional[str] = None
    booked_by: Optional[str] = None
    booked_at: Optional[datetime] = None

    created_at: datetime
    updated_at: Optional[datetime] = None
    revision: int = 0


class ConfirmRequest(BaseModel):
    slot: ConfirmationSlot
    comment: Optional[str] = Field(None, max_length=4000)


class UnconfirmRequest(BaseModel):
    slot: ConfirmationSlot
    reason: Optional[str] = Field(None, max_length=4000)


class PostponeRequest(BaseModel):
    new_due_date: date
    reason: Optional[str] = Field(None, max_length=4000)


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=4000)


class BookRequest(BaseModel):
    accounting_reference: str = Field(..., min_length=1, max_length=128)
