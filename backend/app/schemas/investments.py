from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.domain import (
    ApprovalDecision,
    CashflowType,
    FinancingType,
    InvestmentCategory,
    InvestmentStatus,
)


class ScheduledPaymentIn(BaseModel):
    sequence: Optional[int] = Field(None, ge=1)
    due_date: date
    amount: Decimal
    payment_type: CashflowType = CashflowType.installment
    period_number: Optional[int] = Field(None, ge=1)
    total_periods: Optional[int] = Field(None, ge=1)


class ScheduledPaymentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sequence: int
    due_date: date
    amount: Decimal
    payment_type: CashflowType
    period_number: Optional[int] = None
    total_periods: Optional[int] = None


class InvestmentCreate(BaseModel):
    company_id: str
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    category: InvestmentCategory
    financing_type: FinancingType
    total_amount: Decimal
    start_date: Optional[date] = None
    meta: Optional[dict[str, Any]] = None
    schedule: list[ScheduledPaymentIn] = Field(default_factory=list)

    def schedule_dicts(self) -> list[dict[str, Any]]:
        return [p.model_dump(exclude_none=True) for p in self.schedule]


class InvestmentUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    category: Optional[InvestmentCategory] = None
    financing_type: Optional[FinancingType] = None
    total_amount: Optional[Decimal] = None
    start_date: Optional[date] = None
    meta: Optional[dict[str, Any]] = None
    schedule: Optional[list[ScheduledPaymentIn]] = None

    def changes(self) -> dict[str, Any]:
        data = self.model_dump(exclude_unset=True)
        if self.schedule is not None:
            data["schedule"] = [p.model_dump(exclude_none=True) for p in self.schedule]
        return data


class InvestmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    company_id: str
    name: str
    description: Optional[str] = None
    category: InvestmentCategory
    financing_type: FinancingType
    total_amount: Decimal
    status: InvestmentStatus
    start_date: Optional[date] = None
    meta: dict[str, Any] = Field(default_factory=dict)
    schedule: list[ScheduledPaymentRead] = Field(default_factory=list)
    supersedes_investment_id: Optional[str] = None
    created_by: str
    created_at: datetime
    updated_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    activated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    revision: int = 0


class ApproveRequest(BaseModel):
    comment: Optional[str] = Field(None, max_length=4000)
    conditions: Optional[str] = Field(None, max_length=4000)
    valid_until: Optional[date] = None


class RejectRequest(BaseModel):
    comment: Optional[str] = Field(None, max_length=4000)
    conditions: Optional[str] = Field(None, max_length=4000)


class ApprovalRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    investment_id: str
    approver_id: str
    decision: ApprovalDecision
    comment: Optional[str] = None
    conditions: Optional[str] = None
    valid_until: Optional[date] = None
    decided_at: datetime
    is_active: bool


class CashflowSummaryRead(BaseModel):
    count: int
    total: Decimal
    by_type: dict[str, Decimal]
    by_month: dict[str, Decimal]
    by_status: dict[str, int]
    first_due_date: Optional[date] = None
    last_due_date: Optional[date] = None
