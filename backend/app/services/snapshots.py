"""Immutable entity snapshots, lifecycle events and engine outcomes.

Engines take snapshots in and hand new snapshots back; they never touch the
ORM session. ``app.services.entity_store`` maps between these and the rows.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Mapping

from app.models.domain import (
    ApprovalDecision,
    CashflowStatus,
    CashflowType,
    FinancingType,
    InvestmentCategory,
    InvestmentStatus,
    NotificationKind,
    NotificationPriority,
    RoleName,
)

IdFactory = Callable[[], str]


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class ScheduledPaymentSnapshot:
    sequence: int
    due_date: date
    amount: Decimal
    payment_type: CashflowType = CashflowType.installment
    period_number: int | None = None
    total_periods: int | None = None


@dataclass(frozen=True)
class InvestmentSnapshot:
    id: str
    company_id: str
    name: str
    category: InvestmentCategory
    financing_type: FinancingType
    total_amount: Decimal
    status: InvestmentStatus
    created_by: str
    created_at: datetime
    description: str | None = None
    start_date: date | None = None
    meta: Mapping[str, Any] = field(default_factory=dict)
    schedule: tuple[ScheduledPaymentSnapshot, ...] = ()
    supersedes_investment_id: str | None = None
    updated_at: datetime | None = None
    submitted_at: datetime | None = None
    activated_at: datetime | None = None
    closed_at: datetime | None = None
    revision: int = 0

    def evolve(self, **changes: Any) -> "InvestmentSnapshot":
        return replace(self, **changes)

    @property
    def schedule_total(self) -> Decimal:
        return sum((p.amount for p in self.schedule), Decimal("0"))


@dataclass(frozen=True)
class ApprovalSnapshot:
    id: str
    investment_id: str
    approver_id: str
    decision: ApprovalDecision
    decided_at: datetime
    comment: str | None = None
    conditions: str | None = None
    valid_until: date | None = None
    is_active: bool = True


@dataclass(frozen=True)
class CashflowSnapshot:
    id: str
    investment_id: str
    company_id: str
    sequence: int
    amount: Decimal
    cashflow_type: CashflowType
    due_date: date
    status: CashflowStatus
    created_at: datetime
    period_number: int | None = None
    total_periods: int | None = None
    original_due_date: date | None = None

    confirmed_by_cm: bool = False
    cm_user_id: str | None = None
    cm_confirmed_at: datetime | None = None
    cm_comment: str | None = None

    confirmed_by_gf: bool = False
    gf_user_id: str | None = None
    gf_confirmed_at: datetime | None = None
    gf_comment: str | None = None

    postponed_by: str | None = None
    postponed_at: datetime | None = None
    postpone_reason: str | None = None

    cancelled_by: str | None = None
    cancelled_at: datetime | None = None
    cancel_reason: str | None = None

    accounting_reference: str | None = None
    booked_by: str | None = None
    booked_at: datetime | None = None

    updated_at: datetime | None = None
    revision: int = 0

    def evolve(self, **changes: Any) -> "CashflowSnapshot":
        return replace(self, **changes)

    @property
    def month(self) -> int:
        return self.due_date.month

    @property
    def year(self) -> int:
        return self.due_date.year

    @property
    def is_booked(self) -> bool:
        return bool(self.accounting_reference)


@dataclass(frozen=True)
class LifecycleEvent:
    """Immutable audit record of one status change or confirmation action."""

    entity_type: str
    entity_id: str
    action: str
    previous_status: str | None
    new_status: str | None
    actor_id: str | None
    actor_role: str | None
    occurred_at: datetime
    company_id: str | None = None
    payload: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PendingNotification:
    id: str
    kind: NotificationKind
    title: str
    entity_type: str
    entity_id: str
    created_at: datetime
    company_id: str | None = None
    recipient_role: RoleName | None = None
    recipient_user_id: str | None = None
    priority: NotificationPriority = NotificationPriority.medium
    delivered: bool = False

    def __post_init__(self) -> None:
        if (self.recipient_role is None) == (self.recipient_user_id is None):
            raise ValueError("notification needs exactly one recipient (role or user id)")


@dataclass(frozen=True)
class InvestmentOutcome:
    investment: InvestmentSnapshot
    events: tuple[LifecycleEvent, ...] = ()
    notifications: tuple[PendingNotification, ...] = ()
    approvals: tuple[ApprovalSnapshot, ...] = ()
    cashflows: tuple[CashflowSnapshot, ...] = ()
    deleted: bool = False


@dataclass(frozen=True)
class CashflowOutcome:
    cashflow: CashflowSnapshot
    events: tuple[LifecycleEvent, ...] = ()
    notifications: tuple[PendingNotification, ...] = ()


def status_value(status: Any) -> str | None:
    if status is None:
        return None
    return str(getattr(status, "value", status))
