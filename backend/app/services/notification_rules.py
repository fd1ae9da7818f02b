"""Which lifecycle events notify whom.

Event-driven rules are called by the engines. The date-driven rules (due/overdue
payments, monthly report) are run by ``run_due_payment_rules`` in the lifecycle
service, on demand or from the daily scheduler.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Iterable

from app.models.domain import (
    CashflowStatus,
    ConfirmationSlot,
    NotificationKind,
    NotificationPriority,
    RoleName,
)
from app.services.snapshots import (
    CashflowSnapshot,
    IdFactory,
    InvestmentSnapshot,
    PendingNotification,
    new_id,
)

CONFIRMING_ROLES: dict[ConfirmationSlot, RoleName] = {
    ConfirmationSlot.cm: RoleName.cashflow_manager,
    ConfirmationSlot.gf: RoleName.geschaeftsfuehrer,
}

_UNSETTLED = {CashflowStatus.pending_confirmation, CashflowStatus.pre_confirmed}


def _fmt_amount(amount: Decimal) -> str:
    return f"{Decimal(amount).quantize(Decimal('0.01')):,} EUR"


def _for_role(
    role: RoleName,
    *,
    kind: NotificationKind,
    title: str,
    entity_type: str,
    entity_id: str,
    company_id: str | None,
    now: datetime,
    priority: NotificationPriority,
    id_factory: IdFactory,
) -> PendingNotification:
    return PendingNotification(
        id=id_factory(),
        kind=kind,
        title=title,
        entity_type=entity_type,
        entity_id=entity_id,
        company_id=company_id,
        recipient_role=role,
        created_at=now,
        priority=priority,
    )


def investment_submitted(
    investment: InvestmentSnapshot, *, now: datetime, id_factory: IdFactory = new_id
) -> tuple[PendingNotification, ...]:
    return (
        _for_role(
            RoleName.vr_approval,
            kind=NotificationKind.investment_submitted,
            title=f"Approval requested: {investment.name} ({_fmt_amount(investment.total_amount)})",
            entity_type="investment",
            entity_id=investment.id,
            company_id=investment.company_id,
            now=now,
            priority=NotificationPriority.high,
            id_factory=id_factory,
        ),
    )


def investment_decided(
    investment: InvestmentSnapshot,
    *,
    approved: bool,
    now: datetime,
    id_factory: IdFactory = new_id,
) -> tuple[PendingNotification, ...]:
    kind = NotificationKind.investment_approved if approved else NotificationKind.investment_rejected
    verb = "approved" if approved else "rejected"
    return (
        PendingNotification(
            id=id_factory(),
            kind=kind,
            title=f"Investment {verb}: {investment.name}",
            entity_type="investment",
            entity_id=investment.id,
            company_id=investment.company_id,
            recipient_user_id=investment.created_by,
            created_at=now,
            priority=NotificationPriority.medium if approved else NotificationPriority.high,
        ),
    )


def cashflow_pre_confirmed(
    cashflow: CashflowSnapshot,
    *,
    confirmed_slot: ConfirmationSlot,
    now: datetime,
    id_factory: IdFactory = new_id,
) -> tuple[PendingNotification, ...]:
    other = ConfirmationSlot.gf if confirmed_slot == ConfirmationSlot.cm else ConfirmationSlot.cm
    return (
        _for_role(
            CONFIRMING_ROLES[other],
            kind=NotificationKind.cashflow_pre_confirmed,
            title=f"Payment awaiting your confirmation: {_fmt_amount(cashflow.amount)} due {cashflow.due_date.isoformat()}",
            entity_type="cashflow",
            entity_id=cashflow.id,
            company_id=cashflow.company_id,
            now=now,
            priority=NotificationPriority.high,
            id_factory=id_factory,
        ),
    )


def cashflow_confirmed(
    cashflow: CashflowSnapshot, *, now: datetime, id_factory: IdFactory = new_id
) -> tuple[PendingNotification, ...]:
    return (
        _for_role(
            RoleName.buchhaltung,
            kind=NotificationKind.cashflow_confirmed,
            title=f"Payment confirmed for booking: {_fmt_amount(cashflow.amount)} due {cashflow.due_date.isoformat()}",
            entity_type="cashflow",
            entity_id=cashflow.id,
            company_id=cashflow.company_id,
            now=now,
            priority=NotificationPriority.medium,
            id_factory=id_factory,
        ),
    )


def _to_both_confirming_roles(
    cashflow: CashflowSnapshot,
    *,
    kind: NotificationKind,
    title: str,
    now: datetime,
    priority: NotificationPriority,
    id_factory: IdFactory,
) -> tuple[PendingNotification, ...]:
    return tuple(
        _for_role(
            role,
            kind=kind,
            title=title,
            entity_type="cashflow",
            entity_id=cashflow.id,
            company_id=cashflow.company_id,
            now=now,
            priority=priority,
            id_factory=id_factory,
        )
        for role in (RoleName.cashflow_manager, RoleName.geschaeftsfuehrer)
    )


def cashflow_postponed(
    cashflow: CashflowSnapshot, *, now: datetime, id_factory: IdFactory = new_id
) -> tuple[PendingNotification, ...]:
    return _to_both_confirming_roles(
        cashflow,
        kind=NotificationKind.cashflow_postponed,
        title=f"Payment postponed to {cashflow.due_date.isoformat()}: {_fmt_amount(cashflow.amount)}",
        now=now,
        priority=NotificationPriority.medium,
        id_factory=id_factory,
    )


def cashflow_cancelled(
    cashflow: CashflowSnapshot, *, now: datetime, id_factory: IdFactory = new_id
) -> tuple[PendingNotification, ...]:
    return _to_both_confirming_roles(
        cashflow,
        kind=NotificationKind.cashflow_cancelled,
        title=f"Payment cancelled: {_fmt_amount(cashflow.amount)} due {cashflow.due_date.isoformat()}",
        now=now,
        priority=NotificationPriority.low,
        id_factory=id_factory,
    )


def due_payment_notifications(
    cashflows: Iterable[CashflowSnapshot],
    *,
    today: date,
    reminder_days: int,
    now: datetime,
    id_factory: IdFactory = new_id,
) -> list[PendingNotification]:
    """Reminders for unsettled payments.

    - due within ``reminder_days`` (inclusive, not yet past): payment_due_soon to CM
    - due date already passed: payment_overdue to CM and GF
    """

    out: list[PendingNotification] = []
    horizon = today + timedelta(days=int(reminder_days))

    for cf in cashflows:
        if cf.status not in _UNSETTLED:
            continue

        if cf.due_date < today:
            days = (today - cf.due_date).days
            out.extend(
                _to_both_confirming_roles(
                    cf,
                    kind=NotificationKind.payment_overdue,
                    title=f"Payment overdue by {days} day(s): {_fmt_amount(cf.amount)}",
                    now=now,
                    priority=NotificationPriority.urgent,
                    id_factory=id_factory,
                )
            )
        elif cf.due_date <= horizon:
            days = (cf.due_date - today).days
            out.append(
                _for_role(
                    RoleName.cashflow_manager,
                    kind=NotificationKind.payment_due_soon,
                    title=f"Payment due in {days} day(s): {_fmt_amount(cf.amount)}",
                    entity_type="cashflow",
                    entity_id=cf.id,
                    company_id=cf.company_id,
                    now=now,
                    priority=NotificationPriority.high if days <= 3 else NotificationPriority.medium,
                    id_factory=id_factory,
                )
            )

    return out


MONTHLY_REPORT_DAY = 5


def monthly_report_notifications(
    company_ids: Iterable[str],
    *,
    today: date,
    now: datetime,
    id_factory: IdFactory = new_id,
) -> list[PendingNotification]:
    """On the 5th, ask CM and GF of each company for last month's cashflow report."""

    if today.day != MONTHLY_REPORT_DAY:
        return []
    last_month = today.replace(day=1) - timedelta(days=1)
    title = f"Cashflow report for {last_month.month:02d}/{last_month.year} is due"

    return [
        _for_role(
            role,
            kind=NotificationKind.monthly_report_due,
            title=title,
            entity_type="company",
            entity_id=company_id,
            company_id=company_id,
            now=now,
            priority=NotificationPriority.high,
            id_factory=id_factory,
        )
        for company_id in sorted(set(company_ids))
        for role in (RoleName.cashflow_manager, RoleName.geschaeftsfuehrer)
    ]
