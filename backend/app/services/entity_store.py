"""ORM rows <-> engine snapshots, tenant-scoped loads and guarded saves.

Every write of an existing investment or cashflow is a single conditional
UPDATE:

    UPDATE investments SET ..., revision = :expected + 1
    WHERE id = :id AND revision = :expected

A zero rowcount means somebody else saved in between and raises
``ConcurrentModification``. Callers control commit/rollback.
"""

from __future__ import annotations

from dataclasses import asdict
from decimal import Decimal
from typing import Any, Iterable

from sqlalchemy.orm import Session

from app import models
from app.core.errors import ConcurrentModification, NotFound
from app.core.permissions import GROUP_WIDE_ROLES, Actor, can_view_company
from app.services.snapshots import (
    ApprovalSnapshot,
    CashflowSnapshot,
    InvestmentSnapshot,
    ScheduledPaymentSnapshot,
)

_INVESTMENT_COLUMNS = (
    "name",
    "description",
    "category",
    "financing_type",
    "total_amount",
    "status",
    "start_date",
    "supersedes_investment_id",
    "updated_at",
    "submitted_at",
    "activated_at",
    "closed_at",
)

_CASHFLOW_COLUMNS = (
    "amount",
    "due_date",
    "original_due_date",
    "status",
    "confirmed_by_cm",
    "cm_user_id",
    "cm_confirmed_at",
    "cm_comment",
    "confirmed_by_gf",
    "gf_user_id",
    "gf_confirmed_at",
    "gf_comment",
    "postponed_by",
    "postponed_at",
    "postpone_reason",
    "cancelled_by",
    "cancelled_at",
    "cancel_reason",
    "accounting_reference",
    "booked_by",
    "booked_at",
    "updated_at",
)


# --- mapping -----------------------------------------------------------------


def payment_snapshot(row: models.ScheduledPayment) -> ScheduledPaymentSnapshot:
    return ScheduledPaymentSnapshot(
        sequence=int(row.sequence),
        due_date=row.due_date,
        amount=Decimal(row.amount),
        payment_type=models.CashflowType(row.payment_type),
        period_number=row.period_number,
        total_periods=row.total_periods,
    )


def investment_snapshot(row: models.Investment) -> InvestmentSnapshot:
    return InvestmentSnapshot(
        id=row.id,
        company_id=row.company_id,
        name=row.name,
        category=models.InvestmentCategory(row.category),
        financing_type=models.FinancingType(row.financing_type),
        total_amount=Decimal(row.total_amount),
        status=models.InvestmentStatus(row.status),
        created_by=row.created_by,
        created_at=row.created_at,
        description=row.description,
        start_date=row.start_date,
        meta=dict(row.meta or {}),
        schedule=tuple(payment_snapshot(p) for p in row.schedule),
        supersedes_investment_id=row.supersedes_investment_id,
        updated_at=row.updated_at,
        submitted_at=row.submitted_at,
        activated_at=row.activated_at,
        closed_at=row.closed_at,
        revision=int(row.revision or 0),
    )


def approval_snapshot(row: models.InvestmentApproval) -> ApprovalSnapshot:
    return ApprovalSnapshot(
        id=row.id,
        investment_id=row.investment_id,
        approver_id=row.approver_id,
        decision=models.ApprovalDecision(row.decision),
        decided_at=row.decided_at,
        comment=row.comment,
        conditions=row.conditions,
        valid_until=row.valid_until,
        is_active=bool(row.is_active),
    )


def cashflow_snapshot(row: models.Cashflow) -> CashflowSnapshot:
    return CashflowSnapshot(
        id=row.id,
        investment_id=row.investment_id,
        company_id=row.company_id,
        sequence=int(row.sequence),
        amount=Decimal(row.amount),
        cashflow_type=models.CashflowType(row.cashflow_type),
        due_date=row.due_date,
        status=models.CashflowStatus(row.status),
        created_at=row.created_at,
        period_number=row.period_number,
        total_periods=row.total_periods,
        original_due_date=row.original_due_date,
        confirmed_by_cm=bool(row.confirmed_by_cm),
        cm_user_id=row.cm_user_id,
        cm_confirmed_at=row.cm_confirmed_at,
        cm_comment=row.cm_comment,
        confirmed_by_gf=bool(row.confirmed_by_gf),
        gf_user_id=row.gf_user_id,
        gf_confirmed_at=row.gf_confirmed_at,
        gf_comment=row.gf_comment,
        postponed_by=row.postponed_by,
        postponed_at=row.postponed_at,
        postpone_reason=row.postpone_reason,
        cancelled_by=row.cancelled_by,
        cancelled_at=row.cancelled_at,
        cancel_reason=row.cancel_reason,
        accounting_reference=row.accounting_reference,
        booked_by=row.booked_by,
        booked_at=row.booked_at,
        updated_at=row.updated_at,
        revision=int(row.revision or 0),
    )


def _schedule_rows(investment_id: str, schedule: Iterable[ScheduledPaymentSnapshot]):
    return [
        models.ScheduledPayment(investment_id=investment_id, **asdict(payment))
        for payment in schedule
    ]


# --- loads -------------------------------------------------------------------


def _visible(actor: Actor | None, company_id: str) -> bool:
    return actor is None or can_view_company(actor, company_id)


def get_company(db: Session, company_id: str, *, actor: Actor | None = None) -> models.Company:
    company = db.get(models.Company, str(company_id))
    if company is None or not _visible(actor, company.id):
        raise NotFound("Company not found", entity_type="company", entity_id=str(company_id))
    return company


def get_investment_row(
    db: Session, investment_id: str, *, actor: Actor | None = None
) -> models.Investment:
    row = db.get(models.Investment, str(investment_id))
    # Other tenants' rows are reported as missing, not forbidden.
    if row is None or not _visible(actor, row.company_id):
        raise NotFound(
            "Investment not found", entity_type="investment", entity_id=str(investment_id)
        )
    return row


def load_investment(
    db: Session, investment_id: str, *, actor: Actor | None = None
) -> InvestmentSnapshot:
    return investment_snapshot(get_investment_row(db, investment_id, actor=actor))


def get_cashflow_row(
    db: Session, cashflow_id: str, *, actor: Actor | None = None
) -> models.Cashflow:
    row = db.get(models.Cashflow, str(cashflow_id))
    if row is None or not _visible(actor, row.company_id):
        raise NotFound("Cashflow not found", entity_type="cashflow", entity_id=str(cashflow_id))
    return row


def load_cashflow(db: Session, cashflow_id: str, *, actor: Actor | None = None) -> CashflowSnapshot:
    return cashflow_snapshot(get_cashflow_row(db, cashflow_id, actor=actor))


def load_cashflows_for(db: Session, investment_id: str) -> list[CashflowSnapshot]:
    rows = (
        db.query(models.Cashflow)
        .filter(models.Cashflow.investment_id == str(investment_id))
        .order_by(models.Cashflow.due_date.asc(), models.Cashflow.sequence.asc())
        .all()
    )
    return [cashflow_snapshot(r) for r in rows]


def load_approvals_for(db: Session, investment_id: str) -> list[ApprovalSnapshot]:
    rows = (
        db.query(models.InvestmentApproval)
        .filter(models.InvestmentApproval.investment_id == str(investment_id))
        .order_by(models.InvestmentApproval.decided_at.asc())
        .all()
    )
    return [approval_snapshot(r) for r in rows]


def visible_company_filter(query, column, actor: Actor):
    """Restrict ``query`` to the companies the actor may see."""

    if actor.roles & GROUP_WIDE_ROLES:
        return query
    return query.filter(column.in_(sorted(actor.company_ids)))


# --- writes ------------------------------------------------------------------


def _column_values(snapshot: Any, columns: Iterable[str]) -> dict[str, Any]:
    return {name: getattr(snapshot, name) for name in columns}


def insert_investment(db: Session, investment: InvestmentSnapshot) -> models.Investment:
    row = models.Investment(
        id=investment.id,
        company_id=investment.company_id,
        created_by=investment.created_by,
        created_at=investment.created_at,
        meta=dict(investment.meta) or None,
        revision=0,
        **_column_values(investment, _INVESTMENT_COLUMNS),
    )
    db.add(row)
    for payment in _schedule_rows(investment.id, investment.schedule):
        db.add(payment)
    db.flush()
    return row


def save_investment(
    db: Session, before: InvestmentSnapshot, after: InvestmentSnapshot
) -> InvestmentSnapshot:
    values = _column_values(after, _INVESTMENT_COLUMNS)
    values["meta"] = dict(after.meta) or None
    values["revision"] = before.revision + 1

    rowcount = (
        db.query(models.Investment)
        .filter(models.Investment.id == before.id)
        .filter(models.Investment.revision == before.revision)
        .update(values, synchronize_session=False)
    )
    if not rowcount:
        raise ConcurrentModification(
            "Investment was modified concurrently; reload and retry",
            entity_type="investment",
            entity_id=before.id,
            expected_revision=before.revision,
        )

    if after.schedule != before.schedule:
        db.query(models.ScheduledPayment).filter(
            models.ScheduledPayment.investment_id == before.id
        ).delete(synchronize_session="evaluate")
        for payment in _schedule_rows(before.id, after.schedule):
            db.add(payment)

    db.flush()
    return after.evolve(revision=before.revision + 1)


def delete_investment(db: Session, investment: InvestmentSnapshot) -> None:
    db.query(models.ScheduledPayment).filter(
        models.ScheduledPayment.investment_id == investment.id
    ).delete(synchronize_session="evaluate")
    rowcount = (
        db.query(models.Investment)
        .filter(models.Investment.id == investment.id)
        .filter(models.Investment.revision == investment.revision)
        .delete(synchronize_session=False)
    )
    if not rowcount:
        raise ConcurrentModification(
            "Investment was modified concurrently; reload and retry",
            entity_type="investment",
            entity_id=investment.id,
            expected_revision=investment.revision,
        )
    db.flush()


def save_approvals(db: Session, approvals: Iterable[ApprovalSnapshot]) -> None:
    for approval in approvals:
        row = db.get(models.InvestmentApproval, approval.id)
        if row is None:
            db.add(models.InvestmentApproval(**asdict(approval)))
        else:
            row.is_active = approval.is_active
    db.flush()


def insert_cashflows(db: Session, cashflows: Iterable[CashflowSnapshot]) -> None:
    for cf in cashflows:
        db.add(
            models.Cashflow(
                id=cf.id,
                investment_id=cf.investment_id,
                company_id=cf.company_id,
                sequence=cf.sequence,
                cashflow_type=cf.cashflow_type,
                period_number=cf.period_number,
                total_periods=cf.total_periods,
                month=cf.month,
                year=cf.year,
                created_at=cf.created_at,
                revision=0,
                **_column_values(cf, _CASHFLOW_COLUMNS),
            )
        )
    db.flush()


def save_cashflow(db: Session, before: CashflowSnapshot, after: CashflowSnapshot) -> CashflowSnapshot:
    values = _column_values(after, _CASHFLOW_COLUMNS)
    values.update(month=after.month, year=after.year, revision=before.revision + 1)

    rowcount = (
        db.query(models.Cashflow)
        .filter(models.Cashflow.id == before.id)
        .filter(models.Cashflow.revision == before.revision)
        .update(values, synchronize_session=False)
    )
    if not rowcount:
        raise ConcurrentModification(
            "Cashflow was modified concurrently; reload and retry",
            entity_type="cashflow",
            entity_id=before.id,
            expected_revision=before.revision,
        )
    db.flush()
    return after.evolve(revision=before.revision + 1)
