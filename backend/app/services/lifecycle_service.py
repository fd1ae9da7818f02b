"""Transactional shell around the lifecycle engines.

Each public function is one user action: load snapshots, run the engine,
persist the outcome plus its audit rows, commit once, then hand the outcome's
notifications to the dispatcher. Any error rolls the whole action back, so a
failed approve never leaves half a cascade behind.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Iterable, Iterator, Mapping, Optional, Sequence

from sqlalchemy.orm import Session

from app import models
from app.config import settings
from app.core.permissions import Actor, require_role_for
from app.services import audit, cashflow_engine, entity_store, investment_engine
from app.services.notification_dispatcher import DispatchResult, NotificationDispatcher
from app.services.notification_rules import (
    due_payment_notifications,
    monthly_report_notifications,
)
from app.services.snapshots import (
    CashflowOutcome,
    CashflowSnapshot,
    IdFactory,
    InvestmentOutcome,
    InvestmentSnapshot,
    PendingNotification,
    new_id,
    status_value,
)

logger = logging.getLogger("investplan.lifecycle")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ActionContext:
    actor: Actor
    dispatcher: NotificationDispatcher
    request_id: Optional[str] = None
    now: Optional[datetime] = None
    id_factory: IdFactory = new_id

    @property
    def at(self) -> datetime:
        return self.now or utcnow()


@contextmanager
def _unit_of_work(db: Session) -> Iterator[Session]:
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def deliver_notifications(db: Session, *, now: Optional[datetime] = None):
    """Build a dispatcher handler that persists a batch into ``notifications``."""

    def handler(batch: Sequence[PendingNotification]) -> int:
        delivered_at = now or utcnow()
        try:
            for item in batch:
                db.add(
                    models.Notification(
                        id=item.id,
                        company_id=item.company_id,
                        recipient_role=status_value(item.recipient_role),
                        recipient_user_id=item.recipient_user_id,
                        kind=item.kind,
                        priority=item.priority,
                        title=item.title[:255],
                        entity_type=item.entity_type,
                        entity_id=item.entity_id,
                        created_at=item.created_at,
                        delivered=True,
                        delivered_at=delivered_at,
                    )
                )
            db.commit()
        except Exception:
            db.rollback()
            raise
        return len(batch)

    return handler


def dispatch_pending(db: Session, dispatcher: NotificationDispatcher) -> DispatchResult:
    return dispatcher.process(deliver_notifications(db))


def _publish(
    db: Session, ctx: ActionContext, notifications: Iterable[PendingNotification]
) -> None:
    queued = ctx.dispatcher.enqueue_many(notifications)
    if queued and settings.notifications_auto_dispatch:
        result = dispatch_pending(db, ctx.dispatcher)
        if result.status == "failed":
            # The batch stays queued; a later dispatch retries it.
            logger.warning(
                "notification_auto_dispatch_failed",
                extra={"request_id": ctx.request_id, "error": result.error},
            )


def _log_events(outcome_events, ctx: ActionContext) -> None:
    for event in outcome_events:
        logger.info(
            event.action.replace(".", "_"),
            extra={
                "entity_id": event.entity_id,
                "previous_status": event.previous_status,
                "new_status": event.new_status,
                "actor_id": event.actor_id,
                "request_id": ctx.request_id,
            },
        )


def _apply_investment(
    db: Session,
    ctx: ActionContext,
    before: Optional[InvestmentSnapshot],
    outcome: InvestmentOutcome,
) -> InvestmentSnapshot:
    with _unit_of_work(db):
        if outcome.deleted:
            entity_store.delete_investment(db, outcome.investment)
            saved = outcome.investment
        elif before is None:
            entity_store.insert_investment(db, outcome.investment)
            saved = outcome.investment
        else:
            saved = entity_store.save_investment(db, before, outcome.investment)
        if outcome.approvals:
            entity_store.save_approvals(db, outcome.approvals)
        if outcome.cashflows:
            entity_store.insert_cashflows(db, outcome.cashflows)
        audit.record_events(db, outcome.events, request_id=ctx.request_id)

    _log_events(outcome.events, ctx)
    _publish(db, ctx, outcome.notifications)
    return saved


def _apply_cashflow(
    db: Session, ctx: ActionContext, before: CashflowSnapshot, outcome: CashflowOutcome
) -> CashflowSnapshot:
    with _unit_of_work(db):
        saved = entity_store.save_cashflow(db, before, outcome.cashflow)
        audit.record_events(db, outcome.events, request_id=ctx.request_id)

    _log_events(outcome.events, ctx)
    _publish(db, ctx, outcome.notifications)
    return saved


# --- investments -------------------------------------------------------------


def create_investment(
    db: Session,
    ctx: ActionContext,
    *,
    company_id: str,
    name: str,
    category: Any,
    financing_type: Any,
    total_amount: Any,
    schedule: Sequence[Mapping[str, Any]] = (),
    description: Optional[str] = None,
    start_date: Optional[date] = None,
    meta: Optional[Mapping[str, Any]] = None,
) -> InvestmentSnapshot:
    outcome = investment_engine.create_draft(
        actor=ctx.actor,
        company_id=company_id,
        name=name,
        category=category,
        financing_type=financing_type,
        total_amount=total_amount,
        schedule=schedule,
        description=description,
        start_date=start_date,
        meta=meta,
        now=ctx.at,
        id_factory=ctx.id_factory,
    )
    entity_store.get_company(db, company_id)
    return _apply_investment(db, ctx, None, outcome)


def update_investment(
    db: Session, ctx: ActionContext, investment_id: str, changes: Mapping[str, Any]
) -> InvestmentSnapshot:
    before = entity_store.load_investment(db, investment_id, actor=ctx.actor)
    outcome = investment_engine.update_draft(before, actor=ctx.actor, changes=changes, now=ctx.at)
    return _apply_investment(db, ctx, before, outcome)


def delete_investment(db: Session, ctx: ActionContext, investment_id: str) -> None:
    before = entity_store.load_investment(db, investment_id, actor=ctx.actor)
    outcome = investment_engine.delete_draft(before, actor=ctx.actor, now=ctx.at)
    _apply_investment(db, ctx, before, outcome)


def submit_investment(db: Session, ctx: ActionContext, investment_id: str) -> InvestmentSnapshot:
    before = entity_store.load_investment(db, investment_id, actor=ctx.actor)
    outcome = investment_engine.submit(
        before, actor=ctx.actor, now=ctx.at, id_factory=ctx.id_factory
    )
    return _apply_investment(db, ctx, before, outcome)


def approve_investment(
    db: Session,
    ctx: ActionContext,
    investment_id: str,
    *,
    comment: Optional[str] = None,
    conditions: Optional[str] = None,
    valid_until: Optional[date] = None,
) -> InvestmentSnapshot:
    before = entity_store.load_investment(db, investment_id, actor=ctx.actor)
    outcome = investment_engine.approve(
        before,
        actor=ctx.actor,
        now=ctx.at,
        comment=comment,
        conditions=conditions,
        valid_until=valid_until,
        existing_approvals=entity_store.load_approvals_for(db, investment_id),
        id_factory=ctx.id_factory,
    )
    return _apply_investment(db, ctx, before, outcome)


def reject_investment(
    db: Session,
    ctx: ActionContext,
    investment_id: str,
    *,
    comment: Optional[str],
    conditions: Optional[str] = None,
) -> InvestmentSnapshot:
    before = entity_store.load_investment(db, investment_id, actor=ctx.actor)
    outcome = investment_engine.reject(
        before,
        actor=ctx.actor,
        now=ctx.at,
        comment=comment,
        conditions=conditions,
        existing_approvals=entity_store.load_approvals_for(db, investment_id),
        id_factory=ctx.id_factory,
    )
    return _apply_investment(db, ctx, before, outcome)


def close_investment(db: Session, ctx: ActionContext, investment_id: str) -> InvestmentSnapshot:
    before = entity_store.load_investment(db, investment_id, actor=ctx.actor)
    outcome = investment_engine.close(
        before,
        cashflows=entity_store.load_cashflows_for(db, investment_id),
        actor=ctx.actor,
        now=ctx.at,
    )
    return _apply_investment(db, ctx, before, outcome)


def resubmit_investment(db: Session, ctx: ActionContext, investment_id: str) -> InvestmentSnapshot:
    rejected = entity_store.load_investment(db, investment_id, actor=ctx.actor)
    outcome = investment_engine.resubmit_as_new_draft(
        rejected, actor=ctx.actor, now=ctx.at, id_factory=ctx.id_factory
    )
    return _apply_investment(db, ctx, None, outcome)


# --- cashflows ---------------------------------------------------------------


def confirm_cashflow(
    db: Session, ctx: ActionContext, cashflow_id: str, *, slot: Any, comment: Optional[str] = None
) -> CashflowSnapshot:
    before = entity_store.load_cashflow(db, cashflow_id, actor=ctx.actor)
    outcome = cashflow_engine.confirm(
        before, slot=slot, actor=ctx.actor, now=ctx.at, comment=comment, id_factory=ctx.id_factory
    )
    return _apply_cashflow(db, ctx, before, outcome)


def unconfirm_cashflow(
    db: Session, ctx: ActionContext, cashflow_id: str, *, slot: Any, reason: Optional[str] = None
) -> CashflowSnapshot:
    before = entity_store.load_cashflow(db, cashflow_id, actor=ctx.actor)
    outcome = cashflow_engine.unconfirm(
        before, slot=slot, actor=ctx.actor, now=ctx.at, reason=reason
    )
    return _apply_cashflow(db, ctx, before, outcome)


def postpone_cashflow(
    db: Session,
    ctx: ActionContext,
    cashflow_id: str,
    *,
    new_due_date: date,
    reason: Optional[str] = None,
) -> CashflowSnapshot:
    before = entity_store.load_cashflow(db, cashflow_id, actor=ctx.actor)
    outcome = cashflow_engine.postpone(
        before,
        new_due_date=new_due_date,
        actor=ctx.actor,
        now=ctx.at,
        reason=reason,
        id_factory=ctx.id_factory,
    )
    return _apply_cashflow(db, ctx, before, outcome)


def cancel_cashflow(
    db: Session, ctx: ActionContext, cashflow_id: str, *, reason: Optional[str] = None
) -> CashflowSnapshot:
    before = entity_store.load_cashflow(db, cashflow_id, actor=ctx.actor)
    outcome = cashflow_engine.cancel(
        before, actor=ctx.actor, now=ctx.at, reason=reason, id_factory=ctx.id_factory
    )
    return _apply_cashflow(db, ctx, before, outcome)


def book_cashflow(
    db: Session, ctx: ActionContext, cashflow_id: str, *, accounting_reference: str
) -> CashflowSnapshot:
    before = entity_store.load_cashflow(db, cashflow_id, actor=ctx.actor)
    outcome = cashflow_engine.book(
        before, accounting_reference=accounting_reference, actor=ctx.actor, now=ctx.at
    )
    return _apply_cashflow(db, ctx, before, outcome)


# --- date-driven rules -------------------------------------------------------


def _dedup_key(n) -> tuple:
    return (
        status_value(n.kind),
        n.entity_id,
        status_value(n.recipient_role),
        n.recipient_user_id,
        n.created_at.date(),
    )


def run_due_payment_rules(
    db: Session,
    ctx: ActionContext,
    *,
    today: Optional[date] = None,
    reminder_days: Optional[int] = None,
    company_id: Optional[str] = None,
) -> list[PendingNotification]:
    """Queue due-soon, overdue and monthly-report reminders, at most one per kind, entity and day."""

    require_role_for(ctx.actor, "notifications.run_rules")
    now = ctx.at
    today = today or now.date()
    days = settings.payment_reminder_days if reminder_days is None else int(reminder_days)

    q = db.query(models.Cashflow).filter(
        models.Cashflow.status.in_(
            [models.CashflowStatus.pending_confirmation, models.CashflowStatus.pre_confirmed]
        )
    )
    q = entity_store.visible_company_filter(q, models.Cashflow.company_id, ctx.actor)
    if company_id:
        q = q.filter(models.Cashflow.company_id == str(company_id))
    cashflows = [entity_store.cashflow_snapshot(r) for r in q.all()]

    candidates = due_payment_notifications(
        cashflows, today=today, reminder_days=days, now=now, id_factory=ctx.id_factory
    )

    cq = db.query(models.Company.id).filter(models.Company.is_active.is_(True))
    cq = entity_store.visible_company_filter(cq, models.Company.id, ctx.actor)
    if company_id:
        cq = cq.filter(models.Company.id == str(company_id))
    candidates.extend(
        monthly_report_notifications(
            [row.id for row in cq.all()], today=today, now=now, id_factory=ctx.id_factory
        )
    )
    if not candidates:
        return []

    kinds = {n.kind for n in candidates}
    existing = (
        db.query(models.Notification)
        .filter(models.Notification.kind.in_(kinds))
        .filter(models.Notification.entity_id.in_({n.entity_id for n in candidates}))
        .all()
    )
    seen = {_dedup_key(n) for n in existing}
    seen.update(_dedup_key(n) for n in ctx.dispatcher.pending())

    fresh: list[PendingNotification] = []
    for n in candidates:
        key = _dedup_key(n)
        if key in seen:
            continue
        seen.add(key)
        fresh.append(n)

    logger.info(
        "due_payment_rules_ran",
        extra={
            "today": today.isoformat(),
            "candidates": len(candidates),
            "queued": len(fresh),
            "request_id": ctx.request_id,
        },
    )
    _publish(db, ctx, fresh)
    return fresh
