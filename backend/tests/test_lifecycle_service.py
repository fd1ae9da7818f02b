from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app import models
from app.core.errors import PreconditionFailed
from app.models.domain import CashflowStatus, ConfirmationSlot, InvestmentStatus, RoleName
from app.services import entity_store, lifecycle_service, scheduler
from app.services.lifecycle_service import ActionContext
from app.services.notification_dispatcher import NotificationDispatcher

from conftest import COMPANY_A, COMPANY_B, NOW, TestingSessionLocal, make_actor

gf = make_actor("gf-1", RoleName.geschaeftsfuehrer)
cm = make_actor("cm-1", RoleName.cashflow_manager)
vr = make_actor("vr-1", RoleName.vr_approval)


@pytest.fixture
def queue():
    return NotificationDispatcher()


@pytest.fixture(autouse=True)
def manual_dispatch(monkeypatch):
    monkeypatch.setattr(lifecycle_service.settings, "notifications_auto_dispatch", False)


def _ctx(actor, queue, **kwargs):
    return ActionContext(actor=actor, dispatcher=queue, now=NOW, **kwargs)


def _submitted(db, queue, schedule=None):
    schedule = schedule or [
        {"due_date": NOW.date() + timedelta(days=3), "amount": "20000"},
        {"due_date": NOW.date() + timedelta(days=30), "amount": "30000"},
    ]
    created = lifecycle_service.create_investment(
        db,
        _ctx(gf, queue),
        company_id=COMPANY_A,
        name="CNC mill",
        category="machinery",
        financing_type="leasing",
        total_amount="50000",
        schedule=schedule,
    )
    lifecycle_service.submit_investment(db, _ctx(gf, queue), created.id)
    return created.id


def test_notifications_are_queued_after_commit(db_session, queue):
    inv_id = _submitted(db_session, queue)
    assert [n.kind for n in queue.pending()] == [models.NotificationKind.investment_submitted]
    assert db_session.query(models.Notification).count() == 0

    result = lifecycle_service.dispatch_pending(db_session, queue)
    assert result.delivered_count == 1
    row = db_session.query(models.Notification).one()
    assert row.entity_id == inv_id
    assert row.recipient_role == "vr_approval"
    assert row.delivered is True


def test_approve_rolls_back_as_a_whole(db_session, queue, monkeypatch):
    inv_id = _submitted(db_session, queue)

    def boom(db, cashflows):
        raise RuntimeError("disk full")

    monkeypatch.setattr(entity_store, "insert_cashflows", boom)
    with pytest.raises(RuntimeError):
        lifecycle_service.approve_investment(db_session, _ctx(vr, queue), inv_id)

    investment = entity_store.load_investment(db_session, inv_id)
    assert investment.status == InvestmentStatus.submitted_for_approval
    assert investment.revision == 1
    assert entity_store.load_approvals_for(db_session, inv_id) == []
    assert db_session.query(models.Cashflow).count() == 0
    actions = [r.action for r in db_session.query(models.AuditLog).all()]
    assert "investment.approved" not in actions
    # Nothing from the failed call reaches the queue.
    assert len(queue.pending()) == 1


def test_bad_schedule_line_leaves_investment_submitted(db_session, queue):
    inv_id = _submitted(
        db_session,
        queue,
        schedule=[
            {"due_date": NOW.date() + timedelta(days=3), "amount": "50000"},
            {"due_date": NOW.date() + timedelta(days=30), "amount": "0"},
        ],
    )
    with pytest.raises(PreconditionFailed):
        lifecycle_service.approve_investment(db_session, _ctx(vr, queue), inv_id)
    assert entity_store.load_investment(db_session, inv_id).status == InvestmentStatus.submitted_for_approval
    assert db_session.query(models.Cashflow).count() == 0


def test_cashflow_actions_persist_and_bump_revision(db_session, queue):
    inv_id = _submitted(db_session, queue)
    lifecycle_service.approve_investment(db_session, _ctx(vr, queue), inv_id)
    first, second = entity_store.load_cashflows_for(db_session, inv_id)
    assert first.amount == Decimal("20000")

    saved = lifecycle_service.confirm_cashflow(
        db_session, _ctx(cm, queue, request_id="r-1"), first.id, slot=ConfirmationSlot.cm
    )
    assert saved.revision == 1
    reloaded = entity_store.load_cashflow(db_session, first.id)
    assert reloaded.status == CashflowStatus.pre_confirmed
    assert reloaded.revision == 1

    row = (
        db_session.query(models.AuditLog)
        .filter(models.AuditLog.action == "cashflow.confirmed.cm")
        .one()
    )
    assert row.request_id == "r-1"
    assert row.actor_role == "cashflow_manager"


def test_due_rules_skip_what_is_already_queued(db_session, queue):
    inv_id = _submitted(db_session, queue)
    lifecycle_service.approve_investment(db_session, _ctx(vr, queue), inv_id)
    queue.clear()

    first = lifecycle_service.run_due_payment_rules(db_session, _ctx(cm, queue))
    assert [n.kind for n in first] == [models.NotificationKind.payment_due_soon]
    again = lifecycle_service.run_due_payment_rules(db_session, _ctx(cm, queue))
    assert again == []
    assert queue.pending_count() == 1


def test_daily_reminder_job_uses_system_actor(db_session, queue):
    inv_id = _submitted(db_session, queue)
    lifecycle_service.approve_investment(db_session, _ctx(vr, queue), inv_id)
    queue.clear()

    queued = scheduler.run_daily_reminders(
        queue, session_factory=TestingSessionLocal, now=NOW + timedelta(days=5)
    )
    # First payment (due in 3 days) is now overdue: CM and GF each get one.
    assert queued == 2
    assert {n.recipient_role for n in queue.pending()} == {
        RoleName.cashflow_manager,
        RoleName.geschaeftsfuehrer,
    }


def test_daily_runner_starts_and_stops():
    runner = scheduler.DailyJobRunner(NotificationDispatcher(), hour_utc=3)
    runner.start()
    assert runner._thread is not None and runner._thread.is_alive()
    runner.stop(timeout=2)
    assert not runner._thread.is_alive()


def test_monthly_report_reminder_runs_once_per_day(db_session, queue):
    fifth = datetime(2026, 3, 5, 7, 0, tzinfo=timezone.utc)

    first = lifecycle_service.run_due_payment_rules(
        db_session, ActionContext(actor=cm, dispatcher=queue, now=fifth)
    )
    # cm-1 only sees company A.
    assert [(n.kind, n.entity_id, n.recipient_role) for n in first] == [
        (models.NotificationKind.monthly_report_due, COMPANY_A, RoleName.cashflow_manager),
        (models.NotificationKind.monthly_report_due, COMPANY_A, RoleName.geschaeftsfuehrer),
    ]

    again = lifecycle_service.run_due_payment_rules(
        db_session, ActionContext(actor=cm, dispatcher=queue, now=fifth)
    )
    assert again == []

    lifecycle_service.dispatch_pending(db_session, queue)
    later = lifecycle_service.run_due_payment_rules(
        db_session, ActionContext(actor=cm, dispatcher=queue, now=fifth + timedelta(hours=6))
    )
    assert later == []
    assert db_session.query(models.Notification).count() == 2


def test_daily_reminder_job_sends_monthly_report_to_every_company(queue):
    queued = scheduler.run_daily_reminders(
        queue,
        session_factory=TestingSessionLocal,
        now=datetime(2026, 4, 5, 6, 0, tzinfo=timezone.utc),
    )
    assert queued == 4
    assert {n.entity_id for n in queue.pending()} == {COMPANY_A, COMPANY_B}
    assert "03/2026" in queue.pending()[0].title
