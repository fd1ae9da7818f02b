from datetime import date, timedelta
from decimal import Decimal

import pytest

from app.api.deps import get_current_actor
from app.config import settings
from app.core.errors import ConcurrentModification
from app.core.permissions import Actor
from app.main import app
from app.models.domain import RoleName
from app.services import entity_store

from conftest import (
    ACCOUNTING,
    ADMIN,
    CFO,
    CM,
    COMPANY_A,
    COMPANY_B,
    GF,
    VR,
    actor_headers,
    investment_payload,
    make_investment,
)

TODAY = date.today()


def _schedule(*offsets_and_amounts):
    return [
        {"due_date": (TODAY + timedelta(days=days)).isoformat(), "amount": amount}
        for days, amount in offsets_and_amounts
    ]


def _create(client, headers=GF, **overrides):
    overrides.setdefault("schedule", _schedule((10, "10000"), (40, "20000"), (70, "20000")))
    r = client.post("/api/investments", json=investment_payload(**overrides), headers=headers)
    assert r.status_code == 201, r.text
    return r.json()


def _activate(client, **overrides):
    inv = _create(client, **overrides)
    assert client.post(f"/api/investments/{inv['id']}/submit", headers=GF).status_code == 200
    r = client.post(f"/api/investments/{inv['id']}/approve", headers=VR, json={"comment": "ok"})
    assert r.status_code == 200, r.text
    cashflows = client.get(f"/api/investments/{inv['id']}/cashflows", headers=CM).json()
    return r.json(), cashflows


def _confirm(client, cashflow_id, slot):
    headers = CM if slot == "cm" else GF
    return client.post(f"/api/cashflows/{cashflow_id}/confirm", json={"slot": slot}, headers=headers)


def test_healthcheck_and_request_id_header(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    assert "uptime_seconds" in body
    assert "X-Request-ID" in r.headers

    r = client.get("/healthz", headers={"X-Request-ID": "req-health-1"})
    assert r.status_code == 200
    assert r.headers["X-Request-ID"] == "req-health-1"


def test_missing_actor_is_unauthorized(client):
    r = client.get("/api/investments")
    assert r.status_code == 401


def test_example_scenario_end_to_end(client):
    investment, cashflows = _activate(client)
    assert investment["status"] == "active"
    assert investment["activated_at"] is not None
    assert len(cashflows) == 3
    assert {cf["status"] for cf in cashflows} == {"pending_confirmation"}
    assert [Decimal(cf["amount"]) for cf in cashflows] == [
        Decimal("10000"),
        Decimal("20000"),
        Decimal("20000"),
    ]

    first = cashflows[0]["id"]
    r = _confirm(client, first, "cm")
    assert r.status_code == 200
    assert r.json()["status"] == "pre_confirmed"
    assert r.json()["cm_user_id"] == "cm-1"

    r = _confirm(client, first, "gf")
    assert r.json()["status"] == "confirmed"

    r = client.post(f"/api/investments/{investment['id']}/close", headers=GF)
    assert r.status_code == 422
    detail = r.json()["detail"]
    assert detail["code"] == "precondition_failed"
    assert detail["reason"] == "pending_settlement"
    assert sorted(detail["unsettled_cashflow_ids"]) == sorted(cf["id"] for cf in cashflows[1:])

    for cf in cashflows[1:]:
        assert _confirm(client, cf["id"], "gf").json()["status"] == "pre_confirmed"
        assert _confirm(client, cf["id"], "cm").json()["status"] == "confirmed"

    r = client.post(f"/api/investments/{investment['id']}/close", headers=GF)
    assert r.status_code == 200
    assert r.json()["status"] == "closed"
    assert r.json()["closed_at"] is not None


def test_approval_is_recorded_once_and_history_is_complete(client):
    investment, cashflows = _activate(client)
    inv_id = investment["id"]

    approvals = client.get(f"/api/investments/{inv_id}/approvals", headers=VR).json()
    assert len(approvals) == 1
    assert approvals[0]["decision"] == "approved"
    assert approvals[0]["is_active"] is True
    assert approvals[0]["approver_id"] == "vr-1"

    history = client.get(f"/api/investments/{inv_id}/history", headers=GF).json()
    investment_trail = [
        (h["previous_status"], h["new_status"]) for h in history if h["entity_type"] == "investment"
    ]
    assert investment_trail == [
        (None, "draft"),
        ("draft", "submitted_for_approval"),
        ("submitted_for_approval", "approved"),
        ("approved", "active"),
    ]
    cashflow_actions = [h["action"] for h in history if h["entity_type"] == "cashflow"]
    assert cashflow_actions.count("cashflow.created") == 3
    assert cashflow_actions.count("cashflow.released") == 3


def test_permission_and_transition_errors(client):
    inv = _create(client)

    r = client.post(f"/api/investments/{inv['id']}/submit", headers=CM)
    assert r.status_code == 403
    assert r.json()["detail"]["code"] == "permission_denied"

    r = client.post(f"/api/investments/{inv['id']}/approve", headers=VR)
    assert r.status_code == 409
    detail = r.json()["detail"]
    assert detail["code"] == "illegal_transition"
    assert detail["current_status"] == "draft"
    assert detail["requested_status"] == "approved"

    r = client.post(f"/api/investments/{inv['id']}/submit", headers=GF)
    assert r.status_code == 200
    r = client.patch(f"/api/investments/{inv['id']}", json={"name": "late edit"}, headers=GF)
    assert r.status_code == 409


def test_submit_rejects_schedule_mismatch(client):
    inv = _create(client, schedule=_schedule((10, "100")))
    r = client.post(f"/api/investments/{inv['id']}/submit", headers=GF)
    assert r.status_code == 422
    assert Decimal(r.json()["detail"]["schedule_total"]) == Decimal("100")


def test_other_tenants_investment_is_not_found(client):
    inv = _create(client)
    outsider = actor_headers("gf-2", RoleName.geschaeftsfuehrer, companies=(COMPANY_B,))

    assert client.get(f"/api/investments/{inv['id']}", headers=outsider).status_code == 404
    assert client.post(f"/api/investments/{inv['id']}/submit", headers=outsider).status_code == 404
    assert client.get("/api/investments", headers=outsider).json() == []
    # Group-wide roles see every company.
    assert len(client.get("/api/investments", headers=CFO).json()) == 1


def test_create_for_unknown_company_is_not_found(client):
    r = client.post(
        "/api/investments",
        json=investment_payload(company_id="nope"),
        headers=actor_headers("cfo-1", RoleName.cfo, companies=("nope",)),
    )
    assert r.status_code == 404


def test_edit_and_delete_draft(client):
    inv = _create(client)
    r = client.patch(
        f"/api/investments/{inv['id']}",
        json={"name": "Electric vans", "meta": {"vendor": "ACME"}},
        headers=GF,
    )
    assert r.status_code == 200
    assert r.json()["name"] == "Electric vans"
    assert r.json()["meta"] == {"vendor": "ACME"}
    assert r.json()["revision"] == 1

    r = client.patch(
        f"/api/investments/{inv['id']}",
        json={"schedule": _schedule((5, "50000"))},
        headers=GF,
    )
    assert len(r.json()["schedule"]) == 1

    assert client.delete(f"/api/investments/{inv['id']}", headers=GF).status_code == 204
    assert client.get(f"/api/investments/{inv['id']}", headers=GF).status_code == 404


def test_duplicate_schedule_sequence_is_rejected(client):
    schedule = _schedule((10, "25000"), (40, "25000"))
    schedule[0]["sequence"] = 1
    schedule[1]["sequence"] = 1
    r = client.post("/api/investments", json=investment_payload(schedule=schedule), headers=GF)
    assert r.status_code == 422
    assert r.json()["detail"]["code"] == "precondition_failed"
    assert r.json()["detail"]["sequence"] == 1
    assert client.get("/api/investments", headers=GF).json() == []

    inv = _create(client)
    # An explicit sequence may collide with an implicit one (its position).
    schedule = _schedule((10, "25000"), (40, "25000"))
    schedule[0]["sequence"] = 2
    r = client.patch(f"/api/investments/{inv['id']}", json={"schedule": schedule}, headers=GF)
    assert r.status_code == 422
    assert r.json()["detail"]["sequence"] == 2
    assert len(client.get(f"/api/investments/{inv['id']}", headers=GF).json()["schedule"]) == 3


@pytest.mark.parametrize("field", ["category", "financing_type", "name", "total_amount"])
def test_null_for_required_field_is_rejected(client, field):
    inv_id = _create(client)["id"]
    before = client.get(f"/api/investments/{inv_id}", headers=GF).json()

    r = client.patch(f"/api/investments/{inv_id}", json={field: None}, headers=GF)
    assert r.status_code == 422
    assert r.json()["detail"]["code"] == "precondition_failed"

    after = client.get(f"/api/investments/{inv_id}", headers=GF).json()
    assert after[field] == before[field]
    assert after["revision"] == before["revision"]


def test_reject_and_resubmit(client):
    inv = _create(client)
    client.post(f"/api/investments/{inv['id']}/submit", headers=GF)

    r = client.post(f"/api/investments/{inv['id']}/reject", json={}, headers=VR)
    assert r.status_code == 422

    r = client.post(
        f"/api/investments/{inv['id']}/reject", json={"comment": "Get a second quote"}, headers=VR
    )
    assert r.status_code == 200
    assert r.json()["status"] == "rejected"
    assert client.get(f"/api/investments/{inv['id']}/cashflows", headers=GF).json() == []

    r = client.post(f"/api/investments/{inv['id']}/resubmit", headers=GF)
    assert r.status_code == 201
    draft = r.json()
    assert draft["status"] == "draft"
    assert draft["id"] != inv["id"]
    assert draft["supersedes_investment_id"] == inv["id"]
    assert client.get(f"/api/investments/{inv['id']}", headers=GF).json()["status"] == "rejected"


def test_confirmation_errors(client):
    _, cashflows = _activate(client)
    cf_id = cashflows[0]["id"]

    assert _confirm(client, cf_id, "cm").status_code == 200
    r = _confirm(client, cf_id, "cm")
    assert r.status_code == 422
    assert r.json()["detail"]["slot"] == "cm"

    r = client.post(f"/api/cashflows/{cf_id}/confirm", json={"slot": "gf"}, headers=CM)
    assert r.status_code == 403

    r = client.post(f"/api/cashflows/{cf_id}/confirm", json={"slot": "xx"}, headers=CM)
    assert r.status_code == 422

    assert _confirm(client, cf_id, "gf").json()["status"] == "confirmed"
    r = _confirm(client, cf_id, "gf")
    assert r.status_code == 409


def test_unconfirm_postpone_cancel_and_book(client):
    _, cashflows = _activate(client)
    a, b, c = (cf["id"] for cf in cashflows)

    _confirm(client, a, "cm")
    _confirm(client, a, "gf")
    r = client.post(f"/api/cashflows/{a}/unconfirm", json={"slot": "cm", "reason": "typo"}, headers=CM)
    assert r.status_code == 200
    assert r.json()["status"] == "pre_confirmed"
    assert r.json()["confirmed_by_cm"] is False
    _confirm(client, a, "cm")

    r = client.post(f"/api/cashflows/{a}/book", json={"accounting_reference": "FI-7"}, headers=ACCOUNTING)
    assert r.status_code == 200
    assert r.json()["accounting_reference"] == "FI-7"
    r = client.post(f"/api/cashflows/{a}/unconfirm", json={"slot": "gf"}, headers=GF)
    assert r.status_code == 409

    _confirm(client, b, "cm")
    new_due = TODAY + timedelta(days=120)
    r = client.post(
        f"/api/cashflows/{b}/postpone",
        json={"new_due_date": new_due.isoformat(), "reason": "delivery late"},
        headers=GF,
    )
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "pending_confirmation"
    assert body["confirmed_by_cm"] is False and body["confirmed_by_gf"] is False
    assert body["due_date"] == new_due.isoformat()
    assert body["original_due_date"] == (TODAY + timedelta(days=40)).isoformat()
    assert (body["month"], body["year"]) == (new_due.month, new_due.year)

    r = client.post(
        f"/api/cashflows/{b}/postpone",
        json={"new_due_date": (TODAY - timedelta(days=1)).isoformat()},
        headers=GF,
    )
    assert r.status_code == 422

    r = client.post(f"/api/cashflows/{c}/cancel", headers=CFO)
    assert r.status_code == 200
    assert r.json()["status"] == "cancelled"
    assert client.post(f"/api/cashflows/{c}/cancel", headers=CFO).status_code == 409

    history = client.get(f"/api/investments/{cashflows[0]['investment_id']}/history", headers=GF).json()
    actions = [h["action"] for h in history]
    assert "cashflow.postponed" in actions
    assert "cashflow.reopened" in actions
    assert "cashflow.booked" in actions


def test_cashflow_listing_filters_and_summary(client):
    investment, cashflows = _activate(client)
    _confirm(client, cashflows[0]["id"], "cm")

    r = client.get("/api/cashflows", params={"status": "pre_confirmed"}, headers=CM)
    assert [cf["id"] for cf in r.json()] == [cashflows[0]["id"]]

    due = date.fromisoformat(cashflows[1]["due_date"])
    r = client.get("/api/cashflows", params={"year": due.year, "month": due.month}, headers=CM)
    assert cashflows[1]["id"] in [cf["id"] for cf in r.json()]

    outsider = actor_headers("cm-2", RoleName.cashflow_manager, companies=(COMPANY_B,))
    assert client.get("/api/cashflows", headers=outsider).json() == []
    assert client.get(f"/api/cashflows/{cashflows[0]['id']}", headers=outsider).status_code == 404

    summary = client.get(f"/api/investments/{investment['id']}/cashflow-summary", headers=CM).json()
    assert summary["count"] == 3
    assert Decimal(summary["total"]) == Decimal("50000")
    assert summary["by_status"] == {"pre_confirmed": 1, "pending_confirmation": 2}


def test_notifications_are_delivered_and_can_be_read(client):
    investment, cashflows = _activate(client)

    board = client.get("/api/notifications", headers=VR).json()
    assert [n["kind"] for n in board] == ["investment_submitted"]
    assert board[0]["delivered"] is True

    author = client.get("/api/notifications", headers=GF).json()
    approved = [n for n in author if n["kind"] == "investment_approved"]
    assert len(approved) == 1
    assert approved[0]["recipient_user_id"] == "gf-1"

    _confirm(client, cashflows[0]["id"], "cm")
    gf_unread = client.get("/api/notifications", params={"unread": True}, headers=GF).json()
    pre = [n for n in gf_unread if n["kind"] == "cashflow_pre_confirmed"]
    assert len(pre) == 1

    r = client.post(f"/api/notifications/{pre[0]['id']}/read", headers=GF)
    assert r.status_code == 200
    assert r.json()["read"] is True
    unread_ids = [n["id"] for n in client.get("/api/notifications", params={"unread": True}, headers=GF).json()]
    assert pre[0]["id"] not in unread_ids

    # Not addressed to accounting.
    assert client.post(f"/api/notifications/{pre[0]['id']}/read", headers=ACCOUNTING).status_code == 404


def test_manual_dispatch_when_auto_dispatch_is_off(client, dispatcher, monkeypatch):
    monkeypatch.setattr(settings, "notifications_auto_dispatch", False)
    inv = _create(client)
    client.post(f"/api/investments/{inv['id']}/submit", headers=GF)

    assert client.get("/api/notifications", headers=VR).json() == []
    assert client.get("/api/notifications/pending", headers=VR).status_code == 403

    pending = client.get("/api/notifications/pending", headers=GF).json()
    assert [n["kind"] for n in pending] == ["investment_submitted"]

    r = client.post("/api/notifications/dispatch", headers=GF)
    assert r.status_code == 200
    assert r.json()["status"] == "delivered"
    assert r.json()["delivered"] == 1
    assert dispatcher.is_empty()

    assert client.post("/api/notifications/dispatch", headers=GF).json()["status"] == "empty"
    assert [n["kind"] for n in client.get("/api/notifications", headers=VR).json()] == [
        "investment_submitted"
    ]


def _payment_kinds(response):
    return [
        n["kind"] for n in response.json()["notifications"] if n["kind"] != "monthly_report_due"
    ]


def test_due_payment_rules_are_deduplicated_per_day(client):
    _activate(
        client,
        schedule=_schedule((2, "10000"), (40, "40000")),
    )

    r = client.post("/api/notifications/rules/due-payments", json={}, headers=CM)
    assert r.status_code == 200
    # The monthly report rule also fires when the suite runs on the 5th.
    assert _payment_kinds(r) == ["payment_due_soon"]

    r = client.post("/api/notifications/rules/due-payments", headers=CM)
    assert r.json()["queued"] == 0

    kinds = [n["kind"] for n in client.get("/api/notifications", headers=CM).json()]
    assert kinds.count("payment_due_soon") == 1

    r = client.post(
        "/api/notifications/rules/due-payments",
        json={"today": (TODAY + timedelta(days=5)).isoformat()},
        headers=CM,
    )
    # Overdue for both confirming roles, once each.
    assert _payment_kinds(r) == ["payment_overdue", "payment_overdue"]

    assert client.post("/api/notifications/rules/due-payments", headers=ACCOUNTING).status_code == 403


def test_audit_requires_capability(client):
    inv = _create(client)
    r = client.get("/api/audit", params={"entity_id": inv["id"]}, headers=CFO)
    assert r.status_code == 200
    rows = r.json()
    assert [row["action"] for row in rows] == ["investment.created"]
    assert rows[0]["actor_id"] == "gf-1"
    assert rows[0]["actor_role"] == "geschaeftsfuehrer"

    assert client.get("/api/audit", headers=CM).status_code == 403


def test_request_id_is_stored_on_audit_rows(client):
    inv = _create(client)
    client.post(
        f"/api/investments/{inv['id']}/submit",
        headers={**GF, "X-Request-ID": "req-submit-1"},
    )
    rows = client.get("/api/audit", params={"action": "investment.submitted"}, headers=CFO).json()
    assert rows[0]["request_id"] == "req-submit-1"


def test_companies(client):
    r = client.get("/api/companies", headers=CM)
    assert [c["id"] for c in r.json()] == [COMPANY_A]
    assert len(client.get("/api/companies", headers=CFO).json()) == 2

    r = client.post("/api/companies", json={"name": "Gamma AG", "company_code": "gamma"}, headers=ADMIN)
    assert r.status_code == 201
    assert r.json()["company_code"] == "GAMMA"

    r = client.post("/api/companies", json={"name": "Gamma 2", "company_code": "GAMMA"}, headers=ADMIN)
    assert r.status_code == 409
    r = client.post("/api/companies", json={"name": "Delta", "company_code": "D"}, headers=CFO)
    assert r.status_code == 403


def test_stub_actor_override(client):
    app.dependency_overrides[get_current_actor] = lambda: Actor.of(
        "stub-gf", [RoleName.geschaeftsfuehrer], [COMPANY_A]
    )
    r = client.post("/api/investments", json=investment_payload())
    assert r.status_code == 201
    assert r.json()["created_by"] == "stub-gf"


def test_stale_revision_is_rejected(db_session):
    investment = entity_store.load_investment(db_session, _seed_draft(db_session))
    entity_store.save_investment(db_session, investment, investment.evolve(name="first"))
    db_session.commit()

    with pytest.raises(ConcurrentModification):
        entity_store.save_investment(db_session, investment, investment.evolve(name="second"))
    db_session.rollback()
    assert entity_store.load_investment(db_session, investment.id).name == "first"


def _seed_draft(db):
    draft = make_investment(id="inv-stale")
    entity_store.insert_investment(db, draft)
    db.commit()
    return draft.id
