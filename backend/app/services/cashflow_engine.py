"""Two-party cashflow confirmation.

Status on the confirmation path is never set directly: it is derived from the
``confirmed_by_cm`` / ``confirmed_by_gf`` flag pair, so the order in which CM
and GF confirm cannot influence the result. Postpone and cancel are the only
manual overrides. Once accounting attaches a reference the cashflow is frozen.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Mapping

from app.core.errors import IllegalTransition, PreconditionFailed
from app.core.permissions import Actor, require_action
from app.models.domain import CashflowStatus, ConfirmationSlot
from app.services import notification_rules
from app.services.snapshots import (
    CashflowOutcome,
    CashflowSnapshot,
    IdFactory,
    LifecycleEvent,
    PendingNotification,
    new_id,
    status_value,
)

C = CashflowStatus

TRANSITIONS: Mapping[CashflowStatus, frozenset[CashflowStatus]] = {
    C.planned: frozenset({C.pending_confirmation, C.cancelled}),
    C.pending_confirmation: frozenset({C.pre_confirmed, C.postponed, C.cancelled}),
    C.pre_confirmed: frozenset(
        {C.confirmed, C.pending_confirmation, C.postponed, C.cancelled}
    ),
    # Correction path only, until booked.
    C.confirmed: frozenset({C.pre_confirmed}),
    C.postponed: frozenset({C.pending_confirmation, C.cancelled}),
    C.cancelled: frozenset(),
}

CONFIRMABLE = frozenset({C.pending_confirmation, C.pre_confirmed})


def derive_status(confirmed_by_cm: bool, confirmed_by_gf: bool) -> CashflowStatus:
    confirmations = int(bool(confirmed_by_cm)) + int(bool(confirmed_by_gf))
    if confirmations == 2:
        return C.confirmed
    if confirmations == 1:
        return C.pre_confirmed
    return C.pending_confirmation


def next_states(status: CashflowStatus) -> frozenset[CashflowStatus]:
    return TRANSITIONS.get(status, frozenset())


def can_transition(current: CashflowStatus, requested: CashflowStatus) -> bool:
    return requested in next_states(current)


def is_final_state(status: CashflowStatus) -> bool:
    return not next_states(status)


def _slot_fields(slot: ConfirmationSlot) -> tuple[str, str, str, str]:
    prefix = slot.value
    return f"confirmed_by_{prefix}", f"{prefix}_user_id", f"{prefix}_confirmed_at", f"{prefix}_comment"


def _flag(cashflow: CashflowSnapshot, slot: ConfirmationSlot) -> bool:
    return bool(getattr(cashflow, _slot_fields(slot)[0]))


def _illegal(
    cashflow: CashflowSnapshot, requested: Any, message: str | None = None
) -> IllegalTransition:
    return IllegalTransition(
        entity_type="cashflow",
        entity_id=cashflow.id,
        current_status=cashflow.status,
        requested_status=requested,
        message=message,
    )


def _require_not_booked(cashflow: CashflowSnapshot, requested: Any) -> None:
    if cashflow.is_booked:
        raise _illegal(
            cashflow,
            requested,
            message=f"Cashflow is booked ({cashflow.accounting_reference}) and can no longer change",
        )


def _event(
    cashflow: CashflowSnapshot,
    *,
    action: str,
    previous: CashflowStatus | None,
    new: CashflowStatus | None,
    actor: Actor,
    now: datetime,
    payload: Mapping[str, Any] | None = None,
) -> LifecycleEvent:
    return LifecycleEvent(
        entity_type="cashflow",
        entity_id=cashflow.id,
        action=action,
        previous_status=status_value(previous),
        new_status=status_value(new),
        actor_id=actor.user_id,
        actor_role=status_value(actor.primary_role),
        occurred_at=now,
        company_id=cashflow.company_id,
        payload={"investment_id": cashflow.investment_id, **dict(payload or {})},
    )


def _require_role(actor: Actor, action: str, cashflow: CashflowSnapshot) -> None:
    require_action(
        actor,
        action,
        company_id=cashflow.company_id,
        entity_type="cashflow",
        entity_id=cashflow.id,
    )


def confirm(
    cashflow: CashflowSnapshot,
    *,
    slot: ConfirmationSlot,
    actor: Actor,
    now: datetime,
    comment: str | None = None,
    id_factory: IdFactory = new_id,
) -> CashflowOutcome:
    slot = ConfirmationSlot(slot)
    _require_role(actor, f"cashflow.confirm.{slot.value}", cashflow)
    _require_not_booked(cashflow, C.confirmed)

    flag_field, user_field, at_field, comment_field = _slot_fields(slot)
    flags = {
        "confirmed_by_cm": cashflow.confirmed_by_cm,
        "confirmed_by_gf": cashflow.confirmed_by_gf,
        flag_field: True,
    }
    new_status = derive_status(flags["confirmed_by_cm"], flags["confirmed_by_gf"])

    if cashflow.status not in CONFIRMABLE:
        raise _illegal(cashflow, new_status)
    if _flag(cashflow, slot):
        raise PreconditionFailed(
            f"Cashflow is already confirmed by {slot.value}",
            entity_type="cashflow",
            entity_id=cashflow.id,
            slot=slot.value,
        )

    updated = cashflow.evolve(
        status=new_status,
        updated_at=now,
        **{flag_field: True, user_field: actor.user_id, at_field: now, comment_field: comment},
    )
    event = _event(
        updated,
        action=f"cashflow.confirmed.{slot.value}",
        previous=cashflow.status,
        new=new_status,
        actor=actor,
        now=now,
        payload={"slot": slot.value, "comment": comment},
    )

    notifications: tuple[PendingNotification, ...]
    if new_status == C.confirmed:
        notifications = notification_rules.cashflow_confirmed(updated, now=now, id_factory=id_factory)
    else:
        notifications = notification_rules.cashflow_pre_confirmed(
            updated, confirmed_slot=slot, now=now, id_factory=id_factory
        )

    return CashflowOutcome(cashflow=updated, events=(event,), notifications=notifications)


def unconfirm(
    cashflow: CashflowSnapshot,
    *,
    slot: ConfirmationSlot,
    actor: Actor,
    now: datetime,
    reason: str | None = None,
) -> CashflowOutcome:
    slot = ConfirmationSlot(slot)
    _require_role(actor, f"cashflow.confirm.{slot.value}", cashflow)

    flag_field, user_field, at_field, comment_field = _slot_fields(slot)
    flags = {
        "confirmed_by_cm": cashflow.confirmed_by_cm,
        "confirmed_by_gf": cashflow.confirmed_by_gf,
        flag_field: False,
    }
    new_status = derive_status(flags["confirmed_by_cm"], flags["confirmed_by_gf"])

    _require_not_booked(cashflow, new_status)
    if cashflow.status not in (C.pre_confirmed, C.confirmed):
        raise _illegal(cashflow, new_status)
    if not _flag(cashflow, slot):
        raise PreconditionFailed(
            f"Cashflow is not confirmed by {slot.value}",
            entity_type="cashflow",
            entity_id=cashflow.id,
            slot=slot.value,
        )

    updated = cashflow.evolve(
        status=new_status,
        updated_at=now,
        **{flag_field: False, user_field: None, at_field: None, comment_field: None},
    )
    event = _event(
        updated,
        action=f"cashflow.unconfirmed.{slot.value}",
        previous=cashflow.status,
        new=new_status,
        actor=actor,
        now=now,
        payload={"slot": slot.value, "reason": reason},
    )
    return CashflowOutcome(cashflow=updated, events=(event,))


_CLEARED_CONFIRMATIONS: Mapping[str, Any] = {
    "confirmed_by_cm": False,
    "cm_user_id": None,
    "cm_confirmed_at": None,
    "cm_comment": None,
    "confirmed_by_gf": False,
    "gf_user_id": None,
    "gf_confirmed_at": None,
    "gf_comment": None,
}


def postpone(
    cashflow: CashflowSnapshot,
    *,
    new_due_date: date,
    actor: Actor,
    now: datetime,
    reason: str | None = None,
    id_factory: IdFactory = new_id,
) -> CashflowOutcome:
    """Move the due date and restart the confirmation handshake.

    Both flags are cleared whatever their prior value: approvals given for the
    old date never carry over to the new one.
    """

    _require_role(actor, "cashflow.postpone", cashflow)
    _require_not_booked(cashflow, C.postponed)
    if not can_transition(cashflow.status, C.postponed):
        raise _illegal(cashflow, C.postponed)
    if new_due_date <= now.date():
        raise PreconditionFailed(
            "The new due date must lie in the future",
            entity_type="cashflow",
            entity_id=cashflow.id,
            new_due_date=new_due_date.isoformat(),
        )

    postponed = cashflow.evolve(
        status=C.postponed,
        original_due_date=cashflow.original_due_date or cashflow.due_date,
        due_date=new_due_date,
        postponed_by=actor.user_id,
        postponed_at=now,
        postpone_reason=reason,
        updated_at=now,
        **_CLEARED_CONFIRMATIONS,
    )
    postponed_event = _event(
        postponed,
        action="cashflow.postponed",
        previous=cashflow.status,
        new=C.postponed,
        actor=actor,
        now=now,
        payload={
            "previous_due_date": cashflow.due_date.isoformat(),
            "new_due_date": new_due_date.isoformat(),
            "reason": reason,
            "cleared_cm": cashflow.confirmed_by_cm,
            "cleared_gf": cashflow.confirmed_by_gf,
        },
    )

    reopened = postponed.evolve(status=C.pending_confirmation)
    reopened_event = _event(
        reopened,
        action="cashflow.reopened",
        previous=C.postponed,
        new=C.pending_confirmation,
        actor=actor,
        now=now,
    )

    return CashflowOutcome(
        cashflow=reopened,
        events=(postponed_event, reopened_event),
        notifications=notification_rules.cashflow_postponed(reopened, now=now, id_factory=id_factory),
    )


def cancel(
    cashflow: CashflowSnapshot,
    *,
    actor: Actor,
    now: datetime,
    reason: str | None = None,
    id_factory: IdFactory = new_id,
) -> CashflowOutcome:
    _require_role(actor, "cashflow.cancel", cashflow)
    _require_not_booked(cashflow, C.cancelled)
    if not can_transition(cashflow.status, C.cancelled):
        raise _illegal(cashflow, C.cancelled)

    cancelled = cashflow.evolve(
        status=C.cancelled,
        cancelled_by=actor.user_id,
        cancelled_at=now,
        cancel_reason=reason,
        updated_at=now,
    )
    event = _event(
        cancelled,
        action="cashflow.cancelled",
        previous=cashflow.status,
        new=C.cancelled,
        actor=actor,
        now=now,
        payload={"reason": reason},
    )
    return CashflowOutcome(
        cashflow=cancelled,
        events=(event,),
        notifications=notification_rules.cashflow_cancelled(cancelled, now=now, id_factory=id_factory),
    )


def book(
    cashflow: CashflowSnapshot,
    *,
    accounting_reference: str,
    actor: Actor,
    now: datetime,
) -> CashflowOutcome:
    _require_role(actor, "cashflow.book", cashflow)
    _require_not_booked(cashflow, "booked")
    if cashflow.status != C.confirmed:
        raise _illegal(cashflow, "booked", message="Only confirmed cashflows can be booked")

    reference = str(accounting_reference or "").strip()
    if not reference:
        raise PreconditionFailed(
            "An accounting reference is required",
            entity_type="cashflow",
            entity_id=cashflow.id,
        )

    booked = cashflow.evolve(
        accounting_reference=reference,
        booked_by=actor.user_id,
        booked_at=now,
        updated_at=now,
    )
    event = _event(
        booked,
        action="cashflow.booked",
        previous=C.confirmed,
        new=C.confirmed,
        actor=actor,
        now=now,
        payload={"accounting_reference": reference},
    )
    return CashflowOutcome(cashflow=booked, events=(event,))
