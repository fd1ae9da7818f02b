"""Investment state machine.

    draft -> submitted_for_approval -> approved -> active -> closed
                                    \\-> rejected

Every operation is pure: it validates (role, then graph, then business
preconditions) against the snapshot it is given and returns an
``InvestmentOutcome`` with the new snapshot, audit events and notifications.
On failure it raises a ``LifecycleError`` and nothing has changed.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Sequence

from app.core.errors import IllegalTransition, PreconditionFailed
from app.core.permissions import Actor, require_action
from app.models.domain import (
    ApprovalDecision,
    FinancingType,
    InvestmentCategory,
    InvestmentStatus,
)
from app.services import cascade, notification_rules
from app.services.snapshots import (
    ApprovalSnapshot,
    CashflowSnapshot,
    IdFactory,
    InvestmentOutcome,
    InvestmentSnapshot,
    LifecycleEvent,
    ScheduledPaymentSnapshot,
    new_id,
    status_value,
)

S = InvestmentStatus

TRANSITIONS: Mapping[InvestmentStatus, frozenset[InvestmentStatus]] = {
    S.draft: frozenset({S.submitted_for_approval}),
    S.submitted_for_approval: frozenset({S.approved, S.rejected}),
    S.approved: frozenset({S.active}),
    S.rejected: frozenset(),
    S.active: frozenset({S.closed}),
    S.closed: frozenset(),
}

# Schedule total may differ from the investment amount by rounding only.
SCHEDULE_SUM_TOLERANCE = Decimal("0.01")

EDITABLE_FIELDS = frozenset(
    {
        "name",
        "description",
        "category",
        "financing_type",
        "total_amount",
        "start_date",
        "meta",
        "schedule",
    }
)


def next_states(status: InvestmentStatus) -> frozenset[InvestmentStatus]:
    return TRANSITIONS.get(status, frozenset())


def can_transition(current: InvestmentStatus, requested: InvestmentStatus) -> bool:
    return requested in next_states(current)


def is_final_state(status: InvestmentStatus) -> bool:
    return not next_states(status)


def _require_role(actor: Actor, action: str, *, company_id: str, entity_id: str | None) -> None:
    require_action(
        actor, action, company_id=company_id, entity_type="investment", entity_id=entity_id
    )


def _require_transition(investment: InvestmentSnapshot, requested: InvestmentStatus) -> None:
    if not can_transition(investment.status, requested):
        raise IllegalTransition(
            entity_type="investment",
            entity_id=investment.id,
            current_status=investment.status,
            requested_status=requested,
        )


def _require_draft(investment: InvestmentSnapshot, verb: str) -> None:
    if investment.status != S.draft:
        raise IllegalTransition(
            entity_type="investment",
            entity_id=investment.id,
            current_status=investment.status,
            requested_status=S.draft,
            message=f"Only draft investments can be {verb} (status is {investment.status.value})",
        )


def _event(
    investment: InvestmentSnapshot,
    *,
    action: str,
    previous: InvestmentStatus | None,
    new: InvestmentStatus | None,
    actor: Actor,
    now: datetime,
    payload: Mapping[str, Any] | None = None,
) -> LifecycleEvent:
    return LifecycleEvent(
        entity_type="investment",
        entity_id=investment.id,
        action=action,
        previous_status=status_value(previous),
        new_status=status_value(new),
        actor_id=actor.user_id,
        actor_role=status_value(actor.primary_role),
        occurred_at=now,
        company_id=investment.company_id,
        payload=dict(payload or {}),
    )


def _move(
    investment: InvestmentSnapshot,
    requested: InvestmentStatus,
    *,
    action: str,
    actor: Actor,
    now: datetime,
    payload: Mapping[str, Any] | None = None,
    **changes: Any,
) -> tuple[InvestmentSnapshot, LifecycleEvent]:
    _require_transition(investment, requested)
    moved = investment.evolve(status=requested, updated_at=now, **changes)
    event = _event(
        moved,
        action=action,
        previous=investment.status,
        new=requested,
        actor=actor,
        now=now,
        payload=payload,
    )
    return moved, event


def _as_amount(value: Any, *, field_name: str, entity_id: str | None) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise PreconditionFailed(
            f"{field_name} is not a valid decimal", entity_type="investment", entity_id=entity_id
        ) from None
    if not amount.is_finite():
        raise PreconditionFailed(
            f"{field_name} is not a valid decimal", entity_type="investment", entity_id=entity_id
        )
    return amount


def _as_choice(enum_cls: type, value: Any, *, field_name: str, entity_id: str | None) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        raise PreconditionFailed(
            f"{field_name} must be one of: {', '.join(m.value for m in enum_cls)}",
            entity_type="investment",
            entity_id=entity_id,
        ) from None


def _normalize_schedule(
    schedule: Iterable[ScheduledPaymentSnapshot | Mapping[str, Any]],
    entity_id: str | None = None,
) -> tuple[ScheduledPaymentSnapshot, ...]:
    out: list[ScheduledPaymentSnapshot] = []
    seen: set[int] = set()
    for index, item in enumerate(schedule, start=1):
        if isinstance(item, ScheduledPaymentSnapshot):
            payment = item
        else:
            data = dict(item)
            if data.get("sequence") is None:
                data["sequence"] = index
            data["amount"] = _as_amount(
                data.get("amount"), field_name="amount", entity_id=entity_id
            )
            payment = ScheduledPaymentSnapshot(**data)
        # scheduled_payments is unique per (investment_id, sequence)
        if payment.sequence in seen:
            raise PreconditionFailed(
                f"Duplicate scheduled payment sequence #{payment.sequence}",
                entity_type="investment",
                entity_id=entity_id,
                sequence=payment.sequence,
            )
        seen.add(payment.sequence)
        out.append(payment)
    return tuple(out)


def activate_decision(
    existing: Iterable[ApprovalSnapshot], decision: ApprovalSnapshot
) -> tuple[ApprovalSnapshot, ...]:
    """Keep exactly one active decision per investment: the newest one."""

    out = [
        replace(a, is_active=False)
        for a in existing
        if a.investment_id == decision.investment_id and a.id != decision.id
    ]
    out.append(decision)
    return tuple(out)


def create_draft(
    *,
    actor: Actor,
    company_id: str,
    name: str,
    category: InvestmentCategory,
    financing_type: FinancingType,
    total_amount: Decimal | str | int,
    now: datetime,
    schedule: Sequence[ScheduledPaymentSnapshot | Mapping[str, Any]] = (),
    description: str | None = None,
    start_date: date | None = None,
    meta: Mapping[str, Any] | None = None,
    id_factory: IdFactory = new_id,
) -> InvestmentOutcome:
    _require_role(actor, "investment.create", company_id=company_id, entity_id=None)

    amount = _as_amount(total_amount, field_name="total_amount", entity_id=None)
    if amount < 0:
        raise PreconditionFailed("total_amount must not be negative", entity_type="investment")
    if not str(name or "").strip():
        raise PreconditionFailed("name is required", entity_type="investment")
    category = _as_choice(InvestmentCategory, category, field_name="category", entity_id=None)
    financing_type = _as_choice(
        FinancingType, financing_type, field_name="financing_type", entity_id=None
    )
    payments = _normalize_schedule(schedule)

    investment = InvestmentSnapshot(
        id=id_factory(),
        company_id=str(company_id),
        name=str(name).strip(),
        category=category,
        financing_type=financing_type,
        total_amount=amount,
        status=S.draft,
        created_by=actor.user_id,
        created_at=now,
        description=description,
        start_date=start_date,
        meta=dict(meta or {}),
        schedule=payments,
    )
    event = _event(
        investment,
        action="investment.created",
        previous=None,
        new=S.draft,
        actor=actor,
        now=now,
        payload={"total_amount": str(amount), "payments": len(investment.schedule)},
    )
    return InvestmentOutcome(investment=investment, events=(event,))


def update_draft(
    investment: InvestmentSnapshot,
    *,
    actor: Actor,
    changes: Mapping[str, Any],
    now: datetime,
) -> InvestmentOutcome:
    _require_role(
        actor, "investment.edit", company_id=investment.company_id, entity_id=investment.id
    )
    _require_draft(investment, "edited")

    unknown = sorted(set(changes) - EDITABLE_FIELDS)
    if unknown:
        raise PreconditionFailed(
            f"Fields cannot be edited: {', '.join(unknown)}",
            entity_type="investment",
            entity_id=investment.id,
        )

    updates: dict[str, Any] = {}
    for key, value in changes.items():
        if key == "total_amount":
            value = _as_amount(value, field_name="total_amount", entity_id=investment.id)
            if value < 0:
                raise PreconditionFailed(
                    "total_amount must not be negative",
                    entity_type="investment",
                    entity_id=investment.id,
                )
        elif key == "schedule":
            value = _normalize_schedule(value or (), entity_id=investment.id)
        elif key == "category":
            value = _as_choice(
                InvestmentCategory, value, field_name="category", entity_id=investment.id
            )
        elif key == "financing_type":
            value = _as_choice(
                FinancingType, value, field_name="financing_type", entity_id=investment.id
            )
        elif key == "meta":
            value = dict(value or {})
        elif key == "name":
            value = str(value or "").strip()
            if not value:
                raise PreconditionFailed(
                    "name is required", entity_type="investment", entity_id=investment.id
                )
        updates[key] = value

    updated = investment.evolve(updated_at=now, **updates)
    event = _event(
        updated,
        action="investment.updated",
        previous=S.draft,
        new=S.draft,
        actor=actor,
        now=now,
        payload={"fields": sorted(updates)},
    )
    return InvestmentOutcome(investment=updated, events=(event,))


def delete_draft(
    investment: InvestmentSnapshot, *, actor: Actor, now: datetime
) -> InvestmentOutcome:
    _require_role(
        actor, "investment.delete", company_id=investment.company_id, entity_id=investment.id
    )
    _require_draft(investment, "deleted")
    event = _event(
        investment,
        action="investment.deleted",
        previous=S.draft,
        new=None,
        actor=actor,
        now=now,
        payload={"name": investment.name},
    )
    return InvestmentOutcome(investment=investment, events=(event,), deleted=True)


def submit(
    investment: InvestmentSnapshot,
    *,
    actor: Actor,
    now: datetime,
    id_factory: IdFactory = new_id,
) -> InvestmentOutcome:
    _require_role(
        actor, "investment.submit", company_id=investment.company_id, entity_id=investment.id
    )
    _require_transition(investment, S.submitted_for_approval)

    if investment.total_amount <= 0:
        raise PreconditionFailed(
            "Investment amount must be greater than zero",
            entity_type="investment",
            entity_id=investment.id,
        )
    if not investment.schedule:
        raise PreconditionFailed(
            "At least one scheduled payment is required",
            entity_type="investment",
            entity_id=investment.id,
        )
    difference = investment.schedule_total - investment.total_amount
    if abs(difference) > SCHEDULE_SUM_TOLERANCE:
        raise PreconditionFailed(
            "Scheduled payments do not add up to the investment amount",
            entity_type="investment",
            entity_id=investment.id,
            schedule_total=str(investment.schedule_total),
            total_amount=str(investment.total_amount),
            difference=str(difference),
        )

    submitted, event = _move(
        investment,
        S.submitted_for_approval,
        action="investment.submitted",
        actor=actor,
        now=now,
        submitted_at=now,
    )
    return InvestmentOutcome(
        investment=submitted,
        events=(event,),
        notifications=notification_rules.investment_submitted(
            submitted, now=now, id_factory=id_factory
        ),
    )


def _decide(
    investment: InvestmentSnapshot,
    *,
    decision: ApprovalDecision,
    actor: Actor,
    now: datetime,
    comment: str | None,
    conditions: str | None,
    valid_until: date | None,
    existing_approvals: Iterable[ApprovalSnapshot],
    id_factory: IdFactory,
) -> tuple[ApprovalSnapshot, tuple[ApprovalSnapshot, ...]]:
    if valid_until is not None and valid_until < now.date():
        raise PreconditionFailed(
            "valid_until lies in the past",
            entity_type="investment",
            entity_id=investment.id,
        )
    approval = ApprovalSnapshot(
        id=id_factory(),
        investment_id=investment.id,
        approver_id=actor.user_id,
        decision=decision,
        decided_at=now,
        comment=comment,
        conditions=conditions,
        valid_until=valid_until,
        is_active=True,
    )
    return approval, activate_decision(existing_approvals, approval)


def approve(
    investment: InvestmentSnapshot,
    *,
    actor: Actor,
    now: datetime,
    comment: str | None = None,
    conditions: str | None = None,
    valid_until: date | None = None,
    existing_approvals: Iterable[ApprovalSnapshot] = (),
    id_factory: IdFactory = new_id,
) -> InvestmentOutcome:
    """Approve and activate in one step.

    The approval record is written, the investment passes through ``approved``
    and the cascade seeds the cashflows; the caller only ever sees ``active``.
    """

    _require_role(
        actor, "investment.approve", company_id=investment.company_id, entity_id=investment.id
    )
    _require_transition(investment, S.approved)

    approval, approvals = _decide(
        investment,
        decision=ApprovalDecision.approved,
        actor=actor,
        now=now,
        comment=comment,
        conditions=conditions,
        valid_until=valid_until,
        existing_approvals=existing_approvals,
        id_factory=id_factory,
    )
    approved, approved_event = _move(
        investment,
        S.approved,
        action="investment.approved",
        actor=actor,
        now=now,
        payload={"approval_id": approval.id, "comment": comment, "conditions": conditions},
    )

    seeded = cascade.seed_cashflows(approved, actor=actor, now=now, id_factory=id_factory)

    active, active_event = _move(
        approved,
        S.active,
        action="investment.activated",
        actor=actor,
        now=now,
        payload={"cashflows": len(seeded.cashflows)},
        activated_at=now,
    )

    return InvestmentOutcome(
        investment=active,
        events=(approved_event, *seeded.events, active_event),
        notifications=notification_rules.investment_decided(
            active, approved=True, now=now, id_factory=id_factory
        ),
        approvals=approvals,
        cashflows=seeded.cashflows,
    )


def reject(
    investment: InvestmentSnapshot,
    *,
    actor: Actor,
    now: datetime,
    comment: str | None,
    conditions: str | None = None,
    existing_approvals: Iterable[ApprovalSnapshot] = (),
    id_factory: IdFactory = new_id,
) -> InvestmentOutcome:
    _require_role(
        actor, "investment.reject", company_id=investment.company_id, entity_id=investment.id
    )
    _require_transition(investment, S.rejected)

    if not str(comment or "").strip():
        raise PreconditionFailed(
            "A rejection requires a comment",
            entity_type="investment",
            entity_id=investment.id,
        )

    approval, approvals = _decide(
        investment,
        decision=ApprovalDecision.rejected,
        actor=actor,
        now=now,
        comment=comment,
        conditions=conditions,
        valid_until=None,
        existing_approvals=existing_approvals,
        id_factory=id_factory,
    )
    rejected, event = _move(
        investment,
        S.rejected,
        action="investment.rejected",
        actor=actor,
        now=now,
        payload={"approval_id": approval.id, "comment": comment},
    )
    return InvestmentOutcome(
        investment=rejected,
        events=(event,),
        notifications=notification_rules.investment_decided(
            rejected, approved=False, now=now, id_factory=id_factory
        ),
        approvals=approvals,
    )


def close(
    investment: InvestmentSnapshot,
    *,
    cashflows: Iterable[CashflowSnapshot],
    actor: Actor,
    now: datetime,
) -> InvestmentOutcome:
    _require_role(
        actor, "investment.close", company_id=investment.company_id, entity_id=investment.id
    )
    _require_transition(investment, S.closed)
    cashflows = list(cashflows)
    cascade.assert_settled(investment, cashflows)

    closed, event = _move(
        investment,
        S.closed,
        action="investment.closed",
        actor=actor,
        now=now,
        payload={"cashflows": len(cashflows)},
        closed_at=now,
    )
    return InvestmentOutcome(investment=closed, events=(event,))


def resubmit_as_new_draft(
    rejected: InvestmentSnapshot,
    *,
    actor: Actor,
    now: datetime,
    id_factory: IdFactory = new_id,
) -> InvestmentOutcome:
    """File a rejected request again as a brand-new draft.

    The rejected row stays rejected; the copy links back to it through
    ``supersedes_investment_id``.
    """

    _require_role(
        actor, "investment.resubmit", company_id=rejected.company_id, entity_id=rejected.id
    )
    if rejected.status != S.rejected:
        raise IllegalTransition(
            entity_type="investment",
            entity_id=rejected.id,
            current_status=rejected.status,
            requested_status=S.draft,
            message="Only rejected investments can be filed again as a new draft",
        )

    draft = InvestmentSnapshot(
        id=id_factory(),
        company_id=rejected.company_id,
        name=rejected.name,
        category=rejected.category,
        financing_type=rejected.financing_type,
        total_amount=rejected.total_amount,
        status=S.draft,
        created_by=actor.user_id,
        created_at=now,
        description=rejected.description,
        start_date=rejected.start_date,
        meta=dict(rejected.meta),
        schedule=rejected.schedule,
        supersedes_investment_id=rejected.id,
    )
    event = _event(
        draft,
        action="investment.created",
        previous=None,
        new=S.draft,
        actor=actor,
        now=now,
        payload={"supersedes_investment_id": rejected.id},
    )
    return InvestmentOutcome(investment=draft, events=(event,))
