from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Sequence

from app.core.errors import PreconditionFailed
from app.core.permissions import Actor
from app.models.domain import CashflowStatus
from app.services.snapshots import (
    CashflowSnapshot,
    IdFactory,
    InvestmentSnapshot,
    LifecycleEvent,
    ScheduledPaymentSnapshot,
    new_id,
    status_value,
)

SETTLED_STATUSES = frozenset({CashflowStatus.confirmed, CashflowStatus.cancelled})


@dataclass(frozen=True)
class SeedResult:
    cashflows: tuple[CashflowSnapshot, ...]
    events: tuple[LifecycleEvent, ...]


def _validate_schedule(investment_id: str, schedule: Sequence[ScheduledPaymentSnapshot]) -> None:
    if not schedule:
        raise PreconditionFailed(
            "Investment has no scheduled payments",
            entity_type="investment",
            entity_id=investment_id,
        )
    seen: set[int] = set()
    for payment in schedule:
        if payment.due_date is None:
            raise PreconditionFailed(
                f"Scheduled payment #{payment.sequence} has no due date",
                entity_type="investment",
                entity_id=investment_id,
            )
        if payment.amount is None or Decimal(payment.amount) == 0:
            raise PreconditionFailed(
                f"Scheduled payment #{payment.sequence} has a zero amount",
                entity_type="investment",
                entity_id=investment_id,
            )
        if payment.sequence in seen:
            raise PreconditionFailed(
                f"Duplicate scheduled payment sequence #{payment.sequence}",
                entity_type="investment",
                entity_id=investment_id,
            )
        seen.add(payment.sequence)


def seed_cashflows(
    investment: InvestmentSnapshot,
    *,
    actor: Actor,
    now: datetime,
    schedule: Sequence[ScheduledPaymentSnapshot] | None = None,
    id_factory: IdFactory = new_id,
) -> SeedResult:
    """Create one cashflow per scheduled payment, released for confirmation.

    All-or-nothing: the whole schedule is validated before any cashflow is
    built, so a bad line yields no cashflows at all.
    """

    payments = list(investment.schedule if schedule is None else schedule)
    _validate_schedule(investment.id, payments)

    actor_role = status_value(actor.primary_role)
    cashflows: list[CashflowSnapshot] = []
    events: list[LifecycleEvent] = []

    for payment in sorted(payments, key=lambda p: (p.due_date, p.sequence)):
        planned = CashflowSnapshot(
            id=id_factory(),
            investment_id=investment.id,
            company_id=investment.company_id,
            sequence=payment.sequence,
            amount=Decimal(payment.amount),
            cashflow_type=payment.payment_type,
            due_date=payment.due_date,
            status=CashflowStatus.planned,
            created_at=now,
            period_number=payment.period_number,
            total_periods=payment.total_periods,
        )
        events.append(
            LifecycleEvent(
                entity_type="cashflow",
                entity_id=planned.id,
                action="cashflow.created",
                previous_status=None,
                new_status=CashflowStatus.planned.value,
                actor_id=actor.user_id,
                actor_role=actor_role,
                occurred_at=now,
                company_id=investment.company_id,
                payload={
                    "investment_id": investment.id,
                    "sequence": payment.sequence,
                    "amount": str(planned.amount),
                    "due_date": payment.due_date.isoformat(),
                },
            )
        )

        # planned is bookkeeping only; release immediately.
        released = planned.evolve(status=CashflowStatus.pending_confirmation, updated_at=now)
        events.append(
            LifecycleEvent(
                entity_type="cashflow",
                entity_id=released.id,
                action="cashflow.released",
                previous_status=CashflowStatus.planned.value,
                new_status=CashflowStatus.pending_confirmation.value,
                actor_id=actor.user_id,
                actor_role=actor_role,
                occurred_at=now,
                company_id=investment.company_id,
                payload={"investment_id": investment.id},
            )
        )
        cashflows.append(released)

    return SeedResult(cashflows=tuple(cashflows), events=tuple(events))


def unsettled_cashflows(cashflows: Iterable[CashflowSnapshot]) -> list[CashflowSnapshot]:
    return [cf for cf in cashflows if cf.status not in SETTLED_STATUSES]


def assert_settled(investment: InvestmentSnapshot, cashflows: Iterable[CashflowSnapshot]) -> None:
    own = [cf for cf in cashflows if cf.investment_id == investment.id]
    pending = unsettled_cashflows(own)
    if pending:
        raise PreconditionFailed(
            f"Investment has {len(pending)} cashflow(s) pending settlement",
            entity_type="investment",
            entity_id=investment.id,
            reason="pending_settlement",
            unsettled_cashflow_ids=[cf.id for cf in pending],
        )


def cashflow_statistics(cashflows: Iterable[CashflowSnapshot]) -> dict:
    items = sorted(cashflows, key=lambda cf: (cf.due_date, cf.sequence))
    total = Decimal("0")
    by_type: dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
    by_month: dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
    by_status: Counter[str] = Counter()

    for cf in items:
        by_status[cf.status.value] += 1
        if cf.status == CashflowStatus.cancelled:
            continue
        total += cf.amount
        by_type[cf.cashflow_type.value] += cf.amount
        by_month[f"{cf.year}-{cf.month:02d}"] += cf.amount

    first_due: date | None = items[0].due_date if items else None
    last_due: date | None = items[-1].due_date if items else None

    return {
        "count": len(items),
        "total": total,
        "by_type": dict(by_type),
        "by_month": dict(sorted(by_month.items())),
        "by_status": dict(by_status),
        "first_due_date": first_due,
        "last_due_date": last_due,
    }
