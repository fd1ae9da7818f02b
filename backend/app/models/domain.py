# ruff: noqa: E501
import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class RoleName(str, PyEnum):
    system_admin = "system_admin"
    vr_approval = "vr_approval"
    vr_viewer = "vr_viewer"
    cfo = "cfo"
    geschaeftsfuehrer = "geschaeftsfuehrer"
    cashflow_manager = "cashflow_manager"
    buchhaltung = "buchhaltung"


class Capability(str, PyEnum):
    manage_groups = "manage_groups"
    manage_companies = "manage_companies"
    manage_users = "manage_users"
    manage_roles = "manage_roles"
    view_audit_logs = "view_audit_logs"
    manage_system_settings = "manage_system_settings"


class InvestmentStatus(str, PyEnum):
    draft = "draft"
    submitted_for_approval = "submitted_for_approval"
    approved = "approved"
    rejected = "rejected"
    active = "active"
    closed = "closed"


class InvestmentCategory(str, PyEnum):
    vehicles = "vehicles"
    it = "it"
    machinery = "machinery"
    real_estate = "real_estate"
    other = "other"


class FinancingType(str, PyEnum):
    purchase = "purchase"
    leasing = "leasing"
    installment = "installment"
    rent = "rent"


class ApprovalDecision(str, PyEnum):
    approved = "approved"
    rejected = "rejected"


class CashflowStatus(str, PyEnum):
    planned = "planned"
    pending_confirmation = "pending_confirmation"
    pre_confirmed = "pre_confirmed"
    confirmed = "confirmed"
    postponed = "postponed"
    cancelled = "cancelled"


class CashflowType(str, PyEnum):
    down_payment = "down_payment"
    installment = "installment"
    final_installment = "final_installment"
    one_time = "one_time"


class ConfirmationSlot(str, PyEnum):
    cm = "cm"  # Cashflow Manager
    gf = "gf"  # Geschaeftsfuehrer / Managing Director


class NotificationKind(str, PyEnum):
    investment_submitted = "investment_submitted"
    investment_approved = "investment_approved"
    investment_rejected = "investment_rejected"
    cashflow_pre_confirmed = "cashflow_pre_confirmed"
    cashflow_confirmed = "cashflow_confirmed"
    cashflow_postponed = "cashflow_postponed"
    cashflow_cancelled = "cashflow_cancelled"
    payment_due_soon = "payment_due_soon"
    payment_overdue = "payment_overdue"
    monthly_report_due = "monthly_report_due"


class NotificationPriority(str, PyEnum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"


class Company(Base):
    __tablename__ = "companies"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    group_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    company_code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    investments = relationship("Investment", back_populates="company")


class Investment(Base):
    __tablename__ = "investments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    company_id: Mapped[str] = mapped_column(ForeignKey("companies.id"), nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[InvestmentCategory] = mapped_column(
        Enum(InvestmentCategory, native_enum=False), nullable=False
    )
    financing_type: Mapped[FinancingType] = mapped_column(
        Enum(FinancingType, native_enum=False), nullable=False
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    status: Mapped[InvestmentStatus] = mapped_column(
        Enum(InvestmentStatus, native_enum=False),
        nullable=False,
        default=InvestmentStatus.draft,
        index=True,
    )

    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    # vendor / contract_number / internal_reference
    meta: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    # Explicit link when a rejected request is re-filed as a fresh draft.
    supersedes_investment_id: Mapped[str | None] = mapped_column(
        ForeignKey("investments.id"), nullable=True, index=True
    )

    created_by: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    activated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Optimistic concurrency token; bumped on every persisted transition.
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    company = relationship("Company", back_populates="investments")
    schedule = relationship(
        "ScheduledPayment",
        back_populates="investment",
        order_by="ScheduledPayment.sequence",
        cascade="all, delete-orphan",
    )
    approvals = relationship(
        "InvestmentApproval",
        back_populates="investment",
        order_by="InvestmentApproval.decided_at",
        cascade="all, delete-orphan",
    )
    cashflows = relationship(
        "Cashflow",
        back_populates="investment",
        order_by="Cashflow.sequence",
        cascade="all, delete-orphan",
    )


class ScheduledPayment(Base):
    """Caller-supplied payment plan line; the source for generated cashflows."""

    __tablename__ = "scheduled_payments"
    __table_args__ = (
        UniqueConstraint("investment_id", "sequence", name="uq_scheduled_payments_investment_seq"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    investment_id: Mapped[str] = mapped_column(
        ForeignKey("investments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    payment_type: Mapped[CashflowType] = mapped_column(
        Enum(CashflowType, native_enum=False), nullable=False, default=CashflowType.installment
    )
    period_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_periods: Mapped[int | None] = mapped_column(Integer, nullable=True)

    investment = relationship("Investment", back_populates="schedule")


class InvestmentApproval(Base):
    __tablename__ = "investment_approvals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    investment_id: Mapped[str] = mapped_column(
        ForeignKey("investments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    approver_id: Mapped[str] = mapped_column(String(64), nullable=False)
    decision: Mapped[ApprovalDecision] = mapped_column(
        Enum(ApprovalDecision, native_enum=False), nullable=False
    )
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    conditions: Mapped[str | None] = mapped_column(Text, nullable=True)
    valid_until: Mapped[date | None] = mapped_column(Date, nullable=True)
    decided_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    investment = relationship("Investment", back_populates="approvals")


class Cashflow(Base):
    __tablename__ = "cashflows"
    __table_args__ = (
        UniqueConstraint("investment_id", "sequence", name="uq_cashflows_investment_seq"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    investment_id: Mapped[str] = mapped_column(
        ForeignKey("investments.id"), nullable=False, index=True
    )
    company_id: Mapped[str] = mapped_column(ForeignKey("companies.id"), nullable=False, index=True)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    # Signed: negative amounts are inflows (e.g. refunds).
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    cashflow_type: Mapped[CashflowType] = mapped_column(
        Enum(CashflowType, native_enum=False), nullable=False
    )
    period_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_periods: Mapped[int | None] = mapped_column(Integer, nullable=True)

    due_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    original_due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    month: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    year: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    status: Mapped[CashflowStatus] = mapped_column(
        Enum(CashflowStatus, native_enum=False), nullable=False, index=True
    )

    confirmed_by_cm: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cm_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    cm_confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cm_comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    confirmed_by_gf: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    gf_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    gf_confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    gf_comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    postponed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    postponed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    postpone_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    cancelled_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Set once by accounting; a booked cashflow is frozen.
    accounting_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    booked_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    booked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    investment = relationship("Investment", back_populates="cashflows")


class Notification(Base):
    """Delivered notifications (the recipients' read history)."""

    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    company_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)

    recipient_role: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    recipient_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    kind: Mapped[NotificationKind] = mapped_column(
        Enum(NotificationKind, native_enum=False), nullable=False, index=True
    )
    priority: Mapped[NotificationPriority] = mapped_column(
        Enum(NotificationPriority, native_enum=False),
        nullable=False,
        default=NotificationPriority.medium,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)

    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    delivered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    action: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    entity_type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    company_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)

    previous_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    new_status: Mapped[str | None] = mapped_column(String(32), nullable=True)

    actor_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    actor_role: Mapped[str | None] = mapped_column(String(32), nullable=True)

    payload_json: Mapped[str | None] = mapped_column(Text)

    # Optional request context.
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
