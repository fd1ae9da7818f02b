"""init lifecycle tables

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_0001_init_lifecycle_tables"
down_revision = None
branch_labels = None
depends_on = None


def _enum(*values: str, name: str) -> sa.Enum:
    return sa.Enum(*values, name=name, native_enum=False)


INVESTMENT_STATUS = ("draft", "submitted_for_approval", "approved", "rejected", "active", "closed")
CASHFLOW_STATUS = (
    "planned",
    "pending_confirmation",
    "pre_confirmed",
    "confirmed",
    "postponed",
    "cancelled",
)
CASHFLOW_TYPE = ("down_payment", "installment", "final_installment", "one_time")
NOTIFICATION_KIND = (
    "investment_submitted",
    "investment_approved",
    "investment_rejected",
    "cashflow_pre_confirmed",
    "cashflow_confirmed",
    "cashflow_postponed",
    "cashflow_cancelled",
    "payment_due_soon",
    "payment_overdue",
    "monthly_report_due",
)


def upgrade() -> None:
    op.create_table(
        "companies",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("group_id", sa.String(length=36), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("company_code", sa.String(length=32), nullable=False, unique=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_companies_group_id", "companies", ["group_id"])

    op.create_table(
        "investments",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("company_id", sa.String(length=36), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "category",
            _enum("vehicles", "it", "machinery", "real_estate", "other", name="investmentcategory"),
            nullable=False,
        ),
        sa.Column(
            "financing_type",
            _enum("purchase", "leasing", "installment", "rent", name="financingtype"),
            nullable=False,
        ),
        sa.Column("total_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("status", _enum(*INVESTMENT_STATUS, name="investmentstatus"), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("meta", sa.JSON(), nullable=True),
        sa.Column(
            "supersedes_investment_id",
            sa.String(length=36),
            sa.ForeignKey("investments.id"),
            nullable=True,
        ),
        sa.Column("created_by", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revision", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_investments_company_id", "investments", ["company_id"])
    op.create_index("ix_investments_status", "investments", ["status"])
    op.create_index("ix_investments_created_by", "investments", ["created_by"])
    op.create_index(
        "ix_investments_supersedes_investment_id", "investments", ["supersedes_investment_id"]
    )

    op.create_table(
        "scheduled_payments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "investment_id",
            sa.String(length=36),
            sa.ForeignKey("investments.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("payment_type", _enum(*CASHFLOW_TYPE, name="cashflowtype"), nullable=False),
        sa.Column("period_number", sa.Integer(), nullable=True),
        sa.Column("total_periods", sa.Integer(), nullable=True),
        sa.UniqueConstraint(
            "investment_id", "sequence", name="uq_scheduled_payments_investment_seq"
        ),
    )
    op.create_index("ix_scheduled_payments_investment_id", "scheduled_payments", ["investment_id"])

    op.create_table(
        "investment_approvals",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "investment_id",
            sa.String(length=36),
            sa.ForeignKey("investments.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("approver_id", sa.String(length=64), nullable=False),
        sa.Column("decision", _enum("approved", "rejected", name="approvaldecision"), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("conditions", sa.Text(), nullable=True),
        sa.Column("valid_until", sa.Date(), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index(
        "ix_investment_approvals_investment_id", "investment_approvals", ["investment_id"]
    )

    op.create_table(
        "cashflows",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("investment_id", sa.String(length=36), sa.ForeignKey("investments.id"), nullable=False),
        sa.Column("company_id", sa.String(length=36), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("cashflow_type", _enum(*CASHFLOW_TYPE, name="cashflowtype"), nullable=False),
        sa.Column("period_number", sa.Integer(), nullable=True),
        sa.Column("total_periods", sa.Integer(), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("original_due_date", sa.Date(), nullable=True),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("status", _enum(*CASHFLOW_STATUS, name="cashflowstatus"), nullable=False),
        sa.Column("confirmed_by_cm", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("cm_user_id", sa.String(length=64), nullable=True),
        sa.Column("cm_confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cm_comment", sa.Text(), nullable=True),
        sa.Column("confirmed_by_gf", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("gf_user_id", sa.String(length=64), nullable=True),
        sa.Column("gf_confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("gf_comment", sa.Text(), nullable=True),
        sa.Column("postponed_by", sa.String(length=64), nullable=True),
        sa.Column("postponed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("postpone_reason", sa.Text(), nullable=True),
        sa.Column("cancelled_by", sa.String(length=64), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_reason", sa.Text(), nullable=True),
        sa.Column("accounting_reference", sa.String(length=128), nullable=True),
        sa.Column("booked_by", sa.String(length=64), nullable=True),
        sa.Column("booked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revision", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("investment_id", "sequence", name="uq_cashflows_investment_seq"),
    )
    op.create_index("ix_cashflows_investment_id", "cashflows", ["investment_id"])
    op.create_index("ix_cashflows_company_id", "cashflows", ["company_id"])
    op.create_index("ix_cashflows_due_date", "cashflows", ["due_date"])
    op.create_index("ix_cashflows_status", "cashflows", ["status"])
    op.create_index("ix_cashflows_month", "cashflows", ["month"])
    op.create_index("ix_cashflows_year", "cashflows", ["year"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("company_id", sa.String(length=36), nullable=True),
        sa.Column("recipient_role", sa.String(length=32), nullable=True),
        sa.Column("recipient_user_id", sa.String(length=64), nullable=True),
        sa.Column("kind", _enum(*NOTIFICATION_KIND, name="notificationkind"), nullable=False),
        sa.Column(
            "priority",
            _enum("low", "medium", "high", "urgent", name="notificationpriority"),
            nullable=False,
        ),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("delivered", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
    )
    for column in ("company_id", "recipient_role", "recipient_user_id", "kind", "entity_id"):
        op.create_index(f"ix_notifications_{column}", "notifications", [column])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("company_id", sa.String(length=36), nullable=True),
        sa.Column("previous_status", sa.String(length=32), nullable=True),
        sa.Column("new_status", sa.String(length=32), nullable=True),
        sa.Column("actor_id", sa.String(length=64), nullable=True),
        sa.Column("actor_role", sa.String(length=32), nullable=True),
        sa.Column("payload_json", sa.Text(), nullable=True),
        sa.Column("request_id", sa.String(length=64), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    for column in ("action", "entity_type", "entity_id", "company_id", "actor_id", "request_id", "occurred_at"):
        op.create_index(f"ix_audit_logs_{column}", "audit_logs", [column])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("notifications")
    op.drop_table("cashflows")
    op.drop_table("investment_approvals")
    op.drop_table("scheduled_payments")
    op.drop_table("investments")
    op.drop_table("companies")
