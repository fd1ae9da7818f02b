from app.models.domain import (
    ApprovalDecision,
    AuditLog,
    Capability,
    Cashflow,
    CashflowStatus,
    CashflowType,
    Company,
    ConfirmationSlot,
    FinancingType,
    Investment,
    InvestmentApproval,
    InvestmentCategory,
    InvestmentStatus,
    Notification,
    NotificationKind,
    NotificationPriority,
    RoleName,
    ScheduledPayment,
)

__all__ = [
    "ApprovalDecision",
    "AuditLog",
    "Capability",
    "Cashflow",
    "CashflowStatus",
    "CashflowType",
    "Company",
    "ConfirmationSlot",
    "FinancingType",
    "Investment",
    "InvestmentApproval",
    "InvestmentCategory",
    "InvestmentStatus",
    "Notification",
    "NotificationKind",
    "NotificationPriority",
    "RoleName",
    "ScheduledPayment",
]
