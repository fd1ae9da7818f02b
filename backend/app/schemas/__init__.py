from app.schemas.audit import AuditEventRead
from app.schemas.cashflows import (
    BookRequest,
    CancelRequest,
    CashflowRead,
    ConfirmRequest,
    PostponeRequest,
    UnconfirmRequest,
)
from app.schemas.companies import CompanyCreate, CompanyRead
from app.schemas.investments import (
    ApprovalRead,
    ApproveRequest,
    CashflowSummaryRead,
    InvestmentCreate,
    InvestmentRead,
    InvestmentUpdate,
    RejectRequest,
    ScheduledPaymentIn,
    ScheduledPaymentRead,
)
from app.schemas.notifications import (
    DispatchResultRead,
    DueRulesRequest,
    DueRulesResult,
    NotificationRead,
)

__all__ = [
    "ApprovalRead",
    "ApproveRequest",
    "AuditEventRead",
    "BookRequest",
    "CancelRequest",
    "CashflowRead",
    "CashflowSummaryRead",
    "CompanyCreate",
    "CompanyRead",
    "ConfirmRequest",
    "DispatchResultRead",
    "DueRulesRequest",
    "DueRulesResult",
    "InvestmentCreate",
    "InvestmentRead",
    "InvestmentUpdate",
    "NotificationRead",
    "PostponeRequest",
    "RejectRequest",
    "ScheduledPaymentIn",
    "ScheduledPaymentRead",
    "UnconfirmRequest",
]
