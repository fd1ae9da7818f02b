from app.services import cascade, cashflow_engine, investment_engine, notification_rules

__all__ = ["cascade", "cashflow_engine", "investment_engine", "notification_rules"]
