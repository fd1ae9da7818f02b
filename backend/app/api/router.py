from fastapi import APIRouter

from app.api.routes import audit, cashflows, companies, health, investments, notifications

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(companies.router)
api_router.include_router(investments.router)
api_router.include_router(cashflows.router)
api_router.include_router(notifications.router)
api_router.include_router(audit.router)
