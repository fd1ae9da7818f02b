import os

# CRITICAL: Set environment variables BEFORE any app imports
# These must be set before app.config.settings is loaded
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["ENVIRONMENT"] = "test"
os.environ["API_V1_STR"] = "/api"  # Ensure /api prefix is used in tests
os.environ["NOTIFICATIONS_AUTO_DISPATCH"] = "true"
os.environ["SCHEDULER_ENABLED"] = "false"

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

# Now import app modules - they will use the test DATABASE_URL
from app import models
from app.core.permissions import Actor
from app.database import Base, get_db, engine as app_engine
from app.main import app
from app.models.domain import (
    CashflowStatus,
    CashflowType,
    FinancingType,
    InvestmentCategory,
    InvestmentStatus,
    RoleName,
)
from app.services.notification_dispatcher import NotificationDispatcher
from app.services.snapshots import (
    CashflowSnapshot,
    InvestmentSnapshot,
    ScheduledPaymentSnapshot,
)

# Use the same engine that the app uses (StaticPool keeps :memory: alive)
TEST_ENGINE = app_engine

TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=TEST_ENGINE, future=True
)

COMPANY_A = "company-a"
COMPANY_B = "company-b"
NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def override_get_db():
    """Test database session that uses the test engine."""
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


@pytest.fixture(scope="function", autouse=True)
def setup_test_database():
    """
    Fresh tables and a fresh notification queue for every test.
    Test-specific dependency overrides are removed afterwards.
    """
    original_overrides = dict(app.dependency_overrides)
    original_dispatcher = app.state.dispatcher

    Base.metadata.drop_all(bind=TEST_ENGINE)
    Base.metadata.create_all(bind=TEST_ENGINE)
    app.state.dispatcher = NotificationDispatcher()

    db = TestingSessionLocal()
    try:
        db.add_all(
            [
                models.Company(id=COMPANY_A, name="Alpha GmbH", company_code="ALPHA"),
                models.Company(id=COMPANY_B, name="Beta GmbH", company_code="BETA"),
            ]
        )
        db.commit()
    finally:
        db.close()

    yield

    app.dependency_overrides.clear()
    app.dependency_overrides.update(original_overrides)
    app.state.dispatcher = original_dispatcher
    Base.metadata.drop_all(bind=TEST_ENGINE)


@pytest.fixture
def db_session():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def dispatcher():
    return app.state.dispatcher


def actor_headers(user_id: str, *roles: RoleName, companies=(COMPANY_A,)) -> dict[str, str]:
    return {
        "X-User-Id": user_id,
        "X-User-Roles": ",".join(r.value for r in roles),
        "X-Company-Ids": ",".join(companies),
    }


GF = actor_headers("gf-1", RoleName.geschaeftsfuehrer)
CM = actor_headers("cm-1", RoleName.cashflow_manager)
VR = actor_headers("vr-1", RoleName.vr_approval)
CFO = actor_headers("cfo-1", RoleName.cfo)
ACCOUNTING = actor_headers("acc-1", RoleName.buchhaltung)
ADMIN = actor_headers("admin-1", RoleName.system_admin)


# --- engine-level helpers ------------------------------------------------------


def make_actor(user_id: str, *roles: RoleName, companies=(COMPANY_A,)) -> Actor:
    return Actor.of(user_id, roles, companies)


def sequential_ids(prefix: str = "id"):
    counter = iter(range(1, 10_000))
    return lambda: f"{prefix}-{next(counter)}"


def make_investment(**overrides) -> InvestmentSnapshot:
    values = dict(
        id="inv-1",
        company_id=COMPANY_A,
        name="Delivery vans",
        category=InvestmentCategory.vehicles,
        financing_type=FinancingType.installment,
        total_amount=Decimal("50000"),
        status=InvestmentStatus.draft,
        created_by="gf-1",
        created_at=NOW,
        schedule=(
            ScheduledPaymentSnapshot(1, date(2026, 4, 1), Decimal("10000"), CashflowType.down_payment),
            ScheduledPaymentSnapshot(2, date(2026, 5, 1), Decimal("20000")),
            ScheduledPaymentSnapshot(3, date(2026, 6, 1), Decimal("20000"), CashflowType.final_installment),
        ),
    )
    values.update(overrides)
    return InvestmentSnapshot(**values)


def make_cashflow(**overrides) -> CashflowSnapshot:
    values = dict(
        id="cf-1",
        investment_id="inv-1",
        company_id=COMPANY_A,
        sequence=1,
        amount=Decimal("10000"),
        cashflow_type=CashflowType.installment,
        due_date=date(2026, 4, 1),
        status=CashflowStatus.pending_confirmation,
        created_at=NOW,
    )
    values.update(overrides)
    return CashflowSnapshot(**values)


def investment_payload(**overrides) -> dict:
    payload = {
        "company_id": COMPANY_A,
        "name": "Delivery vans",
        "category": "vehicles",
        "financing_type": "installment",
        "total_amount": "50000",
        "schedule": [
            {"due_date": "2026-04-01", "amount": "10000", "payment_type": "down_payment"},
            {"due_date": "2026-05-01", "amount": "20000"},
            {"due_date": "2026-06-01", "amount": "20000", "payment_type": "final_installment"},
        ],
    }
    payload.update(overrides)
    return payload
