"""Shared fixtures: fixed clocks, in-memory subscriptions, a temporary SQLite gateway and an API client."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from app.application.services.assignment_service import AssignmentService
from app.application.services.subscription_update_service import SubscriptionUpdateService
from app.core.app_factory import create_application
from app.core.config import Settings
from app.domain.models import (
    AuditLedger,
    DurationUnit,
    PaymentStatus,
    Subscription,
    SubscriptionStatus,
    Variant,
)
from app.infrastructure.persistence.sqlite import SQLitePersistence

NOW = datetime(2025, 1, 25, tzinfo=timezone.utc)

ADMIN_EMAIL = "ops@example.com"
ADMIN_PASSWORD = "correct-horse"

MONTHLY = Variant(
    duration_label="1 Month",
    duration_value=1,
    duration_unit=DurationUnit.MONTHS,
    price=Decimal("999"),
)


class FakeClock:
    """Callable clock the tests can move forward."""

    def __init__(self, moment: datetime) -> None:
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment

    def advance(self, **kwargs) -> None:
        self.moment = self.moment + timedelta(**kwargs)


def make_subscription(**overrides) -> Subscription:
    values = dict(
        id=1,
        user_id=42,
        product_id="prod-1",
        variant=MONTHLY,
        start_date=datetime(2025, 1, 1, tzinfo=timezone.utc),
        end_date=datetime(2025, 2, 1, tzinfo=timezone.utc),
        status=SubscriptionStatus.ACTIVE,
        payment_status=PaymentStatus.COMPLETED,
        is_latest=True,
        historical_article_limit=5,
        created_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
        updated_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
        metadata=AuditLedger(),
    )
    values.update(overrides)
    return Subscription(**values)


@pytest.fixture
def clock():
    return FakeClock(NOW)


@pytest.fixture
def gateway(tmp_path):
    persistence = SQLitePersistence(tmp_path / "subscriptions.db")
    yield persistence
    persistence.close()


@pytest.fixture
def assignment(gateway, clock):
    return AssignmentService(gateway, clock=clock)


@pytest.fixture
def updates(gateway, clock):
    return SubscriptionUpdateService(gateway, clock=clock)


@pytest.fixture
def test_client(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "api.db"))
    monkeypatch.setenv("ADMIN_EMAIL", ADMIN_EMAIL)
    monkeypatch.setenv("ADMIN_PASSWORD", ADMIN_PASSWORD)
    monkeypatch.setenv("ADMIN_TOKEN_SECRET", "test-secret")
    monkeypatch.setenv("RECONCILE_INTERVAL_SECONDS", "0")
    monkeypatch.setenv("STRICT_EXTEND_UNIT", "true")
    app = create_application(Settings())
    with TestClient(app) as client:
        yield client


@pytest.fixture
def auth_headers(test_client):
    response = test_client.post("/api/admin/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}
