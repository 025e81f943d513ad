import os
import sys
from pathlib import Path
from typing import Any, Callable, Generator

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATABASE_ALLOW_NON_POSTGRES", "1")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("STRIPE_WEBHOOK_DEDUPE_ENABLED", "1")

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import models  # noqa: E402,F401
from database import Base  # noqa: E402
from services.billing import webhook_audit, webhook_store  # noqa: E402
from stripe_factories import (  # noqa: E402
    BASIC_NO_TRIAL,
    FREE_PLAN,
    NOW,
    PRO_ANNUAL,
    PRO_MONTHLY,
    FakeBillingClient,
    FakeEntitlementStore,
)


@pytest.fixture()
def billing_client() -> FakeBillingClient:
    return FakeBillingClient()


@pytest.fixture()
def fake_store() -> FakeEntitlementStore:
    return FakeEntitlementStore(
        plans=[FREE_PLAN, PRO_MONTHLY, PRO_ANNUAL, BASIC_NO_TRIAL],
        rows=[
            {
                "user_id": "user-1",
                "stripe_customer_id": "cus_123",
                "subscription_id": None,
                "subscription_status": None,
                "plan_id": None,
                "next_period_plan_id": None,
                "trial_used": False,
            }
        ],
    )


@pytest.fixture()
def clock() -> Callable[[], int]:
    return lambda: NOW


@pytest.fixture()
def session_factory() -> Generator[Callable[..., Any], None, None]:
    """Fresh in-memory SQLite schema per test."""
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    try:
        yield factory
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(autouse=True)
def _isolate_webhook_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[Path, None, None]:
    """Point dedupe state and the audit trail at per-test files, without the database."""
    state_path = tmp_path / "stripe_webhook_events.json"
    audit_path = tmp_path / "stripe_webhook_audit.jsonl"
    webhook_store.reset_state_for_tests(path=state_path)
    monkeypatch.setattr(webhook_audit, "_AUDIT_LOG_PATH", audit_path)
    monkeypatch.setattr(webhook_audit, "SessionFactory", None)
    monkeypatch.setattr(webhook_audit, "StripeWebhookEventLogModel", None)
    try:
        yield tmp_path
    finally:
        webhook_store.reset_state_for_tests()
