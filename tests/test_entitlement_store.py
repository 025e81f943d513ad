import uuid
from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError

from models.billing import SubscriptionPlan, UserEntitlement
from services.billing.entitlement_store import EntitlementStore
from services.billing.errors import EntitlementNotFoundError, EntitlementStoreError

USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")


class _BrokenSession:
    def execute(self, *args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    def close(self) -> None:
        pass


@pytest.fixture()
def store(session_factory) -> EntitlementStore:
    session = session_factory()
    session.add_all(
        [
            SubscriptionPlan(id=1, price_id="price_free", product_id="prod_free", is_active=True, title="Free"),
            SubscriptionPlan(
                id=2,
                price_id="price_pro_monthly",
                product_id="prod_pro",
                is_active=True,
                title="Pro",
                unit_amount=1500,
                trial_period_days=14,
                downgrade_plan_id=1,
            ),
            SubscriptionPlan(id=3, price_id="price_legacy", product_id="prod_pro", is_active=False, title="Legacy"),
            SubscriptionPlan(
                id=4,
                price_id="price_team",
                product_id="prod_team",
                is_active=True,
                title="Team",
                downgrade_plan_id=3,
            ),
        ]
    )
    session.commit()
    session.close()
    return EntitlementStore(session_factory=session_factory)


def _naive(value: datetime) -> datetime:
    return value.replace(tzinfo=None)


def test_find_plan_includes_active_downgrade(store: EntitlementStore) -> None:
    plan = store.find_plan(price_id="price_pro_monthly", product_id="prod_pro")

    assert plan is not None
    assert plan.id == 2
    assert plan.trial_period_days == 14
    assert plan.downgrade_plan is not None
    assert plan.downgrade_plan.price_id == "price_free"


def test_find_plan_skips_inactive_and_mismatched_product(store: EntitlementStore) -> None:
    assert store.find_plan(price_id="price_legacy", product_id="prod_pro") is None
    assert store.find_plan(price_id="price_pro_monthly", product_id="prod_free") is None


def test_inactive_downgrade_target_is_not_resolved(store: EntitlementStore) -> None:
    plan = store.find_plan(price_id="price_team", product_id="prod_team")

    assert plan is not None
    assert plan.downgrade_plan_id == 3
    assert plan.downgrade_plan is None


def test_find_plan_id_by_price(store: EntitlementStore) -> None:
    assert store.find_plan_id_by_price("price_pro_monthly") == 2
    assert store.find_plan_id_by_price("price_legacy") is None


def test_upsert_customer_creates_then_updates(store: EntitlementStore) -> None:
    created = store.upsert_customer(user_id=USER_ID, customer_id="cus_1")
    assert created.stripe_customer_id == "cus_1"
    assert created.trial_used is False

    updated = store.upsert_customer(user_id=USER_ID, customer_id="cus_2")
    assert updated.user_id == USER_ID
    assert updated.stripe_customer_id == "cus_2"
    assert store.get_by_customer("cus_1") is None


def test_is_trial_used(store: EntitlementStore) -> None:
    store.upsert_customer(user_id=USER_ID, customer_id="cus_1")

    assert store.is_trial_used("cus_1") is False
    assert store.is_trial_used("cus_missing") is False
    assert store.is_trial_used(None) is False

    store.update_by_customer("cus_1", {"trial_used": True})
    assert store.is_trial_used("cus_1") is True


def test_is_trial_used_fails_closed_on_database_error(store: EntitlementStore, monkeypatch) -> None:
    monkeypatch.setattr(store, "_session_factory", _BrokenSession)

    assert store.is_trial_used("cus_1") is True


def test_update_by_customer_writes_snapshot_and_keeps_trial_flag(store: EntitlementStore) -> None:
    store.upsert_customer(user_id=USER_ID, customer_id="cus_1")
    period_start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    period_end = datetime(2024, 2, 1, tzinfo=timezone.utc)

    store.update_by_customer(
        "cus_1",
        {
            "plan_id": 2,
            "subscription_id": "sub_1",
            "subscription_status": "trialing",
            "current_period_start": period_start,
            "current_period_end": period_end,
            "trial_end": period_end,
            "next_period_plan_id": 2,
            "trial_used": True,
        },
    )
    store.update_by_customer("cus_1", {"subscription_status": "active", "trial_used": False})

    record = store.get_by_user(USER_ID)
    assert record is not None
    assert record.subscription_status == "active"
    assert record.plan_id == 2
    assert _naive(record.current_period_start) == _naive(period_start)
    assert record.trial_used is True


def test_update_by_customer_requires_existing_row(store: EntitlementStore) -> None:
    with pytest.raises(EntitlementNotFoundError):
        store.update_by_customer("cus_unknown", {"subscription_status": "active"})


def test_update_by_customer_rejects_unknown_fields(store: EntitlementStore) -> None:
    store.upsert_customer(user_id=USER_ID, customer_id="cus_1")

    with pytest.raises(ValueError):
        store.update_by_customer("cus_1", {"email": "someone@example.com"})


def test_clear_subscription_keeps_customer_and_trial_flag(store: EntitlementStore) -> None:
    store.upsert_customer(user_id=USER_ID, customer_id="cus_1")
    store.update_by_customer(
        "cus_1",
        {
            "plan_id": 2,
            "subscription_id": "S123",
            "subscription_status": "active",
            "cancel_at": datetime(2024, 3, 1, tzinfo=timezone.utc),
            "next_period_plan_id": 1,
            "trial_used": True,
        },
    )

    assert store.clear_subscription("S123") == 1

    record = store.get_by_customer("cus_1")
    assert record is not None
    assert record.stripe_customer_id == "cus_1"
    assert record.trial_used is True
    assert record.subscription_id is None
    assert record.subscription_status is None
    assert record.plan_id is None
    assert record.next_period_plan_id is None
    assert record.cancel_at is None


def test_clear_subscription_ignores_replaced_subscription(store: EntitlementStore) -> None:
    store.upsert_customer(user_id=USER_ID, customer_id="cus_1")
    store.update_by_customer("cus_1", {"subscription_id": "sub_new", "plan_id": 1})

    assert store.clear_subscription("sub_old") == 0
    record = store.get_by_customer("cus_1")
    assert record is not None
    assert record.subscription_id == "sub_new"


def test_store_errors_are_wrapped(store: EntitlementStore, monkeypatch) -> None:
    monkeypatch.setattr(store, "_session_factory", _BrokenSession)

    with pytest.raises(EntitlementStoreError):
        store.get_by_customer("cus_1")


def test_user_entitlement_defaults(session_factory) -> None:
    session = session_factory()
    session.add(UserEntitlement(id=USER_ID, stripe_customer_id="cus_1"))
    session.commit()
    row = session.get(UserEntitlement, USER_ID)
    assert row.trial_used is False
    session.close()
