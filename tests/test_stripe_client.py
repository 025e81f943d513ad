import hashlib
import hmac
import json
import time
from typing import Any, Dict, List, Tuple

import pytest
import stripe

from services.billing.stripe_client import (
    StripeBillingClient,
    StripeBillingError,
    get_stripe_billing_client,
    parse_stripe_event,
    verify_stripe_webhook_signature,
)

SECRET = "whsec_client_test"


def _sign(payload: bytes, secret: str = SECRET) -> str:
    ts = int(time.time())
    digest = hmac.new(secret.encode("utf-8"), f"{ts}.".encode("utf-8") + payload, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


@pytest.fixture()
def recorded(monkeypatch: pytest.MonkeyPatch) -> List[Tuple[str, Tuple[Any, ...], Dict[str, Any]]]:
    calls: List[Tuple[str, Tuple[Any, ...], Dict[str, Any]]] = []

    def _recorder(name: str):
        def _call(*args: Any, **kwargs: Any) -> Dict[str, Any]:
            calls.append((name, args, kwargs))
            return {"id": args[0] if args else "sub_new", "object": name}

        return _call

    monkeypatch.setattr(stripe.Subscription, "modify", _recorder("subscription.modify"))
    monkeypatch.setattr(stripe.Subscription, "cancel", _recorder("subscription.cancel"))
    monkeypatch.setattr(stripe.Subscription, "create", _recorder("subscription.create"))
    monkeypatch.setattr(stripe.Invoice, "mark_uncollectible", _recorder("invoice.mark_uncollectible"))
    monkeypatch.setattr(stripe.SubscriptionSchedule, "retrieve", _recorder("subscription_schedule.retrieve"))
    return calls


def test_calls_pass_api_key_and_version(recorded) -> None:
    client = StripeBillingClient(secret_key="sk_test_123", api_version="2024-06-20")

    result = client.update_subscription("sub_1", trial_end=123, proration_behavior="create_prorations")

    assert result == {"id": "sub_1", "object": "subscription.modify"}
    [(name, args, kwargs)] = recorded
    assert name == "subscription.modify"
    assert args == ("sub_1",)
    assert kwargs == {
        "trial_end": 123,
        "proration_behavior": "create_prorations",
        "api_key": "sk_test_123",
        "stripe_version": "2024-06-20",
    }


def test_remediation_calls(recorded) -> None:
    client = StripeBillingClient(secret_key="sk_test_123")

    client.mark_invoice_uncollectible("in_1")
    client.cancel_subscription("sub_1")
    client.create_subscription("cus_1", "price_free")

    assert [call[0] for call in recorded] == [
        "invoice.mark_uncollectible",
        "subscription.cancel",
        "subscription.create",
    ]
    assert recorded[1][2] == {"prorate": False, "api_key": "sk_test_123"}
    assert recorded[2][2] == {"customer": "cus_1", "items": [{"price": "price_free"}], "api_key": "sk_test_123"}


def test_stripe_errors_are_wrapped(monkeypatch: pytest.MonkeyPatch) -> None:
    def _fail(*args: Any, **kwargs: Any) -> None:
        raise stripe.InvalidRequestError(
            "No such subscription_schedule: 'sub_sched_x'",
            "id",
            code="resource_missing",
            http_status=404,
        )

    monkeypatch.setattr(stripe.SubscriptionSchedule, "retrieve", _fail)
    client = StripeBillingClient(secret_key="sk_test_123")

    with pytest.raises(StripeBillingError) as excinfo:
        client.retrieve_subscription_schedule("sub_sched_x")

    assert excinfo.value.operation == "subscription_schedule.retrieve"
    assert excinfo.value.code == "resource_missing"
    assert excinfo.value.http_status == 404


def test_client_factory_requires_secret_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("STRIPE_SECRET_KEY", raising=False)
    with pytest.raises(RuntimeError):
        get_stripe_billing_client()

    monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_abc")
    monkeypatch.setenv("STRIPE_API_VERSION", "2024-06-20")
    client = get_stripe_billing_client()
    assert client.secret_key == "sk_test_abc"
    assert client.api_version == "2024-06-20"


def test_signature_verification() -> None:
    payload = json.dumps({"id": "evt_1", "type": "customer.subscription.updated", "data": {}}).encode("utf-8")

    assert verify_stripe_webhook_signature(payload=payload, signature_header=_sign(payload), secret=SECRET) is True
    assert (
        verify_stripe_webhook_signature(payload=payload, signature_header=_sign(payload, "whsec_other"), secret=SECRET)
        is False
    )
    assert verify_stripe_webhook_signature(payload=payload, signature_header="", secret=SECRET) is False
    assert verify_stripe_webhook_signature(payload=payload, signature_header="garbage", secret=SECRET) is False


def test_signature_verification_requires_configured_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("STRIPE_WEBHOOK_SECRET", raising=False)

    with pytest.raises(RuntimeError):
        verify_stripe_webhook_signature(payload=b"{}", signature_header="t=1,v1=abc")


def test_parse_event_requires_event_shape() -> None:
    event = parse_stripe_event(b'{"id": "evt_1", "type": "customer.subscription.deleted", "data": {"object": {}}}')
    assert event["type"] == "customer.subscription.deleted"

    with pytest.raises(ValueError):
        parse_stripe_event(b'{"id": "evt_1"}')
    with pytest.raises(ValueError):
        parse_stripe_event(b"not json")
