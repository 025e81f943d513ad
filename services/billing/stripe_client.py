"""Stripe API wrapper used by the subscription reconciler."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

import stripe

from core.env import env_int, env_str

logger = logging.getLogger(__name__)

DEFAULT_WEBHOOK_TOLERANCE_SECONDS = 300


class StripeBillingError(RuntimeError):
    """Raised when a Stripe API call fails."""

    def __init__(
        self,
        operation: str,
        message: str,
        *,
        code: Optional[str] = None,
        http_status: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.code = code
        self.http_status = http_status


def _to_plain(obj: Any) -> Dict[str, Any]:
    if obj is None:
        return {}
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if isinstance(obj, Mapping):
        return dict(obj)
    return {}


@dataclass(slots=True)
class StripeBillingClient:
    """Thin wrapper over the Stripe SDK returning plain dictionaries."""

    secret_key: str
    api_version: Optional[str] = None

    def _call(self, operation: str, func: Callable[..., Any], *args: Any, **params: Any) -> Dict[str, Any]:
        options: Dict[str, Any] = {"api_key": self.secret_key}
        if self.api_version:
            options["stripe_version"] = self.api_version
        try:
            result = func(*args, **params, **options)
        except stripe.StripeError as exc:
            logger.warning("Stripe %s failed: %s", operation, exc)
            raise StripeBillingError(
                operation,
                str(exc),
                code=getattr(exc, "code", None),
                http_status=getattr(exc, "http_status", None),
            ) from exc
        return _to_plain(result)

    def update_subscription(self, subscription_id: str, **params: Any) -> Dict[str, Any]:
        logger.info("Updating Stripe subscription %s fields=%s", subscription_id, sorted(params))
        return self._call("subscription.update", stripe.Subscription.modify, subscription_id, **params)

    def cancel_subscription(self, subscription_id: str, *, prorate: bool = False) -> Dict[str, Any]:
        logger.info("Cancelling Stripe subscription %s prorate=%s", subscription_id, prorate)
        return self._call("subscription.cancel", stripe.Subscription.cancel, subscription_id, prorate=prorate)

    def create_subscription(self, customer_id: str, price_id: str) -> Dict[str, Any]:
        logger.info("Creating Stripe subscription for customer=%s price=%s", customer_id, price_id)
        return self._call(
            "subscription.create",
            stripe.Subscription.create,
            customer=customer_id,
            items=[{"price": price_id}],
        )

    def mark_invoice_uncollectible(self, invoice_id: str) -> Dict[str, Any]:
        logger.info("Marking Stripe invoice %s uncollectible", invoice_id)
        return self._call("invoice.mark_uncollectible", stripe.Invoice.mark_uncollectible, invoice_id)

    def retrieve_subscription_schedule(self, schedule_id: str) -> Dict[str, Any]:
        return self._call("subscription_schedule.retrieve", stripe.SubscriptionSchedule.retrieve, schedule_id)


def get_stripe_billing_client() -> StripeBillingClient:
    secret_key = env_str("STRIPE_SECRET_KEY")
    if not secret_key:
        raise RuntimeError("STRIPE_SECRET_KEY is not configured.")
    return StripeBillingClient(secret_key=secret_key, api_version=env_str("STRIPE_API_VERSION"))


def get_stripe_webhook_secret() -> str:
    secret = env_str("STRIPE_WEBHOOK_SECRET")
    if not secret:
        raise RuntimeError("STRIPE_WEBHOOK_SECRET is not configured.")
    return secret


def verify_stripe_webhook_signature(
    *,
    payload: bytes,
    signature_header: str,
    secret: Optional[str] = None,
    tolerance: Optional[int] = None,
) -> bool:
    """Validate the ``Stripe-Signature`` header against the endpoint secret."""
    if not payload or not signature_header:
        return False

    secret_key = secret or get_stripe_webhook_secret()
    if tolerance is None:
        tolerance = env_int("STRIPE_WEBHOOK_TOLERANCE_SECONDS", DEFAULT_WEBHOOK_TOLERANCE_SECONDS, minimum=1)
    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError:
        logger.warning("Stripe webhook payload is not valid UTF-8.")
        return False

    try:
        stripe.WebhookSignature.verify_header(text, signature_header, secret_key, tolerance)
    except stripe.SignatureVerificationError as exc:
        logger.debug("Stripe webhook signature rejected: %s", exc)
        return False
    return True


def parse_stripe_event(payload: bytes) -> Dict[str, Any]:
    """Decode a verified webhook body into a plain event dictionary."""
    event = json.loads(payload.decode("utf-8"))
    if not isinstance(event, dict) or not isinstance(event.get("data"), dict):
        raise ValueError("Stripe webhook payload is not an event object.")
    return event


__all__ = [
    "DEFAULT_WEBHOOK_TOLERANCE_SECONDS",
    "StripeBillingClient",
    "StripeBillingError",
    "get_stripe_billing_client",
    "get_stripe_webhook_secret",
    "parse_stripe_event",
    "verify_stripe_webhook_signature",
]
