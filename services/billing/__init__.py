"""Stripe subscription reconciliation services."""

from .errors import (
    BillingReconciliationError,
    EntitlementNotFoundError,
    EntitlementStoreError,
    PlanNotFoundError,
    ResolutionError,
)
from .reconciler import EntitlementReconciler, ReconcileResult
from .stripe_client import (
    StripeBillingClient,
    StripeBillingError,
    get_stripe_billing_client,
    get_stripe_webhook_secret,
    parse_stripe_event,
    verify_stripe_webhook_signature,
)

__all__ = [
    "BillingReconciliationError",
    "EntitlementNotFoundError",
    "EntitlementReconciler",
    "EntitlementStoreError",
    "PlanNotFoundError",
    "ReconcileResult",
    "ResolutionError",
    "StripeBillingClient",
    "StripeBillingError",
    "get_stripe_billing_client",
    "get_stripe_webhook_secret",
    "parse_stripe_event",
    "verify_stripe_webhook_signature",
]
