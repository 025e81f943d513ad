"""Compensating cancel-and-recreate flow for subscriptions that cannot collect payment."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Protocol

from services.billing.records import PlanDetails
from services.billing.stripe_client import StripeBillingError
from services.billing.stripe_refs import customer_to_id, invoice_to_id

logger = logging.getLogger(__name__)


class RemediationProvider(Protocol):
    def mark_invoice_uncollectible(self, invoice_id: str) -> Dict[str, Any]:
        ...

    def cancel_subscription(self, subscription_id: str, *, prorate: bool = False) -> Dict[str, Any]:
        ...

    def create_subscription(self, customer_id: str, price_id: str) -> Dict[str, Any]:
        ...


@dataclass(frozen=True, slots=True)
class RemediationOutcome:
    cancelled_subscription_id: str
    invoice_marked_uncollectible: bool
    replacement_subscription_id: Optional[str] = None
    downgrade_plan_id: Optional[int] = None


def remediate_payment_failure(
    subscription: Mapping[str, Any],
    plan: PlanDetails,
    client: RemediationProvider,
) -> RemediationOutcome:
    """Cancel ``subscription`` and, when the plan has a downgrade target, start a new one on it.

    The entitlement row is left alone: the ``created`` event of the replacement
    writes it, so the ``deleted`` event of the cancelled subscription cannot
    clobber the new state when it arrives late.
    """
    subscription_id = str(subscription.get("id"))
    invoice_marked = False

    invoice_id = invoice_to_id(subscription.get("latest_invoice"))
    if invoice_id:
        try:
            client.mark_invoice_uncollectible(invoice_id)
            invoice_marked = True
        except StripeBillingError as exc:
            logger.warning("Could not mark invoice %s uncollectible: %s", invoice_id, exc)

    client.cancel_subscription(subscription_id, prorate=False)

    downgrade = plan.downgrade_plan
    if downgrade is None:
        logger.info("Plan %s has no downgrade target; subscription %s cancelled only.", plan.id, subscription_id)
        return RemediationOutcome(cancelled_subscription_id=subscription_id, invoice_marked_uncollectible=invoice_marked)

    customer_id = customer_to_id(subscription.get("customer"))
    if not customer_id:
        raise ValueError(f"Subscription {subscription_id} has no customer reference.")
    logger.info("Creating downgrade subscription on plan %s for customer %s", downgrade.id, customer_id)
    replacement = client.create_subscription(customer_id, downgrade.price_id)
    return RemediationOutcome(
        cancelled_subscription_id=subscription_id,
        invoice_marked_uncollectible=invoice_marked,
        replacement_subscription_id=replacement.get("id"),
        downgrade_plan_id=downgrade.id,
    )


__all__ = ["RemediationOutcome", "remediate_payment_failure"]
