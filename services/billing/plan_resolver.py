"""Map a Stripe subscription onto the locally configured plan."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Protocol

from services.billing.errors import PlanNotFoundError
from services.billing.records import PlanDetails
from services.billing.stripe_refs import price_to_id, product_to_id

logger = logging.getLogger(__name__)


class PlanLookup(Protocol):
    def find_plan(self, *, price_id: str, product_id: str) -> Optional[PlanDetails]:
        ...


def first_subscription_item(subscription: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
    """Return ``items.data[0]`` of a subscription, if any."""
    items = subscription.get("items") or {}
    data = items.get("data") if isinstance(items, Mapping) else items
    if not data:
        return None
    item = data[0]
    return item if isinstance(item, Mapping) else None


def resolve_plan(subscription: Mapping[str, Any], store: PlanLookup) -> PlanDetails:
    """Find the active plan whose price *and* product match the subscription's billing item."""
    subscription_id = subscription.get("id")
    item = first_subscription_item(subscription)
    if item is None:
        raise PlanNotFoundError(f"Subscription {subscription_id} has no billing item.")

    price = item.get("price")
    price_id = price_to_id(price)
    product_id = product_to_id(price.get("product")) if isinstance(price, Mapping) else None
    if not price_id or not product_id:
        raise PlanNotFoundError(
            f"Subscription {subscription_id} billing item has no price/product reference.",
            price_id=price_id,
            product_id=product_id,
        )

    plan = store.find_plan(price_id=price_id, product_id=product_id)
    if plan is None:
        raise PlanNotFoundError(
            f"No active plan for price={price_id} product={product_id}.",
            price_id=price_id,
            product_id=product_id,
        )
    logger.debug("Resolved subscription %s to plan %s", subscription_id, plan.id)
    return plan


__all__ = ["PlanLookup", "first_subscription_item", "resolve_plan"]
