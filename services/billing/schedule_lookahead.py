"""Work out which plan a subscription moves to at the next billing period."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Protocol

from services.billing.errors import EntitlementStoreError
from services.billing.stripe_client import StripeBillingError
from services.billing.stripe_refs import price_to_id, schedule_to_id

logger = logging.getLogger(__name__)


class ScheduleSource(Protocol):
    def retrieve_subscription_schedule(self, schedule_id: str) -> Dict[str, Any]:
        ...


class PlanIdLookup(Protocol):
    def find_plan_id_by_price(self, price_id: str) -> Optional[int]:
        ...


def _load_schedule(schedule: Any, client: ScheduleSource) -> Optional[Mapping[str, Any]]:
    if isinstance(schedule, Mapping) and "phases" in schedule:
        return schedule
    schedule_id = schedule_to_id(schedule)
    if not schedule_id:
        return None
    return client.retrieve_subscription_schedule(schedule_id)


def first_future_phase(schedule: Mapping[str, Any], *, now: int) -> Optional[Mapping[str, Any]]:
    for phase in schedule.get("phases") or []:
        start = phase.get("start_date")
        if start is not None and int(start) > now:
            return phase
    return None


def resolve_next_period_plan_id(
    subscription: Mapping[str, Any],
    current_plan_id: int,
    *,
    client: ScheduleSource,
    store: PlanIdLookup,
    now: int,
) -> Optional[int]:
    """Plan id expected after the current period; ``None`` when the subscription is set to cancel."""
    if subscription.get("cancel_at"):
        return None

    schedule_ref = subscription.get("schedule")
    if not schedule_ref:
        return current_plan_id

    subscription_id = subscription.get("id")
    try:
        schedule = _load_schedule(schedule_ref, client)
    except StripeBillingError as exc:
        logger.warning("Could not load schedule for subscription %s: %s", subscription_id, exc)
        return current_plan_id
    if not schedule:
        return current_plan_id

    phase = first_future_phase(schedule, now=now)
    if phase is None:
        return current_plan_id

    items = phase.get("items") or []
    if not items:
        return current_plan_id
    price_id = price_to_id(items[0].get("price"))
    if not price_id:
        return current_plan_id

    try:
        plan_id = store.find_plan_id_by_price(price_id)
    except EntitlementStoreError as exc:
        logger.warning("Next-period plan lookup failed for price=%s: %s", price_id, exc)
        return current_plan_id
    if plan_id is None:
        logger.warning("No active plan for scheduled price=%s; keeping current plan %s", price_id, current_plan_id)
        return current_plan_id
    return plan_id


__all__ = ["first_future_phase", "resolve_next_period_plan_id"]
