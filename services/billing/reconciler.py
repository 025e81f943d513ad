"""Stripe subscription event → entitlement reconciliation state machine."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

from core.billing_constants import SUPPORTED_SUBSCRIPTION_STATUSES, SubscriptionEventType
from services.billing.errors import ResolutionError
from services.billing.plan_resolver import first_subscription_item, resolve_plan
from services.billing.records import PlanDetails
from services.billing.remediation import RemediationOutcome, remediate_payment_failure
from services.billing.schedule_lookahead import resolve_next_period_plan_id
from services.billing.stripe_refs import customer_to_id
from services.billing.trial_policy import (
    TrialActionKind,
    apply_trial_extension,
    build_trial_policy_input,
    evaluate_trial_policy,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


class BillingProvider(Protocol):
    def update_subscription(self, subscription_id: str, **params: Any) -> Dict[str, Any]:
        ...

    def cancel_subscription(self, subscription_id: str, *, prorate: bool = False) -> Dict[str, Any]:
        ...

    def create_subscription(self, customer_id: str, price_id: str) -> Dict[str, Any]:
        ...

    def mark_invoice_uncollectible(self, invoice_id: str) -> Dict[str, Any]:
        ...

    def retrieve_subscription_schedule(self, schedule_id: str) -> Dict[str, Any]:
        ...


class EntitlementRepository(Protocol):
    def find_plan(self, *, price_id: str, product_id: str) -> Optional[PlanDetails]:
        ...

    def find_plan_id_by_price(self, price_id: str) -> Optional[int]:
        ...

    def is_trial_used(self, customer_id: Optional[str]) -> bool:
        ...

    def update_by_customer(self, customer_id: str, values: Mapping[str, Any]) -> int:
        ...

    def clear_subscription(self, subscription_id: str) -> int:
        ...


@dataclass(frozen=True, slots=True)
class ReconcileResult:
    event_type: str
    outcome: str
    subscription_id: Optional[str] = None
    customer_id: Optional[str] = None
    plan_id: Optional[int] = None
    detail: Dict[str, Any] = field(default_factory=dict)


def _epoch_now() -> int:
    return int(time.time())


def _timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), timezone.utc)


def _remediation_detail(outcome: RemediationOutcome) -> Dict[str, Any]:
    return {
        "cancelled_subscription_id": outcome.cancelled_subscription_id,
        "invoice_marked_uncollectible": outcome.invoice_marked_uncollectible,
        "replacement_subscription_id": outcome.replacement_subscription_id,
        "downgrade_plan_id": outcome.downgrade_plan_id,
    }


class EntitlementReconciler:
    """Apply Stripe subscription lifecycle events to the entitlement store.

    Every write is a full overwrite derived from the subscription snapshot in
    the event, so replaying an event (or processing a later one for the same
    subscription) converges on the provider's state.
    """

    def __init__(
        self,
        *,
        billing_client: BillingProvider,
        store: EntitlementRepository,
        clock: Optional[Clock] = None,
    ) -> None:
        self._client = billing_client
        self._store = store
        self._clock = clock or _epoch_now
        self._handlers: Dict[str, Callable[[Mapping[str, Any], Mapping[str, Any]], ReconcileResult]] = {
            SubscriptionEventType.CREATED.value: self._handle_created,
            SubscriptionEventType.UPDATED.value: self._handle_updated,
            SubscriptionEventType.DELETED.value: self._handle_deleted,
            SubscriptionEventType.PAUSED.value: self._handle_paused,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def handle_event(self, event: Mapping[str, Any]) -> ReconcileResult:
        event_type = str(event.get("type") or "")
        data = event.get("data") or {}
        subscription = data.get("object") or {}
        previous_attributes = data.get("previous_attributes") or {}

        handler = self._handlers.get(event_type)
        if handler is None:
            logger.info("Unhandled Stripe event type %s ignored.", event_type)
            return ReconcileResult(event_type=event_type, outcome="ignored")
        return handler(subscription, previous_attributes)

    def build_entitlement_snapshot(
        self,
        subscription: Mapping[str, Any],
        plan: PlanDetails,
        *,
        next_period_plan_id: Optional[int],
    ) -> Dict[str, Any]:
        """Full set of entitlement fields derived from ``subscription``."""
        item = first_subscription_item(subscription) or {}
        period_start = item.get("current_period_start", subscription.get("current_period_start"))
        period_end = item.get("current_period_end", subscription.get("current_period_end"))
        status = subscription.get("status")
        if status not in SUPPORTED_SUBSCRIPTION_STATUSES:
            logger.warning("Subscription %s has unrecognised status %r.", subscription.get("id"), status)
        snapshot: Dict[str, Any] = {
            "plan_id": plan.id,
            "subscription_id": subscription.get("id"),
            "stripe_customer_id": customer_to_id(subscription.get("customer")),
            "subscription_status": status,
            "current_period_start": _timestamp(period_start),
            "current_period_end": _timestamp(period_end),
            "cancel_at": _timestamp(subscription.get("cancel_at")),
            "trial_end": _timestamp(subscription.get("trial_end")),
            "next_period_plan_id": next_period_plan_id,
        }
        if subscription.get("trial_start") is not None:
            snapshot["trial_used"] = True
        return snapshot

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def _handle_created(self, subscription: Mapping[str, Any], _previous: Mapping[str, Any]) -> ReconcileResult:
        plan = resolve_plan(subscription, self._store)
        customer_id = self._write_snapshot(subscription, plan)
        return ReconcileResult(
            event_type=SubscriptionEventType.CREATED.value,
            outcome="entitlement_written",
            subscription_id=subscription.get("id"),
            customer_id=customer_id,
            plan_id=plan.id,
        )

    def _handle_updated(self, subscription: Mapping[str, Any], previous: Mapping[str, Any]) -> ReconcileResult:
        customer_id = customer_to_id(subscription.get("customer"))
        subscription_id = subscription.get("id")
        # Read before the snapshot write below flips the flag for trialing subscriptions.
        trial_used = self._store.is_trial_used(customer_id)
        plan = resolve_plan(subscription, self._store)
        now = self._clock()
        decision = evaluate_trial_policy(
            build_trial_policy_input(subscription, previous, trial_used=trial_used, plan=plan, now=now)
        )

        self._write_snapshot(subscription, plan)

        result_kwargs = {
            "event_type": SubscriptionEventType.UPDATED.value,
            "subscription_id": subscription_id,
            "customer_id": customer_id,
            "plan_id": plan.id,
        }
        if decision.kind is TrialActionKind.REMEDIATE:
            outcome = remediate_payment_failure(subscription, plan, self._client)
            return ReconcileResult(outcome="remediated", detail=_remediation_detail(outcome), **result_kwargs)
        if decision.kind is TrialActionKind.EXTEND_TRIAL and decision.seconds is not None:
            apply_trial_extension(self._client, str(subscription_id), decision.seconds, now=now)
            return ReconcileResult(
                outcome="trial_extended",
                detail={"rule": decision.rule, "seconds": decision.seconds, "trial_end": now + decision.seconds},
                **result_kwargs,
            )
        return ReconcileResult(outcome="entitlement_written", **result_kwargs)

    def _handle_deleted(self, subscription: Mapping[str, Any], _previous: Mapping[str, Any]) -> ReconcileResult:
        subscription_id = subscription.get("id")
        if not subscription_id:
            raise ResolutionError("Deleted subscription event carries no subscription id.")
        subscription_id = str(subscription_id)
        cleared = self._store.clear_subscription(subscription_id)
        return ReconcileResult(
            event_type=SubscriptionEventType.DELETED.value,
            outcome="subscription_cleared" if cleared else "subscription_already_replaced",
            subscription_id=subscription_id,
            customer_id=customer_to_id(subscription.get("customer")),
            detail={"rows": cleared},
        )

    def _handle_paused(self, subscription: Mapping[str, Any], _previous: Mapping[str, Any]) -> ReconcileResult:
        plan = resolve_plan(subscription, self._store)
        outcome = remediate_payment_failure(subscription, plan, self._client)
        return ReconcileResult(
            event_type=SubscriptionEventType.PAUSED.value,
            outcome="remediated",
            subscription_id=subscription.get("id"),
            customer_id=customer_to_id(subscription.get("customer")),
            plan_id=plan.id,
            detail=_remediation_detail(outcome),
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _write_snapshot(self, subscription: Mapping[str, Any], plan: PlanDetails) -> str:
        customer_id = customer_to_id(subscription.get("customer"))
        if not customer_id:
            raise ValueError(f"Subscription {subscription.get('id')} has no customer reference.")
        next_period_plan_id = resolve_next_period_plan_id(
            subscription,
            plan.id,
            client=self._client,
            store=self._store,
            now=self._clock(),
        )
        snapshot = self.build_entitlement_snapshot(subscription, plan, next_period_plan_id=next_period_plan_id)
        self._store.update_by_customer(customer_id, snapshot)
        logger.info(
            "Entitlement written for customer=%s subscription=%s status=%s plan=%s next_plan=%s",
            customer_id,
            subscription.get("id"),
            subscription.get("status"),
            plan.id,
            next_period_plan_id,
        )
        return customer_id


__all__ = ["BillingProvider", "EntitlementReconciler", "EntitlementRepository", "ReconcileResult"]
