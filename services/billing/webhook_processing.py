"""Run one verified Stripe event through dedupe, reconciliation and audit."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Mapping, Optional

from core.env import env_bool
from services.billing.entitlement_store import EntitlementStore
from services.billing.errors import ResolutionError
from services.billing.metrics import observe_processing_seconds, record_provider_action, record_webhook_result
from services.billing.reconciler import EntitlementReconciler, ReconcileResult
from services.billing.stripe_client import get_stripe_billing_client
from services.billing.stripe_refs import customer_to_id
from services.billing.webhook_audit import append_webhook_audit_entry
from services.billing.webhook_store import has_processed_webhook, record_webhook_event

logger = logging.getLogger(__name__)

_PROVIDER_ACTION_OUTCOMES = {"remediated", "trial_extended"}


@dataclass(frozen=True, slots=True)
class WebhookProcessingResult:
    event_id: Optional[str]
    event_type: Optional[str]
    result: str
    message: Optional[str] = None
    reconcile: Optional[ReconcileResult] = None

    @property
    def failed(self) -> bool:
        return self.result in {"resolution_failed", "processing_failed"}


@lru_cache(maxsize=1)
def get_entitlement_reconciler() -> EntitlementReconciler:
    """Process-wide reconciler wired to Stripe and the configured database."""
    return EntitlementReconciler(billing_client=get_stripe_billing_client(), store=EntitlementStore())


def build_log_context(event: Mapping[str, Any]) -> Dict[str, Any]:
    data = event.get("data") or {}
    subscription = data.get("object") or {}
    return {
        "event_id": event.get("id"),
        "event_type": event.get("type"),
        "subscription_id": subscription.get("id"),
        "customer_id": customer_to_id(subscription.get("customer")),
        "status": subscription.get("status"),
        "livemode": event.get("livemode"),
    }


def process_stripe_event(
    event: Dict[str, Any],
    *,
    reconciler: EntitlementReconciler,
    dedupe: Optional[bool] = None,
    replay: bool = False,
) -> WebhookProcessingResult:
    """Reconcile ``event``; failures are logged and audited, never raised."""
    if dedupe is None:
        dedupe = env_bool("STRIPE_WEBHOOK_DEDUPE_ENABLED", True)
    event_id = event.get("id")
    event_type = event.get("type")
    log_context = build_log_context(event)
    if replay:
        log_context["replay"] = True

    if dedupe and has_processed_webhook(event_id):
        logger.info("Duplicate Stripe webhook ignored.", extra={"webhook": log_context})
        append_webhook_audit_entry(result="duplicate", context=log_context)
        record_webhook_result(event_type, "duplicate")
        return WebhookProcessingResult(event_id=event_id, event_type=event_type, result="duplicate")

    started = time.perf_counter()
    try:
        outcome = reconciler.handle_event(event)
    except ResolutionError as exc:
        logger.warning("Stripe event %s skipped: %s", event_id, exc, extra={"webhook": log_context})
        append_webhook_audit_entry(
            result="resolution_failed",
            context={**log_context, "error": exc.to_detail()},
            payload=event,
            message=str(exc),
        )
        record_webhook_event(event_id=event_id, event_type=event_type, result="resolution_failed")
        record_webhook_result(event_type, "resolution_failed")
        return WebhookProcessingResult(
            event_id=event_id,
            event_type=event_type,
            result="resolution_failed",
            message=str(exc),
        )
    except Exception as exc:
        logger.exception("Failed to reconcile Stripe event %s", event_id, extra={"webhook": log_context})
        append_webhook_audit_entry(result="processing_failed", context=log_context, payload=event, message=str(exc))
        record_webhook_result(event_type, "processing_failed")
        return WebhookProcessingResult(
            event_id=event_id,
            event_type=event_type,
            result="processing_failed",
            message=str(exc),
        )
    finally:
        observe_processing_seconds(event_type, time.perf_counter() - started)

    if outcome.outcome in _PROVIDER_ACTION_OUTCOMES:
        record_provider_action(outcome.outcome)
    logger.info(
        "Stripe event reconciled: %s",
        outcome.outcome,
        extra={"webhook": {**log_context, "outcome": outcome.outcome}},
    )
    append_webhook_audit_entry(
        result=outcome.outcome,
        context={**log_context, "detail": outcome.detail},
        payload=event,
    )
    record_webhook_event(event_id=event_id, event_type=event_type, result=outcome.outcome)
    record_webhook_result(event_type, outcome.outcome)
    return WebhookProcessingResult(event_id=event_id, event_type=event_type, result=outcome.outcome, reconcile=outcome)


__all__ = [
    "WebhookProcessingResult",
    "build_log_context",
    "get_entitlement_reconciler",
    "process_stripe_event",
]
