"""Manual replay of audited Stripe webhook events."""

from __future__ import annotations

from typing import Any, Dict, Optional

from services.billing.reconciler import EntitlementReconciler
from services.billing.webhook_audit import append_webhook_audit_entry, load_webhook_payload
from services.billing.webhook_processing import get_entitlement_reconciler, process_stripe_event


def replay_stripe_webhook_event(
    event_id: str,
    *,
    reconciler: Optional[EntitlementReconciler] = None,
) -> Dict[str, Any]:
    """Re-run reconciliation for the last audited payload of ``event_id``, bypassing dedupe."""
    if not event_id:
        raise ValueError("event_id is required.")

    event = load_webhook_payload(event_id)
    if not event:
        append_webhook_audit_entry(
            result="replay_payload_missing",
            context={"event_id": event_id, "replay": True},
            message="No audited payload for this event id.",
        )
        raise ValueError(f"No audited Stripe webhook payload found for {event_id}.")

    outcome = process_stripe_event(
        event,
        reconciler=reconciler or get_entitlement_reconciler(),
        dedupe=False,
        replay=True,
    )
    response: Dict[str, Any] = {
        "eventId": event_id,
        "eventType": outcome.event_type,
        "result": outcome.result,
    }
    if outcome.message:
        response["message"] = outcome.message
    return response


__all__ = ["replay_stripe_webhook_event"]
