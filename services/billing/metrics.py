"""Prometheus collectors for Stripe webhook reconciliation."""

from __future__ import annotations

from typing import Optional

from services.prometheus_helpers import build_counter, build_histogram

_WEBHOOK_EVENTS = build_counter(
    "billing_stripe_webhook_events_total",
    "Stripe webhook deliveries grouped by event type and handling result.",
    ("event_type", "result"),
)
_PROVIDER_ACTIONS = build_counter(
    "billing_stripe_compensating_actions_total",
    "Calls issued back to Stripe while reconciling (trial extensions, remediation).",
    ("action",),
)
_PROCESSING_SECONDS = build_histogram(
    "billing_stripe_webhook_processing_seconds",
    "Time spent reconciling a single Stripe webhook event.",
    ("event_type",),
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)


def record_webhook_result(event_type: Optional[str], result: str) -> None:
    if _WEBHOOK_EVENTS is None:
        return
    _WEBHOOK_EVENTS.labels(event_type=event_type or "unknown", result=result).inc()


def record_provider_action(action: str) -> None:
    if _PROVIDER_ACTIONS is None:
        return
    _PROVIDER_ACTIONS.labels(action=action).inc()


def observe_processing_seconds(event_type: Optional[str], seconds: float) -> None:
    if _PROCESSING_SECONDS is None:
        return
    _PROCESSING_SECONDS.labels(event_type=event_type or "unknown").observe(max(seconds, 0.0))


__all__ = ["observe_processing_seconds", "record_provider_action", "record_webhook_result"]
