"""Stripe webhook receiver keeping user entitlements in sync with subscriptions."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from starlette.concurrency import run_in_threadpool

from schemas.api.billing import StripeWebhookAckResponse
from services.billing.reconciler import EntitlementReconciler
from services.billing.stripe_client import parse_stripe_event, verify_stripe_webhook_signature
from services.billing.webhook_audit import append_webhook_audit_entry
from services.billing.webhook_processing import process_stripe_event
from web.deps import get_reconciler

router = APIRouter(prefix="/billing", tags=["Billing"])

logger = logging.getLogger(__name__)


@router.post(
    "/stripe/webhook",
    response_model=StripeWebhookAckResponse,
    summary="Receive Stripe subscription lifecycle webhooks.",
)
async def handle_stripe_webhook(
    request: Request,
    reconciler: EntitlementReconciler = Depends(get_reconciler),
) -> StripeWebhookAckResponse:
    raw_body = await request.body()
    signature_header = request.headers.get("stripe-signature")

    if not signature_header:
        logger.warning("Stripe webhook missing signature header.")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "billing.webhook_signature_missing", "message": "Stripe-Signature header is required."},
        )

    try:
        is_valid = verify_stripe_webhook_signature(payload=raw_body, signature_header=signature_header)
    except RuntimeError as exc:
        logger.error("Stripe webhook signature verification unavailable: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "billing.webhook_signature_unavailable", "message": str(exc)},
        ) from exc

    if not is_valid:
        logger.warning("Stripe webhook signature invalid.")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "billing.webhook_signature_invalid", "message": "Webhook signature verification failed."},
        )

    try:
        event = parse_stripe_event(raw_body)
    except (ValueError, UnicodeDecodeError) as exc:
        logger.warning("Stripe webhook payload decode failed: %s", exc)
        append_webhook_audit_entry(result="payload_invalid", context={}, message=str(exc))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "billing.webhook_payload_invalid", "message": "Webhook body is not a Stripe event."},
        ) from exc

    logger.info("Received Stripe webhook %s (%s).", event.get("id"), event.get("type"))
    outcome = await run_in_threadpool(process_stripe_event, event, reconciler=reconciler)
    return StripeWebhookAckResponse(
        status="accepted",
        eventId=outcome.event_id,
        eventType=outcome.event_type,
        result=outcome.result,
    )


__all__ = ["router"]
