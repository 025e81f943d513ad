"""Billing webhook API schemas."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class StripeWebhookAckResponse(BaseModel):
    status: str = Field(default="accepted", description="Always 'accepted' once the event signature is valid.")
    eventId: Optional[str] = Field(default=None, description="Stripe event id.")
    eventType: Optional[str] = Field(default=None, description="Stripe event type.")
    result: Optional[str] = Field(
        default=None,
        description="Reconciliation outcome, e.g. entitlement_written, remediated, duplicate, processing_failed.",
    )
