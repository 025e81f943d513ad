from __future__ import annotations

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import relationship

from database import Base


class SubscriptionPlan(Base):
    """Locally configured offering mapped onto a Stripe price/product pair."""

    __tablename__ = "subscription_plans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    price_id = Column(String, nullable=False, index=True)
    product_id = Column(String, nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    title = Column(String, nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    currency = Column(String(3), nullable=False, default="usd")
    unit_amount = Column(Integer, nullable=False, default=0)
    recurring_interval = Column(String, nullable=False, default="month")
    recurring_interval_count = Column(Integer, nullable=False, default=1)
    interval_words_limit = Column(Integer, nullable=True)
    trial_period_days = Column(Integer, nullable=True)
    downgrade_plan_id = Column(Integer, ForeignKey("subscription_plans.id"), nullable=True)

    downgrade_plan = relationship("SubscriptionPlan", remote_side=[id], lazy="joined", join_depth=1)


class UserEntitlement(Base):
    """Per-user access record derived from the Stripe subscription state."""

    __tablename__ = "user_entitlements"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    plan_id = Column(Integer, ForeignKey("subscription_plans.id"), nullable=True)
    stripe_customer_id = Column(String, nullable=True, unique=True, index=True)
    subscription_id = Column(String, nullable=True, index=True)
    subscription_status = Column(String, nullable=True)
    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    cancel_at = Column(DateTime(timezone=True), nullable=True)
    trial_end = Column(DateTime(timezone=True), nullable=True)
    next_period_plan_id = Column(Integer, ForeignKey("subscription_plans.id"), nullable=True)
    trial_used = Column(Boolean, nullable=False, default=False)


class StripeWebhookEventLog(Base):
    """Audit trail of received Stripe webhook deliveries."""

    __tablename__ = "billing_stripe_webhook_events"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id = Column(String, nullable=True, index=True)
    event_type = Column(String, nullable=True, index=True)
    customer_id = Column(String, nullable=True, index=True)
    subscription_id = Column(String, nullable=True, index=True)
    result = Column(String, nullable=False, index=True)
    message = Column(Text, nullable=True)
    context = Column(JSON, nullable=True)
    payload = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
