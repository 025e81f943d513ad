"""Plain value objects exchanged between the store and the reconciler."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True, slots=True)
class PlanDetails:
    id: int
    price_id: str
    product_id: str
    is_active: bool
    trial_period_days: Optional[int] = None
    downgrade_plan_id: Optional[int] = None
    title: str = ""
    currency: str = "usd"
    unit_amount: int = 0
    downgrade_plan: Optional["PlanDetails"] = None


@dataclass(frozen=True, slots=True)
class EntitlementRecord:
    user_id: uuid.UUID
    stripe_customer_id: Optional[str]
    subscription_id: Optional[str]
    subscription_status: Optional[str]
    plan_id: Optional[int]
    next_period_plan_id: Optional[int]
    current_period_start: Optional[datetime]
    current_period_end: Optional[datetime]
    cancel_at: Optional[datetime]
    trial_end: Optional[datetime]
    trial_used: bool


__all__ = ["EntitlementRecord", "PlanDetails"]
