"""Stripe subscription constants shared by the reconciler, store and routers."""

from __future__ import annotations

from enum import Enum
from typing import FrozenSet

SECONDS_PER_DAY = 24 * 60 * 60


class SubscriptionStatus(str, Enum):
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    PAUSED = "paused"

    def __str__(self) -> str:  # pragma: no cover - convenience
        return self.value


class SubscriptionEventType(str, Enum):
    CREATED = "customer.subscription.created"
    UPDATED = "customer.subscription.updated"
    DELETED = "customer.subscription.deleted"
    PAUSED = "customer.subscription.paused"

    def __str__(self) -> str:  # pragma: no cover - convenience
        return self.value


SUPPORTED_SUBSCRIPTION_STATUSES: FrozenSet[str] = frozenset(status.value for status in SubscriptionStatus)

__all__ = [
    "SECONDS_PER_DAY",
    "SUPPORTED_SUBSCRIPTION_STATUSES",
    "SubscriptionEventType",
    "SubscriptionStatus",
]
