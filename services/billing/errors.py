"""Exception hierarchy for subscription reconciliation."""

from __future__ import annotations

from typing import Any, Dict, Optional


class BillingReconciliationError(RuntimeError):
    """Base class for failures while reconciling a Stripe event."""

    code = "billing.reconciliation_failed"

    def to_detail(self) -> Dict[str, Any]:
        return {"code": self.code, "message": str(self)}


class ResolutionError(BillingReconciliationError):
    """A referenced plan or entitlement does not exist; retrying the same event will not help."""

    code = "billing.resolution_failed"


class PlanNotFoundError(ResolutionError):
    code = "billing.plan_not_found"

    def __init__(
        self,
        message: str,
        *,
        price_id: Optional[str] = None,
        product_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.price_id = price_id
        self.product_id = product_id


class EntitlementNotFoundError(ResolutionError):
    code = "billing.entitlement_not_found"


class EntitlementStoreError(BillingReconciliationError):
    """Raised when the entitlement store rejects a read or write."""

    code = "billing.store_failed"


__all__ = [
    "BillingReconciliationError",
    "EntitlementNotFoundError",
    "EntitlementStoreError",
    "PlanNotFoundError",
    "ResolutionError",
]
