"""Shared FastAPI dependencies."""

from __future__ import annotations

from fastapi import HTTPException, status

from services.billing.reconciler import EntitlementReconciler
from services.billing.webhook_processing import get_entitlement_reconciler


def get_reconciler() -> EntitlementReconciler:
    """Reconciler wired to Stripe and the entitlement database."""
    try:
        return get_entitlement_reconciler()
    except RuntimeError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "billing.provider_unavailable", "message": str(exc)},
        ) from exc
