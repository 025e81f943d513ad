"""SQLAlchemy-backed access to subscription plans and user entitlements."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Callable, Dict, Mapping, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.billing import SubscriptionPlan, UserEntitlement
from services.billing.errors import EntitlementNotFoundError, EntitlementStoreError
from services.billing.records import EntitlementRecord, PlanDetails

try:  # pragma: no cover - imported lazily for tests
    from database import SessionLocal as _SessionLocal
except Exception:  # pragma: no cover
    _SessionLocal = None

logger = logging.getLogger(__name__)

SUBSCRIPTION_FIELDS = (
    "plan_id",
    "subscription_id",
    "subscription_status",
    "current_period_start",
    "current_period_end",
    "cancel_at",
    "trial_end",
    "next_period_plan_id",
)
_WRITABLE_FIELDS = frozenset(SUBSCRIPTION_FIELDS) | {"stripe_customer_id", "trial_used"}


def _plan_from_row(row: SubscriptionPlan, *, with_downgrade: bool = True) -> PlanDetails:
    downgrade: Optional[PlanDetails] = None
    target = row.downgrade_plan if with_downgrade else None
    if target is not None and target.is_active:
        downgrade = _plan_from_row(target, with_downgrade=False)
    return PlanDetails(
        id=row.id,
        price_id=row.price_id,
        product_id=row.product_id,
        is_active=bool(row.is_active),
        trial_period_days=row.trial_period_days,
        downgrade_plan_id=row.downgrade_plan_id,
        title=row.title or "",
        currency=row.currency or "usd",
        unit_amount=row.unit_amount or 0,
        downgrade_plan=downgrade,
    )


def _entitlement_from_row(row: UserEntitlement) -> EntitlementRecord:
    return EntitlementRecord(
        user_id=row.id,
        stripe_customer_id=row.stripe_customer_id,
        subscription_id=row.subscription_id,
        subscription_status=row.subscription_status,
        plan_id=row.plan_id,
        next_period_plan_id=row.next_period_plan_id,
        current_period_start=row.current_period_start,
        current_period_end=row.current_period_end,
        cancel_at=row.cancel_at,
        trial_end=row.trial_end,
        trial_used=bool(row.trial_used),
    )


class EntitlementStore:
    """Plan lookups and entitlement row writes keyed by user, customer or subscription.

    ``get_by_user``, ``get_by_customer`` and ``upsert_customer`` are the row-level
    reads and upsert for the checkout and portal flows that link a user to a
    Stripe customer; webhook reconciliation only uses the plan lookups,
    ``is_trial_used``, ``update_by_customer`` and ``clear_subscription``.
    """

    def __init__(self, *, session_factory: Optional[Callable[[], Session]] = None) -> None:
        if session_factory is None:
            if _SessionLocal is None:  # pragma: no cover - enforced during runtime
                raise EntitlementStoreError("SessionLocal is unavailable. DATABASE_URL must be configured.")
            session_factory = _SessionLocal
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    def find_plan(self, *, price_id: str, product_id: str) -> Optional[PlanDetails]:
        """Return the active plan for the price/product pair, joined with its downgrade target."""
        session = self._session_factory()
        try:
            row = session.execute(
                select(SubscriptionPlan)
                .where(
                    SubscriptionPlan.price_id == price_id,
                    SubscriptionPlan.product_id == product_id,
                    SubscriptionPlan.is_active.is_(True),
                )
                .order_by(SubscriptionPlan.id)
                .limit(1)
            ).scalar_one_or_none()
            return _plan_from_row(row) if row is not None else None
        except SQLAlchemyError as exc:
            logger.exception("Failed to look up plan price=%s product=%s", price_id, product_id)
            raise EntitlementStoreError(f"Plan lookup failed: {exc}") from exc
        finally:
            session.close()

    def find_plan_id_by_price(self, price_id: str) -> Optional[int]:
        session = self._session_factory()
        try:
            value = session.execute(
                select(SubscriptionPlan.id)
                .where(SubscriptionPlan.price_id == price_id, SubscriptionPlan.is_active.is_(True))
                .order_by(SubscriptionPlan.id)
                .limit(1)
            ).scalar_one_or_none()
            return int(value) if value is not None else None
        except SQLAlchemyError as exc:
            logger.exception("Failed to look up plan id for price=%s", price_id)
            raise EntitlementStoreError(f"Plan lookup failed: {exc}") from exc
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Entitlements
    # ------------------------------------------------------------------

    def get_by_user(self, user_id: uuid.UUID) -> Optional[EntitlementRecord]:
        return self._get_one(UserEntitlement.id == user_id)

    def get_by_customer(self, customer_id: str) -> Optional[EntitlementRecord]:
        return self._get_one(UserEntitlement.stripe_customer_id == customer_id)

    def upsert_customer(self, *, user_id: uuid.UUID, customer_id: str) -> EntitlementRecord:
        """Create the user's row (or attach a customer id to it) when checkout starts."""
        session = self._session_factory()
        try:
            row = session.get(UserEntitlement, user_id)
            if row is None:
                row = UserEntitlement(id=user_id, stripe_customer_id=customer_id, trial_used=False)
                session.add(row)
            else:
                row.stripe_customer_id = customer_id
            session.commit()
            session.refresh(row)
            return _entitlement_from_row(row)
        except SQLAlchemyError as exc:
            session.rollback()
            logger.exception("Failed to upsert entitlement for user=%s", user_id)
            raise EntitlementStoreError(f"Entitlement upsert failed: {exc}") from exc
        finally:
            session.close()

    def is_trial_used(self, customer_id: Optional[str]) -> bool:
        """Whether the customer ever consumed a trial; lookup failures count as used."""
        if not customer_id:
            return False
        session = self._session_factory()
        try:
            value = session.execute(
                select(UserEntitlement.trial_used).where(UserEntitlement.stripe_customer_id == customer_id).limit(1)
            ).scalar_one_or_none()
        except SQLAlchemyError:
            logger.exception("Failed to read trial usage for customer=%s", customer_id)
            return True
        finally:
            session.close()
        return bool(value)

    def update_by_customer(self, customer_id: str, values: Mapping[str, Any]) -> int:
        """Overwrite the listed fields on the row owned by ``customer_id``."""
        payload = self._validate_values(values)
        count = self._execute_update(UserEntitlement.stripe_customer_id == customer_id, payload, label=customer_id)
        if count == 0:
            raise EntitlementNotFoundError(f"No entitlement found for customer {customer_id}")
        return count

    def clear_subscription(self, subscription_id: str) -> int:
        """Null out subscription-derived fields on the row still pointing at ``subscription_id``."""
        payload: Dict[str, Any] = {field: None for field in SUBSCRIPTION_FIELDS}
        count = self._execute_update(UserEntitlement.subscription_id == subscription_id, payload, label=subscription_id)
        if count == 0:
            logger.info("No entitlement still references subscription=%s; nothing to clear.", subscription_id)
        return count

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _get_one(self, clause) -> Optional[EntitlementRecord]:
        session = self._session_factory()
        try:
            row = session.execute(select(UserEntitlement).where(clause).limit(1)).scalar_one_or_none()
            return _entitlement_from_row(row) if row is not None else None
        except SQLAlchemyError as exc:
            logger.exception("Failed to read entitlement.")
            raise EntitlementStoreError(f"Entitlement read failed: {exc}") from exc
        finally:
            session.close()

    @staticmethod
    def _validate_values(values: Mapping[str, Any]) -> Dict[str, Any]:
        unknown = set(values) - _WRITABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown entitlement fields: {', '.join(sorted(unknown))}")
        payload = dict(values)
        if payload.get("trial_used") is not True:
            payload.pop("trial_used", None)
        return payload

    def _execute_update(self, clause, payload: Mapping[str, Any], *, label: str) -> int:
        session = self._session_factory()
        try:
            result = session.execute(update(UserEntitlement).where(clause).values(**payload))
            session.commit()
            return int(result.rowcount or 0)
        except SQLAlchemyError as exc:
            session.rollback()
            logger.exception("Failed to update entitlement for %s", label)
            raise EntitlementStoreError(f"Entitlement update failed: {exc}") from exc
        finally:
            session.close()


__all__ = ["EntitlementStore", "SUBSCRIPTION_FIELDS"]
