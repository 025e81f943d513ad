"""Normalise Stripe expandable references into bare identifiers."""

from __future__ import annotations

from typing import Any, Mapping, Optional, Union

StripeRef = Union[str, Mapping[str, Any], None]


def to_id(ref: Any) -> Optional[str]:
    """Return the id of ``ref`` whether it is a bare id or an expanded object."""
    if ref is None:
        return None
    if isinstance(ref, str):
        return ref or None
    if isinstance(ref, Mapping):
        candidate = ref.get("id")
    else:
        candidate = getattr(ref, "id", None)
    if isinstance(candidate, str) and candidate:
        return candidate
    return None


def customer_to_id(customer: StripeRef) -> Optional[str]:
    return to_id(customer)


def product_to_id(product: StripeRef) -> Optional[str]:
    return to_id(product)


def price_to_id(price: StripeRef) -> Optional[str]:
    return to_id(price)


def invoice_to_id(invoice: StripeRef) -> Optional[str]:
    return to_id(invoice)


def schedule_to_id(schedule: StripeRef) -> Optional[str]:
    return to_id(schedule)


__all__ = [
    "StripeRef",
    "customer_to_id",
    "invoice_to_id",
    "price_to_id",
    "product_to_id",
    "schedule_to_id",
    "to_id",
]
