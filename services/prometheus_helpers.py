"""Utilities for creating Prometheus collectors with graceful fallbacks."""

from __future__ import annotations

from typing import Iterable, Sequence

from core.logging import get_logger

logger = get_logger(__name__)

try:  # pragma: no cover - optional dependency
    from prometheus_client import Counter, Histogram, REGISTRY  # type: ignore
except ImportError:  # pragma: no cover - optional dependency
    Counter = None  # type: ignore
    Histogram = None  # type: ignore
    REGISTRY = None  # type: ignore


def _lookup_collector(name: str):
    if REGISTRY is None:
        return None
    existing = getattr(REGISTRY, "_names_to_collectors", None)
    if isinstance(existing, dict):
        # Counters register under both ``name`` and ``name_total``.
        return existing.get(name) or existing.get(f"{name}_total")
    return None


def build_counter(name: str, documentation: str, labelnames: Sequence[str] | None = None):
    """Create a Counter, reusing the registered one on duplicate registration."""

    if Counter is None:
        return None
    try:
        return Counter(name, documentation, tuple(labelnames or ()))
    except ValueError:
        collector = _lookup_collector(name)
        if collector is None:
            logger.debug("Counter %s already registered but not found in registry.", name)
        return collector


def build_histogram(
    name: str,
    documentation: str,
    labelnames: Sequence[str] | None = None,
    buckets: Iterable[float] | None = None,
):
    """Create a Histogram, reusing the registered one on duplicate registration."""

    if Histogram is None:
        return None
    try:
        if buckets is None:
            return Histogram(name, documentation, tuple(labelnames or ()))
        return Histogram(name, documentation, tuple(labelnames or ()), buckets=tuple(buckets))
    except ValueError:
        collector = _lookup_collector(name)
        if collector is None:
            logger.debug("Histogram %s already registered but not found in registry.", name)
        return collector


__all__ = ["build_counter", "build_histogram"]
