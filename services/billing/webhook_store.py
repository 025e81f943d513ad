"""Disk-backed record of Stripe webhook events that finished processing."""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from core.env import env_str
from services.json_state_store import JsonStateStore

logger = logging.getLogger(__name__)

_DEFAULT_STATE_PATH = Path("uploads") / "billing" / "stripe_webhook_events.json"
_MAX_RECORDED_EVENTS = 500
_STATE_LOCK = threading.Lock()


@dataclass(slots=True)
class _ProcessedEvent:
    event_id: str
    event_type: Optional[str]
    result: Optional[str]
    processed_at: str


_EVENT_STORE = JsonStateStore(
    Path(env_str("STRIPE_WEBHOOK_STATE_PATH") or _DEFAULT_STATE_PATH),
    "events",
    max_items=_MAX_RECORDED_EVENTS,
    logger=logger,
)


def _load_events() -> List[_ProcessedEvent]:
    events: List[_ProcessedEvent] = []
    for item in _EVENT_STORE.load():
        event_id = str(item.get("event_id") or "").strip()
        processed_at = str(item.get("processed_at") or "").strip()
        if not event_id or not processed_at:
            continue
        events.append(
            _ProcessedEvent(
                event_id=event_id,
                event_type=item.get("event_type"),
                result=item.get("result"),
                processed_at=processed_at,
            )
        )
    return events


def has_processed_webhook(event_id: Optional[str]) -> bool:
    """Return True if ``event_id`` is among the recently processed events."""
    if not event_id:
        return False
    with _STATE_LOCK:
        events = _load_events()
    return any(event.event_id == event_id for event in events)


def record_webhook_event(*, event_id: Optional[str], event_type: Optional[str], result: Optional[str]) -> None:
    """Remember that ``event_id`` finished; re-recording moves it to the newest slot."""
    if not event_id:
        return
    with _STATE_LOCK:
        events = [event for event in _load_events() if event.event_id != event_id]
        events.append(
            _ProcessedEvent(
                event_id=event_id,
                event_type=event_type,
                result=result,
                processed_at=datetime.now(timezone.utc).isoformat(),
            )
        )
        _EVENT_STORE.store([asdict(event) for event in events])


def reset_state_for_tests(*, path: Optional[Path] = None, max_items: Optional[int] = None) -> None:  # pragma: no cover - testing helper
    with _STATE_LOCK:
        _EVENT_STORE.reset(path=path, max_items=max_items)


__all__ = ["has_processed_webhook", "record_webhook_event", "reset_state_for_tests"]
