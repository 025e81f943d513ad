"""Audit trail for received Stripe webhooks (JSONL file plus database table)."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Type, TYPE_CHECKING, cast

from core.env import env_str

if TYPE_CHECKING:  # pragma: no cover - for type checkers only
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

_AUDIT_LOG_PATH = Path(env_str("STRIPE_WEBHOOK_AUDIT_PATH") or Path("uploads") / "billing" / "stripe_webhook_audit.jsonl")
_MAX_PERSISTED_ENTRIES = 1000

try:  # pragma: no cover - file-only audit when the database is not configured
    from database import SessionLocal as _SessionLocal
    from models.billing import StripeWebhookEventLog as _StripeWebhookEventLog
    from sqlalchemy.exc import SQLAlchemyError as _SQLAlchemyError
except Exception:  # pragma: no cover
    _SessionLocal = None
    _StripeWebhookEventLog = None
    _SQLAlchemyError = Exception

SessionFactory = cast(Optional[Callable[[], "Session"]], _SessionLocal)
StripeWebhookEventLogModel = cast(Optional[Type[Any]], _StripeWebhookEventLog)
SQLAlchemyError = cast(Type[Exception], _SQLAlchemyError)


def append_webhook_audit_entry(
    *,
    result: str,
    context: Dict[str, Any],
    payload: Optional[Dict[str, Any]] = None,
    message: Optional[str] = None,
) -> None:
    """Record the handling result of one delivery in the audit file and, when possible, the database."""
    entry = {
        "loggedAt": datetime.now(timezone.utc).isoformat(),
        "result": result,
        "message": message,
        "context": context,
        "payload": payload,
    }

    _persist_to_db(result=result, context=context, payload=payload, message=message)

    try:
        path = _AUDIT_LOG_PATH
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as fp:
            fp.write(json.dumps(entry, ensure_ascii=False, default=str))
            fp.write("\n")
    except OSError as exc:  # pragma: no cover
        logger.error("Failed to write Stripe webhook audit file: %s", exc)
        return

    _truncate_audit_log()


def read_recent_webhook_entries(limit: int = 100) -> Iterable[Dict[str, Any]]:
    """Newest-first audit entries."""
    db_entries = _fetch_recent_from_db(limit)
    if db_entries is not None:
        return db_entries
    return list(reversed(_read_file_entries()))[:limit]


def load_webhook_payload(event_id: str) -> Optional[Dict[str, Any]]:
    """Latest audited event payload for ``event_id``, or None."""
    if not event_id:
        return None
    payload = _load_payload_from_db(event_id)
    if payload is not None:
        return payload
    for entry in reversed(_read_file_entries()):
        context = entry.get("context") or {}
        if context.get("event_id") == event_id and isinstance(entry.get("payload"), dict):
            return entry["payload"]
    return None


def _read_file_entries() -> List[Dict[str, Any]]:
    path = _AUDIT_LOG_PATH
    if not path.exists():
        return []
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError as exc:  # pragma: no cover
        logger.error("Failed to read Stripe webhook audit file: %s", exc)
        return []

    entries: List[Dict[str, Any]] = []
    for line in lines:
        try:
            entries.append(json.loads(line))
        except json.JSONDecodeError:
            continue
    return entries


def _truncate_audit_log() -> None:
    path = _AUDIT_LOG_PATH
    if not path.exists():
        return

    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return

    if len(lines) <= _MAX_PERSISTED_ENTRIES:
        return

    try:
        path.write_text("\n".join(lines[-_MAX_PERSISTED_ENTRIES:]) + "\n", encoding="utf-8")
    except OSError as exc:  # pragma: no cover
        logger.error("Failed to truncate Stripe webhook audit file: %s", exc)


def _persist_to_db(
    *,
    result: str,
    context: Dict[str, Any],
    payload: Optional[Dict[str, Any]],
    message: Optional[str],
) -> None:
    if SessionFactory is None or StripeWebhookEventLogModel is None:  # pragma: no cover
        return

    try:
        session = SessionFactory()
    except Exception as exc:  # pragma: no cover
        logger.debug("Stripe webhook audit session unavailable: %s", exc)
        return

    try:
        session.add(
            StripeWebhookEventLogModel(
                event_id=context.get("event_id"),
                event_type=context.get("event_type"),
                customer_id=context.get("customer_id"),
                subscription_id=context.get("subscription_id"),
                result=result,
                message=message,
                context=context,
                payload=payload,
            )
        )
        session.commit()
    except SQLAlchemyError as exc:  # pragma: no cover
        session.rollback()
        logger.error("Failed to store Stripe webhook audit row: %s", exc)
    finally:
        session.close()


def _fetch_recent_from_db(limit: int) -> Optional[List[Dict[str, Any]]]:
    if SessionFactory is None or StripeWebhookEventLogModel is None:  # pragma: no cover
        return None

    session = SessionFactory()
    try:
        rows = (
            session.query(StripeWebhookEventLogModel)
            .order_by(StripeWebhookEventLogModel.created_at.desc())
            .limit(limit)
            .all()
        )
    except SQLAlchemyError:  # pragma: no cover
        return None
    finally:
        session.close()

    return [
        {
            "loggedAt": row.created_at.isoformat() if getattr(row, "created_at", None) else None,
            "result": row.result,
            "message": row.message,
            "context": row.context or {},
            "payload": row.payload,
        }
        for row in rows
    ]


def _load_payload_from_db(event_id: str) -> Optional[Dict[str, Any]]:
    if SessionFactory is None or StripeWebhookEventLogModel is None:  # pragma: no cover
        return None

    session = SessionFactory()
    try:
        rows = (
            session.query(StripeWebhookEventLogModel)
            .filter(StripeWebhookEventLogModel.event_id == event_id)
            .order_by(StripeWebhookEventLogModel.created_at.desc())
            .limit(20)
            .all()
        )
    except SQLAlchemyError:  # pragma: no cover
        return None
    finally:
        session.close()
    for row in rows:
        if isinstance(row.payload, dict):
            return row.payload
    return None


__all__ = ["append_webhook_audit_entry", "load_webhook_payload", "read_recent_webhook_entries"]
