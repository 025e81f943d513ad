"""CLI to re-run reconciliation for audited Stripe webhook events."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Optional, Sequence

from scripts._path import add_root

add_root()

from core.env_utils import load_dotenv_if_available, require_env_vars  # noqa: E402

load_dotenv_if_available()

from core.logging import setup_logging  # noqa: E402
from services.billing.webhook_audit import read_recent_webhook_entries  # noqa: E402
from services.billing.webhook_replay import replay_stripe_webhook_event  # noqa: E402

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Replay audited Stripe webhook events.")
    sub = parser.add_subparsers(dest="command", required=True)

    recent = sub.add_parser("recent", help="List recent webhook audit entries.")
    recent.add_argument("--limit", type=int, default=20)
    recent.add_argument("--failed-only", action="store_true", help="Only show failed deliveries.")

    replay = sub.add_parser("replay", help="Re-run reconciliation for one or more event ids.")
    replay.add_argument("event_ids", nargs="+", metavar="EVENT_ID")
    return parser


def _format_entry(entry) -> str:
    context = entry.get("context") or {}
    return (
        f"{entry.get('loggedAt') or '-'} | {str(entry.get('result')):<22} "
        f"| {context.get('event_id') or '-'} | {context.get('event_type') or '-'} "
        f"| sub={context.get('subscription_id') or '-'} | {entry.get('message') or ''}"
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    setup_logging()
    args = _build_parser().parse_args(argv)

    if args.command == "recent":
        for entry in read_recent_webhook_entries(limit=args.limit):
            if args.failed_only and entry.get("result") not in {"resolution_failed", "processing_failed"}:
                continue
            print(_format_entry(entry))
        return 0

    require_env_vars(["STRIPE_SECRET_KEY"], context="replay_stripe_webhook")
    exit_code = 0
    for event_id in args.event_ids:
        try:
            result = replay_stripe_webhook_event(event_id)
        except ValueError as exc:
            logger.error("%s", exc)
            exit_code = 1
            continue
        print(json.dumps(result, ensure_ascii=False))
        if result.get("result") in {"resolution_failed", "processing_failed"}:
            exit_code = 1
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
