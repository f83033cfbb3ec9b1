"""Command line entry point for one-shot FxBolivar operations.

Designed for cron/scheduler use: ``fx-bolivar evaluate`` every few minutes
drives change alerts and the morning digest, ``fx-bolivar purge`` once a day
keeps history inside its one-year retention.
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Callable, Sequence

from fx_bolivar import FxBolivar
from fx_bolivar.config import Settings
from fx_bolivar.errors import ConfigurationError, FxBolivarError
from fx_bolivar.utils.logger import get_logger

LOGGER = get_logger(__name__)

__all__ = ["build_parser", "parse_args", "run", "main"]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fx-bolivar", description=__doc__)
    parser.add_argument(
        "--db-url",
        dest="db_url",
        help="Database URL (defaults to FX_BOLIVAR_DB_URL or the bundled SQLite file)",
    )
    subcommands = parser.add_subparsers(dest="command", required=True)

    subcommands.add_parser("rates", help="Print the current snapshot (cached when fresh)")
    subcommands.add_parser("refresh", help="Bypass the cache and aggregate again")
    subcommands.add_parser("diagnose", help="Run each rate source once and report its outcome")

    history = subcommands.add_parser("history", help="Print the daily rate history")
    history.add_argument("--days", type=int, default=30, help="Number of trailing days")

    subcommands.add_parser("evaluate", help="Run one change-notification evaluation")
    subcommands.add_parser("purge", help="Delete history older than one year")

    subscribe = subcommands.add_parser("subscribe", help="Add or reactivate a Telegram chat")
    subscribe.add_argument("chat_id")
    subscribe.add_argument("--username")

    unsubscribe = subcommands.add_parser("unsubscribe", help="Deactivate a Telegram chat")
    unsubscribe.add_argument("chat_id")

    status = subcommands.add_parser("status", help="Report whether a chat is subscribed")
    status.add_argument("chat_id")
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


_COMMANDS: dict[str, Callable[[FxBolivar, argparse.Namespace], Any]] = {
    "rates": lambda client, _args: client.current_rates(),
    "refresh": lambda client, _args: client.force_refresh(),
    "diagnose": lambda client, _args: client.diagnose(),
    "history": lambda client, args: client.historical(args.days),
    "evaluate": lambda client, _args: client.evaluate_notifications(),
    "purge": lambda client, _args: client.purge_history(),
    "subscribe": lambda client, args: client.subscribe(args.chat_id, args.username),
    "unsubscribe": lambda client, args: client.unsubscribe(args.chat_id),
    "status": lambda client, args: client.subscription_status(args.chat_id),
}


def run(args: argparse.Namespace, client: FxBolivar | None = None) -> int:
    """Execute ``args.command`` and print its JSON payload; return an exit code."""

    owns_client = client is None
    if client is None:
        try:
            settings = Settings.from_env()
        except ConfigurationError as exc:
            print(json.dumps({"error": str(exc)}), file=sys.stderr)
            return 2
        client = FxBolivar(settings, db_config=args.db_url or settings.db_url)
    try:
        payload = _COMMANDS[args.command](client, args)
    except (FxBolivarError, ValueError) as exc:
        body, status = FxBolivar.error_payload(exc)
        LOGGER.error("%s failed with status %s: %s", args.command, status, body["error"])
        print(json.dumps(body, ensure_ascii=False), file=sys.stderr)
        return 1
    finally:
        if owns_client:
            client.close()
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    return run(parse_args(argv))


if __name__ == "__main__":
    raise SystemExit(main())
