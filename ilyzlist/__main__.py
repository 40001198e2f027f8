"""Command-line entry point: run the API server or the quota reset job."""
from __future__ import annotations

import argparse
from typing import Sequence

import uvicorn

from ilyzlist.core.database import init_database, session_scope
from ilyzlist.core.logging import setup_logging
from ilyzlist.core.settings import get_settings
from ilyzlist.services.quota import QuotaService


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ilyzlist")
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="run the HTTP API")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)

    reset = commands.add_parser("reset-quotas", help="refill analysis quotas from the plan catalog")
    reset.add_argument(
        "--due-only",
        action="store_true",
        default=None,
        help="only refill profiles whose quota cycle has ended",
    )
    return parser


def reset_quotas(due_only: bool | None = None) -> int:
    setup_logging()
    init_database()
    effective = get_settings().quota_reset_due_only if due_only is None else due_only
    with session_scope() as db:
        return QuotaService().reset_all_quotas(db, due_only=effective)


def main(argv: Sequence[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    if args.command == "serve":
        uvicorn.run("ilyzlist.api.main:create_app", factory=True, host=args.host, port=args.port)
        return
    updated = reset_quotas(args.due_only)
    print(f"reset {updated} profiles")


if __name__ == "__main__":
    main()
