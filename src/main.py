"""Command-line entry point for the disc pack service."""

from __future__ import annotations

import argparse
import logging
from datetime import timedelta
from typing import Sequence

from discpack import DiscPackSettings, PackProvisioner, sweep_inactive_tokens


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Custom disc pack service")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: INFO).",
    )
    subcommands = parser.add_subparsers(dest="command", required=True)

    serve = subcommands.add_parser("serve", help="Run the HTTP API.")
    serve.add_argument(
        "--host",
        default="0.0.0.0",
        help="Host interface the API server should bind to.",
    )
    serve.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port where the API server should listen.",
    )

    sweep = subcommands.add_parser(
        "sweep",
        help="Delete packs and tokens of servers inactive past the retention window.",
    )
    sweep.add_argument(
        "--retention-days",
        type=int,
        help="Override DISCPACK_RETENTION_DAYS for this run.",
    )

    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = DiscPackSettings.from_env()
    except ValueError as exc:
        print(f"Invalid configuration: {exc}")
        return 2

    if args.command == "serve":
        import uvicorn

        from discpack.api import create_app

        uvicorn.run(create_app(settings), host=args.host, port=args.port)
        return 0

    retention_days = (
        args.retention_days
        if args.retention_days is not None
        else settings.retention_days
    )
    if retention_days < 1:
        print("--retention-days must be greater than zero.")
        return 2

    try:
        provisioner = PackProvisioner.from_settings(settings)
    except ValueError as exc:
        print(f"Invalid configuration: {exc}")
        return 2

    report = sweep_inactive_tokens(
        provisioner.registry,
        provisioner.store,
        provisioner.ledger,
        retention=timedelta(days=retention_days),
    )
    print(
        f"Removed {len(report.removed)} inactive tokens "
        f"({report.reclaimed_bytes} bytes reclaimed, {len(report.failed)} failed)."
    )
    return 1 if report.failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
