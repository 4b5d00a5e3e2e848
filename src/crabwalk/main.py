"""
main.py — Crabwalk Entry Point

Usage:
    python -m crabwalk                          # live monitor (watch)
    python -m crabwalk sessions                 # session table, then exit
    python -m crabwalk layout --direction TB    # graph positions as JSON
    python -m crabwalk --historical             # last 24 h instead of 60 min
    python -m crabwalk --record events.json     # collect raw events, export on exit
    python -m crabwalk --debug                  # log every raw event
    python -m crabwalk --url ws://host:18789 --token tok123
    python -m crabwalk --config path/to/config.yaml
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from dotenv import load_dotenv


def _find_env_file() -> Path | None:
    """Walk up from CWD looking for .env file."""
    cwd = Path.cwd()
    for d in [cwd, *cwd.parents]:
        candidate = d / ".env"
        if candidate.is_file():
            return candidate
    return None


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="crabwalk",
        description="Crabwalk — real-time monitor for Clawdbot agent gateways",
    )
    parser.add_argument(
        "command",
        nargs="?",
        choices=["watch", "sessions", "layout"],
        default="watch",
        help=(
            "'watch' — live dashboard (default). "
            "'sessions' — print the session table and exit. "
            "'layout' — print graph node positions as JSON and exit."
        ),
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $CRABWALK_CONFIG or config/config.yaml)",
    )
    parser.add_argument(
        "--url",
        default=None,
        help="Gateway WebSocket URL (default: $CLAWDBOT_URL or ws://127.0.0.1:18789)",
    )
    parser.add_argument(
        "--token",
        default=None,
        help="Gateway API token (default: $CLAWDBOT_API_TOKEN)",
    )
    parser.add_argument(
        "--historical",
        action="store_true",
        default=False,
        help="Load sessions active in the last 24 h instead of the last 60 min",
    )
    parser.add_argument(
        "--direction",
        choices=["TB", "LR", "BT", "RL"],
        default=None,
        help="Layout direction for 'layout' (default: from config)",
    )
    parser.add_argument(
        "--record",
        metavar="PATH",
        default=None,
        help="Collect raw gateway events during 'watch' and write them to PATH as JSON",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Log every raw gateway event (implies --log-level DEBUG)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )
    return parser.parse_args(argv)


def bootstrap(args: argparse.Namespace):
    """
    Load config, validate it fully, and set up logging.
    Returns (settings, log) ready for use.

    Exits with code 1 (after printing a clear message) if:
      - config.yaml or the environment has invalid values (ValidationError)
      - cross-field problems are found (ConfigError from validate_all())
    """
    from pydantic import ValidationError

    from crabwalk.config.settings import ConfigError, load_settings
    from crabwalk.observability.logger import get_logger, setup_logging

    # CLI flags override .env and config.yaml
    if args.url:
        os.environ["CLAWDBOT_URL"] = args.url
    if args.token:
        os.environ["CLAWDBOT_API_TOKEN"] = args.token

    # -- Load and parse -------------------------------------------------------
    try:
        settings = load_settings(args.config)
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {e['loc'][-1] if e['loc'] else '?'}: {e['msg']}"
            for e in exc.errors()
        )
        print(
            f"\n❌  Config validation failed:\n\n{problems}\n\n"
            f"    Fix config/config.yaml or your .env file and restart.\n",
            file=sys.stderr,
        )
        sys.exit(1)
    except (OSError, ValueError) as exc:
        print(
            f"\n❌  Failed to load config: {type(exc).__name__}: {exc}\n",
            file=sys.stderr,
        )
        sys.exit(1)

    # -- Cross-field validation -----------------------------------------------
    try:
        settings.validate_all()
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    # -- Logging --------------------------------------------------------------
    log_level = "DEBUG" if args.debug else (args.log_level or settings.log_level)

    setup_logging(
        level=log_level,
        log_dir=settings.log_dir,
        json_format=settings.logging.json_format,
        console_output=settings.logging.console_output,
        max_bytes=settings.logging.max_file_size_mb * 1024 * 1024,
        backup_count=settings.logging.backup_count,
    )

    log = get_logger("crabwalk.main")
    return settings, log


async def main(argv: list[str] | None = None) -> int:
    env_path = _find_env_file()
    if env_path:
        load_dotenv(dotenv_path=env_path)

    args = parse_args(argv)
    settings, log = bootstrap(args)

    from crabwalk.interfaces.monitor_cli import run_layout, run_sessions, run_watch

    log.info(
        "crabwalk.starting",
        command=args.command,
        url=settings.gateway_url,
        historical=args.historical,
        authenticated=settings.gateway_token is not None,
    )

    if args.command == "sessions":
        return await run_sessions(settings, historical=args.historical)
    if args.command == "layout":
        return await run_layout(settings, historical=args.historical, direction=args.direction)
    return await run_watch(
        settings,
        historical=args.historical,
        record_path=args.record,
        debug=args.debug,
    )
