# src/main.py — v1
"""CLI entry point: scan, status and audit commands.

Usage:
    mediaindex scan [--force] [--incremental] [--user USER] [--json]
    mediaindex status
    mediaindex audit [--limit N]

Exit codes: 0 success, 1 failure, 2 scan lock held by another session,
130 interrupted (SIGINT/SIGTERM).
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Callable

from mediaindex.config.settings import ConfigurationError, Settings
from mediaindex.core.errors import MediaIndexError
from mediaindex.logging.logger import setup_logging
from mediaindex.version import __version__

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_LOCKED = 2
EXIT_INTERRUPTED = 130


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return EXIT_FAILED

    try:
        settings = Settings()
    except (ConfigurationError, ValueError) as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return EXIT_FAILED

    setup_logging(
        level="DEBUG" if args.verbose else settings.log_level,
        log_format=settings.log_format,
        log_file=settings.log_file,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    try:
        return asyncio.run(args.func(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return EXIT_INTERRUPTED
    except MediaIndexError as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return EXIT_FAILED


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mediaindex",
        description=f"mediaindex v{__version__} - media library discovery and scanning",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command")

    # --- scan ---
    p_scan = subparsers.add_parser("scan", help="Run one discovery and scan cycle")
    p_scan.add_argument(
        "--force", action="store_true",
        help="Rediscover the whole tree and rescan every page",
    )
    p_scan.add_argument(
        "--incremental", action="store_true",
        help="Diff the tree against the last baseline instead of skipping discovery",
    )
    p_scan.add_argument("--user", default=None, help="User id recorded on the session")
    p_scan.add_argument("--json", action="store_true", help="Print the run result as JSON")
    p_scan.set_defaults(func=_cmd_scan)

    # --- status ---
    p_status = subparsers.add_parser("status", help="Show checkpoints and the lock holder")
    p_status.set_defaults(func=_cmd_status)

    # --- audit ---
    p_audit = subparsers.add_parser("audit", help="Show the discovery audit log")
    p_audit.add_argument("--limit", type=int, default=20, help="Entries to show (default: 20)")
    p_audit.set_defaults(func=_cmd_audit)

    return parser


def _install_signal_handlers(stop: Callable[[], None]) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform; KeyboardInterrupt still ends the run.
            logger.debug("Signal handler for %s not installed", sig)


async def _cmd_scan(args: argparse.Namespace, settings: Settings) -> int:
    from mediaindex.api.facade import build_orchestrator

    app = build_orchestrator(settings)
    orchestrator = app.orchestrator
    interrupted = False
    stop_tasks: list[asyncio.Task] = []

    def request_stop() -> None:
        nonlocal interrupted
        if interrupted:
            return
        interrupted = True
        logger.info("Signal received, stopping scan")
        stop_tasks.append(asyncio.ensure_future(orchestrator.stop("interrupted")))

    _install_signal_handlers(request_stop)
    try:
        result = await orchestrator.start(
            force_rescan=args.force,
            discovery_type="incremental" if args.incremental else None,
            user_id=args.user or settings.session_user_id,
        )
        if stop_tasks:
            await asyncio.gather(*stop_tasks)
    finally:
        await app.close()

    if args.json:
        print(result.model_dump_json(indent=2))
    else:
        _print_result_summary(result)

    if result.lock_conflict:
        return EXIT_LOCKED
    if interrupted:
        return EXIT_INTERRUPTED
    return EXIT_OK if result.success else EXIT_FAILED


async def _cmd_status(args: argparse.Namespace, settings: Settings) -> int:
    from mediaindex.api.facade import scan_status

    print(json.dumps(await scan_status(settings), indent=2))
    return EXIT_OK


async def _cmd_audit(args: argparse.Namespace, settings: Settings) -> int:
    from mediaindex.api.facade import audit_log

    entries = await audit_log(settings, limit=args.limit)
    if not entries:
        print("No audit entries.")
        return EXIT_OK
    for entry in entries:
        print(
            f"{entry.timestamp}  {entry.session_id}  {entry.discovery_type:<11s} "
            f"discovery={entry.discovery_status} scanning={entry.scanning_status} "
            f"pages={entry.total_pages} failed={entry.failed_pages} media={entry.total_media}"
        )
    return EXIT_OK


def _print_result_summary(result: object) -> None:
    print(f"\nScan {result.state.value}:")
    print(f"  Session:      {result.session_id}")
    if result.lock_conflict:
        print(f"  Lock:         {result.error}")
        return
    print(f"  Discovery:    {result.discovery_type}{' (skipped)' if result.discovery_skipped else ''}")
    if result.scan:
        print(f"  Scanned:      {result.scan.get('scanned', 0)}/{result.scan.get('total', 0)}")
        print(f"  Failed:       {result.scan.get('failed', 0)}")
        print(f"  Media:        {result.scan.get('total_media', 0)}")
    if result.upload:
        print(
            f"  Uploads:      {result.upload.get('uploaded_batches', 0)}"
            f"/{result.upload.get('total_batches', 0)} batches"
        )
    if result.error:
        print(f"  Error:        {result.error}")


if __name__ == "__main__":
    sys.exit(main())
