#!/usr/bin/env python3
"""localthumbs command line entry point.

Crawls the configured WebDAV tree once, waits for every job to finish and
prints a summary.
"""

import argparse
import logging
import sys
import threading
import uuid
from datetime import UTC, datetime

from localthumbs import create_scan_manager
from localthumbs.config import get_package_version, get_settings
from localthumbs.services.log_service import get_log_service
from localthumbs.services.scan_manager import ScanManager


def log(msg: str) -> None:
    print(msg, flush=True)


def _log_thread_fault(args: threading.ExceptHookArgs) -> None:
    """Log faults that escape a worker thread; the run carries on."""
    thread_name = args.thread.name if args.thread else "unknown"
    get_log_service().error(
        "app",
        "thread_fault",
        f"Unhandled error in thread {thread_name}: {args.exc_value}",
        {"thread": thread_name, "error": str(args.exc_value)},
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="localthumbs",
        description="Generate missing video thumbnails for a Nextcloud WebDAV tree.",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="ignore caches and re-process every video (caches are still written)",
    )
    parser.add_argument("--root", default="/", help="folder to start from (default: /)")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=1.0,
        help="seconds between idle checks while waiting for jobs",
    )
    return parser.parse_args(argv)


def run(manager: ScanManager, root: str = "/", poll_interval: float = 1.0) -> int:
    """Scan, drain the lanes, report. Returns the process exit code."""
    log_service = get_log_service()
    run_id = uuid.uuid4().hex[:8]
    exit_code = 0
    log_service.start_run(run_id)

    log_service.info(
        "app",
        "run_started",
        f"Run {run_id} started (v{get_package_version()})",
        {"run_id": run_id, "root": root, "force": manager.force},
    )
    try:
        manager.resolver.discover()
        manager.scan(root)
    except Exception as e:
        exit_code = 1
        log_service.error(
            "app",
            "run_failed",
            f"Fatal: {e}",
            {"run_id": run_id, "error": str(e), "type": type(e).__name__},
        )
    finally:
        manager.scheduler.wait_idle(poll_interval)
        manager.scheduler.shutdown()

    log("")
    for line in manager.stats.summary_lines():
        log(line)

    completed_at = datetime.now(UTC)
    summary = {
        "timestamp": completed_at.isoformat(),
        "event": "run_completed",
        "run_id": run_id,
        "exit_code": exit_code,
        **manager.stats.to_dict(),
    }
    log_service.info("app", "run_completed", f"Run {run_id} finished", summary)
    try:
        log_service.save_run_summary(run_id, summary, completed_at)
    except OSError:
        logging.getLogger(__name__).warning("Failed to save run summary", exc_info=True)
    return exit_code


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    threading.excepthook = _log_thread_fault

    settings = get_settings()
    if not settings.get("nc_url"):
        log("NC_URL is not configured. Set it in .env or settings.json.")
        return 2

    if args.force:
        log("!!! FORCE MODE ENABLED: Ignoring caches and re-processing all files !!!")
    log(f"API Base: {settings.api_base}")
    log(f"DAV Prefix: {settings.dav_path_prefix}")
    log(f"Max Video Size: {settings.max_video_size_mb} MB")

    settings.temp_dir.mkdir(parents=True, exist_ok=True)
    manager = create_scan_manager(settings, force=args.force)
    return run(manager, root=args.root, poll_interval=args.poll_interval)


if __name__ == "__main__":
    sys.exit(main())
