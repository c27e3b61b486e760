"""
Command line entry point for Bakehouse.

Commands:
    init-db           Create the database and tables
    serve-public      Run the public read API (uvicorn)
    sync              Run the external store sync once or continuously
    generate-slots    Create bake slots for a date range
    rebuild-catalog   Queue every published record for a full republish
"""

import argparse
import asyncio
import logging
import logging.handlers
import signal
import sys
from datetime import date
from typing import List, Optional

from bakehouse.services.database import close_connections, initialize_app_database
from bakehouse.services.exceptions import ConfigMissing, ServiceError
from bakehouse.utils.config import BusinessSettings, SyncSettings, get_config
from bakehouse.utils.datetime_utils import parse_iso_date

logger = logging.getLogger("bakehouse")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(verbose: bool = False) -> None:
    """Console logging plus a rotating log file in the data directory."""
    config = get_config()
    level = logging.DEBUG if verbose else logging.INFO

    root = logging.getLogger()
    root.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    file_handler = logging.handlers.RotatingFileHandler(
        config.log_path, maxBytes=2 * 1024 * 1024, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)


def _weekdays(value: str) -> List[int]:
    try:
        return [int(part) for part in value.split(",") if part.strip()]
    except ValueError:
        raise argparse.ArgumentTypeError("weekdays must be comma separated numbers 0-6")


def _date(value: str) -> date:
    try:
        return parse_iso_date(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a YYYY-MM-DD date: {value}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bakehouse", description=__doc__.splitlines()[1])
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    init_db = commands.add_parser("init-db", help="create the database and tables")
    init_db.add_argument(
        "--reset", action="store_true", help="drop every table first (deletes all data)"
    )

    serve = commands.add_parser("serve-public", help="run the public read API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    sync = commands.add_parser("sync", help="sync with the external store")
    mode = sync.add_mutually_exclusive_group()
    mode.add_argument("--once", action="store_true", help="run a single pass (default)")
    mode.add_argument("--loop", action="store_true", help="keep syncing until interrupted")

    generate = commands.add_parser("generate-slots", help="create bake slots")
    generate.add_argument("--start", type=_date, required=True)
    generate.add_argument("--end", type=_date, required=True)
    generate.add_argument(
        "--weekdays", type=_weekdays, required=True, help="e.g. 4,5 for Friday and Saturday"
    )
    generate.add_argument("--location", type=int, action="append", required=True)
    generate.add_argument("--capacity", type=int, required=True)
    generate.add_argument("--cutoff-hours", type=int, default=None)

    commands.add_parser("rebuild-catalog", help="republish every location, flavor and slot")
    return parser


async def _run_sync(loop_forever: bool) -> int:
    from bakehouse.services.health_service import HealthCheckService
    from bakehouse.services.sync.bridge import SyncBridge

    bridge = SyncBridge.from_config(
        settings=SyncSettings.from_env(), business_settings=BusinessSettings.from_env()
    )
    if not loop_forever:
        try:
            result = await bridge.sync_once()
        finally:
            await bridge.stop()
        print(
            f"published={result.published_rows} accepted={result.accepted} "
            f"rejected={result.rejected} duplicates={result.duplicates}"
        )
        if not result.ok:
            print(f"sync failed: {result.error}", file=sys.stderr)
            return 1
        return 0

    health = HealthCheckService(health_file=get_config().health_file, sync_status=bridge.status)
    stop_requested = asyncio.Event()
    running_loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            running_loop.add_signal_handler(sig, stop_requested.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still raises
            pass

    health.start()
    await bridge.start()
    try:
        await stop_requested.wait()
    finally:
        await bridge.stop()
        health.stop()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    try:
        if args.command == "init-db":
            initialize_app_database(reset=args.reset)
            print(f"Database ready at {get_config().database_path}")
            return 0

        if args.command == "serve-public":
            import uvicorn

            uvicorn.run("bakehouse.api.public_app:app", host=args.host, port=args.port)
            return 0

        initialize_app_database()

        if args.command == "sync":
            return asyncio.run(_run_sync(loop_forever=args.loop))

        if args.command == "generate-slots":
            from bakehouse.services import bake_slot_service

            slots = bake_slot_service.generate_slots(
                args.start,
                args.end,
                args.weekdays,
                args.location,
                args.capacity,
                cutoff_hours=args.cutoff_hours,
                settings=BusinessSettings.from_env(),
            )
            print(f"Created {len(slots)} bake slot(s)")
            return 0

        if args.command == "rebuild-catalog":
            from bakehouse.services.sync import publisher

            count = publisher.enqueue_full_catalog()
            print(f"Queued {count} record(s) for publishing")
            return 0
    except ConfigMissing as e:
        print(f"ERROR: {e}", file=sys.stderr)
        print(
            "Set GOOGLE_SHEETS_CREDENTIALS and GOOGLE_SHEETS_SPREADSHEET_ID, "
            f"or create {get_config().google_config_path}",
            file=sys.stderr,
        )
        return 2
    except ServiceError as e:
        print(f"ERROR [{e.code}]: {e}", file=sys.stderr)
        return 1
    finally:
        close_connections()

    return 1


if __name__ == "__main__":
    sys.exit(main())
