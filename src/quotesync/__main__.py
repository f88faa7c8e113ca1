"""
Main entrypoint: runs the sync engine as a host process.

Usage:
    python -m quotesync                 # scheduled sync until Ctrl+C
    python -m quotesync once            # single sync, result as JSON
    python -m quotesync history -n 10   # recent runs as JSON
    python -m quotesync serve           # HTTP status/trigger surface on :8000
"""
import argparse
import asyncio
import json
import logging
import sys

from quotesync.config import get_settings

logger = logging.getLogger(__name__)


async def _run_scheduled() -> None:
    from quotesync.sync.manager import SyncManager

    settings = get_settings()
    manager = SyncManager(settings)
    if not manager.initialize():
        sys.exit(1)

    manager.start_scheduled_sync(settings.sync_interval_minutes)
    logger.info("Sync engine running. Press Ctrl+C to stop.")
    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit, asyncio.CancelledError):
        logger.info("Shutting down...")
    finally:
        manager.cleanup()


async def _run_once() -> int:
    from quotesync.sync.manager import SyncManager

    manager = SyncManager()
    try:
        result = await manager.sync()
    finally:
        manager.cleanup()
    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.success else 1


def _show_history(limit: int) -> None:
    from quotesync.sync.manager import SyncManager

    manager = SyncManager()
    if not manager.initialize():
        sys.exit(1)
    runs = manager.get_sync_history(limit)
    print(json.dumps([run.model_dump(mode="json") for run in runs], indent=2))
    manager.cleanup()


def _serve(host: str, port: int) -> None:
    import uvicorn

    uvicorn.run("quotesync.api.main:app", host=host, port=port)


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(prog="quotesync", description=__doc__.splitlines()[1])
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("run", help="scheduled sync until interrupted (default)")
    sub.add_parser("once", help="run a single sync")
    history = sub.add_parser("history", help="show recent sync runs")
    history.add_argument("-n", "--limit", type=int, default=20)
    serve = sub.add_parser("serve", help="run the HTTP API (scheduler included)")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    if args.command == "once":
        sys.exit(asyncio.run(_run_once()))
    elif args.command == "history":
        _show_history(args.limit)
    elif args.command == "serve":
        _serve(args.host, args.port)
    else:
        try:
            asyncio.run(_run_scheduled())
        except KeyboardInterrupt:
            pass


if __name__ == "__main__":
    main()
