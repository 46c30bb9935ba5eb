#!/usr/bin/env python3
"""
Watch dashboard resources against a live database.

Registers one resource per table, subscribes to change notifications and
logs every update the sync layer delivers.
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from fleet_sync import ResourceDefinition, Snapshot, SyncConfig, SyncContext
from fleet_sync.storage.notifications import trigger_sql
from fleet_sync.utils.logging import get_logger, setup_logging


logger = get_logger("watch-resources")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Watch cached dashboard resources")
    parser.add_argument("tables", nargs="+", help="Tables or views to watch")
    parser.add_argument("--order-by", default=None, help="Column to order rows by")
    parser.add_argument("--id-field", default=None, help="Primary key column (defaults to FLEET_SYNC_ID_FIELD)")
    parser.add_argument("--no-realtime", action="store_true", help="Poll instead of listening")
    parser.add_argument("--print-triggers", action="store_true",
                        help="Print the notify trigger SQL for each table and exit")
    return parser.parse_args()


def log_snapshot(snapshot: Snapshot) -> None:
    logger.info(
        "Resource updated",
        resource_key=snapshot.key,
        rows=len(snapshot.data) if snapshot.data is not None else None,
        is_stale=snapshot.is_stale,
        error=str(snapshot.error) if snapshot.error else None,
    )


async def watch(args: argparse.Namespace) -> None:
    config = SyncConfig.from_env()
    if args.no_realtime:
        config.realtime.enabled = False

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    async with SyncContext.from_config(config) as context:
        for table in args.tables:
            context.register(ResourceDefinition(
                key=table,
                table=table,
                order_by=args.order_by,
                id_field=args.id_field or config.cache.default_id_field,
            ))
            handle = await context.use_resource(table)
            handle.subscribe(log_snapshot)

        logger.info("Watching resources", tables=args.tables, realtime=config.realtime.enabled)
        await stop.wait()


def main() -> None:
    args = parse_args()
    config = SyncConfig.from_env()

    if args.print_triggers:
        for table in args.tables:
            print(trigger_sql(table, config.realtime.channel_prefix))
        return

    setup_logging(config.service_name, config.observability.log_level, config.observability.log_format)
    asyncio.run(watch(args))


if __name__ == "__main__":
    main()
