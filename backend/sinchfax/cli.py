#!/usr/bin/env python3
"""
Sinch Fax command line

Usage:
    sinchfax poll-incoming      Poll Sinch for new incoming faxes
    sinchfax refresh-status     Refresh status of in-flight faxes

Meant to be run from cron or another scheduler; exit status 0 on success
(including "no new faxes"), 1 on failure or when the module is disabled.
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence

from dotenv import load_dotenv

from sinchfax.config import FaxConfig, get_last_poll_time
from sinchfax.database.db import init_models, make_engine, make_session_factory, session_scope
from sinchfax.services.fax_service import FaxService

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1


async def poll_incoming(config: FaxConfig, session_factory) -> int:
    if not config.enabled:
        print("[ERROR] Sinch Fax module is not enabled")
        return EXIT_FAILURE

    if not config.incoming_polling_enabled:
        print("[WARNING] Incoming fax polling is not enabled in configuration")
        return EXIT_SUCCESS

    print("Polling for Incoming Faxes")
    print("Querying Sinch API for incoming faxes...")

    try:
        async with session_scope(session_factory) as db:
            service = FaxService(config, db)
            new_fax_count = await service.poll_incoming_faxes()
            last_poll_time = await get_last_poll_time(db)
    except Exception as e:
        logger.debug("Poll failed", exc_info=True)
        print(f"[ERROR] Error polling for incoming faxes: {e}")
        return EXIT_FAILURE

    if new_fax_count == 0:
        print("[OK] No new incoming faxes found")
    else:
        print(f"[OK] Processed {new_fax_count} new incoming fax(es)")
    print(f"Last poll time: {last_poll_time or 'Never'}")
    return EXIT_SUCCESS


async def refresh_status(config: FaxConfig, session_factory, limit: int) -> int:
    if not config.enabled:
        print("[ERROR] Sinch Fax module is not enabled")
        return EXIT_FAILURE

    try:
        async with session_scope(session_factory) as db:
            updated = await FaxService(config, db).refresh_in_flight(limit=limit)
    except Exception as e:
        print(f"[ERROR] Error refreshing fax status: {e}")
        return EXIT_FAILURE

    print(f"[OK] Updated {updated} fax(es)")
    return EXIT_SUCCESS


async def run(args: argparse.Namespace, config: FaxConfig) -> int:
    engine = make_engine(config.database_url)
    try:
        await init_models(engine)
        session_factory = make_session_factory(engine)
        if args.command == "poll-incoming":
            return await poll_incoming(config, session_factory)
        return await refresh_status(config, session_factory, args.limit)
    finally:
        await engine.dispose()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sinchfax", description="Sinch Fax maintenance commands")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subcommands = parser.add_subparsers(dest="command", required=True)

    subcommands.add_parser(
        "poll-incoming",
        help="Poll Sinch API for new incoming faxes",
        description="Polls the Sinch API for new incoming faxes and saves them to the database.",
    )

    refresh = subcommands.add_parser("refresh-status", help="Refresh status of in-flight faxes")
    refresh.add_argument("--limit", type=int, default=50, help="How many recent faxes to check")
    return parser


def main(argv: Optional[Sequence[str]] = None, config: Optional[FaxConfig] = None) -> int:
    """Main entry point."""
    load_dotenv()
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    return asyncio.run(run(args, config or FaxConfig.from_env()))


if __name__ == "__main__":
    sys.exit(main())
