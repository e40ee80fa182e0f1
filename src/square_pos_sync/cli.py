#!/usr/bin/env python3
"""
Square POS Sync CLI

Usage:
    square-pos-sync test                  # Verify credentials
    square-pos-sync init-db               # Create schema and tables
    square-pos-sync sync                  # Sync every entity
    square-pos-sync sync payments orders  # Sync selected entities

Configuration comes from environment variables (or a .env file);
see config.load_config.

Exit codes: 0 success, 1 configuration error, 2 Square API error,
3 mapping or write failure.
"""

import argparse
import logging
import sys
from datetime import timedelta

import httpx
import structlog
from colorama import Fore, Style
from colorama import init as colorama_init

from square_pos_sync.client import SquareAPIError, SquareClient
from square_pos_sync.config import ConfigError, SyncConfig, load_config
from square_pos_sync.db import create_db_engine, ensure_schema
from square_pos_sync.row_mapper import PaymentMappingError
from square_pos_sync.sync import ALL_ENTITIES, SquarePosSync
from square_pos_sync.writer import UpsertError, UpsertWriter

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_API = 2
EXIT_SYNC = 3

GREEN = Fore.GREEN
RED = Fore.RED
YELLOW = Fore.YELLOW
BLUE = Fore.CYAN
RESET = Style.RESET_ALL
BOLD = Style.BRIGHT


def print_success(msg: str):
    print(f"{GREEN}✓ {msg}{RESET}")


def print_error(msg: str):
    print(f"{RED}✗ {msg}{RESET}", file=sys.stderr)


def print_warning(msg: str):
    print(f"{YELLOW}⚠ {msg}{RESET}")


def print_info(msg: str):
    print(f"{BLUE}ℹ {msg}{RESET}")


def configure_logging(level: str = "INFO") -> None:
    """Route structlog output to the console, filtered at ``level``."""
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        cache_logger_on_first_use=True,
    )


def _load(args) -> SyncConfig | None:
    try:
        config = load_config()
    except ConfigError as e:
        print_error(f"Configuration error: {e}")
        print_info("Required: TENANT_ID, SQUARE_ACCESS_TOKEN, DATABASE_URL")
        return None
    configure_logging(args.log_level or config.log_level)
    return config


def cmd_test(args) -> int:
    """Check the Square credentials."""
    config = _load(args)
    if config is None:
        return EXIT_CONFIG

    print_info(f"Connecting to {config.square.base_url} (API {config.square.api_version})...")

    with SquareClient(config.square) as client:
        result = client.health_check()

    if result["status"] == "healthy":
        print_success(f"Connected to merchant: {result.get('merchant', 'unknown')}")
        return EXIT_OK

    print_error(f"Connection failed: {result.get('message', 'Unknown error')}")
    return EXIT_API


def cmd_init_db(args) -> int:
    """Create the schema and tables."""
    config = _load(args)
    if config is None:
        return EXIT_CONFIG

    engine = create_db_engine(config.database)
    try:
        ensure_schema(engine, config.database.schema)
    finally:
        engine.dispose()

    print_success(f"Schema '{config.database.schema}' is ready")
    return EXIT_OK


def cmd_sync(args) -> int:
    """Run the selected entity syncs."""
    config = _load(args)
    if config is None:
        return EXIT_CONFIG

    entities = args.entities or list(ALL_ENTITIES)
    unknown = [e for e in entities if e not in ALL_ENTITIES]
    if unknown:
        print_error(f"Unknown entities: {', '.join(unknown)}")
        print_info(f"Choose from: {', '.join(ALL_ENTITIES)}")
        return EXIT_CONFIG
    lookback = config.lookback
    if args.lookback_hours is not None:
        if args.lookback_hours <= 0:
            print_error("--lookback-hours must be positive")
            return EXIT_CONFIG
        lookback = timedelta(hours=args.lookback_hours)

    print(f"{BOLD}Syncing {', '.join(entities)} for tenant {config.tenant.tenant_id}{RESET}\n")

    engine = create_db_engine(config.database)
    client = SquareClient(config.square)
    results = []

    try:
        with client:
            sync = SquarePosSync(client, UpsertWriter(engine, config.tenant), lookback=lookback)
            for entity in entities:
                results.extend(sync.run([entity]))
                last = results[-1]
                print_success(
                    f"{entity}: fetched {last.fetched}, prepared {last.prepared}, "
                    f"written {last.written}"
                )
    except SquareAPIError as e:
        print_error(f"Square API error: {e}")
        return EXIT_API
    except httpx.HTTPError as e:
        print_error(f"HTTP error while calling Square: {e}")
        return EXIT_API
    except (PaymentMappingError, UpsertError) as e:
        print_error(f"Sync failed: {e}")
        return EXIT_SYNC
    finally:
        engine.dispose()
        stats = client.get_stats()
        print(
            f"\n{BLUE}API requests: {stats['request_count']} | "
            f"errors: {stats['error_count']} | "
            f"rate limited: {stats['rate_limited_count']}{RESET}"
        )

    skipped = sum(r.skipped for r in results)
    if skipped:
        print_warning(f"{skipped} record(s) skipped during mapping (see log)")
    print(f"\n{GREEN}Sync complete!{RESET}")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="square-pos-sync",
        description="Sync Square POS data into a multi-tenant store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  square-pos-sync test                  Verify credentials
  square-pos-sync init-db               Create schema and tables
  square-pos-sync sync                  Sync every entity
  square-pos-sync sync payments orders  Sync payments and order items
        """,
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("test", help="Verify Square credentials")
    subparsers.add_parser("init-db", help="Create schema and tables")

    sync_parser = subparsers.add_parser("sync", help="Sync entities from Square")
    sync_parser.add_argument(
        "entities",
        nargs="*",
        metavar="ENTITY",
        help=f"Entities to sync ({', '.join(ALL_ENTITIES)}); default: all",
    )
    sync_parser.add_argument(
        "--lookback-hours",
        type=float,
        default=None,
        help="Window for payments and orders (overrides SYNC_LOOKBACK_HOURS)",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    colorama_init()
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_OK

    commands = {
        "test": cmd_test,
        "init-db": cmd_init_db,
        "sync": cmd_sync,
    }

    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
