#!/usr/bin/env python3
"""
Venue Safety Assessment - Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
One executable for the whole service.

- serve        run the HTTP API under uvicorn
- sweep        recompute stale assessments once and exit
- invalidate   expire every cached assessment of a venue
- init-db      create the tables the engine reads and writes

The sweep is meant to be driven by cron or PM2; the API
process never schedules it on its own.

============================================================
USAGE
============================================================
    python app.py serve
    python app.py sweep
    python app.py invalidate venue-123
    LOG_LEVEL=DEBUG LOG_FORMAT=text python app.py serve

Environment:
    DATABASE_URL           PostgreSQL connection string
    SAFETY_API_HOST        bind address (default 0.0.0.0)
    SAFETY_API_PORT        bind port (default 8000)
    LOG_LEVEL / LOG_FORMAT logging setup (json or text)
    SAFETY_*               engine tunables, see venue_safety.config

============================================================
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Optional

from dotenv import load_dotenv


# ============================================================
# LOGGING
# ============================================================


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    correlation_id: Optional[str] = None,
) -> logging.Logger:
    """
    Set up structured logging.

    Args:
        level: Log level
        log_format: Output format (json or text)
        correlation_id: Correlation ID for tracing

    Returns:
        Configured logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
                "correlation_id": correlation_id or "",
            })
        )
    else:
        formatter = logging.Formatter(
            f"%(asctime)s | %(levelname)-8s | %(name)s | {correlation_id or ''} | %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("venue_safety")


# ============================================================
# COMMANDS
# ============================================================


def run_server() -> int:
    """Run the API under uvicorn."""
    import uvicorn

    from venue_safety.api import create_app

    host = os.getenv("SAFETY_API_HOST", "0.0.0.0")
    port = int(os.getenv("SAFETY_API_PORT", "8000"))

    print(f"Starting Venue Safety API on http://{host}:{port}")
    print(f"API Docs: http://{host}:{port}/docs")

    uvicorn.run(create_app(), host=host, port=port, log_config=None)
    return 0


async def _with_service(action):
    from venue_safety.config import SafetyAssessmentConfig
    from venue_safety.database import create_database_engine, create_session_factory
    from venue_safety.repository import SqlAlchemySafetyDataStore
    from venue_safety.service import SafetyAssessmentService

    engine = create_database_engine()
    try:
        store = SqlAlchemySafetyDataStore(create_session_factory(engine))
        service = SafetyAssessmentService(store, config=SafetyAssessmentConfig.from_env())
        return await action(service)
    finally:
        await engine.dispose()


async def run_sweep() -> int:
    async def action(service):
        result = await service.process_stale_assessments()
        print(json.dumps(result.to_dict(), indent=2))
        return 0 if result.error_count == 0 else 1

    return await _with_service(action)


async def run_invalidate(venue_id: str) -> int:
    async def action(service):
        await service.invalidate_venue_cache(venue_id)
        print(f"Invalidated cached assessments for venue {venue_id}")
        return 0

    return await _with_service(action)


async def run_init_db() -> int:
    from venue_safety.database import create_all_tables, create_database_engine

    engine = create_database_engine()
    try:
        await create_all_tables(engine)
    finally:
        await engine.dispose()
    print("Tables created")
    return 0


# ============================================================
# CLI
# ============================================================


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Venue safety assessment service",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Log level (default: LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--log-format",
        choices=["json", "text"],
        default=os.getenv("LOG_FORMAT", "json"),
        help="Log output format",
    )

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("serve", help="Run the HTTP API")
    commands.add_parser("sweep", help="Recompute stale assessments once")
    invalidate = commands.add_parser("invalidate", help="Expire cached assessments of a venue")
    invalidate.add_argument("venue_id")
    commands.add_parser("init-db", help="Create database tables")

    return parser


def main(argv: Optional[list] = None) -> int:
    """Main entry point."""
    load_dotenv()

    parser = create_parser()
    args = parser.parse_args(argv)

    logger = setup_logging(args.log_level, args.log_format)

    try:
        if args.command == "serve":
            return run_server()
        if args.command == "sweep":
            return asyncio.run(run_sweep())
        if args.command == "invalidate":
            return asyncio.run(run_invalidate(args.venue_id))
        if args.command == "init-db":
            return asyncio.run(run_init_db())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1

    parser.error(f"Unknown command: {args.command}")
    return 2


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
