#!/usr/bin/env python3
"""Create the PROVISIO tenants schema.

Usage:
    python scripts/setup_db.py
    python scripts/setup_db.py --reset    # drop and recreate (dev only)
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

# Ensure project root is on the path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config.settings import get_settings
from src.core.logging import setup_logging, get_logger
from src.data.db import close_engine, drop_schema, init_schema

log = get_logger(__name__)


async def main(reset: bool) -> None:
    setup_logging()
    settings = get_settings()

    try:
        if reset:
            if settings.provisio_env == "prod":
                log.error("schema_reset_refused", env=settings.provisio_env)
                raise SystemExit(2)
            await drop_schema()
        await init_schema()
        log.info("schema_setup_complete", reset=reset)
    except SystemExit:
        raise
    except Exception as exc:
        log.error("schema_setup_failed", error=str(exc))
        raise
    finally:
        await close_engine()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create the PROVISIO database schema")
    parser.add_argument("--reset", action="store_true", help="Drop existing tables first (refused in prod)")
    return parser.parse_args(argv)


if __name__ == "__main__":
    args = parse_args()
    asyncio.run(main(args.reset))
