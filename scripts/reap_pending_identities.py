#!/usr/bin/env python3
"""Delete pending identities whose checkout never reported back.

A checkout that neither completes nor expires (lost webhook, abandoned
browser) leaves an unconfirmed identity holding the email address. Run this
periodically, e.g. from cron.

Usage:
    python scripts/reap_pending_identities.py
    python scripts/reap_pending_identities.py --max-age-hours 72 --dry-run
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import timedelta
from pathlib import Path

# Ensure project root is on the path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config.settings import get_settings
from src.api.db.tenants import TenantRepository
from src.core.logging import get_logger, setup_logging
from src.data.db import close_engine, get_engine
from src.identity.client import IdentityStoreClient
from src.provisioning.reaper import PendingIdentityReaper

log = get_logger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Reap stale pending identities")
    parser.add_argument(
        "--max-age-hours",
        type=int,
        default=settings.pending_identity_max_age_hours,
        help="Only reap identities older than this (default: %(default)s)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List what would be deleted without deleting",
    )
    return parser.parse_args(argv)


async def main(max_age_hours: int, dry_run: bool) -> list[str]:
    setup_logging()
    settings = get_settings()

    if max_age_hours < 1:
        log.error("reaper_invalid_max_age", max_age_hours=max_age_hours)
        raise SystemExit(2)

    try:
        reaper = PendingIdentityReaper(
            IdentityStoreClient(settings),
            TenantRepository(await get_engine()),
            max_age=timedelta(hours=max_age_hours),
        )
        reaped = await reaper.sweep(dry_run=dry_run)
    finally:
        await close_engine()

    for identity_id in reaped:
        print(identity_id)
    return reaped


if __name__ == "__main__":
    args = parse_args()
    asyncio.run(main(args.max_age_hours, args.dry_run))
