from __future__ import annotations

import argparse
import asyncio
import logging
from typing import List, Optional

from .common import load_config
from .config_loader import SyncConfig, add_common_arguments
from .logging_utils import configure_logging
from .store import ContactStore, build_store

logger = logging.getLogger(__name__)


async def cleanup_orphans(store: ContactStore, dry_run: bool = False) -> List[str]:
    """Delete documents no canonical contact maps to; returns their keys."""
    if store.artifacts is None:
        return []
    contacts = await store.refresh()
    logger.info("Checking documents against %d canonical contacts", len(contacts))
    return await store.artifacts.sweep_orphans(contacts, dry_run=dry_run)


async def _run(store: ContactStore, dry_run: bool) -> List[str]:
    try:
        return await cleanup_orphans(store, dry_run=dry_run)
    finally:
        await store.aclose()


def build(args: argparse.Namespace, config: Optional[SyncConfig] = None) -> int:
    config = config or load_config(args)
    dry_run = getattr(args, "dry_run", False)
    orphans = asyncio.run(_run(build_store(config), dry_run))
    for key in orphans:
        print(f"{'Would delete' if dry_run else 'Deleted'}: {key}")
    print(f"{len(orphans)} orphan documents{' found' if dry_run else ' removed'}")
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Remove contact documents that no longer match any canonical contact."
    )
    add_common_arguments(parser)
    parser.add_argument("--dry-run", action="store_true", help="List orphans without deleting")
    args = parser.parse_args()
    config = load_config(args)
    configure_logging(config, level_override=args.log_level)
    return build(args, config=config)


if __name__ == "__main__":
    raise SystemExit(main())
