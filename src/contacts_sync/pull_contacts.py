from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import List, Optional

from .backends import ContactBackend, JsonSnapshotBackend
from .blobs import LocalBlobStore
from .common import load_config
from .config_loader import SyncConfig, add_common_arguments
from .documents import ArtifactSync
from .logging_utils import configure_logging
from .models import Contact
from .store import ContactStore, build_store

logger = logging.getLogger(__name__)


async def pull_contacts(
    source: ContactStore,
    target: ContactBackend,
    artifacts: Optional[ArtifactSync] = None,
) -> List[Contact]:
    """Copy the canonical set from ``source`` into ``target``.

    With ``artifacts`` the documents are regenerated next to the copy and
    stale ones swept.
    """
    contacts = await source.refresh()
    await target.write_all(contacts)
    logger.info("Copied %d contacts into %s backend", len(contacts), target.name)
    if artifacts is not None:
        for contact in contacts:
            await artifacts.write(contact, others=contacts)
        await artifacts.sweep_orphans(contacts)
    return contacts


async def _run(
    source: ContactStore, target: ContactBackend, artifacts: Optional[ArtifactSync]
) -> List[Contact]:
    try:
        return await pull_contacts(source, target, artifacts)
    finally:
        await source.aclose()


def build(args: argparse.Namespace, config: Optional[SyncConfig] = None) -> int:
    config = config or load_config(args)
    out_dir = getattr(args, "out_dir", None) or str(Path(config.storage.dir) / "backup")
    blobs = LocalBlobStore(Path(out_dir))
    target = JsonSnapshotBackend(blobs, key=config.storage.snapshot_key)
    artifacts = (
        ArtifactSync(blobs, prefix=config.storage.documents_prefix)
        if getattr(args, "with_documents", False)
        else None
    )
    contacts = asyncio.run(_run(build_store(config), target, artifacts))
    print(f"Saved {len(contacts)} contacts to {Path(out_dir) / config.storage.snapshot_key}")
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Copy the canonical contact set into a local JSON snapshot."
    )
    add_common_arguments(parser)
    parser.add_argument("--out-dir", type=str, default=None)
    parser.add_argument(
        "--with-documents", action="store_true", help="Regenerate contact documents too"
    )
    args = parser.parse_args()
    config = load_config(args)
    configure_logging(config, level_override=args.log_level)
    return build(args, config=config)


if __name__ == "__main__":
    raise SystemExit(main())
