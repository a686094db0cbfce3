from __future__ import annotations

import argparse
import asyncio
import csv
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from .common import load_config
from .config_loader import SyncConfig, add_common_arguments
from .documents import document_filename
from .errors import StaleWriteError
from .logging_utils import configure_logging
from .merge import MergeEngine
from .models import Contact
from .normalization import parse_timestamp
from .store import ContactStore, build_store

logger = logging.getLogger(__name__)


def grouping_key(contact: Contact) -> str:
    """Batch identity: email when present, otherwise name plus company."""
    if contact.email and len(contact.email) > 3:
        return f"email:{contact.email.strip().lower()}"
    return f"nc:{contact.name.strip().lower()}|{contact.company.strip().lower()}"


def _recency(contact: Contact):
    return parse_timestamp(contact.updated_at or contact.added_at)


@dataclass
class MergedGroup:
    key: str
    survivor: Contact
    superseded: List[Contact] = field(default_factory=list)
    # Name the survivor had before absorbing the group.
    original_name: str = ""


@dataclass
class DedupeReport:
    contacts: List[Contact] = field(default_factory=list)
    groups: List[MergedGroup] = field(default_factory=list)
    documents_deleted: List[str] = field(default_factory=list)
    orphans_deleted: List[str] = field(default_factory=list)
    written: bool = False

    @property
    def superseded_count(self) -> int:
        return sum(len(group.superseded) for group in self.groups)

    def to_frame(self) -> pd.DataFrame:
        rows = []
        for group in self.groups:
            for other in group.superseded:
                rows.append(
                    {
                        "group_key": group.key,
                        "survivor_id": group.survivor.id,
                        "survivor_name": group.survivor.name,
                        "superseded_id": other.id,
                        "superseded_name": other.name,
                        "superseded_updated_at": other.updated_at or other.added_at,
                    }
                )
        return pd.DataFrame(
            rows,
            columns=[
                "group_key",
                "survivor_id",
                "survivor_name",
                "superseded_id",
                "superseded_name",
                "superseded_updated_at",
            ],
        )


class BatchDeduplicator:
    """Offline pass collapsing records that share a grouping key.

    The newest record of each group survives and absorbs the others. Running
    it twice in a row changes nothing the second time.
    """

    def __init__(self, store: ContactStore, merge_engine: Optional[MergeEngine] = None):
        self.store = store
        self.merge_engine = merge_engine or store.merge_engine

    def plan(self, contacts: Sequence[Contact]) -> Tuple[List[Contact], List[MergedGroup]]:
        grouped: Dict[str, List[Contact]] = {}
        for contact in contacts:
            grouped.setdefault(grouping_key(contact), []).append(contact)

        reduced: List[Contact] = []
        merged_groups: List[MergedGroup] = []
        for key, group in grouped.items():
            if len(group) == 1:
                reduced.append(group[0])
                continue
            ordered = sorted(group, key=_recency, reverse=True)
            survivor = ordered[0]
            merged = MergedGroup(key=key, survivor=survivor, original_name=survivor.name)
            for other in ordered[1:]:
                merged.survivor = self.merge_engine.absorb(merged.survivor, other)
                merged.superseded.append(other)
            reduced.append(merged.survivor)
            merged_groups.append(merged)
        return reduced, merged_groups

    async def _check_unchanged(self, snapshot: Sequence[Contact]) -> None:
        before = {contact.id: contact.updated_at for contact in snapshot}
        current = await self.store.refresh()
        after = {contact.id: contact.updated_at for contact in current}
        for contact_id in sorted(set(before) | set(after)):
            expected = before.get(contact_id, "")
            actual = after.get(contact_id, "")
            if expected != actual or contact_id not in before or contact_id not in after:
                raise StaleWriteError(contact_id, expected, actual)

    async def run(
        self, dry_run: bool = False, force: bool = False, sweep: bool = True
    ) -> DedupeReport:
        snapshot = await self.store.refresh()
        logger.info("Analyzing %d contacts", len(snapshot))
        reduced, groups = self.plan(snapshot)
        report = DedupeReport(contacts=reduced, groups=groups)

        for group in groups:
            logger.info(
                "Merging %d records for key %s into %s",
                len(group.superseded) + 1,
                group.key,
                group.survivor.id,
            )
            for other in group.superseded:
                logger.info("Superseded %s (%s)", other.id, other.name)

        artifacts = self.store.artifacts
        if dry_run:
            if sweep and artifacts is not None:
                report.orphans_deleted = await artifacts.sweep_orphans(reduced, dry_run=True)
            return report

        if groups:
            if not force:
                await self._check_unchanged(snapshot)
            await self.store.replace_all(reduced)
            report.written = True

        if artifacts is not None:
            for group in groups:
                survivor_file = document_filename(group.survivor.name)
                for other in group.superseded:
                    if document_filename(other.name) == survivor_file:
                        continue
                    key = artifacts.document_key(other.name)
                    if await artifacts.remove(other):
                        report.documents_deleted.append(key)
                await artifacts.write(
                    group.survivor, previous_name=group.original_name, others=reduced
                )
            if sweep:
                report.orphans_deleted = await artifacts.sweep_orphans(reduced)

        logger.info(
            "Deduplication complete: %d contacts kept, %d superseded",
            len(reduced),
            report.superseded_count,
        )
        return report


async def _run(store: ContactStore, dry_run: bool, force: bool, sweep: bool) -> DedupeReport:
    try:
        return await BatchDeduplicator(store).run(dry_run=dry_run, force=force, sweep=sweep)
    finally:
        await store.aclose()


def build(args: argparse.Namespace, config: Optional[SyncConfig] = None) -> int:
    config = config or load_config(args)
    report = asyncio.run(
        _run(
            build_store(config),
            dry_run=getattr(args, "dry_run", False),
            force=getattr(args, "force", False),
            sweep=not getattr(args, "no_sweep", False),
        )
    )

    report_csv = getattr(args, "report_csv", None)
    if report_csv:
        os.makedirs(os.path.dirname(os.path.abspath(report_csv)), exist_ok=True)
        report.to_frame().to_csv(report_csv, index=False, encoding="utf-8", quoting=csv.QUOTE_ALL)
        print(f"Saved: {report_csv}")

    prefix = "[dry run] " if getattr(args, "dry_run", False) else ""
    print(
        f"{prefix}{len(report.contacts)} contacts kept, "
        f"{report.superseded_count} superseded in {len(report.groups)} groups, "
        f"{len(report.orphans_deleted)} orphan documents"
    )
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Collapse duplicate contacts in the canonical store and tidy their documents."
    )
    add_common_arguments(parser)
    parser.add_argument("--dry-run", action="store_true", help="Report without writing")
    parser.add_argument(
        "--force", action="store_true", help="Rewrite even if contacts changed mid-run"
    )
    parser.add_argument("--no-sweep", action="store_true", help="Skip the orphan document sweep")
    parser.add_argument("--report-csv", type=str, default=None)
    args = parser.parse_args()
    config = load_config(args)
    configure_logging(config, level_override=args.log_level)
    return build(args, config=config)


if __name__ == "__main__":
    raise SystemExit(main())
