from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Iterable, List, Optional, Tuple

from .common import load_config
from .config_loader import SyncConfig, add_common_arguments
from .logging_utils import configure_logging
from .models import Contact
from .store import ContactStore, build_store
from .tagging import CompanyRule, TagNormalizer, apply_company_rules

logger = logging.getLogger(__name__)


def standardize_contact(
    contact: Contact, normalizer: TagNormalizer, rules: Iterable[CompanyRule] = ()
) -> Tuple[Contact, bool]:
    updated, _ = apply_company_rules(contact, rules)
    tags = normalizer.normalize_tags(updated.tags)
    if tags != updated.tags:
        updated = updated.replace(tags=tags)
    changed = updated.tags != contact.tags or updated.company != contact.company
    return (updated if changed else contact), changed


async def normalize_all(
    store: ContactStore, rules: Iterable[CompanyRule] = (), dry_run: bool = False
) -> List[Contact]:
    """Rewrite tags (and aliased companies) across the canonical set.

    Returns the contacts that changed; nothing is written when none did.
    """
    rules = list(rules)
    contacts = await store.refresh()
    updated: List[Contact] = []
    changed: List[Contact] = []
    for contact in contacts:
        result, was_changed = standardize_contact(contact, store.tag_normalizer, rules)
        if was_changed:
            logger.info("[%s] tags %s -> %s", contact.name, contact.tags, result.tags)
            changed.append(result)
        updated.append(result)

    if not changed or dry_run:
        return changed

    await store.replace_all(updated)
    if store.artifacts is not None:
        for contact in changed:
            await store.artifacts.write(contact, others=updated)
    return changed


async def _run(store: ContactStore, rules: List[CompanyRule], dry_run: bool) -> List[Contact]:
    try:
        return await normalize_all(store, rules, dry_run=dry_run)
    finally:
        await store.aclose()


def build(args: argparse.Namespace, config: Optional[SyncConfig] = None) -> int:
    config = config or load_config(args)
    rules = [CompanyRule.from_mapping(rule) for rule in config.tagging.company_rules]
    dry_run = getattr(args, "dry_run", False)
    changed = asyncio.run(_run(build_store(config), rules, dry_run))
    if not changed:
        print("No tag changes needed.")
    else:
        print(f"{'Would update' if dry_run else 'Updated'} {len(changed)} contacts.")
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Normalize contact tags and apply company standardization rules."
    )
    add_common_arguments(parser)
    parser.add_argument("--dry-run", action="store_true", help="Report without writing")
    args = parser.parse_args()
    config = load_config(args)
    configure_logging(config, level_override=args.log_level)
    return build(args, config=config)


if __name__ == "__main__":
    raise SystemExit(main())
