from __future__ import annotations

import argparse
import asyncio
import logging
from datetime import date, datetime, timezone
from typing import List, Optional

from .common import load_config
from .config_loader import SyncConfig, add_common_arguments
from .documents import render_markdown
from .logging_utils import configure_logging
from .models import Contact
from .normalization import validate_email_safe
from .store import ContactStore, build_store

logger = logging.getLogger(__name__)

EMAIL_VALID = "Valid"
EMAIL_INVALID = "Invalid"
EMAIL_MISSING = "No Email"

STATUS_UNKNOWN = "Unknown"
STATUS_FRESH = "Fresh"
STATUS_STALE = "Stale"


def today_utc() -> date:
    return datetime.now(timezone.utc).date()


def _parse_day(value: str) -> Optional[date]:
    try:
        return date.fromisoformat((value or "").strip()[:10])
    except ValueError:
        return None


def email_status(email: str, check_deliverability: bool = False) -> str:
    email = (email or "").strip()
    if not email or "@" not in email:
        return EMAIL_MISSING
    if validate_email_safe(email, check_deliverability=check_deliverability):
        return EMAIL_VALID
    return EMAIL_INVALID


def verify_contact(
    contact: Contact, today: date, check_deliverability: bool = False
) -> Contact:
    status = contact.verification_status
    if not status or status in (STATUS_UNKNOWN, STATUS_STALE):
        status = STATUS_FRESH
    return contact.replace(
        email_valid=email_status(contact.email, check_deliverability),
        last_verified_at=today.isoformat(),
        verification_status=status,
    )


def is_stale(contact: Contact, today: date, stale_after_days: int) -> bool:
    verified = _parse_day(contact.last_verified_at)
    if verified is None:
        return False
    return (today - verified).days > stale_after_days


async def verify_all(
    store: ContactStore,
    today: Optional[date] = None,
    check_deliverability: bool = False,
    stale_only: bool = False,
    stale_after_days: int = 180,
) -> List[Contact]:
    """Verify every contact, or with ``stale_only`` just flag old verifications.

    Returns the rewritten set.
    """
    today = today or today_utc()
    contacts = await store.refresh()
    updated: List[Contact] = []
    counts = {EMAIL_VALID: 0, EMAIL_INVALID: 0, EMAIL_MISSING: 0, STATUS_STALE: 0}
    for contact in contacts:
        if stale_only:
            if is_stale(contact, today, stale_after_days) and (
                contact.verification_status != STATUS_STALE
            ):
                contact = contact.replace(verification_status=STATUS_STALE)
                counts[STATUS_STALE] += 1
            updated.append(contact)
            continue
        result = verify_contact(contact, today, check_deliverability)
        counts[result.email_valid] += 1
        logger.debug("[%s] email %s", contact.name, result.email_valid)
        updated.append(result)

    logger.info(
        "Verification: %d valid, %d invalid, %d without email, %d newly stale",
        counts[EMAIL_VALID],
        counts[EMAIL_INVALID],
        counts[EMAIL_MISSING],
        counts[STATUS_STALE],
    )
    if updated != contacts:
        await store.replace_all(updated)
        await _refresh_documents(store, contacts, updated)
    return updated


async def _refresh_documents(
    store: ContactStore, before: List[Contact], after: List[Contact]
) -> None:
    if store.artifacts is None:
        return
    for old, new in zip(before, after):
        if render_markdown(old) != render_markdown(new):
            await store.artifacts.write(new, others=after)


async def _run(store: ContactStore, config: SyncConfig, stale_only: bool) -> List[Contact]:
    try:
        return await verify_all(
            store,
            check_deliverability=config.verification.email_deliverability,
            stale_only=stale_only,
            stale_after_days=config.verification.stale_after_days,
        )
    finally:
        await store.aclose()


def build(args: argparse.Namespace, config: Optional[SyncConfig] = None) -> int:
    config = config or load_config(args)
    stale_only = getattr(args, "stale_only", False)
    contacts = asyncio.run(_run(build_store(config), config, stale_only))
    if stale_only:
        stale = sum(1 for c in contacts if c.verification_status == STATUS_STALE)
        print(f"{stale} of {len(contacts)} contacts are stale.")
    else:
        valid = sum(1 for c in contacts if c.email_valid == EMAIL_VALID)
        print(f"Verified {len(contacts)} contacts ({valid} with valid email).")
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Check contact emails and stamp verification dates."
    )
    add_common_arguments(parser)
    parser.add_argument(
        "--email-deliverability",
        action="store_true",
        default=None,
        help="Also check the email domain's DNS records",
    )
    parser.add_argument(
        "--stale-only",
        action="store_true",
        help="Only flag contacts whose last verification is too old",
    )
    args = parser.parse_args()
    config = load_config(args)
    configure_logging(config, level_override=args.log_level)
    return build(args, config=config)


if __name__ == "__main__":
    raise SystemExit(main())
