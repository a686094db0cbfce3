from __future__ import annotations

import argparse
import asyncio
import logging
import os
from typing import Iterable, List, Optional, Tuple

import pandas as pd

from .common import load_config
from .config_loader import SyncConfig, add_common_arguments
from .logging_utils import configure_logging
from .models import Contact
from .normalization import format_phone_e164_safe
from .store import ContactStore, build_store

logger = logging.getLogger(__name__)

MAILCHIMP_COLUMNS = ["Email Address", "Full Name", "Company", "Title", "Tags", "Phone Number"]


def mailchimp_frame(
    contacts: Iterable[Contact], default_country: str = "TW"
) -> Tuple[pd.DataFrame, int]:
    """Audience import rows for contacts with an email; also returns the skip count."""
    rows = []
    skipped = 0
    for contact in contacts:
        email = (contact.email or "").strip()
        if not email:
            skipped += 1
            continue
        rows.append(
            {
                "Email Address": email,
                "Full Name": contact.name.strip(),
                "Company": contact.company.strip(),
                "Title": contact.title.strip(),
                "Tags": ",".join(contact.tags),
                "Phone Number": format_phone_e164_safe(contact.phone, default_country),
            }
        )
    return pd.DataFrame(rows, columns=MAILCHIMP_COLUMNS), skipped


def write_mailchimp_csv(
    contacts: Iterable[Contact], out_path: str, default_country: str = "TW"
) -> Tuple[int, int]:
    df, skipped = mailchimp_frame(contacts, default_country)
    directory = os.path.dirname(os.path.abspath(out_path))
    os.makedirs(directory, exist_ok=True)
    # utf-8-sig writes the BOM spreadsheet tools need to detect UTF-8.
    df.to_csv(out_path, index=False, encoding="utf-8-sig")
    if skipped:
        logger.warning("Skipped %d contacts without email addresses", skipped)
    return len(df), skipped


async def _load(store: ContactStore) -> List[Contact]:
    try:
        return await store.refresh()
    finally:
        await store.aclose()


def build(args: argparse.Namespace, config: Optional[SyncConfig] = None) -> int:
    config = config or load_config(args)
    out_path = getattr(args, "out", None) or os.path.join(
        config.storage.dir, "data", "mailchimp-export.csv"
    )
    contacts = asyncio.run(_load(build_store(config)))
    exported, skipped = write_mailchimp_csv(
        contacts, out_path, config.export.default_phone_country
    )
    print(f"Exported {exported} contacts to {out_path}")
    if skipped:
        print(f"Skipped {skipped} contacts without email addresses.")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Export contacts as a Mailchimp audience CSV.")
    add_common_arguments(parser)
    parser.add_argument("--out", type=str, default=None)
    parser.add_argument("--default-phone-country", type=str, default=None)
    args = parser.parse_args()
    config = load_config(args)
    configure_logging(config, level_override=args.log_level)
    return build(args, config=config)


if __name__ == "__main__":
    raise SystemExit(main())
