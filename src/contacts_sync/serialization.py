from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

import pandas as pd

from .models import Contact, HistoryEntry, SocialProfiles, clamp_importance
from .normalization import clean_text, parse_int

logger = logging.getLogger(__name__)

COLUMNS = [
    "id",
    "name",
    "title",
    "company",
    "email",
    "secondaryEmail",
    "phone",
    "website",
    "linkedin",
    "facebook",
    "instagram",
    "metAt",
    "notes",
    "tags",
    "aiSummary",
    "addedAt",
    "updatedAt",
    "imageUrl",
    "importanceScore",
    "lastVerifiedAt",
    "verificationStatus",
    "emailValid",
]
COL: Dict[str, int] = {name: index for index, name in enumerate(COLUMNS)}
COL_COUNT = len(COLUMNS)

HISTORY_COLUMNS = ["contactId", "title", "company", "date"]

TAG_DELIMITER = ", "


def split_tags(value: str) -> List[str]:
    tags: List[str] = []
    for part in (value or "").split(","):
        tag = part.strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def contact_to_row(contact: Contact) -> List[str]:
    row = [""] * COL_COUNT
    row[COL["id"]] = contact.id
    row[COL["name"]] = contact.name
    row[COL["title"]] = contact.title
    row[COL["company"]] = contact.company
    row[COL["email"]] = contact.email
    row[COL["secondaryEmail"]] = contact.secondary_email
    row[COL["phone"]] = contact.phone

    profiles = contact.social_profiles
    row[COL["website"]] = profiles.website
    row[COL["linkedin"]] = profiles.linkedin
    row[COL["facebook"]] = profiles.facebook
    row[COL["instagram"]] = profiles.instagram

    row[COL["metAt"]] = contact.met_at
    row[COL["notes"]] = contact.notes
    row[COL["tags"]] = TAG_DELIMITER.join(contact.tags)
    row[COL["aiSummary"]] = contact.ai_summary
    row[COL["addedAt"]] = contact.added_at
    row[COL["updatedAt"]] = contact.updated_at
    row[COL["imageUrl"]] = contact.image_url
    row[COL["importanceScore"]] = str(contact.importance_score or 0)
    row[COL["lastVerifiedAt"]] = contact.last_verified_at
    row[COL["verificationStatus"]] = contact.verification_status or "Unknown"
    row[COL["emailValid"]] = contact.email_valid or "Unknown"
    return row


def row_to_contact(
    row: Sequence[Any], history: Optional[Iterable[HistoryEntry]] = None
) -> Contact:
    """Inverse of :func:`contact_to_row`.

    Rows shorter than the schema are right-padded with empty cells; a partially
    written row never raises.
    """
    cells = [clean_text(cell) for cell in row][:COL_COUNT]
    if len(cells) < COL_COUNT:
        cells.extend([""] * (COL_COUNT - len(cells)))

    def cell(name: str) -> str:
        return cells[COL[name]]

    return Contact(
        id=cell("id"),
        name=cell("name"),
        title=cell("title"),
        company=cell("company"),
        email=cell("email"),
        secondary_email=cell("secondaryEmail"),
        phone=cell("phone"),
        social_profiles=SocialProfiles(
            website=cell("website"),
            linkedin=cell("linkedin"),
            facebook=cell("facebook"),
            instagram=cell("instagram"),
        ),
        met_at=cell("metAt"),
        notes=cell("notes"),
        tags=split_tags(cell("tags")),
        ai_summary=cell("aiSummary"),
        added_at=cell("addedAt"),
        updated_at=cell("updatedAt"),
        image_url=cell("imageUrl"),
        importance_score=clamp_importance(parse_int(cell("importanceScore"), 0)),
        last_verified_at=cell("lastVerifiedAt"),
        verification_status=cell("verificationStatus") or "Unknown",
        email_valid=cell("emailValid") or "Unknown",
        history=list(history or []),
    )


def history_to_rows(
    contact: Contact, entries: Optional[Iterable[HistoryEntry]] = None
) -> List[List[str]]:
    selected = contact.history if entries is None else entries
    return [[contact.id, entry.title, entry.company, entry.date] for entry in selected]


def history_from_rows(rows: Iterable[Sequence[Any]]) -> Dict[str, List[HistoryEntry]]:
    by_contact: Dict[str, List[HistoryEntry]] = {}
    for row in rows:
        cells = [clean_text(cell) for cell in row] + [""] * len(HISTORY_COLUMNS)
        contact_id = cells[0]
        if not contact_id:
            continue
        by_contact.setdefault(contact_id, []).append(
            HistoryEntry(title=cells[1], company=cells[2], date=cells[3])
        )
    return by_contact


def contact_to_json(contact: Contact) -> Dict[str, Any]:
    return {
        "id": contact.id,
        "name": contact.name,
        "title": contact.title,
        "company": contact.company,
        "email": contact.email,
        "secondaryEmail": contact.secondary_email,
        "phone": contact.phone,
        "socialProfiles": contact.social_profiles.to_dict(),
        "metAt": contact.met_at,
        "notes": contact.notes,
        "tags": list(contact.tags),
        "aiSummary": contact.ai_summary,
        "addedAt": contact.added_at,
        "updatedAt": contact.updated_at,
        "imageUrl": contact.image_url,
        "importanceScore": contact.importance_score,
        "lastVerifiedAt": contact.last_verified_at,
        "verificationStatus": contact.verification_status or "Unknown",
        "emailValid": contact.email_valid or "Unknown",
        "history": [entry.to_dict() for entry in contact.history],
    }


def contact_from_json(payload: Dict[str, Any]) -> Contact:
    history = payload.get("history") or []
    if not isinstance(history, list):
        logger.warning("Ignoring malformed history for contact %s", payload.get("id"))
        history = []
    cleaned = dict(payload)
    cleaned["history"] = [entry for entry in history if isinstance(entry, dict)]
    return Contact.from_mapping(cleaned)


def dump_snapshot(contacts: Iterable[Contact]) -> bytes:
    payload = [contact_to_json(contact) for contact in contacts]
    return json.dumps(payload, ensure_ascii=False, indent=2).encode("utf-8")


def load_snapshot(data: bytes) -> List[Contact]:
    if not data or not data.strip():
        return []
    payload = json.loads(data.decode("utf-8"))
    if not isinstance(payload, list):
        raise ValueError("Contact snapshot must be a JSON array")
    return [contact_from_json(item) for item in payload if isinstance(item, dict)]


def contacts_frame(contacts: Iterable[Contact]) -> pd.DataFrame:
    """Contacts as a string DataFrame in canonical column order."""
    return pd.DataFrame([contact_to_row(contact) for contact in contacts], columns=COLUMNS)


__all__ = [
    "COL",
    "COLUMNS",
    "COL_COUNT",
    "HISTORY_COLUMNS",
    "contact_from_json",
    "contact_to_json",
    "contact_to_row",
    "contacts_frame",
    "dump_snapshot",
    "history_from_rows",
    "history_to_rows",
    "load_snapshot",
    "row_to_contact",
    "split_tags",
]
