from __future__ import annotations

import logging
from dataclasses import fields
from typing import Any, Dict, Mapping, Optional, Union

from .models import Contact, HistoryEntry, SocialProfiles, clamp_importance
from .normalization import has_latin, utc_now_iso
from .tagging import TagNormalizer

logger = logging.getLogger(__name__)


class JobStatus:
    HISTORY = "history"
    CONCURRENT = "concurrent"

    ALL = (HISTORY, CONCURRENT)


# Filled from the other record only when the primary value is empty.
FALLBACK_FIELDS = ("image_url", "notes", "met_at", "title")

# Never taken from the incoming side of a merge.
PROTECTED_FIELDS = {"id", "added_at", "history", "updated_at"}

_CAMEL_TO_SNAKE = {
    "secondaryEmail": "secondary_email",
    "socialProfiles": "social_profiles",
    "metAt": "met_at",
    "aiSummary": "ai_summary",
    "addedAt": "added_at",
    "updatedAt": "updated_at",
    "imageUrl": "image_url",
    "importanceScore": "importance_score",
    "lastVerifiedAt": "last_verified_at",
    "verificationStatus": "verification_status",
    "emailValid": "email_valid",
}
_FIELD_NAMES = {f.name for f in fields(Contact)}

Incoming = Union[Contact, Mapping[str, Any]]


def _present_changes(existing: Contact, incoming: Incoming) -> Dict[str, Any]:
    """Fields of ``incoming`` that should win over ``existing``.

    A ``Contact`` contributes its non-empty values. A mapping is an explicit
    patch: every recognised key counts, including empty strings.
    """
    changes: Dict[str, Any] = {}
    if isinstance(incoming, Contact):
        for name in _FIELD_NAMES - PROTECTED_FIELDS:
            value = getattr(incoming, name)
            if name == "social_profiles":
                if not value.is_empty():
                    changes[name] = value
            elif name in ("verification_status", "email_valid"):
                if value and value != "Unknown":
                    changes[name] = value
            elif value:
                changes[name] = value
    else:
        for key, value in incoming.items():
            name = _CAMEL_TO_SNAKE.get(key, key)
            if name == "website":
                name, value = "social_profiles", {"website": value}
            if name not in _FIELD_NAMES or name in PROTECTED_FIELDS:
                continue
            changes[name] = value

    social = changes.get("social_profiles")
    if social is not None and not isinstance(social, SocialProfiles):
        merged_profiles = existing.social_profiles.to_dict()
        merged_profiles.update({k: str(v or "").strip() for k, v in dict(social).items()})
        changes["social_profiles"] = SocialProfiles.from_mapping(merged_profiles)
    elif isinstance(social, SocialProfiles):
        merged_profiles = existing.social_profiles.to_dict()
        merged_profiles.update({k: v for k, v in social.to_dict().items() if v})
        changes["social_profiles"] = SocialProfiles.from_mapping(merged_profiles)

    for name in list(changes):
        if name in ("social_profiles", "tags"):
            continue
        if name == "importance_score":
            try:
                changes[name] = clamp_importance(int(changes[name] or 0))
            except (TypeError, ValueError):
                changes[name] = existing.importance_score
        else:
            changes[name] = "" if changes[name] is None else str(changes[name]).strip()
    if "tags" in changes:
        changes["tags"] = Contact._ensure_tags(changes["tags"])
    return changes


class MergeEngine:
    def __init__(self, tag_normalizer: Optional[TagNormalizer] = None):
        self.tag_normalizer = tag_normalizer or TagNormalizer()

    def merge(
        self,
        existing: Contact,
        incoming: Incoming,
        job_status: Optional[str] = None,
        now: Optional[str] = None,
    ) -> Contact:
        """Interactive merge of ``incoming`` over ``existing``.

        ``job_status`` only matters when the incoming role differs from the
        stored one: ``history`` archives the old role, ``concurrent`` joins
        both, and no hint overwrites without tracking.
        """
        if job_status and job_status not in JobStatus.ALL:
            raise ValueError(f"Unknown job status hint: {job_status!r}")
        now = now or utc_now_iso()
        changes = _present_changes(existing, incoming)

        merged = existing.replace(**changes)
        for name in FALLBACK_FIELDS:
            if not getattr(merged, name) and getattr(existing, name):
                setattr(merged, name, getattr(existing, name))

        merged.tags = self.tag_normalizer.union(existing.tags, changes.get("tags", []))
        merged.history = list(existing.history)

        new_title = changes.get("title", existing.title) or existing.title
        new_company = changes.get("company", existing.company) or existing.company
        title_changed = new_title != existing.title
        company_changed = new_company != existing.company

        if job_status and (title_changed or company_changed):
            if job_status == JobStatus.HISTORY:
                if existing.title or existing.company:
                    merged.history.append(
                        HistoryEntry(
                            title=existing.title,
                            company=existing.company,
                            date=existing.updated_at or existing.added_at,
                        )
                    )
                merged.title = new_title
                merged.company = new_company
            else:
                merged.title = (
                    f"{existing.title} & {new_title}"
                    if title_changed and existing.title
                    else new_title
                )
                merged.company = (
                    f"{existing.company} / {new_company}"
                    if company_changed and existing.company
                    else new_company
                )
            logger.debug(
                "Role change for %s handled as %s: %r @ %r",
                existing.id,
                job_status,
                merged.title,
                merged.company,
            )

        merged.id = existing.id
        merged.added_at = existing.added_at or now
        merged.updated_at = now
        return merged

    def absorb(self, survivor: Contact, other: Contact) -> Contact:
        """Fold a superseded duplicate into the batch survivor.

        Only enriches: fills empty fields, unions tags, prefers a name with a
        Latin transliteration. The survivor keeps its own timestamps.
        """
        merged = survivor.replace(tags=list(survivor.tags), history=list(survivor.history))
        if has_latin(other.name) and not has_latin(survivor.name):
            merged.name = other.name
        for name in FALLBACK_FIELDS:
            if not getattr(merged, name) and getattr(other, name):
                setattr(merged, name, getattr(other, name))
        merged.tags = self.tag_normalizer.union(survivor.tags, other.tags)
        for entry in other.history:
            if entry not in merged.history:
                merged.history.append(entry)
        return merged


__all__ = ["FALLBACK_FIELDS", "JobStatus", "MergeEngine"]
