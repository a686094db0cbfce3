from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Sequence

VERIFICATION_STATUSES = ("Unknown", "Fresh", "Stale", "Mismatch")
EMAIL_VALID_STATUSES = ("Unknown", "Valid", "Invalid", "No Email")
SOCIAL_KEYS = ("website", "linkedin", "facebook", "instagram")
MAX_IMPORTANCE = 100


def clamp_importance(score: int) -> int:
    return max(0, min(MAX_IMPORTANCE, score))


def _text(payload: Dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = payload.get(key)
        if value is not None and value != "":
            return str(value).strip()
    return ""


@dataclass(frozen=True)
class HistoryEntry:
    title: str = ""
    company: str = ""
    date: str = ""

    @staticmethod
    def from_mapping(payload: Dict[str, Any]) -> "HistoryEntry":
        return HistoryEntry(
            title=str(payload.get("title", "") or "").strip(),
            company=str(payload.get("company", "") or "").strip(),
            date=str(payload.get("date", "") or "").strip(),
        )

    def to_dict(self) -> Dict[str, str]:
        return {"title": self.title, "company": self.company, "date": self.date}


@dataclass(frozen=True)
class SocialProfiles:
    website: str = ""
    linkedin: str = ""
    facebook: str = ""
    instagram: str = ""

    @staticmethod
    def from_mapping(payload: Dict[str, Any]) -> "SocialProfiles":
        return SocialProfiles(
            website=str(payload.get("website", "") or "").strip(),
            linkedin=str(payload.get("linkedin", "") or "").strip(),
            facebook=str(payload.get("facebook", "") or "").strip(),
            instagram=str(payload.get("instagram", "") or "").strip(),
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "website": self.website,
            "linkedin": self.linkedin,
            "facebook": self.facebook,
            "instagram": self.instagram,
        }

    def is_empty(self) -> bool:
        return not any(self.to_dict().values())


@dataclass
class Contact:
    id: str = ""
    name: str = ""
    title: str = ""
    company: str = ""
    email: str = ""
    secondary_email: str = ""
    phone: str = ""
    social_profiles: SocialProfiles = field(default_factory=SocialProfiles)
    met_at: str = ""
    notes: str = ""
    tags: List[str] = field(default_factory=list)
    ai_summary: str = ""
    added_at: str = ""
    updated_at: str = ""
    image_url: str = ""
    importance_score: int = 0
    last_verified_at: str = ""
    verification_status: str = "Unknown"
    email_valid: str = "Unknown"
    history: List[HistoryEntry] = field(default_factory=list)

    @staticmethod
    def _ensure_history(values: Sequence[Any]) -> List[HistoryEntry]:
        return [
            value if isinstance(value, HistoryEntry) else HistoryEntry.from_mapping(value)
            for value in values
        ]

    @staticmethod
    def _ensure_tags(values: Any) -> List[str]:
        if isinstance(values, str):
            values = values.split(",")
        tags: List[str] = []
        for value in values or []:
            tag = str(value or "").strip()
            if tag and tag not in tags:
                tags.append(tag)
        return tags

    @classmethod
    def from_mapping(cls, payload: Dict[str, Any]) -> "Contact":
        """Build a contact from snake_case or camelCase keys.

        The loose key handling lets records coming from the extraction
        service, the JSON snapshot and keyword arguments share one path.
        """
        social = payload.get("social_profiles", payload.get("socialProfiles")) or {}
        if isinstance(social, SocialProfiles):
            profiles = social
        else:
            social = dict(social)
            if not social.get("website") and payload.get("website"):
                social["website"] = payload.get("website")
            profiles = SocialProfiles.from_mapping(social)
        try:
            score = int(payload.get("importance_score", payload.get("importanceScore", 0)) or 0)
            score = clamp_importance(score)
        except (TypeError, ValueError):
            score = 0
        return cls(
            id=_text(payload, "id"),
            name=_text(payload, "name"),
            title=_text(payload, "title"),
            company=_text(payload, "company"),
            email=_text(payload, "email"),
            secondary_email=_text(payload, "secondary_email", "secondaryEmail"),
            phone=_text(payload, "phone"),
            social_profiles=profiles,
            met_at=_text(payload, "met_at", "metAt"),
            notes=_text(payload, "notes"),
            tags=cls._ensure_tags(payload.get("tags", []) or []),
            ai_summary=_text(payload, "ai_summary", "aiSummary"),
            added_at=_text(payload, "added_at", "addedAt"),
            updated_at=_text(payload, "updated_at", "updatedAt"),
            image_url=_text(payload, "image_url", "imageUrl"),
            importance_score=score,
            last_verified_at=_text(payload, "last_verified_at", "lastVerifiedAt"),
            verification_status=_text(payload, "verification_status", "verificationStatus")
            or "Unknown",
            email_valid=_text(payload, "email_valid", "emailValid") or "Unknown",
            history=cls._ensure_history(payload.get("history", []) or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "title": self.title,
            "company": self.company,
            "email": self.email,
            "secondary_email": self.secondary_email,
            "phone": self.phone,
            "social_profiles": self.social_profiles.to_dict(),
            "met_at": self.met_at,
            "notes": self.notes,
            "tags": list(self.tags),
            "ai_summary": self.ai_summary,
            "added_at": self.added_at,
            "updated_at": self.updated_at,
            "image_url": self.image_url,
            "importance_score": self.importance_score,
            "last_verified_at": self.last_verified_at,
            "verification_status": self.verification_status,
            "email_valid": self.email_valid,
            "history": [entry.to_dict() for entry in self.history],
        }

    @property
    def website(self) -> str:
        return self.social_profiles.website

    @property
    def last_touched(self) -> str:
        return self.updated_at or self.added_at

    def replace(self, **changes: Any) -> "Contact":
        return replace(self, **changes)


__all__ = [
    "Contact",
    "EMAIL_VALID_STATUSES",
    "HistoryEntry",
    "MAX_IMPORTANCE",
    "SOCIAL_KEYS",
    "SocialProfiles",
    "VERIFICATION_STATUSES",
    "clamp_importance",
]
