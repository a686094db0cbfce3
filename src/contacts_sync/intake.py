"""Business-card intake: image in, candidate contact out."""

from __future__ import annotations

import logging
import mimetypes
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from .blobs import BlobStore
from .common import ensure_contact
from .matching import DuplicateMatch
from .models import Contact
from .store import ContactStore

logger = logging.getLogger(__name__)

COMPANY_CARD_TAG = "Company Card"
DEFAULT_IMAGES_PREFIX = "images/"

# Opaque extraction service: (image bytes, content type) -> candidate fields.
CardExtractor = Callable[[bytes, str], Awaitable[Mapping[str, Any]]]


def prepare_candidate(fields: Mapping[str, Any], **overrides: Any) -> Contact:
    """Turn extracted fields into an incoming contact.

    A card without a person's name is filed under its company and tagged
    ``Company Card``.
    """
    payload: Dict[str, Any] = dict(fields)
    payload.update({key: value for key, value in overrides.items() if value})
    payload.pop("id", None)
    candidate = ensure_contact(payload)
    if not candidate.name and candidate.company:
        tags = list(candidate.tags)
        if COMPANY_CARD_TAG not in tags:
            tags.append(COMPANY_CARD_TAG)
        candidate = candidate.replace(name=candidate.company, tags=tags)
    return candidate


def image_key(content_type: str, prefix: str = DEFAULT_IMAGES_PREFIX) -> str:
    extension = mimetypes.guess_extension(content_type or "") or ".bin"
    if extension == ".jpe":
        extension = ".jpg"
    if prefix and not prefix.endswith("/"):
        prefix = f"{prefix}/"
    return f"{prefix}{uuid.uuid4()}{extension}"


@dataclass
class IntakeResult:
    candidate: Contact
    image_key: str
    duplicate: Optional[DuplicateMatch] = None
    saved: Optional[Contact] = None


async def ingest_card(
    store: ContactStore,
    blobs: BlobStore,
    extractor: CardExtractor,
    image: bytes,
    content_type: str = "image/jpeg",
    *,
    images_prefix: str = DEFAULT_IMAGES_PREFIX,
    met_at: str = "",
    notes: str = "",
    save: bool = False,
    job_status: Optional[str] = None,
) -> IntakeResult:
    """Store the card image, extract it and look for an existing contact.

    Without ``save`` the caller gets the duplicate (if any) to decide on a
    job-status hint and then calls ``store.save`` itself.
    """
    if not image:
        raise ValueError("No image data supplied")
    key = await blobs.put(image_key(content_type, images_prefix), image, content_type=content_type)
    fields = await extractor(image, content_type)
    candidate = prepare_candidate(fields, image_url=key, met_at=met_at, notes=notes)
    duplicate = await store.find_duplicate(candidate)
    if duplicate is not None:
        logger.info(
            "Card %s looks like existing contact %s (%s)",
            key,
            duplicate.contact.id,
            duplicate.rule,
        )
    result = IntakeResult(candidate=candidate, image_key=key, duplicate=duplicate)
    if save:
        result.saved = await store.save(candidate, job_status, match_duplicates=True)
    return result


__all__ = [
    "COMPANY_CARD_TAG",
    "CardExtractor",
    "IntakeResult",
    "image_key",
    "ingest_card",
    "prepare_candidate",
]
