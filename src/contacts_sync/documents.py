from __future__ import annotations

import logging
import posixpath
from typing import Dict, Iterable, List, Optional

from .blobs import BlobNotFoundError, BlobStore
from .errors import ArtifactWriteError
from .models import Contact
from .normalization import legacy_filename, sanitize_filename

logger = logging.getLogger(__name__)

DEFAULT_DOCUMENTS_PREFIX = "Cards/"
DOCUMENT_CONTENT_TYPE = "text/markdown; charset=utf-8"
IGNORED_LISTING_NAMES = {"", ".DS_Store"}


def document_filename(name: str) -> str:
    return f"{sanitize_filename(name)}.md"


def legacy_document_filename(name: str) -> str:
    return f"{legacy_filename(name)}.md"


def render_markdown(contact: Contact) -> str:
    profiles = contact.social_profiles
    tags = ", ".join(f'"{tag}"' for tag in contact.tags)
    lines = [
        "---",
        f'id: "{contact.id}"',
        f'name: "{contact.name}"',
        f'title: "{contact.title}"',
        f'company: "{contact.company}"',
        f'email: "{contact.email}"',
        f'phone: "{contact.phone}"',
        f"tags: [{tags}]",
        f'met_at: "{contact.met_at}"',
        f'added_at: "{contact.added_at}"',
        f'image_url: "{contact.image_url}"',
        f"importance_score: {contact.importance_score or 0}",
        f'verification_status: "{contact.verification_status or "Unknown"}"',
        "---",
        "",
        f"# {contact.name}",
        "",
        f"![Card Image]({contact.image_url})" if contact.image_url else "",
        "",
        f"**{contact.title}** @ {contact.company}",
        "",
        "## Relationship Context",
        f"- Met At: {contact.met_at or 'Not specified'}",
        "",
        "## Contact Details",
        f"- Email: {contact.email or 'N/A'}",
        f"- Secondary Email: {contact.secondary_email}" if contact.secondary_email else "",
        f"- Phone: {contact.phone or 'N/A'}",
        f"- Website: {profiles.website or 'N/A'}",
        "",
        "## Online Presence",
        f"- LinkedIn: {profiles.linkedin}" if profiles.linkedin else "",
        f"- Facebook: {profiles.facebook}" if profiles.facebook else "",
        f"- Instagram: {profiles.instagram}" if profiles.instagram else "",
        "",
        "## AI Summary",
        contact.ai_summary or "No summary generated yet.",
        "",
        "## Notes",
        contact.notes,
        "",
        "## Career History",
    ]
    lines.extend(
        f"- {entry.title} @ {entry.company} ({entry.date or 'Past'})" for entry in contact.history
    )
    lines.append("")
    return "\n".join(lines)


def find_name_collisions(contacts: Iterable[Contact]) -> Dict[str, List[str]]:
    """Document filenames claimed by more than one contact id."""
    owners: Dict[str, List[str]] = {}
    for contact in contacts:
        filename = document_filename(contact.name)
        ids = owners.setdefault(filename, [])
        if contact.id not in ids:
            ids.append(contact.id)
    return {filename: ids for filename, ids in owners.items() if len(ids) > 1}


class ArtifactSync:
    """Keeps one derived markdown document per contact in a blob store.

    Documents are a projection of the canonical store: every failure here is
    logged and swallowed so the canonical write that triggered it stands.
    """

    def __init__(self, blobs: BlobStore, prefix: str = DEFAULT_DOCUMENTS_PREFIX):
        prefix = (prefix or "").strip().strip("/")
        if not prefix:
            # The orphan sweep owns every key under the prefix.
            raise ValueError("Documents prefix must name a folder, got an empty prefix")
        self.blobs = blobs
        self.prefix = f"{prefix}/"

    def document_key(self, name: str) -> str:
        return f"{self.prefix}{document_filename(name)}"

    def legacy_document_key(self, name: str) -> str:
        return f"{self.prefix}{legacy_document_filename(name)}"

    async def _put(self, key: str, content: str) -> None:
        try:
            await self.blobs.put(key, content.encode("utf-8"), content_type=DOCUMENT_CONTENT_TYPE)
        except Exception as exc:
            raise ArtifactWriteError(key, str(exc)) from exc

    async def _delete_quietly(self, key: str) -> bool:
        try:
            await self.blobs.delete(key)
        except BlobNotFoundError:
            return False
        except Exception as exc:
            raise ArtifactWriteError(key, str(exc)) from exc
        return True

    async def _delete_for_name(self, name: str, keep: str = "") -> List[str]:
        deleted = []
        for key in (self.document_key(name), self.legacy_document_key(name)):
            if key == keep or key in deleted:
                continue
            if await self._delete_quietly(key):
                deleted.append(key)
        return deleted

    async def write(
        self,
        contact: Contact,
        previous_name: Optional[str] = None,
        others: Iterable[Contact] = (),
    ) -> bool:
        """Regenerate the contact's document, retiring the old one on rename."""
        key = self.document_key(contact.name)
        for other in others:
            if other.id != contact.id and self.document_key(other.name) == key:
                logger.warning(
                    "Name collision: contacts %s and %s share document %s",
                    contact.id,
                    other.id,
                    key,
                )
        try:
            if previous_name is not None and self.document_key(previous_name) != key:
                removed = await self._delete_for_name(previous_name, keep=key)
                if removed:
                    logger.info("Renamed %s: removed %s", contact.id, ", ".join(removed))
            await self._put(key, render_markdown(contact))
        except ArtifactWriteError:
            logger.exception("Failed to write document for contact %s", contact.id)
            return False
        return True

    async def remove(self, contact: Contact) -> bool:
        try:
            await self._delete_for_name(contact.name)
        except ArtifactWriteError:
            logger.exception("Failed to delete document for contact %s", contact.id)
            return False
        return True

    async def remove_key(self, key: str) -> bool:
        try:
            return await self._delete_quietly(key)
        except ArtifactWriteError:
            logger.exception("Failed to delete document %s", key)
            return False

    async def sweep_orphans(self, contacts: Iterable[Contact], dry_run: bool = False) -> List[str]:
        """Delete every listed document no canonical contact maps to."""
        valid = {document_filename(contact.name) for contact in contacts}
        try:
            keys = await self.blobs.list(self.prefix)
        except Exception:
            logger.exception("Failed to list documents under %s", self.prefix)
            return []

        orphans = []
        for key in keys:
            if not key.startswith(self.prefix):
                continue
            filename = posixpath.basename(key)
            if filename in IGNORED_LISTING_NAMES:
                continue
            if filename not in valid:
                orphans.append(key)

        deleted = []
        for key in orphans:
            if dry_run:
                logger.info("Orphan document (dry run): %s", key)
                deleted.append(key)
                continue
            if await self.remove_key(key):
                logger.info("Deleted orphan document %s", key)
                deleted.append(key)
        return deleted


__all__ = [
    "ArtifactSync",
    "DEFAULT_DOCUMENTS_PREFIX",
    "document_filename",
    "find_name_collisions",
    "legacy_document_filename",
    "render_markdown",
]
