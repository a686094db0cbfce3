from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Callable, List, Mapping, Optional, Sequence, Union

from .backends import ContactBackend, build_backend, build_blob_store
from .blobs import BlobStore
from .cache import TTLCache
from .config_loader import SyncConfig
from .documents import ArtifactSync
from .errors import BackendUnavailableError, StaleWriteError
from .matching import DuplicateMatch, DuplicateMatcher
from .merge import MergeEngine
from .models import Contact
from .normalization import utc_now_iso
from .tagging import TaggingSettings, TagNormalizer

logger = logging.getLogger(__name__)

ContactInput = Union[Contact, Mapping[str, Any]]


def new_contact_id() -> str:
    return str(uuid.uuid4())


class ContactStore:
    """Backend-agnostic facade over the canonical contact set.

    Reads go through a per-instance TTL cache; every write invalidates it
    before returning, so this instance always observes its own writes.
    """

    def __init__(
        self,
        backend: ContactBackend,
        artifacts: Optional[ArtifactSync] = None,
        *,
        merge_engine: Optional[MergeEngine] = None,
        matcher: Optional[DuplicateMatcher] = None,
        cache_ttl: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        auto_merge_weak: bool = True,
    ) -> None:
        self.backend = backend
        self.artifacts = artifacts
        self.merge_engine = merge_engine or MergeEngine()
        self.matcher = matcher or DuplicateMatcher()
        self.auto_merge_weak = auto_merge_weak
        self.cache: TTLCache[List[Contact]] = TTLCache(cache_ttl, clock=clock)

    @property
    def tag_normalizer(self) -> TagNormalizer:
        return self.merge_engine.tag_normalizer

    async def aclose(self) -> None:
        await self.backend.aclose()

    async def list(self) -> List[Contact]:
        try:
            return await self._current()
        except BackendUnavailableError as exc:
            logger.warning("Contact backend %s unavailable, returning no contacts: %s",
                           getattr(self.backend, "name", "?"), exc)
            return []

    async def refresh(self) -> List[Contact]:
        """Re-read the backend, bypassing the cache. Errors propagate."""
        self.cache.invalidate()
        contacts = await self.backend.load_all()
        self.cache.set(contacts)
        return list(contacts)

    async def _current(self) -> List[Contact]:
        """Contacts a write resolves against; backend errors propagate."""
        cached = self.cache.get()
        if cached is not None:
            return list(cached)
        contacts = await self.backend.load_all()
        self.cache.set(contacts)
        return list(contacts)

    async def get(self, contact_id: str) -> Optional[Contact]:
        if not contact_id:
            return None
        for contact in await self.list():
            if contact.id == contact_id:
                return contact
        return None

    async def find_duplicate(
        self, candidate: ContactInput, exclude_id: str = ""
    ) -> Optional[DuplicateMatch]:
        if not isinstance(candidate, Contact):
            candidate = Contact.from_mapping(candidate)
        return self.matcher.match(candidate, await self.list(), exclude_id=exclude_id)

    async def unique_tags(self) -> List[str]:
        tags = set()
        for contact in await self.list():
            tags.update(contact.tags)
        return sorted(tags)

    async def save(
        self,
        contact: ContactInput,
        job_status: Optional[str] = None,
        *,
        match_duplicates: bool = False,
        expected_updated_at: Optional[str] = None,
        now: Optional[str] = None,
    ) -> Contact:
        """Upsert a contact.

        An incoming record with a known id merges into it; with
        ``match_duplicates`` an unknown record merges into its duplicate.
        Otherwise a new record with a fresh id is inserted.
        """
        candidate = contact if isinstance(contact, Contact) else Contact.from_mapping(contact)
        contacts = await self._current()
        existing = None
        if candidate.id:
            existing = next((c for c in contacts if c.id == candidate.id), None)
        if existing is None and match_duplicates:
            match = self.matcher.match(candidate, contacts, exclude_id=candidate.id)
            if match and (match.is_strong or self.auto_merge_weak):
                logger.info(
                    "Merging incoming %r into %s (%s match via %s)",
                    candidate.name,
                    match.contact.id,
                    match.confidence,
                    match.rule,
                )
                existing = match.contact

        if existing is not None:
            return await self._merge_into(
                existing, contact, contacts, job_status, expected_updated_at, now
            )
        return await self._insert(candidate, contacts, now)

    async def update(
        self,
        contact_id: str,
        changes: Mapping[str, Any],
        job_status: Optional[str] = None,
        *,
        expected_updated_at: Optional[str] = None,
        now: Optional[str] = None,
    ) -> Optional[Contact]:
        contacts = await self._current()
        existing = next((c for c in contacts if c.id == contact_id), None)
        if existing is None:
            logger.info("Update skipped: no contact with id %s", contact_id)
            return None
        return await self._merge_into(
            existing, changes, contacts, job_status, expected_updated_at, now
        )

    async def delete(self, contact_id: str) -> Optional[Contact]:
        existing = next((c for c in await self._current() if c.id == contact_id), None)
        if existing is None:
            logger.info("Delete skipped: no contact with id %s", contact_id)
            return None
        try:
            await self.backend.remove(contact_id)
        finally:
            self.cache.invalidate()
        if self.artifacts is not None:
            await self.artifacts.remove(existing)
        return existing

    async def replace_all(self, contacts: Sequence[Contact]) -> None:
        """Rewrite the whole canonical set (batch passes)."""
        try:
            await self.backend.write_all(list(contacts))
        finally:
            self.cache.invalidate()

    async def _merge_into(
        self,
        existing: Contact,
        incoming: ContactInput,
        contacts: Sequence[Contact],
        job_status: Optional[str],
        expected_updated_at: Optional[str],
        now: Optional[str],
    ) -> Contact:
        if expected_updated_at is not None and existing.updated_at != expected_updated_at:
            raise StaleWriteError(existing.id, expected_updated_at, existing.updated_at)
        merged = self.merge_engine.merge(existing, incoming, job_status=job_status, now=now)
        try:
            await self.backend.replace(merged, existing)
        finally:
            self.cache.invalidate()
        if self.artifacts is not None:
            await self.artifacts.write(merged, previous_name=existing.name, others=contacts)
        return merged

    async def _insert(
        self, candidate: Contact, contacts: Sequence[Contact], now: Optional[str]
    ) -> Contact:
        now = now or utc_now_iso()
        created = candidate.replace(
            id=candidate.id or new_contact_id(),
            tags=self.tag_normalizer.normalize_tags(candidate.tags),
            history=[],
            added_at=candidate.added_at or now,
            updated_at=now,
            verification_status=candidate.verification_status or "Unknown",
            email_valid=candidate.email_valid or "Unknown",
        )
        try:
            await self.backend.insert(created)
        finally:
            self.cache.invalidate()
        if self.artifacts is not None:
            await self.artifacts.write(created, others=contacts)
        return created


def build_store(config: SyncConfig, blobs: Optional[BlobStore] = None) -> ContactStore:
    """Wire the configured backend, documents and tag vocabulary into a store."""
    blobs = blobs or build_blob_store(config)
    tagging = TaggingSettings(
        mapping=config.tagging.mapping,
        uppercase_tokens=config.tagging.uppercase_tokens,
    )
    return ContactStore(
        build_backend(config, blobs=blobs),
        ArtifactSync(blobs, prefix=config.storage.documents_prefix),
        merge_engine=MergeEngine(TagNormalizer(tagging)),
        cache_ttl=config.cache.ttl_seconds,
        auto_merge_weak=config.matching.auto_merge_weak,
    )


__all__ = ["ContactStore", "build_store", "new_contact_id"]
