from __future__ import annotations

from typing import Any

from .backends import JsonSnapshotBackend, SheetsBackend, build_backend
from .config_loader import SyncConfig, load_sync_config
from .documents import ArtifactSync, document_filename, render_markdown
from .errors import ArtifactWriteError, BackendUnavailableError, ContactsSyncError, StaleWriteError
from .matching import DuplicateMatch, DuplicateMatcher, find_duplicate
from .merge import JobStatus, MergeEngine
from .models import Contact, HistoryEntry, SocialProfiles
from .normalization import (
    digits_only,
    format_phone_e164_safe,
    has_cjk,
    has_latin,
    sanitize_filename,
    utc_now_iso,
    validate_email_safe,
)
from .store import ContactStore, build_store, new_contact_id
from .tagging import TagNormalizer

__all__ = [
    "ArtifactSync",
    "ArtifactWriteError",
    "BackendUnavailableError",
    "Contact",
    "ContactStore",
    "ContactsSyncError",
    "DuplicateMatch",
    "DuplicateMatcher",
    "HistoryEntry",
    "JobStatus",
    "JsonSnapshotBackend",
    "MergeEngine",
    "SheetsBackend",
    "SocialProfiles",
    "StaleWriteError",
    "SyncConfig",
    "TagNormalizer",
    "build_backend",
    "build_store",
    "digits_only",
    "document_filename",
    "ensure_contact",
    "load_config",
    "find_duplicate",
    "format_phone_e164_safe",
    "has_cjk",
    "has_latin",
    "load_sync_config",
    "new_contact_id",
    "render_markdown",
    "sanitize_filename",
    "utc_now_iso",
    "validate_email_safe",
]


def load_config(args: Any) -> SyncConfig:
    return load_sync_config(args)


def ensure_contact(obj: Any) -> Contact:
    if isinstance(obj, Contact):
        return obj
    if isinstance(obj, dict):
        return Contact.from_mapping(obj)
    raise TypeError(f"Unsupported contact payload type: {type(obj)!r}")
