from __future__ import annotations


class ContactsSyncError(RuntimeError):
    """Base error for the contacts sync engine."""


class BackendUnavailableError(ContactsSyncError):
    """Raised when a canonical backend is missing configuration or credentials."""


class StaleWriteError(ContactsSyncError):
    """Raised when a write targets a record that changed since it was read."""

    def __init__(self, contact_id: str, expected: str, actual: str) -> None:
        self.contact_id = contact_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Stale write for contact {contact_id!r}: expected updatedAt {expected!r}, "
            f"found {actual!r}"
        )


class ArtifactWriteError(ContactsSyncError):
    """Raised when a derived document cannot be written or deleted."""

    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        super().__init__(f"Derived document {key!r} failed: {reason}")


__all__ = [
    "ArtifactWriteError",
    "BackendUnavailableError",
    "ContactsSyncError",
    "StaleWriteError",
]
