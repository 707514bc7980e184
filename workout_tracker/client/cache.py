# In-memory cache of signed image credentials, keyed by (resource id, owner document id).
# Process-local and session-lifetime: nothing here is persisted.

import enum
import logging
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional

log = logging.getLogger(__name__)


class CredentialState(enum.Enum):
    ABSENT = "absent"
    PENDING = "pending"
    LIVE = "live"
    DENIED = "denied"
    TOMBSTONED = "tombstoned"


class FailureKind(enum.Enum):
    """Why a lookup produced no URL. Surfaced to views alongside the null output."""

    UNAUTHENTICATED = "unauthenticated"
    DENIED = "denied"
    NOT_FOUND = "not_found"
    METADATA = "metadata"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class CacheKey:
    """One credential slot. The owning document is part of identity."""

    resource_id: str
    owner_doc_id: str

    def __str__(self) -> str:
        return f"{self.resource_id}|{self.owner_doc_id}"


@dataclass(frozen=True)
class CachedCredential:
    url: Optional[str]
    issued_at: float
    expires_at: float
    deleted: bool = False

    def __post_init__(self):
        if self.url is not None and not self.issued_at < self.expires_at:
            raise ValueError(
                f"issued_at ({self.issued_at}) must be before expires_at ({self.expires_at})"
            )

    @classmethod
    def tombstone(cls) -> "CachedCredential":
        return cls(url=None, issued_at=0.0, expires_at=0.0, deleted=True)

    @property
    def lifetime(self) -> float:
        return self.expires_at - self.issued_at

    def is_live(self, now: float) -> bool:
        return not self.deleted and self.url is not None and now < self.expires_at


class ResourceCache:
    """Shared key -> credential map.

    Mutated only through put / mark_deleted / mark_denied. Each mutation is a single
    assignment on the event loop thread, so no locking; callers must re-check state
    after any await before deciding to skip a fetch.
    """

    def __init__(self, now: Callable[[], float] | None = None):
        self._now = now or time.time
        self._entries: dict[CacheKey, CachedCredential] = {}
        self._denied: dict[CacheKey, FailureKind] = {}

    def now(self) -> float:
        return self._now()

    def get(self, key: CacheKey) -> Optional[CachedCredential]:
        return self._entries.get(key)

    def put(self, key: CacheKey, credential: CachedCredential) -> None:
        """Replace the entry for *key*. A tombstoned key stays tombstoned."""
        current = self._entries.get(key)
        if current is not None and current.deleted:
            log.debug(f"ignoring credential for deleted image {key}")
            return
        self._entries[key] = credential
        self._denied.pop(key, None)

    def mark_deleted(self, key: CacheKey) -> None:
        current = self._entries.get(key)
        if current is None:
            self._entries[key] = CachedCredential.tombstone()
        elif not current.deleted:
            self._entries[key] = replace(current, deleted=True)
        self._denied.pop(key, None)

    def mark_denied(self, key: CacheKey, kind: FailureKind = FailureKind.DENIED) -> None:
        if self.is_deleted(key):
            return
        self._denied[key] = kind

    def denial(self, key: CacheKey) -> Optional[FailureKind]:
        return self._denied.get(key)

    def is_deleted(self, key: CacheKey) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.deleted

    def is_live(self, key: CacheKey) -> bool:
        entry = self._entries.get(key)
        return entry is not None and key not in self._denied and entry.is_live(self._now())

    def url_for(self, key: CacheKey) -> Optional[str]:
        """Cached URL if live, else None. Tombstones and denials always give None."""
        if not self.is_live(key):
            return None
        return self._entries[key].url

    def state(self, key: CacheKey) -> CredentialState:
        if self.is_deleted(key):
            return CredentialState.TOMBSTONED
        if key in self._denied:
            return CredentialState.DENIED
        if key in self._entries:
            return CredentialState.LIVE
        return CredentialState.ABSENT

    def clear(self) -> None:
        self._entries.clear()
        self._denied.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._entries or key in self._denied

    def __len__(self) -> int:
        return len(self._entries)
