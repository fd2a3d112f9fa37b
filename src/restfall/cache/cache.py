"""Response stores used for offline fallback.

A :class:`CacheStore` maps a cache key (see :mod:`restfall.cache.keys`) to a
:class:`CachedEntry`. Stores are shared by every in-flight request of a
client, so each implementation must make ``put`` atomic with respect to
``get``: a reader sees either the previous entry or the new one, never a
mix. Entries are replaced wholesale, never patched.

Implementations:

* :class:`MemoryCacheStore` -- an in-process dict guarded by a lock, with an
  optional LRU bound.
* :class:`DiskCacheStore` -- persistent, backed by :mod:`diskcache`, with an
  optional time-to-live.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import diskcache


@dataclass(frozen=True)
class CachedEntry:
    """A stored response body together with what is needed to replay it.

    Attributes:
        key: The cache key the entry was stored under.
        body: Raw response bytes, exactly as received.
        status_code: HTTP status of the original response.
        headers: Response headers of the original response.
        stored_at: UTC timestamp of the write.
    """

    key: str
    body: bytes
    status_code: int = 200
    headers: dict[str, str] = field(default_factory=dict)
    stored_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "body": self.body,
            "status_code": self.status_code,
            "headers": dict(self.headers),
            "stored_at": self.stored_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CachedEntry:
        return cls(
            key=data["key"],
            body=bytes(data["body"]),
            status_code=int(data.get("status_code", 200)),
            headers=dict(data.get("headers") or {}),
            stored_at=datetime.fromisoformat(data["stored_at"]),
        )


class CacheStore(ABC):
    """Thread-safe key -> :class:`CachedEntry` mapping."""

    @abstractmethod
    def put(self, key: str, entry: CachedEntry) -> None:
        """Store *entry* under *key*, replacing any previous entry."""

    @abstractmethod
    def get(self, key: str) -> Optional[CachedEntry]:
        """Return the entry stored under *key*, or ``None``."""

    @abstractmethod
    def invalidate(self, key: str) -> None:
        """Remove the entry under *key*, if any."""

    @abstractmethod
    def clear(self) -> None:
        """Remove every entry."""

    @abstractmethod
    def __len__(self) -> int: ...

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None

    def close(self) -> None:
        """Release resources held by the store."""


class MemoryCacheStore(CacheStore):
    """In-memory store guarded by a single lock.

    Args:
        max_entries: When set, the least recently used entry is evicted once
            the store grows beyond this many entries.
    """

    def __init__(self, max_entries: Optional[int] = None) -> None:
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be a positive integer")
        self._max_entries = max_entries
        self._entries: OrderedDict[str, CachedEntry] = OrderedDict()
        self._lock = threading.Lock()

    def put(self, key: str, entry: CachedEntry) -> None:
        with self._lock:
            self._entries[key] = entry
            self._entries.move_to_end(key)
            if self._max_entries is not None:
                while len(self._entries) > self._max_entries:
                    self._entries.popitem(last=False)

    def get(self, key: str) -> Optional[CachedEntry]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                self._entries.move_to_end(key)
            return entry

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class DiskCacheStore(CacheStore):
    """Persistent store backed by a :class:`diskcache.Cache` directory.

    :mod:`diskcache` commits every write in a single SQLite transaction, so
    concurrent readers never observe a half-written entry, across threads
    or processes.

    Args:
        directory: Root directory; entries live in a ``responses/``
            subdirectory. Defaults to :func:`restfall.config.get_cache_dir`.
        ttl_seconds: Optional expiry applied to every write.

    Example::

        store = DiskCacheStore("/tmp/api-cache", ttl_seconds=3600)
        store.put(key, CachedEntry(key=key, body=b'{"ok": true}'))
    """

    def __init__(
        self,
        directory: Optional[str | Path] = None,
        ttl_seconds: Optional[float] = None,
    ) -> None:
        if directory is None:
            from restfall.config import get_cache_dir

            directory = get_cache_dir()
        self._directory = Path(directory) / "responses"
        self._ttl_seconds = ttl_seconds
        self._cache = diskcache.Cache(str(self._directory))

    @property
    def directory(self) -> Path:
        return self._directory

    def put(self, key: str, entry: CachedEntry) -> None:
        self._cache.set(key, entry.to_dict(), expire=self._ttl_seconds)

    def get(self, key: str) -> Optional[CachedEntry]:
        data = self._cache.get(key)
        if data is None:
            return None
        return CachedEntry.from_dict(data)

    def invalidate(self, key: str) -> None:
        self._cache.delete(key)

    def clear(self) -> None:
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)

    def close(self) -> None:
        """Close the underlying :class:`diskcache.Cache`."""
        self._cache.close()
