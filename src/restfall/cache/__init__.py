"""Cache keys and response stores for offline fallback."""

from restfall.cache.cache import CachedEntry, CacheStore, DiskCacheStore, MemoryCacheStore
from restfall.cache.keys import cache_key_for, canonical_form, make_cache_key, md5_hex

__all__ = [
    "CacheStore",
    "CachedEntry",
    "DiskCacheStore",
    "MemoryCacheStore",
    "cache_key_for",
    "canonical_form",
    "make_cache_key",
    "md5_hex",
]
