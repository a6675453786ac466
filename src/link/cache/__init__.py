"""Local, device-scoped cache for profile state."""

from link.cache.profile_cache import ProfileCache
from link.cache.store import JsonFileStore, KeyValueStore, MemoryStore

__all__ = [
    "JsonFileStore",
    "KeyValueStore",
    "MemoryStore",
    "ProfileCache",
]
