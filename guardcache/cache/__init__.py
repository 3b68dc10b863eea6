"""
Cache backends for guardcache.

Two interchangeable stores share the `CacheBackend` contract:
- FileCache: one JSON file per key in a directory
- DatabaseCache: one row per key in a SQLite file
"""

from guardcache.cache.base import MISSING, CacheBackend
from guardcache.cache.database import DatabaseCache
from guardcache.cache.file import FileCache
from guardcache.cache.manager import CacheManager, create_cache

__all__ = [
    "MISSING",
    "CacheBackend",
    "CacheManager",
    "DatabaseCache",
    "FileCache",
    "create_cache",
]
