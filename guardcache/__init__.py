"""
guardcache: SQLite-backed rate limiting, IP bans and pluggable caching.
"""

__version__ = "1.0.0"
