"""
Cache module for SongMap.

This module provides the per-graph recency cache and the ordered-list
backends it runs on.
"""

from .list_cache import ListCache, RedisListCache, SQLiteListCache
from .recency import RecencyCache

__all__ = ["ListCache", "RecencyCache", "RedisListCache", "SQLiteListCache"]
