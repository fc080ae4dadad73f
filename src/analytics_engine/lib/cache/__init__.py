"""Query result cache: stores and content-addressed keys."""

from analytics_engine.lib.cache.keys import decode_rows, encode_rows, make_cache_key, query_pattern, slugify
from analytics_engine.lib.cache.store import CacheStore, InMemoryCacheStore, RedisCacheStore, build_cache_store

__all__ = [
    "CacheStore",
    "InMemoryCacheStore",
    "RedisCacheStore",
    "build_cache_store",
    "decode_rows",
    "encode_rows",
    "make_cache_key",
    "query_pattern",
    "slugify",
]
