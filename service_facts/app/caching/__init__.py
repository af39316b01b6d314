"""
Caching package for the Facts Service.

Provides the Redis backend shared with the quota tracker and the tagged,
TTL-based cache layer used by the fact resolver.
"""

from service_facts.app.caching.redis_backend import RedisBackend
from service_facts.app.caching.cache_layer import CacheLayer

__all__ = ["RedisBackend", "CacheLayer"]
