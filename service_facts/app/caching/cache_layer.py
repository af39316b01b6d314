"""
Tagged TTL cache for the Facts Service.
"""

import json
from typing import Any, Optional, List, Callable, Awaitable, Union, TYPE_CHECKING

from shared.logging import get_logger
from service_facts.app.protocols import CounterStore

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


DEFAULT_TTL = 300

TTL = Union[int, Callable[[Any], int]]


class CacheLayer:
    """JSON cache with namespaced keys, tag sets and get-or-populate.

    Reads and writes are best-effort: backend or decode failures are logged
    and reported as a miss or ``False``, never raised.
    """

    def __init__(self,
                 backend: CounterStore,
                 namespace: str = "facts",
                 default_ttl: int = DEFAULT_TTL,
                 *,
                 metrics: Optional["MetricsCollector"] = None):
        self.backend = backend
        self.namespace = namespace
        self.default_ttl = default_ttl
        self.metrics = metrics
        self.logger = get_logger("facts.cache")

    def _make_key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def _make_tag_key(self, tag: str) -> str:
        return f"{self.namespace}:tag:{tag}"

    def _record(self, operation: str, result: str):
        if self.metrics:
            self.metrics.increment_counter("cache_operations_total", operation=operation, result=result)

    async def get(self, key: str) -> Optional[Any]:
        """Get a cached value, or None when absent or unreadable."""
        try:
            raw = await self.backend.get(self._make_key(key))
        except Exception as e:
            self.logger.error("Cache get error", key=key, error=str(e))
            self._record("get", "error")
            return None

        if raw is None:
            self._record("get", "miss")
            return None

        try:
            value = json.loads(raw)
        except (TypeError, ValueError) as e:
            self.logger.warning("Discarding undecodable cache entry", key=key, error=str(e))
            self._record("get", "error")
            return None

        self._record("get", "hit")
        self.logger.debug("Cache hit", key=key)
        return value

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Cache a JSON-serializable value."""
        ttl = ttl or self.default_ttl
        try:
            payload = json.dumps(value)
            await self.backend.set(self._make_key(key), payload, ttl)
        except Exception as e:
            self.logger.error("Cache set error", key=key, error=str(e))
            self._record("set", "error")
            return False

        self._record("set", "ok")
        self.logger.debug("Cached value", key=key, ttl=ttl)
        return True

    async def delete(self, key: str) -> bool:
        """Remove a cached value."""
        try:
            deleted = await self.backend.delete(self._make_key(key))
        except Exception as e:
            self.logger.error("Cache delete error", key=key, error=str(e))
            return False
        return deleted > 0

    async def set_with_tags(self, key: str, value: Any, tags: List[str], ttl: Optional[int] = None) -> bool:
        """Cache a value and register its key under each tag."""
        ttl = ttl or self.default_ttl
        if not await self.set(key, value, ttl):
            return False

        full_key = self._make_key(key)
        for tag in tags:
            try:
                await self.backend.add_to_set(self._make_tag_key(tag), [full_key], ttl)
            except Exception as e:
                self.logger.error("Cache tag registration error", key=key, tag=tag, error=str(e))
        return True

    async def invalidate_by_tag(self, tag: str) -> int:
        """Delete every entry registered under a tag, then the tag itself."""
        tag_key = self._make_tag_key(tag)
        try:
            members = await self.backend.set_members(tag_key)
            deleted = 0
            if members:
                deleted = await self.backend.delete(*members)
            await self.backend.delete(tag_key)
        except Exception as e:
            self.logger.error("Cache tag invalidation error", tag=tag, error=str(e))
            return 0

        self._record("invalidate", "ok")
        self.logger.info("Invalidated cache tag", tag=tag, count=deleted)
        return deleted

    async def get_or_populate(self,
                              key: str,
                              ttl: TTL,
                              populate: Callable[[], Awaitable[Any]],
                              tags: Optional[List[str]] = None) -> Any:
        """Return the cached value, or call ``populate`` once, cache and return its result.

        Concurrent misses on the same key each call ``populate``. A failing
        ``populate`` propagates and nothing is cached.
        """
        cached = await self.get(key)
        if cached is not None:
            return cached

        value = await populate()
        if value is None:
            return None

        entry_ttl = ttl(value) if callable(ttl) else ttl
        if tags:
            await self.set_with_tags(key, value, tags, entry_ttl)
        else:
            await self.set(key, value, entry_ttl)
        return value

    async def health_check(self) -> bool:
        """Ping the backend."""
        try:
            return await self.backend.ping()
        except Exception as e:
            self.logger.error("Cache health check failed", error=str(e))
            return False
