"""Exact-match response cache keyed by normalized query and tenant.

Entries live under ``ai:cache:{tenant}:{sha256(normalized query)}`` with a
TTL; a per-tenant sorted set (scored by store time) bounds how many entries a
tenant may hold and lets a tenant's cache be dropped in one call.
"""

import hashlib
import logging
import re
import time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

KEY_PREFIX = "ai:cache:"

# Queries that need fresh data or trigger side effects
SKIP_PATTERNS = [
    "today",
    "now",
    "right now",
    "this moment",
    "schedule",
    "calendar",
    "meeting",
    "appointment",
    "create",
    "add",
    "update",
    "delete",
    "send",
    "post",
]
_SKIP_RE = re.compile(r"(^|\s)(" + "|".join(re.escape(p) for p in SKIP_PATTERNS) + r")(\s|$)", re.IGNORECASE)


class CachedResponse(BaseModel):
    query: str
    response: str
    tools_used: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: float = Field(default_factory=time.time)


def normalize_query(query: str) -> str:
    """Lowercase, collapse whitespace and drop trailing punctuation."""
    normalized = re.sub(r"\s+", " ", query.strip().lower())
    return normalized.rstrip("?!. ")


def _decode(value: Any) -> Any:
    return value.decode("utf-8") if isinstance(value, bytes) else value


class ResponseCache:
    def __init__(
        self,
        redis: Optional[Redis],
        ttl: int = 3600,
        min_query_length: int = 10,
        min_response_length: int = 50,
        max_entries_per_tenant: int = 100,
        enabled: bool = True,
    ):
        self.redis = redis
        self.ttl = ttl
        self.min_query_length = min_query_length
        self.min_response_length = min_response_length
        self.max_entries_per_tenant = max_entries_per_tenant
        self.enabled = enabled and redis is not None

    def _entry_key(self, tenant_id: str, query: str) -> str:
        digest = hashlib.sha256(normalize_query(query).encode()).hexdigest()
        return f"{KEY_PREFIX}{tenant_id}:{digest}"

    def _index_key(self, tenant_id: str) -> str:
        return f"{KEY_PREFIX}{tenant_id}:index"

    def should_cache(self, query: str, response: str) -> bool:
        if len(query) < self.min_query_length or len(response) < self.min_response_length:
            return False
        if _SKIP_RE.search(query.lower()):
            logger.debug("Skipping cache for time-sensitive or action query")
            return False
        return True

    async def lookup(self, query: str, tenant_id: str) -> Optional[CachedResponse]:
        """Return the cached response for this query, or None.

        Read failures are treated as a miss.
        """
        if not self.enabled:
            return None
        try:
            raw = await self.redis.get(self._entry_key(tenant_id, query))
        except RedisError as e:
            logger.warning(f"Response cache lookup failed: {e}")
            return None
        if raw is None:
            return None
        try:
            return CachedResponse.model_validate_json(_decode(raw))
        except ValueError as e:
            logger.warning(f"Discarding unreadable cache entry: {e}")
            return None

    async def store(
        self,
        query: str,
        response: str,
        tenant_id: str,
        tools_used: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Store a response. Returns False when the pair is not cacheable."""
        if not self.enabled or not self.should_cache(query, response):
            return False

        entry = CachedResponse(query=query, response=response, tools_used=tools_used or [], metadata=metadata or {})
        entry_key = self._entry_key(tenant_id, query)
        index_key = self._index_key(tenant_id)

        await self.redis.set(entry_key, entry.model_dump_json(), ex=self.ttl)
        await self.redis.zadd(index_key, {entry_key: entry.timestamp})
        await self.redis.expire(index_key, self.ttl * 2)

        # Drop index members whose entries already expired, then enforce the cap oldest-first
        await self.redis.zremrangebyscore(index_key, "-inf", entry.timestamp - self.ttl)
        overflow = await self.redis.zcard(index_key) - self.max_entries_per_tenant
        if overflow > 0:
            oldest = [_decode(k) for k in await self.redis.zrange(index_key, 0, overflow - 1)]
            if oldest:
                await self.redis.delete(*oldest)
                await self.redis.zrem(index_key, *oldest)
                logger.debug(f"Evicted {len(oldest)} cache entries for tenant {tenant_id}")

        logger.info(f"Response cached for tenant {tenant_id} (query_length={len(query)}, response_length={len(response)})")
        return True

    async def invalidate(self, tenant_id: str) -> int:
        """Drop every cached response for a tenant. Returns the number of entries removed."""
        if self.redis is None:
            return 0
        index_key = self._index_key(tenant_id)
        keys = [_decode(k) for k in await self.redis.zrange(index_key, 0, -1)]
        removed = 0
        if keys:
            removed = await self.redis.delete(*keys)
        await self.redis.delete(index_key)
        logger.info(f"Response cache invalidated for tenant {tenant_id}")
        return removed

    async def stats(self, tenant_id: str) -> Dict[str, Any]:
        if self.redis is None:
            return {"enabled": False, "entries": 0}
        entries = await self.redis.zcard(self._index_key(tenant_id))
        return {"enabled": self.enabled, "entries": entries, "ttl": self.ttl}
