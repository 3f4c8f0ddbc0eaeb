"""
Redis cache-aside layer for primary-store post reads.

Two kinds of entries exist: listing pages (``posts:{gen}:list:...``, one
per offset/limit/cursor combination) and post detail
(``posts:{gen}:detail:{id}``).  Search results are never cached; they come
straight from the index.

Every key carries the current generation, a counter stored under
``posts:generation``.  Readers fetch the generation before they query the
database and write their result under it; invalidation bumps the counter.
A page computed before a write therefore lands under a generation nobody
reads any more and simply expires with its TTL.

Redis is optional.  When it is unreachable every read is a miss and every
write or invalidation is skipped, so a cache outage never fails a request.
"""
import json
import logging

import redis.asyncio as redis
from redis.exceptions import RedisError

from blogcore.config import settings

logger = logging.getLogger(__name__)

GENERATION_KEY = "posts:generation"


def list_key(generation: int, offset: int, limit: int | None, start_id: int | None) -> str:
    """Cache key for one listing page; every paging dimension is encoded."""
    return (
        f"posts:{generation}:list:{offset}:"
        f"{limit if limit is not None else 'all'}:{start_id if start_id is not None else 'none'}"
    )


def detail_key(generation: int, post_id: int) -> str:
    return f"posts:{generation}:detail:{post_id}"


class PostCache:
    def __init__(self, url: str | None = None) -> None:
        self.url = url or settings.REDIS_URL
        self._redis: redis.Redis | None = None
        self._hits = 0
        self._misses = 0

    async def connect(self) -> None:
        client = redis.from_url(
            self.url, decode_responses=True, socket_connect_timeout=2, socket_timeout=2
        )
        try:
            await client.ping()
        except RedisError as exc:
            logger.warning("Redis at %s unreachable, post cache disabled: %s", self.url, exc)
            await client.aclose()
            return
        self._redis = client
        logger.info("Post cache connected: %s", self.url)

    async def disconnect(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    async def generation(self) -> int | None:
        """
        Current key generation, or None when the cache cannot be used.

        Read it once, before querying the database, and pass the same value
        to the matching ``get_*`` and ``put_*`` calls.
        """
        if self._redis is None:
            return None
        try:
            raw = await self._redis.get(GENERATION_KEY)
        except RedisError as exc:
            logger.debug("Post cache generation read failed: %s", exc)
            return None
        return int(raw) if raw is not None else 0

    # --- pages and detail ---

    async def get_page(
        self, generation: int | None, offset: int, limit: int | None, start_id: int | None
    ) -> dict | None:
        if generation is None:
            return None
        return await self._read(list_key(generation, offset, limit, start_id))

    async def put_page(
        self, generation: int | None, offset: int, limit: int | None, start_id: int | None, page: dict
    ) -> None:
        if generation is None:
            return
        await self._write(list_key(generation, offset, limit, start_id), page, settings.CACHE_TTL_LIST)

    async def get_post(self, generation: int | None, post_id: int) -> dict | None:
        if generation is None:
            return None
        return await self._read(detail_key(generation, post_id))

    async def put_post(self, generation: int | None, post_id: int, post: dict) -> None:
        if generation is None:
            return
        await self._write(detail_key(generation, post_id), post, settings.CACHE_TTL_DETAIL)

    async def invalidate_posts(self) -> None:
        """
        Retire every page and detail entry at once.  Counts and cursors
        shift on any write, and a category rename touches every post.
        """
        if self._redis is None:
            return
        try:
            await self._redis.incr(GENERATION_KEY)
        except RedisError as exc:
            logger.warning("Post cache invalidation failed: %s", exc)

    # --- raw access ---

    async def _read(self, key: str) -> dict | None:
        raw = None
        if self._redis is not None:
            try:
                raw = await self._redis.get(key)
            except RedisError as exc:
                logger.debug("Post cache read of %r failed: %s", key, exc)
        if raw is None:
            self._misses += 1
            return None
        self._hits += 1
        return json.loads(raw)

    async def _write(self, key: str, value: dict, ttl: int) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.set(key, json.dumps(value, default=str), ex=ttl)
        except RedisError as exc:
            logger.debug("Post cache write of %r failed: %s", key, exc)

    @property
    def stats(self) -> dict:
        lookups = self._hits + self._misses
        return {
            "connected": self._redis is not None,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(100 * self._hits / lookups, 1) if lookups else 0.0,
        }


cache = PostCache()
