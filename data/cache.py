import asyncio
import hashlib
import json
import time
from collections import OrderedDict
from typing import Dict, Any, Optional
import redis
from models import RecommendationRequest, RecommendationResponse
from utils.logger import logger, metrics
from config import config

# Minutes each home feed section stays cached.
SECTION_TTL_MINUTES = {
    'discover_weekly': 60,
    'daily_mix': 30,
    'release_radar': 120,
    'recently_played': 10,
    'jump_back_in': 15,
    'heavy_rotation': 60,
    'because_you_liked': 45,
    'similar_artists': 90,
    'trending_now': 15,
    'new_releases': 180,
    'charts': 60,
    'morning_mix': 30,
    'evening_chill': 30,
    'workout_mix': 120,
    'focus_music': 180,
    'friends_listening': 5,
    'popular_in_network': 30,
    'genre_based': 240,
    'mood_based': 90,
    'activity_based': 120,
}

class RecommendationCache:
    def __init__(self, redis_url: Optional[str] = None, max_entries: int = None, default_ttl: int = None, key_prefix: str = None):
        self.redis_url = redis_url
        self.max_entries = max_entries or config.cache.max_entries
        self.default_ttl = default_ttl or config.cache.default_ttl
        self.key_prefix = key_prefix or config.cache.key_prefix
        self.redis_client = None
        self.memory_cache: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self.stats = {'hits': 0, 'misses': 0, 'sets': 0, 'evictions': 0, 'errors': 0}
        if self.redis_url:
            self._connect()

    def _connect(self):
        try:
            self.redis_client = redis.from_url(self.redis_url)
            self.redis_client.ping()
            logger.info("Connected to Redis cache", redis_url=self.redis_url)
        except Exception as e:
            logger.warning(f"Failed to connect to Redis: {e}. Using in-memory cache.")
            self.redis_client = None

    @property
    def backend(self) -> str:
        return 'redis' if self.redis_client is not None else 'memory'

    def _fingerprint(self, request: RecommendationRequest) -> str:
        params = request.model_dump(mode='json')
        params['exclude_track_ids'] = sorted(params['exclude_track_ids'])
        return hashlib.md5(json.dumps(params, sort_keys=True, default=str).encode()).hexdigest()

    def _get_cache_key(self, request: RecommendationRequest) -> str:
        return f"{self.key_prefix}:{request.user_id}:{request.section_type}:{self._fingerprint(request)}"

    def section_ttl(self, section_type: str) -> int:
        minutes = SECTION_TTL_MINUTES.get(section_type)
        return minutes * 60 if minutes else self.default_ttl

    def _record_error(self, operation: str, error: Exception):
        self.stats['errors'] += 1
        metrics.increment_counter("cache_errors")
        logger.warning(f"Cache {operation} error: {error}", operation=operation)

    async def get(self, request: RecommendationRequest) -> Optional[RecommendationResponse]:
        cache_key = self._get_cache_key(request)
        payload = None
        if self.redis_client is None:
            payload = self._memory_get(cache_key)
        else:
            try:
                payload = await asyncio.to_thread(self.redis_client.get, cache_key)
            except Exception as e:
                self._record_error('get', e)

        if not payload:
            self.stats['misses'] += 1
            return None

        try:
            response = RecommendationResponse.model_validate_json(payload)
        except ValueError as e:
            self._record_error('decode', e)
            return None
        self.stats['hits'] += 1
        return response

    async def set(self, request: RecommendationRequest, response: RecommendationResponse, ttl: Optional[int] = None):
        if not response.tracks:
            return
        section_ttl = self.section_ttl(request.section_type)
        ttl = min(ttl, section_ttl) if ttl else section_ttl
        cache_key = self._get_cache_key(request)
        payload = response.model_dump_json()

        if self.redis_client is None:
            self._memory_set(cache_key, payload, ttl)
        else:
            try:
                await asyncio.to_thread(self.redis_client.setex, cache_key, ttl, payload)
            except Exception as e:
                self._record_error('set', e)
                return
        self.stats['sets'] += 1

    def _memory_get(self, cache_key: str) -> Optional[str]:
        entry = self.memory_cache.get(cache_key)
        if entry is None:
            return None
        if entry['expires_at'] <= time.time():
            del self.memory_cache[cache_key]
            return None
        self.memory_cache.move_to_end(cache_key)
        return entry['payload']

    def _memory_set(self, cache_key: str, payload: str, ttl: int):
        self.memory_cache[cache_key] = {'payload': payload, 'expires_at': time.time() + ttl}
        self.memory_cache.move_to_end(cache_key)
        if len(self.memory_cache) > self.max_entries:
            self._evict()

    def _evict(self):
        self.clear_expired_entries()
        overflow = len(self.memory_cache) - self.max_entries
        if overflow <= 0:
            return
        # drop the least recently used tenth, at least the overflow
        to_remove = max(overflow, self.max_entries // 10)
        for _ in range(min(to_remove, len(self.memory_cache))):
            self.memory_cache.popitem(last=False)
            self.stats['evictions'] += 1

    def clear_expired_entries(self) -> int:
        now = time.time()
        expired = [key for key, entry in self.memory_cache.items() if entry['expires_at'] <= now]
        for key in expired:
            del self.memory_cache[key]
        return len(expired)

    async def _invalidate(self, pattern: str, matches) -> int:
        if self.redis_client is None:
            keys = [key for key in self.memory_cache if matches(key)]
            for key in keys:
                del self.memory_cache[key]
            return len(keys)

        def delete_matching() -> int:
            keys = list(self.redis_client.scan_iter(match=pattern))
            if keys:
                self.redis_client.delete(*keys)
            return len(keys)

        try:
            return await asyncio.to_thread(delete_matching)
        except Exception as e:
            self._record_error('invalidate', e)
            return 0

    async def invalidate_user(self, user_id: str) -> int:
        prefix = f"{self.key_prefix}:{user_id}:"
        removed = await self._invalidate(f"{prefix}*", lambda key: key.startswith(prefix))
        logger.debug("Invalidated user cache", user_id=user_id, removed=removed)
        return removed

    async def invalidate_section(self, section_type: str) -> int:
        marker = f":{section_type}:"
        removed = await self._invalidate(
            f"{self.key_prefix}:*{marker}*",
            lambda key: marker in key[len(self.key_prefix):]
        )
        logger.debug("Invalidated section cache", section_type=section_type, removed=removed)
        return removed

    async def clear(self):
        self.memory_cache.clear()
        if self.redis_client is not None:
            await self._invalidate(f"{self.key_prefix}:*", lambda key: True)

    def get_cache_stats(self) -> Dict[str, Any]:
        lookups = self.stats['hits'] + self.stats['misses']
        return {
            **self.stats,
            'backend': self.backend,
            'entries': len(self.memory_cache),
            'hit_rate': self.stats['hits'] / lookups if lookups else 0.0,
        }
