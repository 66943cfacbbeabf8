"""
Redis cache for report payloads.

Keys: {prefix}:{module}:g{generation}:{key}

Each module has a generation counter. Invalidating a module bumps the
counter, so every write is a single INCR and stale entries simply age out
through their TTL. When Redis is disabled or unreachable every call
degrades to a miss and reports are computed from the database.
"""

import json
import logging
from datetime import date, datetime
from typing import Any, Callable, Optional

import redis
from flask import Flask, current_app
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

REPORTS_MODULE = 'reports'


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


class ReportCache:
    """Cache-aside store for JSON-serializable report results."""

    def __init__(self, app: Optional[Flask] = None):
        self.client: Optional[redis.Redis] = None
        self.prefix = 'minierp'
        self.default_ttl = 60
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        self.prefix = app.config.get('CACHE_KEY_PREFIX', 'minierp')
        self.default_ttl = app.config.get('CACHE_DEFAULT_TTL', 60)

        if not app.config.get('CACHE_ENABLED', True):
            logger.info("[CACHE] Disabled by configuration")
            return

        redis_url = app.config.get('REDIS_URL', 'redis://localhost:6379/0')
        try:
            client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=3,
                socket_timeout=3,
                retry_on_timeout=True,
                health_check_interval=30
            )
            client.ping()
        except RedisError as e:
            logger.warning(f"[CACHE] Redis unreachable at {redis_url}: {e}. Reports will not be cached.")
            return

        self.client = client
        logger.info(f"[CACHE] Redis connected: {redis_url}")

    def is_available(self) -> bool:
        if self.client is None:
            return False
        try:
            return bool(self.client.ping())
        except RedisError:
            return False

    def _generation_key(self, module: str) -> str:
        return f"{self.prefix}:{module}:generation"

    def _key(self, module: str, key: str) -> str:
        generation = self.client.get(self._generation_key(module)) or '0'
        return f"{self.prefix}:{module}:g{generation}:{key}"

    def get(self, module: str, key: str) -> Optional[Any]:
        if self.client is None:
            return None
        try:
            raw = self.client.get(self._key(module, key))
        except RedisError as e:
            logger.warning(f"[CACHE] Read of {module}:{key} failed: {e}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"[CACHE] Discarding unreadable entry {module}:{key}")
            return None

    def set(self, module: str, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        if self.client is None:
            return False
        try:
            payload = json.dumps(value, default=_json_default)
            self.client.setex(self._key(module, key), ttl or self.default_ttl, payload)
            return True
        except (RedisError, TypeError) as e:
            logger.warning(f"[CACHE] Write of {module}:{key} failed: {e}")
            return False

    def memoize(self, module: str, key: str, loader: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        """Return the cached value or compute it with loader and store it."""
        cached = self.get(module, key)
        if cached is not None:
            return cached
        value = loader()
        self.set(module, key, value, ttl)
        return value

    def invalidate_module(self, module: str) -> bool:
        """Start a new generation; entries of older generations are never read again."""
        if self.client is None:
            return False
        try:
            generation = self.client.incr(self._generation_key(module))
        except RedisError as e:
            logger.warning(f"[CACHE] Invalidation of {module} failed: {e}")
            return False
        logger.debug(f"[CACHE] {module} now at generation {generation}")
        return True

    def probe(self) -> bool:
        """Write and read back a short-lived key."""
        if not self.set('system', 'probe', {'ok': True}, ttl=10):
            return False
        return self.get('system', 'probe') == {'ok': True}


_cache: Optional[ReportCache] = None


def init_cache(app: Flask) -> None:
    global _cache
    _cache = ReportCache(app)
    app.extensions['report_cache'] = _cache


def get_cache() -> ReportCache:
    if _cache is None:
        raise RuntimeError("Report cache not initialized, call init_cache(app) first")
    return _cache


def reports_ttl() -> int:
    return current_app.config.get('CACHE_REPORTS_TTL', 60)


def invalidate_reports() -> None:
    """Drop cached reports after a write. A missing cache is not an error."""
    if _cache is not None:
        _cache.invalidate_module(REPORTS_MODULE)
