"""
Redis backed stores: cached coverage results, the in-progress registry and
rendered badge bytes.

Store failures never escape these wrappers. Reads degrade to a miss and
writes are logged, so a flaky Redis leads to extra coverage runs rather than
requests that hang or fail.
"""
import logging
import time

import redis

from config import (
    RESULT_KEY_PREFIX,
    IN_PROGRESS_KEY,
    BADGE_KEY_PREFIX,
    RESULT_TTL_SECONDS,
    RUN_TIMEOUT_SECONDS,
)
from models import CoverageResult

logger = logging.getLogger(__name__)


def create_redis_client(url):
    """Create a Redis client returning str values."""
    return redis.Redis.from_url(url, decode_responses=True)


class ResultCache:
    """Coverage results keyed by (repository, tag), each with a fixed expiry."""

    def __init__(self, redis_client, ttl_seconds=RESULT_TTL_SECONDS, prefix=RESULT_KEY_PREFIX):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    def _cache_key(self, key):
        return f"{self.prefix}{key}"

    def get(self, key):
        """
        Look up the cached result for a job.

        Args:
            key (CoverageJobKey): Job identity

        Returns:
            CoverageResult or None: The cached result, None on a miss
        """
        try:
            raw = self.redis.get(self._cache_key(key))
        except redis.RedisError as e:
            logger.warning(f"Result cache read failed for {key}: {e}")
            return None
        if raw is None:
            return None
        try:
            return CoverageResult.from_json(raw)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unreadable cached result for {key}: {e}")
            return None

    def set(self, result):
        """Store a result, replacing any previous one for the same job."""
        try:
            self.redis.set(self._cache_key(result.key), result.to_json(), ex=self.ttl_seconds)
            return True
        except redis.RedisError as e:
            logger.error(f"Result cache write failed for {result.key}: {e}")
            return False

    def recent(self, limit, scan_count=10, max_keys=50):
        """
        Collect up to ``limit`` results that hold a real coverage figure.

        Only a bounded number of keys is examined; the view is a display
        convenience and not an index of every cached result.
        """
        results = []
        try:
            examined = 0
            for cache_key in self.redis.scan_iter(match=f"{self.prefix}*", count=scan_count):
                examined += 1
                raw = self.redis.get(cache_key)
                if raw:
                    try:
                        result = CoverageResult.from_json(raw)
                    except (ValueError, KeyError, TypeError):
                        result = None
                    if result is not None and result.has_output:
                        results.append(result)
                if len(results) >= limit or examined >= max_keys:
                    break
        except redis.RedisError as e:
            logger.warning(f"Scanning recent results failed: {e}")
        return results[:limit]


class InProgressRegistry:
    """
    Jobs with an active coverage run, kept as fields of one Redis hash.

    Each field holds the time the run was claimed. Markers older than
    ``stale_after`` seconds are treated as absent, which bounds how long a
    marker leaked by a crashed instance can report a job as running.
    """

    def __init__(self, redis_client, map_key=IN_PROGRESS_KEY, stale_after=RUN_TIMEOUT_SECONDS * 2):
        self.redis = redis_client
        self.map_key = map_key
        self.stale_after = stale_after

    def _is_stale(self, value):
        try:
            started = float(value)
        except (TypeError, ValueError):
            return True
        return time.time() - started > self.stale_after

    def is_set(self, key):
        try:
            value = self.redis.hget(self.map_key, str(key))
        except redis.RedisError as e:
            logger.warning(f"In-progress lookup failed for {key}: {e}")
            return False
        if value is None:
            return False
        if self._is_stale(value):
            # Left in place; the next try_set overwrites it
            logger.warning(f"Ignoring stale in-progress marker for {key}")
            return False
        return True

    def try_set(self, key):
        """
        Claim a job, returning False if another run already holds it.

        The claim is atomic within Redis. A store failure counts as a
        successful claim.
        """
        field = str(key)
        try:
            if self.redis.hsetnx(self.map_key, field, time.time()):
                return True
            if self._is_stale(self.redis.hget(self.map_key, field)):
                self.redis.hset(self.map_key, field, time.time())
                return True
            return False
        except redis.RedisError as e:
            logger.warning(f"In-progress claim failed for {key}: {e}")
            return True

    def set(self, key):
        try:
            self.redis.hset(self.map_key, str(key), time.time())
        except redis.RedisError as e:
            logger.warning(f"Setting in-progress marker failed for {key}: {e}")

    def clear(self, key):
        try:
            self.redis.hdel(self.map_key, str(key))
        except redis.RedisError as e:
            logger.error(f"Clearing in-progress marker failed for {key}: {e}")


class BadgeCache:
    """Rendered badge markup keyed by color, style and status text."""

    def __init__(self, redis_client, prefix=BADGE_KEY_PREFIX):
        self.redis = redis_client
        self.prefix = prefix

    def _cache_key(self, color, style, status):
        return f"{self.prefix}{color}-{style}-{status}"

    def get(self, color, style, status):
        try:
            return self.redis.get(self._cache_key(color, style, status))
        except redis.RedisError as e:
            logger.warning(f"Badge cache read failed: {e}")
            return None

    def set(self, color, style, status, svg):
        try:
            self.redis.set(self._cache_key(color, style, status), svg)
        except redis.RedisError as e:
            logger.warning(f"Badge cache write failed: {e}")
