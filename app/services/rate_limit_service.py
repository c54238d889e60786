"""
Rate limiting service for swipes and message sends.

Uses Redis sorted sets (sliding window algorithm) for distributed, accurate
rate limiting. Falls back gracefully if Redis is unavailable.
"""
import logging
import time
from typing import Tuple

from app.core.exceptions import RateLimited

logger = logging.getLogger(__name__)


class RateLimitService:
    """
    Rate limiting service backed by Redis sliding-window counters.

    ``check_rate_limit(key, max_requests, window_seconds)`` atomically records
    and evaluates the current request against a per-key sorted-set counter in
    Redis. ``enforce`` does the same and raises ``RateLimited``.
    """

    async def check_rate_limit(
        self,
        key: str,
        max_requests: int,
        window_seconds: int,
    ) -> Tuple[bool, int]:
        """
        Check whether the caller identified by *key* has exceeded the rate
        limit, and record the current request.

        Uses a Redis sorted-set sliding window:
        - Removes entries older than the window.
        - Inserts the current timestamp.
        - Counts remaining entries.
        - Sets a TTL so keys expire automatically.

        Args:
            key:            Unique rate-limit bucket identifier, e.g.
                            ``"swipe:user:<uuid>"`` or ``"message:user:<uuid>"``.
            max_requests:   Maximum number of requests allowed inside
                            *window_seconds*.
            window_seconds: Length of the sliding window in seconds.

        Returns:
            Tuple of (is_allowed, retry_after_seconds).
            ``is_allowed`` is False when the limit is exceeded.
            ``retry_after_seconds`` is 0 when allowed, otherwise the number
            of seconds until the oldest request in the window expires.
        """
        resolved_key = f"ratelimit:{key}"

        try:
            from app.core.cache import get_redis

            r = await get_redis()
            now = time.time()
            window_start = now - window_seconds

            pipe = r.pipeline()
            # Remove entries that have fallen outside the current window.
            pipe.zremrangebyscore(resolved_key, 0, window_start)
            # Member carries a monotonic suffix so same-instant requests do not collide.
            pipe.zadd(resolved_key, {f"{now}:{time.monotonic_ns()}": now})
            pipe.zcard(resolved_key)
            pipe.expire(resolved_key, window_seconds)
            results = await pipe.execute()

            count: int = results[2]

            if count > max_requests:
                oldest = await r.zrange(resolved_key, 0, 0, withscores=True)
                if oldest:
                    retry_after = int(window_seconds - (now - oldest[0][1]))
                    retry_after = max(retry_after, 1)
                else:
                    retry_after = window_seconds
                return False, retry_after

            return True, 0

        except Exception:
            # If Redis is unavailable, fail open rather than blocking all users.
            logger.warning(
                "Rate limit check failed for key '%s', failing open",
                key,
                exc_info=True,
            )
            return True, 0

    async def enforce(self, key: str, max_requests: int, window_seconds: int) -> None:
        """
        Record a request and raise if the bucket is over its limit.

        Raises:
            RateLimited: With ``retry_after`` seconds until a slot frees up
        """
        allowed, retry_after = await self.check_rate_limit(key, max_requests, window_seconds)
        if not allowed:
            logger.info(f"Rate limit exceeded for {key}, retry after {retry_after}s")
            raise RateLimited(retry_after)


# Singleton instance used throughout the application.
rate_limit_service = RateLimitService()
