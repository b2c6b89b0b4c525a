"""
Rate Limiting

Fixed-window request counters kept in Redis, keyed by bucket and client IP.
"""

import logging
from dataclasses import dataclass

import redis

from connector_core.redis import incr_window
from whatsapp_connector.errors import RateLimited

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitRule:
    bucket: str
    limit: int
    window_seconds: int
    message: str


MESSAGES = RateLimitRule("messages", 100, 15 * 60, "Too many messages sent, please try again later.")
SESSIONS = RateLimitRule("sessions", 10, 5 * 60, "Too many session requests, please try again later.")
OAUTH = RateLimitRule("oauth", 20, 15 * 60, "Too many OAuth requests, please try again later.")
API = RateLimitRule("api", 1000, 15 * 60, "Too many requests from this IP, please try again later.")


class RateLimiter:
    """Checks and counts hits against fixed-window rules."""

    def __init__(self, client: redis.Redis, enabled: bool = True, prefix: str = "ratelimit"):
        self.client = client
        self.enabled = enabled
        self.prefix = prefix

    def hit(self, rule: RateLimitRule, identity: str) -> int:
        """
        Count one request.

        Returns:
            Requests left in the current window

        Raises:
            RateLimited: When the window's limit is exceeded
        """
        if not self.enabled:
            return rule.limit

        key = f"{self.prefix}:{rule.bucket}:{identity}"
        try:
            count, ttl = incr_window(self.client, key, rule.window_seconds)
        except redis.RedisError as e:
            # Fail open while Redis is down
            logger.warning(f"Rate limiter unavailable: {e}", extra={"bucket": rule.bucket})
            return rule.limit

        if count > rule.limit:
            logger.warning(
                "Rate limit exceeded",
                extra={"bucket": rule.bucket, "identity": identity, "count": count},
            )
            raise RateLimited(rule.message, retry_after=ttl)

        return rule.limit - count
