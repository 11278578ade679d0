"""Per-user inbound flood control."""

import logging
import time
from dataclasses import dataclass

from botrelay.platforms.models import PlatformUser

logger = logging.getLogger(__name__)


class RateLimitExceeded(Exception):
    """Raised when a user sends messages faster than allowed."""

    def __init__(self, user: str, retry_after: float, notify: bool = True):
        """Initialize exception.

        Args:
            user: User key that exceeded the limit
            retry_after: Seconds until the next message is accepted
            notify: False if the user was already told to slow down
        """
        self.user = user
        self.retry_after = retry_after
        self.notify = notify
        super().__init__(f"Rate limit exceeded for {user}, retry after {retry_after:.1f}s")


@dataclass
class _Bucket:
    tokens: float
    updated_at: float
    notified: bool = False


class RateLimiter:
    """Token bucket rate limiter keyed by platform user.

    Each user starts with `per_user` tokens (burst) which refill evenly over
    `window` seconds. Every inbound message costs one token.

    Example:
        per_user=10, window=60 = 10 messages burst, then one every 6s
    """

    def __init__(self, per_user: int = 10, window: float = 60.0):
        """Initialize rate limiter.

        Args:
            per_user: Messages allowed per window (and burst capacity)
            window: Window length in seconds
        """
        if per_user <= 0:
            raise ValueError("per_user must be positive")
        self._capacity = float(per_user)
        self._refill_per_second = per_user / window
        self._buckets: dict[str, _Bucket] = {}

    def _refill(self, key: str, now: float) -> _Bucket:
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = _Bucket(tokens=self._capacity, updated_at=now)
            self._buckets[key] = bucket
            return bucket

        elapsed = now - bucket.updated_at
        bucket.tokens = min(self._capacity, bucket.tokens + elapsed * self._refill_per_second)
        bucket.updated_at = now
        if bucket.tokens >= 1.0:
            bucket.notified = False
        return bucket

    def check_limit(self, user: PlatformUser) -> None:
        """Consume one token for a user's message.

        Args:
            user: Message author

        Raises:
            RateLimitExceeded: If the user has no tokens left. `notify` is
                True only for the first rejection until tokens refill.
        """
        key = str(user)
        bucket = self._refill(key, time.monotonic())

        if bucket.tokens < 1.0:
            retry_after = (1.0 - bucket.tokens) / self._refill_per_second
            notify = not bucket.notified
            bucket.notified = True
            raise RateLimitExceeded(key, retry_after, notify=notify)

        bucket.tokens -= 1.0
        logger.debug(f"Rate limit ok for {key}: {bucket.tokens:.1f} tokens left")

    def remaining(self, user: PlatformUser) -> float:
        """Tokens currently available to a user."""
        return self._refill(str(user), time.monotonic()).tokens

    def reset_user(self, user: PlatformUser) -> None:
        """Refill a user's bucket."""
        self._buckets.pop(str(user), None)

    def cleanup(self, max_age: float = 3600.0) -> int:
        """Drop buckets for users not seen recently.

        Args:
            max_age: Seconds since last message

        Returns:
            Number of buckets removed
        """
        now = time.monotonic()
        stale = [k for k, b in self._buckets.items() if now - b.updated_at > max_age]
        for key in stale:
            del self._buckets[key]
        if stale:
            logger.info(f"Cleaned up {len(stale)} rate limit buckets")
        return len(stale)
