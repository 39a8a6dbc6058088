# rest2mqtt/core/ratelimit.py
"""
Fixed-window request rate limiting on top of ``limits``.

A :class:`RateLimiter` counts requests per key against a :class:`RatePolicy`
(``limit`` requests per ``period`` seconds). Counters live in a ``limits``
storage:

- ``memory://`` keeps them in-process and expires idle keys on its own.
- ``redis://`` keeps them in Redis so that every bridge instance pointing at
  the same server shares one counter per key and window.
"""
from __future__ import annotations

import logging
import math
import re
import time
from dataclasses import dataclass

import limits
from limits.errors import ConfigurationError
from limits.storage import Storage, storage_from_string
from limits.strategies import FixedWindowRateLimiter

from rest2mqtt.core.exceptions import ConfigError

logger = logging.getLogger(__name__)

KEY_PREFIX = "rest2mqtt_limiter"
MEMORY_STORAGE_URI = "memory://"

# Compact policy form, e.g. "4-H" for four per hour
_COMPACT = re.compile(r"^\s*(\d+)\s*-\s*([smhd])\s*$", re.IGNORECASE)
_COMPACT_UNITS = {"s": "second", "m": "minute", "h": "hour", "d": "day"}


@dataclass(frozen=True)
class RatePolicy:
    """``limit`` requests per ``period`` seconds."""

    limit: int
    period: int

    @classmethod
    def parse(cls, text: str) -> "RatePolicy":
        """
        Parse ``4-H`` style or ``4/hour`` / ``4 per hour`` style policies.

        Raises:
            ConfigError: If the text is malformed or the count is not positive.
        """
        match = _COMPACT.match(text)
        if match is not None:
            text = f"{match.group(1)}/{_COMPACT_UNITS[match.group(2).lower()]}"

        try:
            item = limits.parse(text)
        except ValueError as exc:
            raise ConfigError(
                f"Invalid rate limit '{text}'. Expected e.g. '4-H' or '4/hour'"
            ) from exc

        if item.amount <= 0:
            raise ConfigError(f"Rate limit count must be positive, got {item.amount}")

        return cls(limit=item.amount, period=item.get_expiry())

    @property
    def item(self) -> limits.RateLimitItem:
        return limits.RateLimitItemPerSecond(self.limit, self.period)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_after: float

    @property
    def reset_at(self) -> int:
        """Epoch second at which the current window ends."""
        return int(time.time() + self.reset_after)

    @property
    def retry_after(self) -> int:
        return max(1, math.ceil(self.reset_after))


def create_storage(redis_url: str | None) -> Storage:
    """Redis storage when ``redis_url`` is set, otherwise process-local memory."""
    uri = redis_url or MEMORY_STORAGE_URI
    try:
        storage = storage_from_string(uri)
    except (ConfigurationError, ValueError) as exc:
        raise ConfigError(f"Invalid REDIS_URL: {exc}") from exc

    logger.info(
        "Rate limiting with %s storage",
        "Redis" if redis_url else "in-memory",
    )
    return storage


class RateLimiter:
    """Checks keys against a policy; always allows when disabled."""

    def __init__(
        self,
        policy: RatePolicy,
        storage: Storage,
        *,
        enabled: bool = True,
    ) -> None:
        self.policy = policy
        self.enabled = enabled
        self.storage = storage
        self._strategy = FixedWindowRateLimiter(storage)

    def allow(self, key: str) -> RateLimitDecision:
        if not self.enabled:
            return RateLimitDecision(
                allowed=True,
                limit=self.policy.limit,
                remaining=self.policy.limit,
                reset_after=0.0,
            )

        item = self.policy.item
        allowed = self._strategy.hit(item, KEY_PREFIX, key)
        stats = self._strategy.get_window_stats(item, KEY_PREFIX, key)
        return RateLimitDecision(
            allowed=allowed,
            limit=self.policy.limit,
            remaining=max(0, stats.remaining),
            reset_after=max(0.0, stats.reset_time - time.time()),
        )


def create_rate_limiter(
    rate_limit: str,
    redis_url: str | None = None,
    *,
    enabled: bool = True,
) -> RateLimiter:
    policy = RatePolicy.parse(rate_limit)
    if not enabled:
        logger.warning("Rate limiting disabled")
        return RateLimiter(policy, create_storage(None), enabled=False)
    return RateLimiter(policy, create_storage(redis_url))
