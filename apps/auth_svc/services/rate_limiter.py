# apps/auth_svc/services/rate_limiter.py
from __future__ import annotations

import hashlib
import logging
import math
from dataclasses import dataclass

from libs.infra.central_redis_client import CentralRedisClient
from libs.utils.clock import Clock
from libs.utils.redis_keys import key_rate_window

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    count: float
    limit: int
    retry_after: int


class SlidingWindowRateLimiter:
    """
    Скользящее окно на двух корзинах Redis: текущее окно и предыдущее,
    взвешенное долей окна, которая ещё не прошла.
    Счётчик увеличивается до проверки (INCR атомарен), поэтому параллельные
    попытки не проскакивают лимит.
    """

    def __init__(self, redis: CentralRedisClient, clock: Clock):
        self.redis = redis
        self.clock = clock

    @staticmethod
    def subject(*parts: str) -> str:
        """Ключ (IP, email) хешируется: в Redis не попадают персональные данные."""
        raw = "|".join(part.strip().lower() for part in parts)
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]

    async def hit(self, scope: str, subject: str, *, limit: int, window_sec: int) -> RateLimitDecision:
        now_ts = self.clock.now().timestamp()
        window_index = int(now_ts // window_sec)
        elapsed = (now_ts % window_sec) / window_sec

        current_key = key_rate_window(scope, subject, window_index)
        previous_key = key_rate_window(scope, subject, window_index - 1)

        current = await self.redis.incr_with_ttl(current_key, window_sec * 2)
        previous_raw = await self.redis.get(previous_key)
        previous = int(previous_raw) if previous_raw else 0

        estimated = previous * (1.0 - elapsed) + current
        allowed = estimated <= limit
        retry_after = 0 if allowed else max(1, math.ceil(window_sec - (now_ts % window_sec)))
        if not allowed:
            log.warning(
                f"Rate limit '{scope}' превышен: {estimated:.1f}/{limit}",
                extra={"event": "rate_limited"},
            )
        return RateLimitDecision(allowed=allowed, count=estimated, limit=limit, retry_after=retry_after)
