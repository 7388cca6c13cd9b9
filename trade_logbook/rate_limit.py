from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

from trade_logbook.exceptions import ThrottledError, ThrottleLimitExceeded

log = logging.getLogger(__name__)

T = TypeVar("T")


def mask_secret(value: str | None) -> str:
    s = (value or "").strip()
    if not s:
        return "****"
    return "****" + s[-4:]


@dataclass
class ThrottleStats:
    requests: int = 0
    throttled: int = 0
    last_attempts: int = 0
    max_attempts: int = 0
    backoff_s_total: float = 0.0
    gate_sleep_s_total: float = 0.0

    def as_json(self) -> dict[str, Any]:
        return {
            "requests": self.requests,
            "throttled": self.throttled,
            "last_attempts": self.last_attempts,
            "max_attempts": self.max_attempts,
            "backoff_s_total": round(self.backoff_s_total, 3),
            "gate_sleep_s_total": round(self.gate_sleep_s_total, 3),
        }


class RateGate:
    """
    Spaces outbound requests at least `min_interval_s` apart and retries
    throttled requests with exponential backoff plus jitter.

    Waiting is cooperative (asyncio.sleep on the caller's task); there is no
    background thread. With `max_throttle_retries=None` a throttled request is
    retried forever: progress is preferred over giving up, at the cost of
    stalling indefinitely against a peer that never stops throttling.
    """

    def __init__(
        self,
        min_interval_s: float = 1.3,
        *,
        backoff_base_s: float = 1.0,
        backoff_cap_s: float = 30.0,
        jitter_s: float = 1.2,
        max_throttle_retries: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ):
        self.min_interval_s = float(min_interval_s)
        self.backoff_base_s = float(backoff_base_s)
        self.backoff_cap_s = float(backoff_cap_s)
        self.jitter_s = float(jitter_s)
        self.max_throttle_retries = max_throttle_retries
        self._clock = clock
        self._sleep = sleep
        self._rng = rng
        self._last_granted_at: Optional[float] = None
        self._lock = asyncio.Lock()
        self.stats = ThrottleStats()

    async def acquire(self) -> float:
        """
        Wait until min_interval_s has passed since the previous grant.

        Returns:
          sleep_seconds (0 if no sleep occurred)
        """
        async with self._lock:
            slept = 0.0
            if self._last_granted_at is not None:
                wait = (self._last_granted_at + self.min_interval_s) - self._clock()
                if wait > 0:
                    log.debug("Rate gate sleep: %.2fs", wait)
                    await self._sleep(wait)
                    slept = wait
            self._last_granted_at = self._clock()
            self.stats.requests += 1
            self.stats.gate_sleep_s_total += slept
            return float(slept)

    def backoff_delay(self, attempt: int) -> float:
        base = min(self.backoff_cap_s, self.backoff_base_s * (2 ** max(0, int(attempt))))
        return float(base + self._rng() * self.jitter_s)

    async def call(self, fn: Callable[[], Awaitable[T]], *, label: str = "request") -> T:
        """
        Run one logical request: acquire the gate before every attempt (retries
        included) and back off on ThrottledError. The attempt counter is local
        to this call.
        """
        attempt = 0
        while True:
            await self.acquire()
            try:
                result = await fn()
            except ThrottledError as e:
                self.stats.throttled += 1
                if self.max_throttle_retries is not None and attempt >= self.max_throttle_retries:
                    self._record_attempts(attempt + 1)
                    raise ThrottleLimitExceeded(attempt + 1) from e
                delay = self.backoff_delay(attempt)
                log.warning(
                    "Throttled on %s (status=%s code=%s); attempt %s, retrying in %.2fs",
                    label,
                    e.http_status,
                    e.code,
                    attempt + 1,
                    delay,
                )
                self.stats.backoff_s_total += delay
                await self._sleep(delay)
                attempt += 1
                continue
            self._record_attempts(attempt + 1)
            return result

    def _record_attempts(self, attempts: int) -> None:
        self.stats.last_attempts = attempts
        self.stats.max_attempts = max(self.stats.max_attempts, attempts)
