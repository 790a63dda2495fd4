"""
RateLimiter — Per-kind token buckets in front of the generative collaborator.

Text and image calls draw on separate quotas: a burst of scenery paintings
during dictation must not starve the DM assistant's JSON calls, and a DM
mashing "refine avatar" should queue rather than burn the image quota.

    await gemini_quota.acquire("image")
"""

import os
import time
import asyncio
import logging
from typing import Dict

logger = logging.getLogger('RateLimiter')

TEXT = "text"
IMAGE = "image"


class RateLimiter:
    """One token bucket.

    Starts full at `max_tokens` and refills continuously at `refill_rate`
    tokens per second.
    """

    def __init__(self, max_tokens: int = 15, refill_rate: float = 0.25, name: str = "default"):
        if max_tokens < 1 or refill_rate <= 0:
            raise ValueError(f"[{name}] bucket needs max_tokens >= 1 and a positive refill rate")
        self.max_tokens = max_tokens
        self.refill_rate = refill_rate
        self.name = name
        self.tokens = float(max_tokens)
        self.last_refill = time.monotonic()
        self._lock = asyncio.Lock()

    @classmethod
    def per_minute(cls, requests: int, name: str) -> "RateLimiter":
        return cls(max_tokens=requests, refill_rate=requests / 60.0, name=name)

    @property
    def available(self) -> float:
        elapsed = time.monotonic() - self.last_refill
        return min(self.max_tokens, self.tokens + elapsed * self.refill_rate)

    def try_acquire(self) -> bool:
        """Take a token if one is ready; never waits."""
        now = time.monotonic()
        self.tokens = min(self.max_tokens, self.tokens + (now - self.last_refill) * self.refill_rate)
        self.last_refill = now
        if self.tokens >= 1.0:
            self.tokens -= 1.0
            return True
        return False

    async def acquire(self):
        """Wait for a token. Waiters are served in arrival order."""
        async with self._lock:
            while not self.try_acquire():
                delay = (1.0 - self.tokens) / self.refill_rate
                logger.warning(f"[{self.name}] Rate limit: waiting {delay:.1f}s")
                await asyncio.sleep(delay)


class GenerationQuota:
    """Named buckets, one per kind of generative call."""

    def __init__(self, buckets: Dict[str, RateLimiter]):
        self.buckets = buckets

    @classmethod
    def from_env(cls) -> "GenerationQuota":
        return cls({
            TEXT: RateLimiter.per_minute(int(os.getenv("GEMINI_TEXT_PER_MINUTE", "15")), name="gemini-text"),
            IMAGE: RateLimiter.per_minute(int(os.getenv("GEMINI_IMAGE_PER_MINUTE", "5")), name="gemini-image"),
        })

    async def acquire(self, kind: str):
        try:
            bucket = self.buckets[kind]
        except KeyError:
            raise ValueError(f"No rate limit bucket for {kind!r}") from None
        await bucket.acquire()


gemini_quota = GenerationQuota.from_env()
