"""
Exponential backoff for publishing calls.

Each platform gets its own policy. An attempt is retried only when the
failure is transient: HTTP 429 or 5xx, a timeout or network error, a
provider that says it is temporarily unavailable, or a provider error whose
code or message names one of the policy's transient conditions. Everything
else is surfaced immediately.
"""

from __future__ import annotations

import asyncio
import logging
import random
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, TypeVar

import httpx

from socialbridge.core.errors import ConnectionFlowError, RateLimited
from socialbridge.db.models.credential import Platform

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})
MAX_JITTER_SECONDS = 1.0


def _normalize(value: str) -> str:
    return re.sub(r"[^a-z0-9]", "", value.lower())


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int
    base_delay: float
    max_delay: float
    retryable_codes: frozenset[str] = field(default_factory=frozenset)

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(
        self,
        attempt: int,
        *,
        retry_after: float | None = None,
        rng: Callable[[], float] = random.random,
    ) -> float:
        """Delay before retrying after zero-based ``attempt`` failed."""
        delay = self.base_delay * (2**attempt) + rng() * MAX_JITTER_SECONDS
        if retry_after is not None:
            delay = max(delay, retry_after)
        return min(delay, self.max_delay)

    def matches_transient_code(self, *values: str | None) -> bool:
        haystacks = [_normalize(v) for v in values if v]
        for code in self.retryable_codes:
            needle = _normalize(code)
            if any(needle in haystack for haystack in haystacks):
                return True
        return False

    def is_retryable(self, exc: BaseException) -> bool:
        if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError)):
            return True
        if isinstance(exc, ConnectionFlowError):
            if exc.retryable:
                return True
            if exc.provider_status in RETRYABLE_STATUSES:
                return True
            return self.matches_transient_code(exc.provider_code, exc.message)
        return False


_COMMON_5XX = ("service_unavailable", "internal_server_error")

RETRY_POLICIES: dict[Platform, RetryPolicy] = {
    Platform.TWITTER: RetryPolicy(
        max_retries=3,
        base_delay=1.0,
        max_delay=30.0,
        retryable_codes=frozenset(
            {"rate_limit_exceeded", "temporarily_unavailable", *_COMMON_5XX, "bad_gateway", "gateway_timeout"}
        ),
    ),
    Platform.LINKEDIN: RetryPolicy(
        max_retries=3,
        base_delay=2.0,
        max_delay=60.0,
        retryable_codes=frozenset({"rate_limit_exceeded", "temporarily_unavailable", *_COMMON_5XX}),
    ),
    Platform.INSTAGRAM: RetryPolicy(
        max_retries=2,
        base_delay=5.0,
        max_delay=30.0,
        retryable_codes=frozenset({"rate_limit_exceeded", "temporarily_unavailable", "service_unavailable"}),
    ),
    Platform.YOUTUBE: RetryPolicy(
        max_retries=2,
        base_delay=10.0,
        max_delay=120.0,
        retryable_codes=frozenset({"quota_exceeded", "rate_limit_exceeded", *_COMMON_5XX}),
    ),
    Platform.FACEBOOK: RetryPolicy(
        max_retries=3,
        base_delay=2.0,
        max_delay=60.0,
        retryable_codes=frozenset({"rate_limit_exceeded", "temporarily_unavailable", *_COMMON_5XX}),
    ),
    Platform.GOOGLE: RetryPolicy(
        max_retries=2,
        base_delay=1.0,
        max_delay=30.0,
        retryable_codes=frozenset({"rate_limit_exceeded", *_COMMON_5XX}),
    ),
}


def get_retry_policy(platform: Platform) -> RetryPolicy:
    return RETRY_POLICIES[platform]


@dataclass
class RetryResult(Generic[T]):
    value: T
    attempts: int
    delays: list[float]


class RetryEngine:
    def __init__(
        self,
        policy: RetryPolicy,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ):
        self.policy = policy
        self._sleep = sleep
        self._rng = rng

    async def run(self, operation: Callable[[], Awaitable[T]], *, label: str = "operation") -> RetryResult[T]:
        """Run ``operation`` until it succeeds, fails fatally, or retries run out.

        The last error is re-raised with ``attempts`` and ``delays`` attached.
        """
        delays: list[float] = []
        attempt = 0
        while True:
            try:
                value = await operation()
            except Exception as exc:
                retryable = self.policy.is_retryable(exc)
                if not retryable or attempt >= self.policy.max_retries:
                    logger.warning(
                        "%s failed on attempt %s/%s (%s): %s",
                        label,
                        attempt + 1,
                        self.policy.max_attempts,
                        "retries exhausted" if retryable else "fatal",
                        getattr(exc, "code", type(exc).__name__),
                    )
                    exc.attempts = attempt + 1  # type: ignore[attr-defined]
                    exc.delays = delays  # type: ignore[attr-defined]
                    raise

                retry_after = exc.retry_after if isinstance(exc, RateLimited) else None
                delay = self.policy.delay_for(attempt, retry_after=retry_after, rng=self._rng)
                logger.info(
                    "%s attempt %s/%s failed (%s), retrying in %.2fs",
                    label,
                    attempt + 1,
                    self.policy.max_attempts,
                    getattr(exc, "code", type(exc).__name__),
                    delay,
                )
                delays.append(delay)
                await self._sleep(delay)
                attempt += 1
                continue
            return RetryResult(value=value, attempts=attempt + 1, delays=delays)
