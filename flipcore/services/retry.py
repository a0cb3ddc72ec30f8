"""Retry with exponential backoff for collaborator calls.

Retryable failures (rate limits, timeouts, transport errors, 5xx) are
retried up to a per-service limit with capped, jittered exponential
delays. Non-retryable failures (validation, auth, not found) propagate
on the first attempt.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, TypeVar

from flipcore.config import settings
from flipcore.metrics import record_retry
from flipcore.services.errors import ServiceError, classify_exception

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff configuration for one service."""

    max_retries: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 30000
    multiplier: float = 2.0
    jitter_fraction: float = 0.1    # +/- fraction of the delay

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be non-negative, got {self.max_retries}")

    def calculate_delay(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """
        Delay in milliseconds before retry number `attempt` (0-based).

        min(initial * multiplier^attempt, max) with +/- jitter, never negative.
        """
        delay = min(self.initial_delay_ms * (self.multiplier ** attempt), self.max_delay_ms)
        if self.jitter_fraction > 0:
            r = (rng or random).random()
            delay += (r - 0.5) * 2 * delay * self.jitter_fraction
        return max(0.0, delay)


def default_policy() -> RetryPolicy:
    return RetryPolicy(
        max_retries=settings.retry_max_retries,
        initial_delay_ms=settings.retry_initial_delay_ms,
        max_delay_ms=settings.retry_max_delay_ms,
        multiplier=settings.retry_multiplier,
        jitter_fraction=settings.retry_jitter_fraction,
    )


def _build_service_policies() -> Dict[str, RetryPolicy]:
    base = default_policy()
    policies = {}
    for name, overrides in settings.service_retry_policies.items():
        values = {
            "max_retries": base.max_retries,
            "initial_delay_ms": base.initial_delay_ms,
            "max_delay_ms": base.max_delay_ms,
            "multiplier": base.multiplier,
            "jitter_fraction": base.jitter_fraction,
        }
        values.update(overrides)
        policies[name.lower()] = RetryPolicy(**values)
    return policies


# Per-service policy definitions
SERVICE_POLICIES: Dict[str, RetryPolicy] = _build_service_policies()


def policy_for_service(service: str) -> RetryPolicy:
    """Per-service policy, or the default policy for unknown services."""
    return SERVICE_POLICIES.get(service.lower()) or default_policy()


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    service: str,
    policy: Optional[RetryPolicy] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run an async operation, retrying classified retryable failures.

    Args:
        operation: Zero-argument callable returning a fresh awaitable
        service: Service name for policy lookup, logging and metrics
        policy: Override the service policy
        sleep: Awaitable sleep (seconds); injectable for tests

    Returns:
        The operation's result

    Raises:
        ServiceError: Non-retryable failure, or the last failure once
            retries are exhausted
    """
    policy = policy or policy_for_service(service)
    last_error: Optional[ServiceError] = None

    for attempt in range(policy.max_retries + 1):
        try:
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = classify_exception(e, service)
            cause = None if error is e else e
            last_error = error

            if not error.retryable:
                logger.warning(f"{service}: non-retryable error {error.code.value}: {error.message}")
                raise error from cause

            if attempt >= policy.max_retries:
                logger.error(
                    f"{service}: giving up after {policy.max_retries + 1} attempts ({error.code.value})"
                )
                raise error from cause

            delay_s = policy.calculate_delay(attempt) / 1000.0
            if error.retry_after is not None and error.retry_after > delay_s:
                delay_s = error.retry_after

            record_retry(service, error.code.value)
            logger.warning(
                f"{service}: {error.code.value}, retrying in {delay_s:.1f}s "
                f"(attempt {attempt + 1}/{policy.max_retries})"
            )
            await sleep(delay_s)

    raise last_error
