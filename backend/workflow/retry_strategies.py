"""Step retry strategies.

Provides configurable retry policies for workflow steps:
- No retry
- Fixed delay
- Exponential backoff (doubling from the base delay)
- Linear backoff

Only transient failures are retried. An error is transient when it is an
EngineException flagged `transient` (TransientError, ModelAPIError for
429/5xx) or a raw timeout/connection error from the network stack.

Step configuration:
    {"max_attempts": 3, "backoff": "exponential",
     "base_delay_ms": 100, "max_delay_ms": 30000}

Usage:
    strategy = RetryStrategy.from_dict(step.retry_config or {})
    result = await execute_with_retry(run_attempt, strategy, on_retry=log_retry)
"""

import asyncio
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

import httpx

from core.exceptions import EngineException


class RetryPolicy(str, Enum):
    """Available retry policies."""
    FIXED = "fixed"
    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    NONE = "none"


TIMEOUT_ERRORS = {"TimeoutError", "ConnectTimeout", "ReadTimeout", "WriteTimeout", "PoolTimeout"}
CONNECTION_ERRORS = {"ConnectionError", "ConnectionRefusedError", "ConnectionResetError", "ConnectError"}


def is_transient(error: BaseException) -> bool:
    """Whether an error is worth another attempt."""
    if isinstance(error, EngineException):
        return bool(error.transient)
    if isinstance(error, httpx.TransportError):
        return True
    name = type(error).__name__
    return name in TIMEOUT_ERRORS or name in CONNECTION_ERRORS


@dataclass(frozen=True)
class RetryAttempt:
    """A scheduled retry: the attempt that failed and the delay before the next."""
    number: int
    delay: float
    max_attempts: int

    @property
    def is_last(self) -> bool:
        return self.number + 1 >= self.max_attempts


@dataclass(frozen=True)
class RetryStrategy:
    """Retry strategy for one step. Delays are in seconds."""
    policy: RetryPolicy = RetryPolicy.NONE
    max_attempts: int = 1
    base_delay: float = 0.0
    max_delay: float = 300.0
    jitter: bool = False
    jitter_range: float = 0.5
    retryable_errors: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def none(cls) -> "RetryStrategy":
        """Single attempt, fail immediately."""
        return cls(policy=RetryPolicy.NONE, max_attempts=1)

    @classmethod
    def fixed(cls, max_attempts: int = 3, delay: float = 1.0) -> "RetryStrategy":
        """Fixed delay between attempts."""
        return cls(policy=RetryPolicy.FIXED, max_attempts=max_attempts, base_delay=delay)

    @classmethod
    def exponential(
        cls,
        max_attempts: int = 3,
        base_delay: float = 0.1,
        max_delay: float = 30.0,
        jitter: bool = False,
    ) -> "RetryStrategy":
        """Exponential backoff: base, 2*base, 4*base, ... capped at max_delay."""
        return cls(
            policy=RetryPolicy.EXPONENTIAL,
            max_attempts=max_attempts,
            base_delay=base_delay,
            max_delay=max_delay,
            jitter=jitter,
        )

    @classmethod
    def linear(
        cls,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
    ) -> "RetryStrategy":
        """Linear backoff: delay = base_delay * attempt_number."""
        return cls(
            policy=RetryPolicy.LINEAR,
            max_attempts=max_attempts,
            base_delay=base_delay,
            max_delay=max_delay,
        )

    @classmethod
    def from_dict(cls, config: Optional[dict]) -> "RetryStrategy":
        """Create a strategy from a step's retry_config.

        Missing config means a single attempt. Raises ValueError on
        malformed values; callers turn that into a ConfigurationError.
        """
        if not config:
            return cls.none()
        max_attempts = int(config.get("max_attempts", 1))
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        policy = RetryPolicy(config.get("backoff", RetryPolicy.EXPONENTIAL.value))
        if max_attempts == 1:
            policy = RetryPolicy.NONE
        base_delay_ms = float(config.get("base_delay_ms", 100))
        max_delay_ms = float(config.get("max_delay_ms", 30000))
        if base_delay_ms < 0 or max_delay_ms < 0:
            raise ValueError("retry delays must not be negative")
        return cls(
            policy=policy,
            max_attempts=max_attempts,
            base_delay=base_delay_ms / 1000.0,
            max_delay=max_delay_ms / 1000.0,
            jitter=bool(config.get("jitter", False)),
            retryable_errors=tuple(config.get("retryable_errors", ())),
        )

    def to_dict(self) -> dict:
        """Serialize back to the step configuration shape."""
        return {
            "max_attempts": self.max_attempts,
            "backoff": self.policy.value,
            "base_delay_ms": int(self.base_delay * 1000),
            "max_delay_ms": int(self.max_delay * 1000),
            "jitter": self.jitter,
            "retryable_errors": list(self.retryable_errors),
        }

    def compute_delay(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        if self.policy == RetryPolicy.NONE:
            return 0.0

        if self.policy == RetryPolicy.FIXED:
            delay = self.base_delay
        elif self.policy == RetryPolicy.EXPONENTIAL:
            delay = self.base_delay * (2 ** (attempt - 1))
        elif self.policy == RetryPolicy.LINEAR:
            delay = self.base_delay * attempt
        else:
            delay = self.base_delay

        delay = min(delay, self.max_delay)

        if self.jitter and delay > 0:
            jitter_amount = delay * self.jitter_range
            delay = max(0.0, delay + random.uniform(-jitter_amount, jitter_amount))

        return round(delay, 3)

    def should_retry(self, attempt: int, error: Optional[BaseException] = None) -> bool:
        """Whether another attempt follows the failed `attempt` (1-based)."""
        if self.policy == RetryPolicy.NONE:
            return False
        if attempt >= self.max_attempts:
            return False
        if error is None:
            return True
        if self.retryable_errors and type(error).__name__ in self.retryable_errors:
            return True
        return is_transient(error)

    def attempts(self) -> list[RetryAttempt]:
        """Planned retries with pre-computed delays."""
        if self.policy == RetryPolicy.NONE:
            return []
        return [
            RetryAttempt(number=i, delay=self.compute_delay(i), max_attempts=self.max_attempts)
            for i in range(1, self.max_attempts)
        ]


# ─── Preset strategies ───

RETRY_PRESETS: dict[str, RetryStrategy] = {
    "none": RetryStrategy.none(),
    "model_call": RetryStrategy.exponential(max_attempts=3, base_delay=1.0, max_delay=30.0),
    "tool_backend": RetryStrategy.exponential(max_attempts=4, base_delay=0.5, max_delay=10.0),
    "database": RetryStrategy.fixed(max_attempts=3, delay=2.0),
}


async def execute_with_retry(
    func: Callable,
    strategy: RetryStrategy,
    *args,
    on_retry: Optional[Callable] = None,
    **kwargs,
):
    """Execute an async function with the given retry strategy.

    Args:
        func: Async callable to execute.
        strategy: RetryStrategy instance.
        on_retry: Optional callback(attempt, error, delay) called before each retry.

    Returns:
        The result of func(*args, **kwargs).

    Raises:
        The last exception once it is not retryable or attempts are exhausted.
    """
    attempt = 0

    while True:
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            attempt += 1

            if not strategy.should_retry(attempt, e):
                raise

            delay = strategy.compute_delay(attempt)

            if on_retry:
                if asyncio.iscoroutinefunction(on_retry):
                    await on_retry(attempt, e, delay)
                else:
                    on_retry(attempt, e, delay)

            await asyncio.sleep(delay)
