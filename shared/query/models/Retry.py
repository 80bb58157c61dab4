"""Retry and backoff policy for query execution."""

import random

from pydantic import BaseModel, Field, model_validator

from shared.helper.HelperConfig import HelperConfig


class RetryPolicy(BaseModel):
    """Exponential backoff with positive jitter.

    The delay before retry n (1-based) is `min(base_delay * factor**(n-1), max_delay)`
    stretched by a random factor in `[1, 1 + jitter]`. Because `factor > 1 + jitter`,
    delays strictly increase until `max_delay` is reached.

    Attributes:
        max_attempts: Total attempts per request, including the first one.
        base_delay: Delay before the first retry, in seconds.
        max_delay: Upper bound for the un-jittered delay, in seconds.
        factor: Geometric growth factor.
        jitter: Maximum relative stretch added to each delay.
        attempt_timeout: Timeout per attempt in seconds. None disables it.
    """

    max_attempts: int = Field(default=4, ge=1)
    base_delay: float = Field(default=0.5, ge=0.0)
    max_delay: float = Field(default=8.0, ge=0.0)
    factor: float = Field(default=2.0, gt=1.0)
    jitter: float = Field(default=0.2, ge=0.0, lt=1.0)
    attempt_timeout: float | None = Field(default=30.0, gt=0.0)

    @model_validator(mode="after")
    def _check_growth(self) -> "RetryPolicy":
        if self.factor <= 1.0 + self.jitter:
            raise ValueError("factor must exceed 1 + jitter so that delays keep increasing.")
        return self

    @classmethod
    def from_config(cls, helper_config: HelperConfig) -> "RetryPolicy":
        """Build a policy from the QUERY_RETRY_* and QUERY_ATTEMPT_TIMEOUT environment variables."""
        defaults = cls()
        timeout = helper_config.get_number_val("QUERY_ATTEMPT_TIMEOUT", default=defaults.attempt_timeout)
        return cls(
            max_attempts=helper_config.get_number_val("QUERY_RETRY_MAX_ATTEMPTS", default=defaults.max_attempts),
            base_delay=helper_config.get_number_val("QUERY_RETRY_BASE_DELAY", default=defaults.base_delay),
            max_delay=helper_config.get_number_val("QUERY_RETRY_MAX_DELAY", default=defaults.max_delay),
            factor=helper_config.get_number_val("QUERY_RETRY_FACTOR", default=defaults.factor),
            jitter=helper_config.get_number_val("QUERY_RETRY_JITTER", default=defaults.jitter),
            # 0 disables the per-attempt timeout
            attempt_timeout=timeout or None,
        )

    def delay_for(self, retry_number: int, rng: random.Random | None = None) -> float:
        """Return the delay in seconds before retry `retry_number` (1-based)."""
        rng = rng or random
        delay = min(self.base_delay * self.factor ** (retry_number - 1), self.max_delay)
        return delay * (1 + rng.uniform(0, self.jitter))
