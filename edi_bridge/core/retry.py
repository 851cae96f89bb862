"""
EDI Bridge - Retry Policy

Backoff configuration shared by outbound delivery and inbound polling.
"""

import random
from dataclasses import dataclass
from typing import Optional

from .exceptions import TransportFailure


@dataclass
class RetryPolicy:
    """Backoff timing; the retry budget belongs to the job being retried."""
    base_delay: float = 5.0
    max_delay: float = 300.0
    exponential_base: float = 2.0
    jitter: bool = True

    @classmethod
    def default(cls) -> "RetryPolicy":
        return cls()

    @classmethod
    def rate_limited(cls) -> "RetryPolicy":
        """Longer backoff for partners that answered 429."""
        return cls(base_delay=30.0, max_delay=900.0)

    def compute_delay(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """
        Delay in seconds before retry number ``attempt`` (1-based).

        Exponential and capped at ``max_delay``; jitter scales the result
        into ``[0.5, 1.0)`` of the capped value.
        """
        attempt = max(1, attempt)
        delay = min(self.base_delay * (self.exponential_base ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay *= 0.5 + (rng or random).random() * 0.5
        return delay


def policy_for(
    failure: Optional[TransportFailure],
    generic: RetryPolicy,
    rate_limited: RetryPolicy,
) -> RetryPolicy:
    """Pick the rate-limit policy for 429-class failures, the generic one otherwise."""
    if failure is not None and failure.rate_limited:
        return rate_limited
    return generic
