"""
Exponential backoff policies for retries and outage recovery.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ExponentialBackoff:
    """
    Delay of ``base * 2**(attempt - 1)`` seconds, capped at ``cap``.

    Attempt numbers start at 1; anything lower is treated as 1.
    """

    base: float
    cap: float

    def delay(self, attempt: int) -> float:
        exponent = max(0, attempt - 1)
        # Avoid float overflow for very large attempt numbers
        if exponent > 62:
            return self.cap
        return min(self.cap, self.base * (2**exponent))


class OutageBackoff:
    """
    Tracks consecutive infrastructure failures for a polling loop.

    Call ``failure()`` after a store error to get the next sleep duration and
    ``reset()`` once the store answers again.
    """

    def __init__(self, base: float, cap: float):
        self._policy = ExponentialBackoff(base=base, cap=cap)
        self.failures = 0

    def failure(self) -> float:
        self.failures += 1
        return self._policy.delay(self.failures)

    def reset(self) -> None:
        self.failures = 0
