from __future__ import annotations

from dataclasses import dataclass

from .constants import (
    DEFAULT_BACKOFF,
    DEFAULT_MAX_TIMEOUT_S,
    DEFAULT_RETRIES,
    DEFAULT_ROUNDS,
    DEFAULT_TIMEOUT_S,
)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Two-tier retransmission budget for a single transfer.

    ``retries`` bounds the resends of one outstanding packet within a round;
    ``rounds`` bounds how many times an exhausted round may be restarted over
    the whole transfer. A peer that never answers sees exactly
    ``(retries + 1) * (rounds + 1)`` transmissions.
    """

    timeout: float = DEFAULT_TIMEOUT_S
    backoff: float = DEFAULT_BACKOFF
    max_timeout: float = DEFAULT_MAX_TIMEOUT_S
    retries: int = DEFAULT_RETRIES
    rounds: int = DEFAULT_ROUNDS

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive: {self.timeout}")
        if self.backoff < 1.0:
            raise ValueError(f"backoff must be >= 1.0: {self.backoff}")
        if self.max_timeout < self.timeout:
            raise ValueError(f"max_timeout {self.max_timeout} is below timeout {self.timeout}")
        if self.retries < 0 or self.rounds < 0:
            raise ValueError("retries and rounds must be >= 0")

    def timeout_for(self, attempt: int) -> float:
        try:
            return min(self.timeout * self.backoff**attempt, self.max_timeout)
        except OverflowError:
            return self.max_timeout

    @property
    def max_transmissions(self) -> int:
        return (self.retries + 1) * (self.rounds + 1)
