"""Exponential backoff for upstream reconnects.

Delays grow by `factor` on every failure until they hit `maximum`,
and drop back to `initial` after a successful connect. No jitter —
there is exactly one upstream connection per relay.
"""

from dataclasses import dataclass, field


@dataclass
class ExponentialBackoff:
    initial: float = 1.0
    maximum: float = 60.0
    factor: float = 2.0
    attempts: int = field(default=0, init=False)
    _current: float = field(default=0.0, init=False, repr=False)

    def __post_init__(self):
        if self.initial <= 0:
            raise ValueError("initial delay must be positive")
        if self.factor <= 1:
            raise ValueError("factor must be greater than 1")
        if self.maximum < self.initial:
            raise ValueError("maximum delay must be >= initial delay")
        self._current = self.initial

    def next_delay(self) -> float:
        """Delay to wait before the next attempt."""
        delay = self._current
        self.attempts += 1
        self._current = min(self._current * self.factor, self.maximum)
        return delay

    def reset(self) -> None:
        self.attempts = 0
        self._current = self.initial
