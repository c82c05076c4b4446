"""Deadlines passed down into blocking I/O."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass

__all__ = ["Deadline"]


@dataclass(frozen=True)
class Deadline:
    """An absolute point on the monotonic clock.

    Attributes:
        expires_at: ``time.monotonic()`` value after which work must stop
        budget_s: The original allowance, kept for error messages
    """

    expires_at: float
    budget_s: float

    @classmethod
    def after(cls, seconds: float) -> Deadline:
        return cls(expires_at=time.monotonic() + seconds, budget_s=seconds)

    @classmethod
    def never(cls) -> Deadline:
        return cls(expires_at=math.inf, budget_s=math.inf)

    @property
    def is_bounded(self) -> bool:
        return math.isfinite(self.expires_at)

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self.expires_at

    def remaining(self) -> float:
        return max(0.0, self.expires_at - time.monotonic())

    def timeout(self, cap: float | None = None) -> float | None:
        """Seconds to hand to an I/O call; None means wait forever."""
        if not self.is_bounded:
            return cap
        remaining = self.remaining()
        return remaining if cap is None else min(cap, remaining)

    def earliest(self, other: Deadline | None) -> Deadline:
        if other is None or self.expires_at <= other.expires_at:
            return self
        return other
