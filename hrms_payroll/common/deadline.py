from __future__ import annotations

import time
from typing import Optional

from hrms_payroll.common.errors import DeadlineExceededError


class Deadline:
    """Wall-clock budget for a long operation. `None` seconds means no limit."""

    def __init__(self, seconds: Optional[float] = None, clock=time.monotonic):
        self._clock = clock
        self.expires_at = None if seconds is None else clock() + float(seconds)

    @property
    def remaining(self) -> Optional[float]:
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - self._clock())

    def expired(self) -> bool:
        return self.expires_at is not None and self._clock() >= self.expires_at

    def check(self, what: str = "operation") -> None:
        if self.expired():
            raise DeadlineExceededError(f"Deadline exceeded during {what}")
