from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    def now_ms(self) -> int:
        ...


class SystemClock:
    def now_ms(self) -> int:
        return int(time.time() * 1000)


class ManualClock:
    """Deterministic clock for timeout tests; time only moves via advance()."""

    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self._now_ms = int(start_ms)

    def now_ms(self) -> int:
        return self._now_ms

    def advance(self, *, ms: int = 0, seconds: float = 0.0) -> int:
        self._now_ms += int(ms) + int(seconds * 1000)
        return self._now_ms

    def set(self, now_ms: int) -> None:
        self._now_ms = int(now_ms)
