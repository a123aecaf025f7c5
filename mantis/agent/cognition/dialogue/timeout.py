from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum

from mantis.agent.cognition.dialogue.frame import DialogueFrame


class TimeoutStatus(str, Enum):
    ACTIVE = "active"
    REMINDER = "reminder"
    EXPIRED = "expired"


@dataclass(frozen=True)
class TimeoutCheck:
    status: TimeoutStatus
    elapsed_ms: int
    remaining_s: int


@dataclass(frozen=True)
class TimeoutPolicy:
    timeout_ms: int = 90_000
    reminder_ratio: float = 0.8

    def elapsed_ms(self, frame: DialogueFrame, now_ms: int) -> int:
        return now_ms - frame.context.timestamp

    def is_expired(self, frame: DialogueFrame, now_ms: int) -> bool:
        return self.elapsed_ms(frame, now_ms) > self.timeout_ms

    def check(self, frame: DialogueFrame, now_ms: int) -> TimeoutCheck:
        elapsed = self.elapsed_ms(frame, now_ms)
        remaining_s = max(0, math.ceil((self.timeout_ms - elapsed) / 1000))
        if elapsed > self.timeout_ms:
            return TimeoutCheck(TimeoutStatus.EXPIRED, elapsed, 0)
        if elapsed > self.timeout_ms * self.reminder_ratio:
            return TimeoutCheck(TimeoutStatus.REMINDER, elapsed, remaining_s)
        return TimeoutCheck(TimeoutStatus.ACTIVE, elapsed, remaining_s)
