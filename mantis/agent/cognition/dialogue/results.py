from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from mantis.agent.cognition.dialogue.frame import PendingAction
from mantis.agent.cognition.nlu.command import RecognizedCommand


class ResultType(str, Enum):
    PROCESSED = "processed"
    AWAITING_ENTITY = "awaiting_entity"
    FOLLOW_UP = "follow_up"
    FOLLOW_UP_LIMIT = "follow_up_limit"
    FOLLOW_UP_CANCELLED = "follow_up_cancelled"
    CONFIRMATION_NEEDED = "confirmation_needed"
    CONFIRMED = "confirmed"
    CORRECTED = "corrected"
    CANCELLED = "cancelled"
    DIGRESSION_STARTED = "digression_started"
    DIGRESSION_COMPLETED = "digression_completed"
    TIMEOUT = "timeout"
    REENGAGEMENT = "reengagement"
    RESUMED = "resumed"
    NOT_UNDERSTOOD = "not_understood"
    ERROR = "error"


@dataclass(frozen=True)
class DialogueResult:
    type: ResultType
    message: str | None = None
    command: RecognizedCommand | None = None
    action: PendingAction | None = None
    awaiting_for: str | None = None
    time_remaining_s: int | None = None
    dormant: bool = False
    stack_depth: int = 1

    @property
    def needs_execution(self) -> bool:
        """True when the caller should run the command and report back via update_context."""
        return self.type in {
            ResultType.PROCESSED,
            ResultType.FOLLOW_UP,
            ResultType.CONFIRMED,
        } or (self.type == ResultType.DIGRESSION_STARTED and self.action is not None)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.type.value,
            "message": self.message,
            "stackDepth": self.stack_depth,
            "needsExecution": self.needs_execution,
        }
        if self.command is not None:
            payload["command"] = self.command.to_dict()
        if self.action is not None:
            payload["action"] = self.action.to_dict()
        if self.awaiting_for is not None:
            payload["awaitingFor"] = self.awaiting_for
        if self.time_remaining_s is not None:
            payload["timeRemaining"] = self.time_remaining_s
        if self.dormant:
            payload["dormant"] = True
        return payload
