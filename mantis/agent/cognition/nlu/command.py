from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from mantis.agent.cognition.nlu.sentiment import Sentiment

UNKNOWN_INTENT = "unknown"


@dataclass(frozen=True)
class RecognizedCommand:
    intent: str
    confidence: float
    entities: dict[str, str] = field(default_factory=dict)
    sentiment: Sentiment = Sentiment.NEUTRAL
    match_quality: float | None = None
    is_follow_up: bool = False
    follow_up_count: int | None = None
    text: str | None = None

    @property
    def is_unknown(self) -> bool:
        return self.intent == UNKNOWN_INTENT

    def with_entities(self, entities: dict[str, str]) -> "RecognizedCommand":
        return replace(self, entities=dict(entities))

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "intent": self.intent,
            "confidence": round(self.confidence, 4),
            "entities": dict(self.entities),
            "sentiment": self.sentiment.value,
        }
        if self.match_quality is not None:
            payload["matchQuality"] = round(self.match_quality, 4)
        if self.is_follow_up:
            payload["isFollowUp"] = True
            payload["followUpCount"] = self.follow_up_count
        return payload


def unknown_command(confidence: float = 0.0, *, text: str | None = None) -> RecognizedCommand:
    return RecognizedCommand(intent=UNKNOWN_INTENT, confidence=confidence, entities={}, text=text)
