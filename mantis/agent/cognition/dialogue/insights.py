from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from mantis.agent.cognition.nlu.catalog import NluCatalog, SuggestionTemplate

_SUCCESS_WEIGHT = 0.4
_NOVELTY_WEIGHT = 0.2
_RELEVANCE_WEIGHT = 0.3
_TOPIC_WEIGHT = 0.1
_UNSEEN_SUCCESS_RATE = 0.5
_RECENT_NOVELTY = 0.3
_OFF_TOPIC_RELEVANCE = 0.5
_TOPIC_SATURATION = 10


@dataclass(frozen=True)
class Suggestion:
    intent: str
    message: str
    score: float
    factors: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "intent": self.intent,
            "message": self.message,
            "score": round(self.score, 4),
            "factors": {key: round(value, 4) for key, value in self.factors.items()},
        }


class InsightsTracker:
    """Frequency maps over completed turns and a ranker built on them."""

    def __init__(self, catalog: NluCatalog) -> None:
        self._catalog = catalog
        self.topic_histogram: Counter[str] = Counter()
        self.intent_bigrams: Counter[str] = Counter()
        self.topic_transitions: Counter[str] = Counter()
        self.successful_flows: Counter[str] = Counter()
        self.failed_flows: Counter[str] = Counter()

    def record_turn(
        self,
        *,
        previous_intent: str | None,
        previous_entities: Mapping[str, str] | None,
        intent: str,
        entities: Mapping[str, str] | None,
        flow_signature: str,
        success: bool = True,
    ) -> None:
        topic, _ = self._catalog.topic_for(intent, dict(entities or {}))
        self.topic_histogram[topic] += 1
        if previous_intent:
            self.intent_bigrams[f"{previous_intent}->{intent}"] += 1
            previous_topic, _ = self._catalog.topic_for(previous_intent, dict(previous_entities or {}))
            if previous_topic != topic:
                self.topic_transitions[f"{previous_topic}->{topic}"] += 1
        signature = flow_signature or intent
        if success:
            self.successful_flows[signature] += 1
        else:
            self.failed_flows[signature] += 1

    def success_rate(self, intent: str) -> float:
        succeeded = _count_ending_with(self.successful_flows, intent)
        failed = _count_ending_with(self.failed_flows, intent)
        total = succeeded + failed
        if total == 0:
            return _UNSEEN_SUCCESS_RATE
        return succeeded / total

    def candidates(self) -> list[SuggestionTemplate]:
        policy = self._catalog.dialogue
        found: list[SuggestionTemplate] = []
        seen: set[str] = set()
        for topic, _count in self.topic_histogram.most_common():
            for template in policy.topic_suggestions.get(topic, []):
                if template.intent not in seen:
                    seen.add(template.intent)
                    found.append(template)
        for signature in self.successful_flows:
            template = policy.flow_suggestions.get(signature.split("->")[-1])
            if template is not None and template.intent not in seen:
                seen.add(template.intent)
                found.append(template)
        return found

    def suggest(self, *, current_topic: str | None, recent_intents: Sequence[str]) -> Suggestion | None:
        scored = [
            self.score(template, current_topic=current_topic, recent_intents=recent_intents)
            for template in self.candidates()
        ]
        if not scored:
            return None
        return max(scored, key=lambda item: item.score)

    def score(
        self,
        template: SuggestionTemplate,
        *,
        current_topic: str | None,
        recent_intents: Sequence[str],
    ) -> Suggestion:
        historical = self.success_rate(template.intent)
        novelty = _RECENT_NOVELTY if template.intent in list(recent_intents)[-3:] else 1.0
        relevant = self._catalog.dialogue.topic_intents.get(current_topic or "", [])
        relevance = 1.0 if template.intent in relevant else _OFF_TOPIC_RELEVANCE
        topic_frequency = min(self.topic_histogram.get(current_topic or "", 0) / _TOPIC_SATURATION, 1.0)
        total = (
            historical * _SUCCESS_WEIGHT
            + novelty * _NOVELTY_WEIGHT
            + relevance * _RELEVANCE_WEIGHT
            + topic_frequency * _TOPIC_WEIGHT
        )
        return Suggestion(
            intent=template.intent,
            message=template.message,
            score=min(total, 1.0),
            factors={
                "historical_success": historical,
                "novelty": novelty,
                "context_relevance": relevance,
                "topic_frequency": topic_frequency,
            },
        )

    def to_dict(self) -> dict[str, dict[str, int]]:
        return {
            "topic_histogram": dict(self.topic_histogram),
            "intent_bigrams": dict(self.intent_bigrams),
            "topic_transitions": dict(self.topic_transitions),
            "successful_flows": dict(self.successful_flows),
            "failed_flows": dict(self.failed_flows),
        }

    def merge(self, payload: Mapping[str, Any]) -> None:
        for name in ("topic_histogram", "intent_bigrams", "topic_transitions", "successful_flows", "failed_flows"):
            counts = payload.get(name)
            if not isinstance(counts, Mapping):
                continue
            target: Counter[str] = getattr(self, name)
            for key, value in counts.items():
                try:
                    target[str(key)] += int(value)
                except (TypeError, ValueError):
                    continue


def _count_ending_with(counter: Counter[str], intent: str) -> int:
    return sum(count for signature, count in counter.items() if signature.split("->")[-1] == intent)
