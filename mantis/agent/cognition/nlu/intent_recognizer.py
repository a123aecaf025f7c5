from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Sequence

from mantis.agent.cognition.nlu.catalog import IntentDefinition, NluCatalog, get_default_catalog
from mantis.agent.cognition.nlu.command import (
    UNKNOWN_INTENT,
    RecognizedCommand,
    unknown_command,
)
from mantis.agent.cognition.nlu.entity_extractor import EntityExtractor
from mantis.agent.cognition.nlu.sentiment import analyze_sentiment
from mantis.agent.cognition.nlu.text_normalization import (
    expand_synonyms,
    has_alphabetic,
    token_count,
    truncate_for_analysis,
)
from mantis.agent.observability.log_manager import get_component_logger
from mantis.config import settings

logger = get_component_logger("nlu.recognizer")

_MIN_TEXT_CHARS = 2
_ABSOLUTE_FLOOR = 0.4
_CONFLICT_GAP = 0.15
_LONG_TEXT_TOKENS = 10
_LONG_TEXT_RATIO = 0.5
_LONG_TEXT_FACTOR = 0.7
_MISSING_ENTITY_FACTOR = 0.6
_MISSING_ENTITY_QUALITY_FACTOR = 0.7
_PATTERN_QUALITY = 0.3
_KEYWORD_QUALITY = 0.4
_ENTITY_QUALITY = 0.3
_HISTORY_WINDOW = 3
_CONTEXT_WINDOW = 2
_REPEAT_BONUS = 0.1
_MONOTONY_PENALTY = 0.2


@dataclass(frozen=True)
class IntentScore:
    intent: str
    confidence: float
    quality: float
    pattern_hit: bool = False
    keyword_hits: int = 0
    entity_hits: int = 0


class IntentRecognizer:
    """Scores every configured intent against an utterance and picks one.

    The recognizer is pure: the same text and history always give the same
    command. All vocabulary comes from the catalog.
    """

    def __init__(
        self,
        catalog: NluCatalog | None = None,
        *,
        extractor: EntityExtractor | None = None,
        analysis_char_limit: int | None = None,
    ) -> None:
        self._catalog = catalog or get_default_catalog()
        self._extractor = extractor or EntityExtractor(self._catalog)
        self._analysis_char_limit = analysis_char_limit or settings.get_analysis_char_limit()

    @property
    def catalog(self) -> NluCatalog:
        return self._catalog

    @property
    def extractor(self) -> EntityExtractor:
        return self._extractor

    def recognize(self, text: str, recent_history: Sequence[str] = ()) -> RecognizedCommand:
        raw = str(text or "").strip()
        if len(raw) < _MIN_TEXT_CHARS or not has_alphabetic(raw):
            return unknown_command(0.0, text=raw)

        history = [intent for intent in recent_history if intent]
        expanded = expand_synonyms(
            truncate_for_analysis(raw, self._analysis_char_limit),
            self._catalog.synonyms,
        )
        candidates = self.rank(expanded, raw=raw, recent_history=history)
        if not candidates:
            return unknown_command(0.0, text=raw)

        best = self._select(candidates, expanded)
        confidence = _history_adjusted(best.intent, best.confidence, history)
        sentiment = analyze_sentiment(raw, self._catalog.sentiment)
        threshold = dynamic_threshold(best.quality)
        if confidence < threshold or confidence < _ABSOLUTE_FLOOR:
            logger.debug(
                "intent rejected best=%s confidence=%.3f quality=%.3f threshold=%.2f",
                best.intent,
                confidence,
                best.quality,
                threshold,
                extra={"event": "nlu.intent_rejected", "intent": best.intent},
            )
            return RecognizedCommand(
                intent=UNKNOWN_INTENT,
                confidence=confidence,
                entities={},
                sentiment=sentiment,
                match_quality=best.quality,
                text=raw,
            )

        command = RecognizedCommand(
            intent=best.intent,
            confidence=min(1.0, confidence),
            entities=self._extractor.extract(raw),
            sentiment=sentiment,
            match_quality=best.quality,
            text=raw,
        )
        logger.debug(
            "intent recognized intent=%s confidence=%.3f quality=%.3f entities=%s",
            command.intent,
            command.confidence,
            best.quality,
            sorted(command.entities),
            extra={"event": "nlu.intent_recognized", "intent": command.intent},
        )
        return command

    def recognize_chain(self, text: str, recent_history: Sequence[str] = ()) -> list[RecognizedCommand]:
        history = [intent for intent in recent_history if intent]
        commands: list[RecognizedCommand] = []
        for part in split_command_chain(text, self._catalog.chain_separators):
            command = self.recognize(part, history)
            commands.append(command)
            if not command.is_unknown:
                history.append(command.intent)
        return commands

    def rank(self, expanded: str, *, raw: str, recent_history: Sequence[str] = ()) -> list[IntentScore]:
        recent = list(recent_history)[-_CONTEXT_WINDOW:]
        raw_lowered = raw.lower()
        candidates: list[IntentScore] = []
        for definition in self._catalog.intents:
            score = self.score_intent(expanded, definition)
            confidence = score.confidence
            for penalty in definition.long_input_penalties:
                if penalty.applies(raw):
                    confidence *= penalty.factor
            if confidence > 0:
                for boost in self._catalog.context_boosts:
                    if (
                        boost.recent_intent == definition.name
                        and boost.recent_intent in recent
                        and boost.contains in raw_lowered
                    ):
                        confidence += boost.bonus
            confidence = _clamp(confidence)
            if confidence > 0:
                candidates.append(replace(score, confidence=confidence))
        candidates.sort(key=lambda item: (-item.confidence, -item.quality))
        return candidates

    def score_intent(self, text: str, definition: IntentDefinition) -> IntentScore:
        weights = definition.weights
        confidence = 0.0
        quality = 0.0

        pattern_hit = False
        for pattern in definition.compiled_patterns():
            if pattern.search(text):
                confidence += weights.pattern
                quality += _PATTERN_QUALITY
                pattern_hit = True
                break

        keyword_hits = sum(1 for keyword in definition.keywords if keyword.lower() in text)
        if keyword_hits:
            ratio = keyword_hits / len(definition.keywords)
            keyword_score = weights.keyword * ratio
            if token_count(text) > _LONG_TEXT_TOKENS and ratio < _LONG_TEXT_RATIO:
                keyword_score *= _LONG_TEXT_FACTOR
            for booster in self._catalog.boosters_for(definition.name):
                if booster.matches(text):
                    keyword_score *= booster.factor
                    quality += booster.quality_bonus
            confidence += keyword_score
            quality += ratio * _KEYWORD_QUALITY

        entity_hits = 0
        for entity_type in definition.required_entities:
            entity = self._catalog.entity(entity_type)
            if entity is None:
                continue
            if any(pattern.lower() in text for pattern in entity.patterns):
                confidence += weights.entity
                quality += _ENTITY_QUALITY
                entity_hits += 1

        if definition.required_entities and entity_hits == 0:
            confidence *= _MISSING_ENTITY_FACTOR
            quality *= _MISSING_ENTITY_QUALITY_FACTOR

        return IntentScore(
            intent=definition.name,
            confidence=_clamp(confidence),
            quality=min(1.0, quality),
            pattern_hit=pattern_hit,
            keyword_hits=keyword_hits,
            entity_hits=entity_hits,
        )

    def _select(self, candidates: list[IntentScore], text: str) -> IntentScore:
        first = candidates[0]
        if len(candidates) < 2:
            return first
        second = candidates[1]
        if first.confidence - second.confidence >= _CONFLICT_GAP:
            return first
        rule = self._catalog.conflict_rule(first.intent, second.intent)
        if rule is not None:
            preferred = rule.pick(text)
            winner = second if preferred == second.intent else first
            logger.debug(
                "intent conflict resolved rule=%s winner=%s",
                rule.key.replace(" ", "_"),
                winner.intent,
                extra={"event": "nlu.conflict_resolved", "intent": winner.intent},
            )
            return winner
        return first if first.quality >= second.quality else second


def dynamic_threshold(quality: float) -> float:
    if quality < 0.3:
        return 0.35
    if quality < 0.5:
        return 0.25
    return 0.15


def split_command_chain(text: str, separators: Sequence[str]) -> list[str]:
    """Split on the first configured separator present in the text."""
    stripped = str(text or "").strip()
    if not stripped:
        return []
    lowered = stripped.lower()
    for separator in separators:
        if separator not in lowered:
            continue
        parts = [part.strip() for part in re.split(re.escape(separator), stripped, flags=re.IGNORECASE)]
        parts = [part for part in parts if part]
        if len(parts) > 1:
            return parts
    return [stripped]


def _history_adjusted(intent: str, confidence: float, history: Sequence[str]) -> float:
    recent = list(history)[-_HISTORY_WINDOW:]
    repeats = recent.count(intent)
    adjusted = confidence + _REPEAT_BONUS * repeats
    if repeats == _HISTORY_WINDOW:
        adjusted -= _MONOTONY_PENALTY
    return _clamp(adjusted)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))
