from __future__ import annotations

import json
import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from mantis.agent.cognition.errors import CatalogUnavailable
from mantis.config import settings

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent / "resources" / "nlu_catalog.seed.json"
DEFAULT_TOPIC = "general"
DEFAULT_SUB_TOPIC = "unknown"


@lru_cache(maxsize=1024)
def compile_pattern(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


def _validate_patterns(values: list[str]) -> list[str]:
    for value in values:
        try:
            compile_pattern(value)
        except re.error as exc:
            raise ValueError(f"invalid pattern {value!r}: {exc}") from exc
    return values


class ConfidenceWeights(BaseModel):
    model_config = ConfigDict(extra="forbid")

    pattern: float = 0.9
    keyword: float = 0.7
    entity: float = 0.8


class LongInputPenalty(BaseModel):
    model_config = ConfigDict(extra="forbid")

    min_chars: int
    factor: float
    when: str | None = None

    @field_validator("when")
    @classmethod
    def check_regex(cls, value: str | None) -> str | None:
        if value is not None:
            _validate_patterns([value])
        return value

    def applies(self, text: str) -> bool:
        if len(text) <= self.min_chars:
            return False
        if self.when is None:
            return True
        return compile_pattern(self.when).search(text) is not None


class IntentDefinition(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    description: str = ""
    patterns: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    required_entities: list[str] = Field(default_factory=list)
    weights: ConfidenceWeights = Field(default_factory=ConfidenceWeights)
    topic: str | None = None
    sub_topic: str | None = None
    sub_topic_entity: str | None = None
    long_input_penalties: list[LongInputPenalty] = Field(default_factory=list)

    @field_validator("patterns")
    @classmethod
    def check_patterns(cls, values: list[str]) -> list[str]:
        return _validate_patterns(values)

    def compiled_patterns(self) -> list[re.Pattern[str]]:
        return [compile_pattern(pattern) for pattern in self.patterns]


class EntityDefinition(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    patterns: list[str] = Field(default_factory=list)
    normalization: dict[str, str] = Field(default_factory=dict)
    # Reserved: accepted in the seed, not applied by the extractor.
    fuzzy_matching: bool = False
    priority: int = 1
    question: str | None = None

    def canonical(self, surface: str) -> str:
        lowered = surface.lower()
        for key, value in self.normalization.items():
            if key.lower() == lowered:
                return value
        return surface

    def surface_forms(self) -> list[str]:
        forms: list[str] = []
        for candidate in [*self.patterns, *self.normalization.keys()]:
            lowered = candidate.lower()
            if lowered and lowered not in forms:
                forms.append(lowered)
        return sorted(forms, key=len, reverse=True)


class KeywordBooster(BaseModel):
    model_config = ConfigDict(extra="forbid")

    intent: str
    all_of: list[str] = Field(default_factory=list)
    any_of: list[str] = Field(default_factory=list)
    factor: float = 1.0
    quality_bonus: float = 0.0

    def matches(self, text: str) -> bool:
        if not self.all_of and not self.any_of:
            return False
        if any(word not in text for word in self.all_of):
            return False
        if self.any_of and not any(word in text for word in self.any_of):
            return False
        return True


class ContextBoost(BaseModel):
    model_config = ConfigDict(extra="forbid")

    recent_intent: str
    contains: str
    bonus: float = 0.1


class ConflictClause(BaseModel):
    model_config = ConfigDict(extra="forbid")

    prefer: str
    when: str
    unless: str | None = None

    @field_validator("when", "unless")
    @classmethod
    def check_regex(cls, value: str | None) -> str | None:
        if value is not None:
            _validate_patterns([value])
        return value

    def matches(self, text: str) -> bool:
        if compile_pattern(self.when).search(text) is None:
            return False
        if self.unless and compile_pattern(self.unless).search(text) is not None:
            return False
        return True


class ConflictRule(BaseModel):
    model_config = ConfigDict(extra="forbid")

    intents: tuple[str, str]
    clauses: list[ConflictClause] = Field(default_factory=list)
    default: str

    @property
    def key(self) -> str:
        return conflict_key(*self.intents)

    def pick(self, text: str) -> str:
        for clause in self.clauses:
            if clause.matches(text):
                return clause.prefer
        return self.default


class SentimentLexicon(BaseModel):
    model_config = ConfigDict(extra="forbid")

    positive: list[str] = Field(default_factory=list)
    negative: list[str] = Field(default_factory=list)


class SuggestionTemplate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    intent: str
    message: str


class DialoguePolicy(BaseModel):
    model_config = ConfigDict(extra="forbid")

    entity_intents: dict[str, list[str]] = Field(default_factory=dict)
    topic_intents: dict[str, list[str]] = Field(default_factory=dict)
    topic_suggestions: dict[str, list[SuggestionTemplate]] = Field(default_factory=dict)
    flow_suggestions: dict[str, SuggestionTemplate] = Field(default_factory=dict)
    correction_intents: list[str] = Field(default_factory=list)
    confirm_words: list[str] = Field(default_factory=list)
    reject_words: list[str] = Field(default_factory=list)
    confirmation_band: tuple[float, float] = (0.6, 0.8)


class NluCatalog(BaseModel):
    """Declarative vocabulary: everything domain-specific the recognizer and dialogue read."""

    model_config = ConfigDict(extra="forbid")

    version: int = 1
    intents: list[IntentDefinition] = Field(default_factory=list)
    entities: list[EntityDefinition] = Field(default_factory=list)
    synonyms: dict[str, list[str]] = Field(default_factory=dict)
    boosters: list[KeywordBooster] = Field(default_factory=list)
    context_boosts: list[ContextBoost] = Field(default_factory=list)
    conflict_rules: list[ConflictRule] = Field(default_factory=list)
    sentiment: SentimentLexicon = Field(default_factory=SentimentLexicon)
    chain_separators: list[str] = Field(default_factory=list)
    dialogue: DialoguePolicy = Field(default_factory=DialoguePolicy)

    def intent(self, name: str | None) -> IntentDefinition | None:
        for item in self.intents:
            if item.name == name:
                return item
        return None

    def entity(self, name: str | None) -> EntityDefinition | None:
        for item in self.entities:
            if item.name == name:
                return item
        return None

    def boosters_for(self, intent_name: str) -> list[KeywordBooster]:
        return [booster for booster in self.boosters if booster.intent == intent_name]

    def conflict_rule(self, first: str, second: str) -> ConflictRule | None:
        key = conflict_key(first, second)
        for rule in self.conflict_rules:
            if rule.key == key:
                return rule
        return None

    def missing_entities(self, intent_name: str, entities: dict[str, str]) -> list[str]:
        definition = self.intent(intent_name)
        if definition is None:
            return []
        return [name for name in definition.required_entities if not entities.get(name)]

    def question_for(self, entity_type: str) -> str:
        definition = self.entity(entity_type)
        if definition is not None and definition.question:
            return definition.question
        return f"Mi serve ancora un'informazione: {entity_type}?"

    def topic_for(self, intent_name: str | None, entities: dict[str, str] | None = None) -> tuple[str, str]:
        definition = self.intent(intent_name)
        if definition is None or not definition.topic:
            return DEFAULT_TOPIC, DEFAULT_SUB_TOPIC
        if definition.sub_topic_entity:
            sub_topic = (entities or {}).get(definition.sub_topic_entity) or "general"
            return definition.topic, sub_topic
        return definition.topic, definition.sub_topic or "general"


def conflict_key(first: str, second: str) -> str:
    return " vs ".join(sorted([first, second]))


def load_catalog(path: str | Path | None = None) -> NluCatalog:
    target = Path(path) if path else _configured_path()
    try:
        payload: Any = json.loads(target.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.error("nlu catalog unreadable path=%s error=%s", target, exc)
        raise CatalogUnavailable(f"cannot read NLU catalog at {target}: {exc}") from exc
    try:
        catalog = NluCatalog.model_validate(payload)
    except ValidationError as exc:
        logger.error("nlu catalog invalid path=%s errors=%s", target, exc.error_count())
        raise CatalogUnavailable(f"invalid NLU catalog at {target}: {exc}") from exc
    logger.info(
        "nlu catalog loaded path=%s intents=%s entities=%s",
        target,
        len(catalog.intents),
        len(catalog.entities),
    )
    return catalog


@lru_cache(maxsize=1)
def get_default_catalog() -> NluCatalog:
    return load_catalog()


def _configured_path() -> Path:
    configured = settings.get_nlu_catalog_path()
    if configured:
        return Path(configured)
    return DEFAULT_CATALOG_PATH
