from __future__ import annotations

import pytest

from mantis.agent.cognition.nlu.catalog import NluCatalog, get_default_catalog
from mantis.agent.cognition.nlu.intent_recognizer import (
    IntentRecognizer,
    _history_adjusted,
    dynamic_threshold,
    split_command_chain,
)
from mantis.agent.cognition.nlu.sentiment import Sentiment, analyze_sentiment


def _recognizer() -> IntentRecognizer:
    return IntentRecognizer(get_default_catalog())


def _tiny_catalog(**overrides: object) -> NluCatalog:
    payload: dict[str, object] = {
        "intents": [
            {"name": "alpha", "keywords": ["foo"], "weights": {"pattern": 0.0, "keyword": 0.7, "entity": 0.0}},
            {"name": "beta", "keywords": ["foo"], "weights": {"pattern": 0.0, "keyword": 0.7, "entity": 0.0}},
        ]
    }
    payload.update(overrides)
    return NluCatalog.model_validate(payload)


def test_open_project_with_named_project() -> None:
    command = _recognizer().recognize("apri progetto biosphaera")

    assert command.intent == "openProject"
    assert command.confidence >= 0.8
    assert command.entities == {"projectName": "biosphaera"}


def test_cursor_change_extracts_cursor_type() -> None:
    command = _recognizer().recognize("cursore pacman")

    assert command.intent == "setCursor"
    assert command.entities["cursorType"] == "pacman"


def test_synonyms_are_expanded_before_scoring() -> None:
    command = _recognizer().recognize("cambia il puntatore in pacman")

    assert command.intent == "setCursor"
    assert command.entities["cursorType"] == "pacman"


def test_gibberish_is_unknown_without_entities() -> None:
    command = _recognizer().recognize("ajsdlfkj qwer")

    assert command.is_unknown
    assert command.entities == {}
    assert command.confidence < 0.4


@pytest.mark.parametrize("text", ["", "   ", "a", "?!", "123"])
def test_empty_or_non_alphabetic_input_is_unknown(text: str) -> None:
    command = _recognizer().recognize(text)

    assert command.is_unknown
    assert command.confidence == 0.0


@pytest.mark.parametrize(
    "text",
    [
        "ciao",
        "apri progetto biosphaera",
        "vai ai progetti",
        "spiegami three.js",
        "mostrami il codice di un esempio javascript per una funzione asincrona che legge un file",
        "x" * 900,
    ],
)
def test_confidence_is_always_within_unit_interval(text: str) -> None:
    command = _recognizer().recognize(text, ["navigate", "navigate", "navigate"])

    assert 0.0 <= command.confidence <= 1.0
    if command.match_quality is not None:
        assert 0.0 <= command.match_quality <= 1.0


def test_recognize_is_deterministic() -> None:
    recognizer = _recognizer()

    first = recognizer.recognize("cambia tema scuro", ["setCursor"])
    second = recognizer.recognize("cambia tema scuro", ["setCursor"])

    assert first == second


def test_recognize_chain_splits_on_separator() -> None:
    commands = _recognizer().recognize_chain("cambia tema scuro e poi cursore pacman")

    assert [command.intent for command in commands] == ["setTheme", "setCursor"]
    assert commands[0].entities["theme"] == "scuro"


def test_split_command_chain_prefers_first_configured_separator() -> None:
    separators = [" e poi ", ";", " e "]

    assert split_command_chain("apri lp e poi vai e torna", separators) == ["apri lp", "vai e torna"]
    assert split_command_chain("uno; due", separators) == ["uno", "due"]
    assert split_command_chain("niente da dividere", separators) == ["niente da dividere"]
    assert split_command_chain("  ", separators) == []


def test_conflict_rule_breaks_close_scores() -> None:
    catalog = _tiny_catalog(
        conflict_rules=[
            {"intents": ["alpha", "beta"], "clauses": [{"prefer": "beta", "when": "\\bbar\\b"}], "default": "alpha"}
        ]
    )
    recognizer = IntentRecognizer(catalog)

    assert recognizer.recognize("foo bar").intent == "beta"
    assert recognizer.recognize("foo").intent == "alpha"


def test_tie_without_rule_keeps_catalog_order() -> None:
    recognizer = IntentRecognizer(_tiny_catalog())

    assert recognizer.recognize("foo").intent == "alpha"


def test_weak_match_is_unknown_but_keeps_score() -> None:
    catalog = NluCatalog.model_validate(
        {"intents": [{"name": "gamma", "keywords": ["x1", "x2", "x3", "x4", "x5"]}]}
    )

    command = IntentRecognizer(catalog).recognize("x1 soltanto")

    assert command.is_unknown
    assert command.confidence > 0.0
    assert command.match_quality is not None


def test_recent_history_and_context_boost_lift_weak_match() -> None:
    catalog = NluCatalog.model_validate(
        {
            "intents": [{"name": "nav", "keywords": ["vai", "su", "giu", "destra"]}],
            "context_boosts": [{"recent_intent": "nav", "contains": "vai", "bonus": 0.3}],
        }
    )
    recognizer = IntentRecognizer(catalog)

    assert recognizer.recognize("vai").is_unknown
    assert recognizer.recognize("vai", ["nav"]).intent == "nav"


def test_long_input_penalty_scales_confidence() -> None:
    catalog = NluCatalog.model_validate(
        {
            "intents": [
                {
                    "name": "hello",
                    "patterns": ["^ciao"],
                    "weights": {"pattern": 0.9, "keyword": 0.0, "entity": 0.0},
                    "long_input_penalties": [{"min_chars": 10, "factor": 0.5}],
                }
            ]
        }
    )
    recognizer = IntentRecognizer(catalog)

    assert recognizer.recognize("ciao").confidence == pytest.approx(0.9)
    assert recognizer.recognize("ciao a tutti quanti voi").confidence == pytest.approx(0.45)


def test_history_adjustment_rewards_repeats_and_penalizes_monotony() -> None:
    assert _history_adjusted("nav", 0.5, ["nav"]) == pytest.approx(0.6)
    assert _history_adjusted("nav", 0.5, ["nav", "nav"]) == pytest.approx(0.7)
    assert _history_adjusted("nav", 0.5, ["nav", "nav", "nav"]) == pytest.approx(0.6)
    assert _history_adjusted("nav", 0.5, ["nav", "nav", "nav", "x"]) == pytest.approx(0.7)


def test_dynamic_threshold_bands() -> None:
    assert dynamic_threshold(0.1) == 0.35
    assert dynamic_threshold(0.4) == 0.25
    assert dynamic_threshold(0.9) == 0.15


def test_sentiment_counts_lexicon_words() -> None:
    lexicon = get_default_catalog().sentiment

    assert analyze_sentiment("grazie, ottimo lavoro", lexicon) == Sentiment.POSITIVE
    assert analyze_sentiment("che noioso e brutto", lexicon) == Sentiment.NEGATIVE
    assert analyze_sentiment("apri il progetto", lexicon) == Sentiment.NEUTRAL


def test_command_to_dict_uses_wire_names() -> None:
    payload = _recognizer().recognize("cursore pacman").to_dict()

    assert payload["intent"] == "setCursor"
    assert payload["sentiment"] == "neutral"
    assert "matchQuality" in payload
    assert "isFollowUp" not in payload
