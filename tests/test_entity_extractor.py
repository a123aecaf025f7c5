from __future__ import annotations

from mantis.agent.cognition.nlu.catalog import get_default_catalog
from mantis.agent.cognition.nlu.entity_extractor import EntityExtractor


def _extractor() -> EntityExtractor:
    return EntityExtractor(get_default_catalog())


def test_extract_finds_one_value_per_entity_type() -> None:
    entities = _extractor().extract("apri progetto biosphaera con tema scuro")

    assert entities["projectName"] == "biosphaera"
    assert entities["theme"] == "scuro"


def test_extract_returns_empty_for_plain_text() -> None:
    assert _extractor().extract("buongiorno a te") == {}


def test_extract_entity_uses_normalization_keys() -> None:
    extractor = _extractor()

    assert extractor.extract_entity("metti quello dark", "theme") == "scuro"
    assert extractor.extract_entity("il cursore normale", "cursorType") == "default"


def test_extract_entity_matches_whole_words_only() -> None:
    assert _extractor().extract_entity("help", "projectName") is None


def test_extract_entity_respects_valid_values() -> None:
    extractor = _extractor()

    assert extractor.extract_entity("v7", "projectName", ["biosphaera"]) is None
    assert extractor.extract_entity("biosphaera!", "projectName", ["biosphaera"]) == "biosphaera"


def test_extract_entity_accepts_exact_reply_from_valid_values() -> None:
    assert _extractor().extract_entity("Rosso", "color", ["rosso", "blu"]) == "rosso"
    assert _extractor().extract_entity("verde", "color", ["rosso", "blu"]) is None
