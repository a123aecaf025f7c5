from __future__ import annotations

from mantis.agent.cognition.nlu.text_normalization import (
    expand_synonyms,
    has_alphabetic,
    normalize_punctuation,
    truncate_for_analysis,
)


def test_normalize_punctuation_collapses_runs() -> None:
    assert normalize_punctuation("ciao!!!") == "ciao!"
    assert normalize_punctuation("davvero?!?!") == "davvero!?"
    assert normalize_punctuation("aspetta ... ok") == "aspetta. ok"
    assert normalize_punctuation("  tanti    spazi  ") == "tanti spazi"


def test_normalize_punctuation_keeps_inner_dots_and_apostrophes() -> None:
    assert normalize_punctuation("spiegami three.js") == "spiegami three.js"
    assert normalize_punctuation("che cos'è webgl") == "che cos'è webgl"


def test_expand_synonyms_rewrites_whole_words_to_canonical_form() -> None:
    synonyms = {"cursore": ["cursore", "puntatore", "mouse"], "tema": ["tema", "skin"]}

    assert expand_synonyms("Cambia il PUNTATORE", synonyms) == "cambia il cursore"
    assert expand_synonyms("skinny jeans", synonyms) == "skinny jeans"


def test_expand_synonyms_skips_group_when_canonical_already_present() -> None:
    synonyms = {"progetto": ["progetto", "lavoro"]}

    assert expand_synonyms("progetto e lavoro", synonyms) == "progetto e lavoro"


def test_truncate_for_analysis_marks_cut() -> None:
    assert truncate_for_analysis("abc", 10) == "abc"
    assert truncate_for_analysis("abcdef", 3) == "abc..."


def test_has_alphabetic() -> None:
    assert has_alphabetic("è")
    assert not has_alphabetic("?!...")
