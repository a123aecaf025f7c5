from __future__ import annotations

import re
from functools import lru_cache
from typing import Mapping, Sequence

_REPEATED_PUNCTUATION = re.compile(r"([!?.,])\1+")
_MIXED_PUNCTUATION = re.compile(r"[!?.,;:]{2,}")
_SPACE_BEFORE_PUNCTUATION = re.compile(r"\s+([!?.,;:])")
_WHITESPACE = re.compile(r"\s+")


def normalize_punctuation(text: str) -> str:
    normalized = _REPEATED_PUNCTUATION.sub(r"\1", text)
    normalized = _MIXED_PUNCTUATION.sub(_collapse_punctuation_run, normalized)
    normalized = _SPACE_BEFORE_PUNCTUATION.sub(r"\1", normalized)
    normalized = _WHITESPACE.sub(" ", normalized)
    return normalized.strip()


def _collapse_punctuation_run(match: re.Match[str]) -> str:
    run = match.group(0)
    if "!" in run and "?" in run:
        return "!?"
    if "!" in run:
        return "!"
    if "?" in run:
        return "?"
    return "."


def expand_synonyms(text: str, synonyms: Mapping[str, Sequence[str]]) -> str:
    """Lowercase, normalize and rewrite synonym phrases to their canonical form.

    Groups with the longest phrase go first. A group is skipped entirely when its
    canonical form already occurs in the input, and only whole words are replaced.
    """
    expanded = normalize_punctuation(text.lower())
    source = expanded
    groups = sorted(
        synonyms.items(),
        key=lambda item: max((len(variant) for variant in item[1]), default=0),
        reverse=True,
    )
    for base, variants in groups:
        if base in source:
            continue
        for variant in variants:
            if variant == base or variant not in expanded:
                continue
            expanded = _phrase_pattern(variant).sub(lambda _match, value=base: value, expanded)
    return expanded


@lru_cache(maxsize=512)
def _phrase_pattern(phrase: str) -> re.Pattern[str]:
    words = [re.escape(word) for word in phrase.split()]
    return re.compile(r"\b" + r"\s+".join(words) + r"\b")


def truncate_for_analysis(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def token_count(text: str) -> int:
    return len(text.split())


def has_alphabetic(text: str) -> bool:
    return any(char.isalpha() for char in text)
