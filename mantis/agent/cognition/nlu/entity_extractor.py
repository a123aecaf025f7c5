from __future__ import annotations

import re
from typing import Awaitable, Protocol, Sequence

from mantis.agent.cognition.nlu.catalog import NluCatalog
from mantis.agent.cognition.nlu.text_normalization import normalize_punctuation


class EntityExtractionService(Protocol):
    def extract_entity(
        self,
        text: str,
        entity_type: str,
        valid_values: Sequence[str] | None = None,
    ) -> str | None | Awaitable[str | None]:
        ...


class EntityExtractor:
    """Literal-pattern entity scanner driven by the catalog's entity table."""

    def __init__(self, catalog: NluCatalog) -> None:
        self._catalog = catalog

    def extract(self, text: str) -> dict[str, str]:
        lowered = str(text or "").lower()
        found: dict[str, str] = {}
        for definition in self._catalog.entities:
            for pattern in definition.patterns:
                if pattern.lower() in lowered:
                    found[definition.name] = definition.canonical(pattern)
                    break
        return found

    def extract_entity(
        self,
        text: str,
        entity_type: str,
        valid_values: Sequence[str] | None = None,
    ) -> str | None:
        lowered = normalize_punctuation(str(text or "").lower())
        if not lowered:
            return None
        allowed = {value.lower() for value in valid_values} if valid_values else None
        definition = self._catalog.entity(entity_type)
        if definition is not None:
            for form in definition.surface_forms():
                if not _contains_word(lowered, form):
                    continue
                value = definition.canonical(form)
                if allowed is None or value.lower() in allowed:
                    return value
        if valid_values:
            reply = lowered.strip(" .,!?;:")
            for value in valid_values:
                if value.lower() == reply:
                    return value
        return None


def _contains_word(text: str, phrase: str) -> bool:
    return re.search(r"(?<!\w)" + re.escape(phrase) + r"(?!\w)", text) is not None
