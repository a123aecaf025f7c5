from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Any

from jinja2 import Environment

from mantis.config import settings

logger = logging.getLogger(__name__)

_RESPONSE_SEED_PATH = Path(__file__).resolve().parent / "resources" / "responses.seed.json"
_ENV = Environment(autoescape=False, trim_blocks=False, lstrip_blocks=False)


@lru_cache(maxsize=1)
def _load_response_rows() -> list[dict[str, Any]]:
    try:
        payload = json.loads(_RESPONSE_SEED_PATH.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.error("response seed unreadable path=%s error=%s", _RESPONSE_SEED_PATH, exc)
        return []
    if not isinstance(payload, list):
        return []
    return [row for row in payload if isinstance(row, dict)]


def _resolve_template(key: str, locale: str) -> str | None:
    normalized_locale = str(locale or settings.DEFAULT_LOCALE).strip().lower()
    locale_lang = normalized_locale.split("-", 1)[0]
    best: str | None = None
    best_score = -1
    for row in _load_response_rows():
        if str(row.get("key") or "") != key:
            continue
        row_locale = str(row.get("locale") or "").strip().lower()
        score = 0
        if row_locale == normalized_locale:
            score = 3
        elif row_locale and row_locale.split("-", 1)[0] == locale_lang:
            score = 2
        elif row_locale in {"any", "*", ""}:
            score = 1
        if score > best_score:
            template = row.get("template")
            if isinstance(template, str) and template.strip():
                best = template
                best_score = score
    return best


def render_message(key: str, locale: str | None = None, variables: dict[str, Any] | None = None) -> str:
    template = _resolve_template(key, locale or settings.get_default_locale())
    if not template:
        return key
    return _ENV.from_string(template).render(**(variables or {})).strip()
