from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_CONTEXT_TIMEOUT_MS = 90_000
DEFAULT_REMINDER_RATIO = 0.8
DEFAULT_MAX_FOLLOW_UPS = 3
DEFAULT_HISTORY_LIMIT = 10
DEFAULT_INSIGHTS_FLUSH_EVERY = 10
DEFAULT_ANALYSIS_CHAR_LIMIT = 300
DEFAULT_LOCALE = "it-IT"
DEFAULT_SESSION_IDLE_MS = 30 * 60 * 1000
DEFAULT_MAX_SESSIONS = 1000


def get_context_timeout_ms() -> int:
    return _positive_int("MANTIS_CONTEXT_TIMEOUT_MS", DEFAULT_CONTEXT_TIMEOUT_MS)


def get_reminder_ratio() -> float:
    configured = os.getenv("MANTIS_REMINDER_RATIO")
    if configured is None:
        return DEFAULT_REMINDER_RATIO
    try:
        value = float(configured)
    except (TypeError, ValueError):
        return DEFAULT_REMINDER_RATIO
    return min(max(value, 0.0), 1.0)


def get_max_follow_ups() -> int:
    return _positive_int("MANTIS_MAX_FOLLOW_UPS", DEFAULT_MAX_FOLLOW_UPS)


def get_history_limit() -> int:
    return _positive_int("MANTIS_HISTORY_LIMIT", DEFAULT_HISTORY_LIMIT)


def get_insights_flush_every() -> int:
    return _positive_int("MANTIS_INSIGHTS_FLUSH_EVERY", DEFAULT_INSIGHTS_FLUSH_EVERY)


def get_analysis_char_limit() -> int:
    return _positive_int("MANTIS_ANALYSIS_CHAR_LIMIT", DEFAULT_ANALYSIS_CHAR_LIMIT)


def get_session_idle_ms() -> int:
    return _positive_int("MANTIS_SESSION_IDLE_MS", DEFAULT_SESSION_IDLE_MS)


def get_max_sessions() -> int:
    return _positive_int("MANTIS_MAX_SESSIONS", DEFAULT_MAX_SESSIONS)


def get_nlu_catalog_path() -> str | None:
    configured = os.getenv("MANTIS_NLU_CATALOG_PATH")
    if isinstance(configured, str) and configured.strip():
        return configured.strip()
    return None


def get_default_locale() -> str:
    configured = os.getenv("MANTIS_DEFAULT_LOCALE")
    locale = (
        configured.strip()
        if isinstance(configured, str) and configured.strip()
        else DEFAULT_LOCALE
    )
    return locale


def get_api_token() -> str | None:
    configured = os.getenv("MANTIS_API_TOKEN")
    if isinstance(configured, str) and configured.strip():
        return configured.strip()
    return None


@dataclass(frozen=True)
class DialogueSettings:
    context_timeout_ms: int = DEFAULT_CONTEXT_TIMEOUT_MS
    reminder_ratio: float = DEFAULT_REMINDER_RATIO
    max_follow_ups: int = DEFAULT_MAX_FOLLOW_UPS
    history_limit: int = DEFAULT_HISTORY_LIMIT
    insights_flush_every: int = DEFAULT_INSIGHTS_FLUSH_EVERY
    locale: str = DEFAULT_LOCALE


def load_dialogue_settings() -> DialogueSettings:
    return DialogueSettings(
        context_timeout_ms=get_context_timeout_ms(),
        reminder_ratio=get_reminder_ratio(),
        max_follow_ups=get_max_follow_ups(),
        history_limit=get_history_limit(),
        insights_flush_every=get_insights_flush_every(),
        locale=get_default_locale(),
    )


def _positive_int(name: str, default: int) -> int:
    configured = os.getenv(name)
    if configured is None:
        return default
    try:
        value = int(str(configured).strip())
    except (TypeError, ValueError):
        return default
    if value <= 0:
        return default
    return value
