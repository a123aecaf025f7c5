from __future__ import annotations

import json
import logging
import re
import sys
import traceback
from typing import Any

_DEFAULT_LOGGER_NAME = "mantis.agent.observability"
_CORE_FIELDS = ("session_id", "state", "intent", "error_code")
_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class LogManager:
    """Structured logging front door: one JSON line per event."""

    def __init__(self, logger_name: str = _DEFAULT_LOGGER_NAME) -> None:
        self._logger = logging.getLogger(logger_name)

    def emit(
        self,
        *,
        event: str,
        level: str = "info",
        component: str | None = None,
        message: str | None = None,
        fields: dict[str, Any] | None = None,
    ) -> None:
        normalized_level = str(level or "info").lower()
        record: dict[str, Any] = {
            "level": normalized_level,
            "event": str(event or "unknown_event"),
            "component": component,
            "message": message,
        }
        record.update(fields or {})
        compact = {key: value for key, value in record.items() if value is not None}
        line = json.dumps(compact, ensure_ascii=False, separators=(",", ":"), default=str)
        self._logger.log(_LEVELS.get(normalized_level, logging.INFO), "event %s", line)

    def emit_exception(
        self,
        *,
        event: str,
        exc: BaseException,
        component: str | None = None,
        message: str | None = None,
        fields: dict[str, Any] | None = None,
    ) -> None:
        merged = dict(fields or {})
        merged["error_code"] = merged.get("error_code") or type(exc).__name__
        merged["exception_message"] = str(exc)
        merged["stack_excerpt"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__, limit=10))
        self.emit(level="error", event=event, component=component, message=message or str(exc), fields=merged)


class StructuredLoggerAdapter:
    """Logger-style facade bound to one component.

    ``key=value`` pairs in the message and the ``extra`` mapping become
    fields of the emitted event; ``extra["event"]`` names it.
    """

    def __init__(self, *, manager: LogManager, component: str) -> None:
        self._manager = manager
        self._component = component

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._emit("debug", msg, args, kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._emit("info", msg, args, kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._emit("warning", msg, args, kwargs)

    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None:
        exc = kwargs.get("exc_info")
        if not isinstance(exc, BaseException):
            exc = sys.exc_info()[1]
        text = _format(msg, args)
        event, fields = self._context(text, kwargs)
        if exc is None:
            self._manager.emit(level="error", event=event, component=self._component, message=text, fields=fields)
            return
        self._manager.emit_exception(event=event, exc=exc, component=self._component, message=text, fields=fields)

    def _emit(self, level: str, msg: str, args: tuple[Any, ...], kwargs: dict[str, Any]) -> None:
        text = _format(msg, args)
        event, fields = self._context(text, kwargs)
        self._manager.emit(level=level, event=event, component=self._component, message=text, fields=fields)

    def _context(self, text: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        extra = kwargs.get("extra")
        merged: dict[str, Any] = {**_extract_kv_pairs(text), **(extra if isinstance(extra, dict) else {})}
        event = str(merged.pop("event", None) or f"{self._component}.log")
        fields: dict[str, Any] = {name: _as_text_or_none(merged.pop(name, None)) for name in _CORE_FIELDS}
        if merged:
            fields["fields"] = merged
        return event, fields


_DEFAULT_MANAGER: LogManager | None = None


def get_log_manager() -> LogManager:
    global _DEFAULT_MANAGER
    if _DEFAULT_MANAGER is None:
        _DEFAULT_MANAGER = LogManager()
    return _DEFAULT_MANAGER


def get_component_logger(component: str) -> StructuredLoggerAdapter:
    return StructuredLoggerAdapter(manager=get_log_manager(), component=component)


_KEY_VALUE_PATTERN = re.compile(r"([A-Za-z_][A-Za-z0-9_.-]*)=([^\s]+)")


def _format(msg: str, args: tuple[Any, ...]) -> str:
    if not args:
        return str(msg)
    try:
        return str(msg) % args
    except (TypeError, ValueError):
        return f"{msg} | args={', '.join(str(v) for v in args)}"


def _extract_kv_pairs(text: str) -> dict[str, str]:
    result: dict[str, str] = {}
    for key, raw_value in _KEY_VALUE_PATTERN.findall(str(text or "")):
        value = raw_value.strip().strip(",")
        if len(value) >= 2 and value[0] in "'\"" and value[-1] == value[0]:
            value = value[1:-1]
        result[key] = value
    return result


def _as_text_or_none(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
