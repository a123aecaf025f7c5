from __future__ import annotations

import asyncio
import sqlite3
import threading
from typing import Callable

from mantis.agent.cognition.dialogue.engine import DialogueEngine
from mantis.agent.cognition.nlu.catalog import get_default_catalog, load_catalog
from mantis.agent.cognition.nlu.intent_recognizer import IntentRecognizer
from mantis.agent.core.clock import Clock, SystemClock
from mantis.agent.nervous_system.kv_store import InMemoryKeyValueStore, KeyValueStore, SqliteKeyValueStore
from mantis.agent.observability.log_manager import get_component_logger
from mantis.config import settings

logger = get_component_logger("session.registry")

EngineFactory = Callable[[str], DialogueEngine]


def build_engine(
    session_id: str,
    *,
    store: KeyValueStore | None = None,
    clock: Clock | None = None,
    dialogue_settings: settings.DialogueSettings | None = None,
    catalog_path: str | None = None,
) -> DialogueEngine:
    path = catalog_path or settings.get_nlu_catalog_path()
    catalog = load_catalog(path) if path else get_default_catalog()
    recognizer = IntentRecognizer(catalog, analysis_char_limit=settings.get_analysis_char_limit())
    return DialogueEngine(
        recognizer,
        extractor=recognizer.extractor,
        store=store,
        clock=clock,
        settings=dialogue_settings or settings.load_dialogue_settings(),
        session_id=session_id,
    )


def open_default_store() -> KeyValueStore:
    store = SqliteKeyValueStore()
    try:
        store.ensure_ready()
    except (OSError, sqlite3.Error) as exc:
        logger.exception(
            "sqlite store unavailable path=%s, keeping insights in memory",
            store.db_path,
            exc_info=exc,
            extra={"event": "session.store_unavailable"},
        )
        return InMemoryKeyValueStore()
    return store


def default_engine_factory(session_id: str) -> DialogueEngine:
    return build_engine(session_id, store=open_default_store())


class SessionRegistry:
    """One dialogue engine per session id, each guarded by its own lock.

    Turns for the same session must be awaited under ``lock_for(session_id)``;
    different sessions proceed independently. Sessions untouched for
    ``idle_ms`` are evicted, and the least recently used one makes room once
    ``max_sessions`` are held. Evicted engines are flushed first.
    """

    def __init__(
        self,
        factory: EngineFactory | None = None,
        *,
        max_sessions: int | None = None,
        idle_ms: int | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._factory = factory or default_engine_factory
        self._max_sessions = max_sessions or settings.get_max_sessions()
        self._idle_ms = idle_ms or settings.get_session_idle_ms()
        self._clock = clock or SystemClock()
        self._sessions: dict[str, DialogueEngine] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._touched: dict[str, int] = {}
        self._guard = threading.Lock()

    def get(self, session_id: str) -> DialogueEngine | None:
        with self._guard:
            engine = self._sessions.get(session_id)
            if engine is not None:
                self._touched[session_id] = self._clock.now_ms()
            return engine

    def get_or_create(self, session_id: str) -> DialogueEngine:
        with self._guard:
            now = self._clock.now_ms()
            evicted = self._collect_idle(now, keep=session_id)
            engine = self._sessions.get(session_id)
            if engine is None:
                while len(self._sessions) >= self._max_sessions:
                    oldest = self._least_recent(keep=session_id)
                    if oldest is None:
                        break
                    evicted.append(self._forget(oldest))
                engine = self._factory(session_id)
                self._sessions[session_id] = engine
                logger.info(
                    "session created session_id=%s",
                    session_id,
                    extra={"event": "session.created", "session_id": session_id},
                )
            self._touched[session_id] = now
        self._flush_evicted(evicted)
        return engine

    def lock_for(self, session_id: str) -> asyncio.Lock:
        with self._guard:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[session_id] = lock
            return lock

    def drop(self, session_id: str) -> bool:
        with self._guard:
            if session_id not in self._sessions:
                return False
            engine = self._forget(session_id)
        engine.flush()
        logger.info(
            "session dropped session_id=%s",
            session_id,
            extra={"event": "session.dropped", "session_id": session_id},
        )
        return True

    def evict_idle(self) -> list[str]:
        with self._guard:
            evicted = self._collect_idle(self._clock.now_ms())
        self._flush_evicted(evicted)
        return [engine.session_id for engine in evicted]

    def session_ids(self) -> list[str]:
        with self._guard:
            return sorted(self._sessions)

    def _collect_idle(self, now: int, keep: str | None = None) -> list[DialogueEngine]:
        stale = [
            session_id
            for session_id, touched in self._touched.items()
            if session_id != keep and now - touched > self._idle_ms and not self._busy(session_id)
        ]
        return [self._forget(session_id) for session_id in stale]

    def _least_recent(self, keep: str) -> str | None:
        candidates = [
            session_id
            for session_id in self._sessions
            if session_id != keep and not self._busy(session_id)
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda session_id: self._touched.get(session_id, 0))

    def _busy(self, session_id: str) -> bool:
        lock = self._locks.get(session_id)
        return lock is not None and lock.locked()

    def _forget(self, session_id: str) -> DialogueEngine:
        self._locks.pop(session_id, None)
        self._touched.pop(session_id, None)
        return self._sessions.pop(session_id)

    def _flush_evicted(self, engines: list[DialogueEngine]) -> None:
        for engine in engines:
            engine.flush()
            logger.info(
                "session evicted session_id=%s",
                engine.session_id,
                extra={"event": "session.evicted", "session_id": engine.session_id},
            )
