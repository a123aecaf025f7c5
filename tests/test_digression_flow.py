from __future__ import annotations

import asyncio
from typing import Any

from mantis.agent.cognition.dialogue.engine import DialogueEngine
from mantis.agent.cognition.dialogue.results import ResultType
from mantis.agent.cognition.dialogue.stack import HISTORY_NESTED
from mantis.agent.cognition.dialogue.states import DialogueState
from mantis.agent.cognition.nlu.catalog import get_default_catalog
from mantis.agent.cognition.nlu.command import RecognizedCommand
from mantis.agent.cognition.nlu.intent_recognizer import IntentRecognizer
from mantis.agent.core.clock import ManualClock
from mantis.config.settings import DialogueSettings


def _engine() -> DialogueEngine:
    recognizer = IntentRecognizer(get_default_catalog())
    return DialogueEngine(
        recognizer,
        extractor=recognizer.extractor,
        clock=ManualClock(),
        settings=DialogueSettings(),
        session_id="digression",
    )


def _awaiting_project(engine: DialogueEngine) -> None:
    engine.process_input(RecognizedCommand(intent="openProject", confidence=0.95, entities={}))
    assert engine.current_frame.awaiting_for == "projectName"


def test_unrelated_command_while_waiting_pushes_nested_frame() -> None:
    engine = _engine()
    _awaiting_project(engine)
    root = engine.current_frame

    result = asyncio.run(engine.handle_turn("cambia tema scuro"))

    assert result.type == ResultType.DIGRESSION_STARTED
    assert result.stack_depth == 2
    assert result.needs_execution
    assert result.action is not None
    assert result.action.intent == "setTheme"
    assert result.action.entities == {"theme": "scuro"}
    assert engine.stack_depth == 2
    assert engine.current_frame is not root
    assert engine.current_frame.is_digression
    assert root.state == DialogueState.AWAITING_ENTITY
    assert root.awaiting_for == "projectName"


def test_completing_digression_returns_to_pending_question() -> None:
    engine = _engine()
    _awaiting_project(engine)
    asyncio.run(engine.handle_turn("cambia tema scuro"))

    finished = engine.update_context("setTheme", {"theme": "scuro"})

    assert finished is not None
    assert finished.type == ResultType.DIGRESSION_COMPLETED
    assert finished.awaiting_for == "projectName"
    assert finished.message is not None
    assert "Quale progetto vuoi aprire?" in finished.message
    assert engine.stack_depth == 1
    assert engine.current_frame.state == DialogueState.AWAITING_ENTITY
    assert engine.history[-1].kind == HISTORY_NESTED

    resumed = asyncio.run(engine.handle_turn("biosphaera"))
    assert resumed.type == ResultType.FOLLOW_UP
    assert resumed.command is not None
    assert resumed.command.entities["projectName"] == "biosphaera"


def test_compatible_reply_is_not_a_digression() -> None:
    engine = _engine()
    _awaiting_project(engine)

    assert engine.could_satisfy(
        RecognizedCommand(intent="openProject", confidence=1.0, entities={"projectName": "lp"}),
        "projectName",
    )
    result = asyncio.run(engine.handle_turn("apri progetto lp"))

    assert result.type == ResultType.FOLLOW_UP
    assert engine.stack_depth == 1


def test_digression_needing_its_own_entity_asks_inside_nested_frame() -> None:
    engine = _engine()
    _awaiting_project(engine)

    result = engine.process_input(RecognizedCommand(intent="setCursor", confidence=0.95, entities={}))

    assert result.type == ResultType.DIGRESSION_STARTED
    assert not result.needs_execution
    assert result.message is not None
    assert "Quale cursore preferisci?" in result.message
    assert engine.current_frame.awaiting_for == "cursorType"
    assert engine.stack_depth == 2


def test_cancelling_inside_digression_pops_back() -> None:
    engine = _engine()
    _awaiting_project(engine)
    engine.process_input(RecognizedCommand(intent="setCursor", confidence=0.95, entities={}))

    result = engine.process_input(RecognizedCommand(intent="deny", confidence=1.0, entities={}))

    assert result.type == ResultType.DIGRESSION_COMPLETED
    assert engine.stack_depth == 1
    assert engine.current_frame.awaiting_for == "projectName"


def test_nested_update_does_not_pop() -> None:
    engine = _engine()
    _awaiting_project(engine)
    engine.process_input(RecognizedCommand(intent="setTheme", confidence=1.0, entities={"theme": "scuro"}))

    assert engine.update_context("setTheme", {"theme": "scuro"}, is_nested=True) is None
    assert engine.stack_depth == 2


def test_push_and_pop_state_keep_root() -> None:
    engine = _engine()

    engine.push_state()
    assert engine.stack_depth == 2
    assert engine.pop_state() is not None
    assert engine.pop_state() is None
    assert engine.stack_depth == 1


def test_digression_events_are_emitted() -> None:
    engine = _engine()
    seen: list[str] = []

    def _listener(payload: dict[str, Any]) -> None:
        seen.append(payload["event"])

    engine.on("digression_started", _listener)
    engine.on("digression_completed", _listener)
    _awaiting_project(engine)

    asyncio.run(engine.handle_turn("cambia tema scuro"))
    engine.update_context("setTheme", {"theme": "scuro"})

    assert seen == ["digression_started", "digression_completed"]
