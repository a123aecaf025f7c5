from __future__ import annotations

from typing import Any

import pytest

from mantis.agent.cognition.dialogue.engine import DialogueEngine
from mantis.agent.cognition.dialogue.insights import InsightsTracker
from mantis.agent.cognition.nlu.catalog import get_default_catalog
from mantis.agent.cognition.nlu.intent_recognizer import IntentRecognizer
from mantis.agent.core.clock import ManualClock
from mantis.agent.nervous_system.kv_store import InMemoryKeyValueStore
from mantis.config.settings import DialogueSettings


def _engine(store: InMemoryKeyValueStore | None = None, **settings: Any) -> DialogueEngine:
    recognizer = IntentRecognizer(get_default_catalog())
    return DialogueEngine(
        recognizer,
        extractor=recognizer.extractor,
        store=store,
        clock=ManualClock(),
        settings=DialogueSettings(**settings),
        session_id="insights",
    )


def test_record_turn_counts_topics_bigrams_and_transitions() -> None:
    engine = _engine()
    engine.update_context("openProject", {"projectName": "biosphaera"})
    engine.update_context("setTheme", {"theme": "scuro"})

    insights = engine.insights
    assert insights.topic_histogram == {"projects": 1, "interface": 1}
    assert insights.intent_bigrams == {"openProject->setTheme": 1}
    assert insights.topic_transitions == {"projects->interface": 1}
    assert insights.successful_flows["setTheme"] == 1


def test_completed_turns_are_archived() -> None:
    engine = _engine()
    engine.update_context("openProject", {"projectName": "lp"})
    engine.update_context("setTheme", {"theme": "scuro"})

    assert len(engine.history) == 1
    assert engine.history[0].kind == "completed"
    assert engine.history[0].frame["context"]["last_intent"] == "openProject"


def test_failed_flows_lower_success_rate() -> None:
    tracker = InsightsTracker(get_default_catalog())

    assert tracker.success_rate("setTheme") == 0.5

    tracker.record_turn(
        previous_intent=None, previous_entities=None, intent="setTheme", entities={}, flow_signature="setTheme"
    )
    tracker.record_turn(
        previous_intent=None,
        previous_entities=None,
        intent="setTheme",
        entities={},
        flow_signature="setTheme",
        success=False,
    )

    assert tracker.success_rate("setTheme") == pytest.approx(0.5)
    assert tracker.failed_flows["setTheme"] == 1


def test_score_weights_factors() -> None:
    tracker = InsightsTracker(get_default_catalog())
    template = get_default_catalog().dialogue.topic_suggestions["interface"][1]

    suggestion = tracker.score(template, current_topic="interface", recent_intents=[])

    assert suggestion.intent == "setCursor"
    assert suggestion.factors["novelty"] == 1.0
    assert suggestion.factors["context_relevance"] == 1.0
    assert suggestion.score == pytest.approx(0.5 * 0.4 + 1.0 * 0.2 + 1.0 * 0.3)


def test_suggestion_avoids_recent_failed_intent() -> None:
    engine = _engine()
    engine.update_context("setTheme", {"theme": "scuro"}, success=False)

    suggestion = engine.suggest_next_interaction()

    assert suggestion is not None
    assert suggestion.intent == "setCursor"
    assert suggestion.message == "Vuoi provare un cursore diverso?"


def test_no_suggestion_without_history() -> None:
    assert _engine().suggest_next_interaction() is None


def test_insights_survive_a_new_engine_through_the_store() -> None:
    store = InMemoryKeyValueStore()
    first = _engine(store, insights_flush_every=1)
    first.update_context("openProject", {"projectName": "lp"})
    first.update_context("navigate", {"sectionName": "about"})

    second = _engine(store)

    assert second.insights.topic_histogram["projects"] == 1
    assert second.insights.intent_bigrams["openProject->navigate"] == 1
    assert len(second.history) == 1


def test_store_failures_are_tolerated() -> None:
    class BrokenStore:
        def get(self, key: str) -> Any:
            raise OSError("disk gone")

        def set(self, key: str, value: Any) -> None:
            raise OSError("disk gone")

    engine = DialogueEngine(
        IntentRecognizer(get_default_catalog()),
        store=BrokenStore(),
        clock=ManualClock(),
        settings=DialogueSettings(insights_flush_every=1),
    )

    assert engine.update_context("setTheme", {"theme": "chiaro"}) is None
    assert engine.flush() is False


def test_listener_errors_do_not_break_the_engine() -> None:
    engine = _engine()
    calls: list[dict[str, Any]] = []

    def _broken(payload: dict[str, Any]) -> None:
        raise ValueError("listener bug")

    engine.on("stack_reset", _broken)
    engine.on("stack_reset", calls.append)
    engine.reset_full_stack()
    engine.off("stack_reset", calls.append)
    engine.reset_full_stack()

    assert len(calls) == 1
    assert calls[0]["session_id"] == "insights"


def test_context_snapshots() -> None:
    engine = _engine()
    engine.update_context("openProject", {"projectName": "v7"})

    context = engine.get_context()
    assert context["state"] == "idle"
    assert context["context"]["topic"] == "projects"
    assert context["context"]["sub_topic"] == "v7"
    assert context["stackDepth"] == 1

    full = engine.get_full_context()
    assert len(full["stack"]) == 1
    assert full["recentIntents"] == ["openProject"]
    assert full["insights"]["topic_histogram"] == {"projects": 1}
