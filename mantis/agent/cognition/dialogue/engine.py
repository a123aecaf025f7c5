from __future__ import annotations

import inspect
import uuid
from collections import deque
from dataclasses import asdict, replace
from typing import Any, Callable, Sequence

from mantis.agent.cognition.dialogue.frame import (
    DialogueFrame,
    FlowStep,
    PendingAction,
    apply_transition,
    clear_follow_up,
    reset_frame,
    snapshot_frame,
)
from mantis.agent.cognition.dialogue.insights import InsightsTracker, Suggestion
from mantis.agent.cognition.dialogue.results import DialogueResult, ResultType
from mantis.agent.cognition.dialogue.stack import HISTORY_COMPLETED, DialogueStack, HistoryEntry
from mantis.agent.cognition.dialogue.states import (
    DialogueState,
    TransitionSignal,
    allowed_targets,
)
from mantis.agent.cognition.dialogue.timeout import TimeoutPolicy, TimeoutStatus
from mantis.agent.cognition.errors import EntityExtractionUnavailable
from mantis.agent.cognition.localization import render_message
from mantis.agent.cognition.nlu.command import UNKNOWN_INTENT, RecognizedCommand
from mantis.agent.cognition.nlu.entity_extractor import EntityExtractionService
from mantis.agent.cognition.nlu.intent_recognizer import IntentRecognizer
from mantis.agent.cognition.nlu.text_normalization import normalize_punctuation
from mantis.agent.core.clock import Clock, SystemClock
from mantis.agent.nervous_system.kv_store import KeyValueStore
from mantis.agent.observability.log_manager import get_component_logger
from mantis.config.settings import DialogueSettings, load_dialogue_settings

logger = get_component_logger("dialogue.engine")

EventListener = Callable[[dict[str, Any]], None]

_RECENT_INTENTS = 3


class DialogueEngine:
    """Multi-turn dialogue state for exactly one conversation.

    The engine owns a stack of frames (the root frame plus any digressions),
    the bounded history of closed frames and the insight maps. It performs no
    locking; callers sharing an engine must serialize access per session.
    """

    def __init__(
        self,
        recognizer: IntentRecognizer | None = None,
        *,
        extractor: EntityExtractionService | None = None,
        store: KeyValueStore | None = None,
        clock: Clock | None = None,
        settings: DialogueSettings | None = None,
        session_id: str | None = None,
    ) -> None:
        self._recognizer = recognizer or IntentRecognizer()
        self._catalog = self._recognizer.catalog
        self._extractor = extractor
        self._store = store
        self._clock = clock or SystemClock()
        self._settings = settings or load_dialogue_settings()
        self._timeout = TimeoutPolicy(
            timeout_ms=self._settings.context_timeout_ms,
            reminder_ratio=self._settings.reminder_ratio,
        )
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self._stack = DialogueStack(self._now(), history_limit=self._settings.history_limit)
        self._insights = InsightsTracker(self._catalog)
        self._recent_intents: deque[str] = deque(maxlen=_RECENT_INTENTS)
        self._listeners: dict[str, list[EventListener]] = {}
        self._updates_since_flush = 0
        self._load_persisted()

    @property
    def recognizer(self) -> IntentRecognizer:
        return self._recognizer

    @property
    def current_frame(self) -> DialogueFrame:
        return self._stack.current

    @property
    def stack_depth(self) -> int:
        return self._stack.depth

    @property
    def history(self) -> list[HistoryEntry]:
        return self._stack.history

    @property
    def insights(self) -> InsightsTracker:
        return self._insights

    @property
    def recent_intents(self) -> list[str]:
        return list(self._recent_intents)

    def set_extractor(self, extractor: EntityExtractionService | None) -> None:
        self._extractor = extractor

    # events

    def on(self, event: str, listener: EventListener) -> None:
        self._listeners.setdefault(event, []).append(listener)

    def off(self, event: str, listener: EventListener) -> None:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    def _emit(self, event: str, payload: dict[str, Any]) -> None:
        data = {"event": event, "session_id": self.session_id, **payload}
        for listener in list(self._listeners.get(event, [])):
            try:
                listener(data)
            except Exception as exc:
                logger.exception(
                    "dialogue listener failed listener_event=%s",
                    event,
                    exc_info=exc,
                    extra={"event": "dialogue.listener_failed", "session_id": self.session_id},
                )

    # full turn pipeline

    async def handle_turn(self, text: str) -> DialogueResult:
        frame = self.current_frame
        if frame.state == DialogueState.ERROR:
            self._transition(frame, DialogueState.IDLE)
            clear_follow_up(frame)
        guarded = self._guard_activity()
        if guarded is not None:
            return guarded

        frame = self.current_frame
        command = self._recognizer.recognize(text, self.recent_intents)
        if frame.state == DialogueState.AWAITING_CONFIRMATION:
            decision = self._confirmation_decision(text)
            if decision is not None:
                return self.handle_confirmation(decision)
        if (
            frame.state == DialogueState.AWAITING_ENTITY
            and command.intent not in self._catalog.dialogue.correction_intents
            and not self._is_digression(command)
        ):
            return await self._continue_follow_up(text, command)
        return self._dispatch(command)

    def process_input(self, command: RecognizedCommand) -> DialogueResult:
        guarded = self._guard_activity()
        if guarded is not None:
            return guarded
        return self._dispatch(command)

    def _dispatch(self, command: RecognizedCommand) -> DialogueResult:
        frame = self.current_frame
        if frame.state == DialogueState.ERROR:
            self._transition(frame, DialogueState.IDLE)
            clear_follow_up(frame)
        correction = self._handle_correction(command)
        if correction is not None:
            return correction
        if self._is_digression(command):
            return self._start_digression(command)
        if command.is_unknown:
            return self._result(
                ResultType.NOT_UNDERSTOOD,
                message=render_message("dialogue.not_understood", self._settings.locale),
                command=command,
            )
        return self._begin_command(self.current_frame, command)

    def _begin_command(self, frame: DialogueFrame, command: RecognizedCommand) -> DialogueResult:
        if frame.state in {DialogueState.AWAITING_ENTITY, DialogueState.AWAITING_CONFIRMATION}:
            self._transition(frame, DialogueState.IDLE, TransitionSignal(cancel=True))
            clear_follow_up(frame)
        elif frame.state == DialogueState.PROCESSING:
            self._transition(frame, DialogueState.IDLE, TransitionSignal(completed=True))
        if not self._transition(frame, DialogueState.PROCESSING):
            return self._result(
                ResultType.ERROR,
                message=render_message("dialogue.cannot_handle", self._settings.locale),
                command=command,
            )
        frame.follow_up_count = 0
        frame.pending_action = PendingAction(
            intent=command.intent,
            entities=dict(command.entities),
            confidence=command.confidence,
        )

        missing = self._catalog.missing_entities(command.intent, command.entities)
        if missing:
            entity_type = missing[0]
            question = self.ask_for(
                entity_type,
                self._catalog.question_for(entity_type),
                intent=command.intent,
                entities=command.entities,
            )
            return self._result(
                ResultType.AWAITING_ENTITY,
                message=question,
                command=command,
                awaiting_for=entity_type,
            )

        low, high = self._catalog.dialogue.confirmation_band
        if low < command.confidence < high:
            self._transition(
                frame,
                DialogueState.AWAITING_CONFIRMATION,
                TransitionSignal(needs_confirmation=True),
            )
            definition = self._catalog.intent(command.intent)
            description = definition.description if definition and definition.description else command.intent
            return self._result(
                ResultType.CONFIRMATION_NEEDED,
                message=render_message(
                    "dialogue.confirmation_needed",
                    self._settings.locale,
                    {"description": description},
                ),
                command=command,
                action=frame.pending_action,
            )

        return self._result(ResultType.PROCESSED, command=command, action=frame.pending_action)

    # follow-ups

    def ask_for(
        self,
        entity_type: str,
        question: str,
        *,
        valid_values: Sequence[str] | None = None,
        intent: str | None = None,
        entities: dict[str, str] | None = None,
        options: dict[str, Any] | None = None,
    ) -> str:
        frame = self.current_frame
        if frame.follow_up_count >= self._settings.max_follow_ups:
            logger.info(
                "follow-up limit reached entity=%s count=%s",
                entity_type,
                frame.follow_up_count,
                extra={"event": "dialogue.follow_up_limit", "session_id": self.session_id},
            )
            self._force_idle(frame)
            return render_message("dialogue.follow_up_limit", self._settings.locale)

        if not self._transition(
            frame,
            DialogueState.AWAITING_ENTITY,
            TransitionSignal(awaiting_for=entity_type),
        ):
            return render_message("dialogue.cannot_handle", self._settings.locale)

        frame.follow_up_count += 1
        frame.awaiting_for = entity_type
        frame.context.timestamp = self._now()
        frame.follow_up_options = {**(options or {}), "question": question}
        if valid_values:
            frame.valid_values = list(valid_values)
        if intent:
            frame.pending_action = PendingAction(
                intent=intent,
                entities=dict(entities or {}),
                confidence=1.0,
            )
        return question

    async def handle_follow_up(self, text: str) -> RecognizedCommand | None:
        frame = self.current_frame
        if self.is_context_expired(frame) or frame.state != DialogueState.AWAITING_ENTITY:
            self.reset_current_frame()
            return None

        awaited = frame.awaiting_for or ""
        if self._extractor is None:
            self._fail(frame, "extractor_missing")
            raise EntityExtractionUnavailable(
                "no entity extraction service is configured",
                entity_type=awaited,
            )
        try:
            value = self._extractor.extract_entity(text, awaited, frame.valid_values)
            if inspect.isawaitable(value):
                value = await value
        except Exception as exc:
            logger.exception(
                "entity extraction failed entity=%s",
                awaited,
                exc_info=exc,
                extra={"event": "dialogue.extraction_failed", "session_id": self.session_id},
            )
            self._fail(frame, "extractor_failed")
            raise EntityExtractionUnavailable(
                f"entity extraction failed for {awaited}",
                entity_type=awaited,
            ) from exc

        now = self._now()
        if not value:
            frame.conversation_flow.append(FlowStep(intent=None, entities={}, timestamp=now, kind="follow_up_miss"))
            self._transition(frame, DialogueState.PROCESSING, TransitionSignal(entity_provided=False))
            return None

        self._transition(frame, DialogueState.PROCESSING, TransitionSignal(entity_provided=True))
        pending = frame.pending_action
        intent = pending.intent if pending else frame.context.last_intent or UNKNOWN_INTENT
        remembered = pending.entities if pending else frame.context.last_entities
        merged = {**remembered, awaited: str(value)}
        frame.conversation_flow.append(
            FlowStep(intent=intent, entities={awaited: str(value)}, timestamp=now, kind="follow_up")
        )
        follow_up_count = frame.follow_up_count
        self._transition(frame, DialogueState.IDLE, TransitionSignal(completed=True))
        clear_follow_up(frame)
        frame.pending_action = PendingAction(intent=intent, entities=merged, confidence=1.0)
        return RecognizedCommand(
            intent=intent,
            confidence=1.0,
            entities=merged,
            is_follow_up=True,
            follow_up_count=follow_up_count,
            text=text,
        )

    async def _continue_follow_up(self, text: str, command: RecognizedCommand) -> DialogueResult:
        frame = self.current_frame
        try:
            follow_up = await self.handle_follow_up(text)
        except EntityExtractionUnavailable:
            return self._result(
                ResultType.ERROR,
                message=render_message("dialogue.extraction_unavailable", self._settings.locale),
                command=command,
            )

        if follow_up is None:
            if frame.state != DialogueState.AWAITING_ENTITY or not frame.awaiting_for:
                return self._dispatch(command)
            awaited = frame.awaiting_for
            question = frame.follow_up_options.get("question") or self._catalog.question_for(awaited)
            message = self.ask_for(
                awaited,
                question,
                valid_values=frame.valid_values,
                options={k: v for k, v in frame.follow_up_options.items() if k != "question"},
            )
            if frame.state == DialogueState.AWAITING_ENTITY:
                return self._result(
                    ResultType.AWAITING_ENTITY,
                    message=message,
                    command=command,
                    awaiting_for=awaited,
                )
            return self._result(ResultType.FOLLOW_UP_LIMIT, message=message, command=command)

        missing = self._catalog.missing_entities(follow_up.intent, follow_up.entities)
        if missing:
            question = self.ask_for(
                missing[0],
                self._catalog.question_for(missing[0]),
                intent=follow_up.intent,
                entities=follow_up.entities,
            )
            return self._result(
                ResultType.AWAITING_ENTITY,
                message=question,
                command=follow_up,
                awaiting_for=missing[0],
            )
        return self._result(ResultType.FOLLOW_UP, command=follow_up, action=frame.pending_action)

    # corrections and confirmations

    def _handle_correction(self, command: RecognizedCommand) -> DialogueResult | None:
        if command.intent not in self._catalog.dialogue.correction_intents:
            return None
        frame = self.current_frame
        if frame.state == DialogueState.AWAITING_CONFIRMATION:
            return self.handle_confirmation(False, correction=command.entities or None)
        if frame.state != DialogueState.AWAITING_ENTITY:
            return None
        awaited = frame.awaiting_for
        self._transition(frame, DialogueState.IDLE, TransitionSignal(cancel=True))
        clear_follow_up(frame)
        frame.pending_action = None
        self._emit("follow_up_cancelled", {"entity_type": awaited, "frame_id": frame.frame_id})
        if frame.is_digression and self.stack_depth > 1:
            return self._complete_digression()
        return self._result(
            ResultType.FOLLOW_UP_CANCELLED,
            message=render_message("dialogue.follow_up_cancelled", self._settings.locale),
            command=command,
        )

    def handle_confirmation(
        self,
        confirmed: bool,
        correction: dict[str, str] | None = None,
    ) -> DialogueResult:
        frame = self.current_frame
        action = frame.pending_action
        if frame.state != DialogueState.AWAITING_CONFIRMATION or action is None:
            return self._result(
                ResultType.NOT_UNDERSTOOD,
                message=render_message("dialogue.no_pending_confirmation", self._settings.locale),
            )

        if confirmed:
            self._transition(frame, DialogueState.PROCESSING, TransitionSignal(confirmed=True))
            self._emit("confirmation_resolved", {"outcome": "confirmed", "intent": action.intent})
            return self._result(
                ResultType.CONFIRMED,
                message=render_message("dialogue.confirmed", self._settings.locale),
                command=RecognizedCommand(intent=action.intent, confidence=1.0, entities=dict(action.entities)),
                action=action,
            )

        self._transition(frame, DialogueState.IDLE, TransitionSignal(cancel=True))
        frame.pending_action = None
        if correction:
            self._emit(
                "confirmation_resolved",
                {"outcome": "corrected", "intent": action.intent, "correction": dict(correction)},
            )
            return self._result(
                ResultType.CORRECTED,
                message=render_message("dialogue.corrected", self._settings.locale),
                action=replace(action, entities={**action.entities, **correction}),
            )
        self._emit("confirmation_resolved", {"outcome": "cancelled", "intent": action.intent})
        return self._result(
            ResultType.CANCELLED,
            message=render_message("dialogue.cancelled", self._settings.locale),
        )

    def _confirmation_decision(self, text: str) -> bool | None:
        reply = normalize_punctuation(str(text or "").lower()).strip(" .,!?")
        policy = self._catalog.dialogue
        if _matches_any(reply, policy.confirm_words):
            return True
        if _matches_any(reply, policy.reject_words):
            return False
        return None

    # digressions

    def could_satisfy(self, command: RecognizedCommand, entity_type: str) -> bool:
        compatible = self._catalog.dialogue.entity_intents.get(entity_type, [])
        return command.intent in compatible and bool(command.entities.get(entity_type))

    def _is_digression(self, command: RecognizedCommand) -> bool:
        frame = self.current_frame
        if frame.state != DialogueState.AWAITING_ENTITY or not frame.awaiting_for:
            return False
        if command.is_unknown:
            return False
        return not self.could_satisfy(command, frame.awaiting_for)

    def _start_digression(self, command: RecognizedCommand) -> DialogueResult:
        parent = self.current_frame
        frame = self.push_state()
        logger.info(
            "digression started intent=%s awaiting=%s depth=%s",
            command.intent,
            parent.awaiting_for,
            self.stack_depth,
            extra={"event": "dialogue.digression_started", "session_id": self.session_id},
        )
        self._emit(
            "digression_started",
            {"intent": command.intent, "awaiting_for": parent.awaiting_for, "depth": self.stack_depth},
        )
        inner = self._begin_command(frame, command)
        question = None
        if inner.type in {ResultType.AWAITING_ENTITY, ResultType.CONFIRMATION_NEEDED}:
            question = inner.message
        return replace(
            inner,
            type=ResultType.DIGRESSION_STARTED,
            message=render_message(
                "dialogue.digression_started",
                self._settings.locale,
                {"question": question},
            ),
            action=inner.action if inner.type == ResultType.PROCESSED else None,
        )

    def _complete_digression(self) -> DialogueResult:
        finished = self.pop_state()
        parent = self.current_frame
        question = None
        if parent.state == DialogueState.AWAITING_ENTITY:
            question = parent.follow_up_options.get("question")
        self._emit(
            "digression_completed",
            {"frame_id": finished.frame_id if finished else None, "depth": self.stack_depth},
        )
        return self._result(
            ResultType.DIGRESSION_COMPLETED,
            message=render_message(
                "dialogue.digression_completed",
                self._settings.locale,
                {"question": question},
            ),
            awaiting_for=parent.awaiting_for,
        )

    def push_state(self) -> DialogueFrame:
        return self._stack.push(self._now())

    def pop_state(self) -> DialogueFrame | None:
        frame = self._stack.pop(self._now())
        if frame is None:
            logger.debug(
                "pop ignored on root frame",
                extra={"event": "dialogue.pop_root_ignored", "session_id": self.session_id},
            )
        return frame

    # outcome reporting

    def update_context(
        self,
        intent: str,
        entities: dict[str, str] | None = None,
        response: str | None = None,
        *,
        is_nested: bool = False,
        success: bool = True,
        confidence: float | None = None,
    ) -> DialogueResult | None:
        entities = dict(entities or {})
        now = self._now()
        frame = self.current_frame
        nested_frame = frame.is_digression and self.stack_depth > 1
        previous_intent = frame.context.last_intent
        previous_entities = dict(frame.context.last_entities)
        if previous_intent and not is_nested and not nested_frame:
            self._stack.archive(frame, HISTORY_COMPLETED, now)

        topic, sub_topic = self._catalog.topic_for(intent, entities)
        step = FlowStep(intent=intent, entities=entities, timestamp=now, kind="nested" if is_nested else "turn")
        if is_nested:
            frame.conversation_flow.append(step)
        else:
            if frame.state == DialogueState.PROCESSING:
                self._transition(frame, DialogueState.IDLE, TransitionSignal(completed=True))
            reset_frame(frame, now)
            frame.conversation_flow = [step]
        frame.context.last_intent = intent
        frame.context.last_entities = entities
        frame.context.last_response = response
        frame.context.topic = topic
        frame.context.sub_topic = sub_topic
        frame.context.timestamp = now
        self._recent_intents.append(intent)

        self._insights.record_turn(
            previous_intent=previous_intent,
            previous_entities=previous_entities,
            intent=intent,
            entities=entities,
            flow_signature=frame.flow_signature(),
            success=success,
        )
        logger.debug(
            "context updated intent=%s topic=%s success=%s confidence=%s nested=%s",
            intent,
            topic,
            success,
            confidence,
            is_nested,
            extra={"event": "dialogue.context_updated", "session_id": self.session_id},
        )
        self._updates_since_flush += 1
        if self._updates_since_flush >= self._settings.insights_flush_every:
            self.flush()

        if nested_frame and not is_nested:
            return self._complete_digression()
        return None

    # timeout and dormancy

    def is_context_expired(self, frame: DialogueFrame | None = None) -> bool:
        return self._timeout.is_expired(frame or self.current_frame, self._now())

    def check_timeout(self) -> DialogueResult | None:
        frame = self.current_frame
        if frame.state == DialogueState.DORMANT or not _has_context(frame):
            return None
        check = self._timeout.check(frame, self._now())
        if check.status == TimeoutStatus.EXPIRED:
            return self._enter_dormancy()
        if check.status == TimeoutStatus.REMINDER:
            self._emit("reengagement_prompt", {"time_remaining_s": check.remaining_s})
            return self._reengagement(frame, check.remaining_s)
        return None

    def peek_timeout(self) -> DialogueResult | None:
        """Same verdict as check_timeout but leaves the frame untouched and emits nothing."""
        frame = self.current_frame
        if frame.state == DialogueState.DORMANT or not _has_context(frame):
            return None
        check = self._timeout.check(frame, self._now())
        if check.status == TimeoutStatus.EXPIRED:
            return self._result(
                ResultType.TIMEOUT,
                message=render_message("dialogue.timeout", self._settings.locale),
                time_remaining_s=0,
            )
        if check.status == TimeoutStatus.REMINDER:
            return self._reengagement(frame, check.remaining_s)
        return None

    def _reengagement(self, frame: DialogueFrame, remaining_s: int) -> DialogueResult:
        return self._result(
            ResultType.REENGAGEMENT,
            message=render_message(
                "dialogue.reengagement",
                self._settings.locale,
                {"topic": frame.context.topic},
            ),
            time_remaining_s=remaining_s,
        )

    def resume(self) -> DialogueResult | None:
        frame = self.current_frame
        if frame.state != DialogueState.DORMANT:
            return None
        self._transition(frame, DialogueState.IDLE, TransitionSignal(resume=True))
        clear_follow_up(frame)
        frame.pending_action = None
        frame.follow_up_count = 0
        frame.context.timestamp = self._now()
        topic = frame.context.topic
        self._emit("conversation_resumed", {"topic": topic})
        return self._result(
            ResultType.RESUMED,
            message=render_message("dialogue.resumed", self._settings.locale, {"topic": topic}),
        )

    def _guard_activity(self) -> DialogueResult | None:
        frame = self.current_frame
        if frame.state == DialogueState.DORMANT:
            return self.resume()
        if _has_context(frame) and self.is_context_expired(frame):
            return self._enter_dormancy()
        return None

    def _enter_dormancy(self) -> DialogueResult:
        now = self._now()
        while self._stack.depth > 1:
            self._stack.pop(now)
        frame = self.current_frame
        self._transition(frame, DialogueState.DORMANT, TransitionSignal(timed_out=True))
        logger.info(
            "conversation dormant topic=%s",
            frame.context.topic,
            extra={"event": "dialogue.dormant", "session_id": self.session_id},
        )
        self._emit("conversation_timeout", {"topic": frame.context.topic})
        return self._result(
            ResultType.TIMEOUT,
            message=render_message("dialogue.timeout", self._settings.locale),
            dormant=True,
        )

    # inspection and resets

    def get_context(self) -> dict[str, Any]:
        frame = self.current_frame
        return {
            "state": frame.state.value,
            "context": asdict(frame.context),
            "awaitingFor": frame.awaiting_for,
            "followUpCount": frame.follow_up_count,
            "pendingAction": frame.pending_action.to_dict() if frame.pending_action else None,
            "stackDepth": self.stack_depth,
            "isExpired": self.is_context_expired(frame),
        }

    def get_full_context(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "stack": [snapshot_frame(frame) for frame in self._stack.frames],
            "history": [entry.to_dict() for entry in self._stack.history],
            "insights": self._insights.to_dict(),
            "recentIntents": self.recent_intents,
        }

    def reset_current_frame(self) -> None:
        frame = self.current_frame
        reset_frame(frame, self._now())
        self._emit("frame_reset", {"frame_id": frame.frame_id})

    def reset_full_stack(self) -> None:
        self._stack.reset(self._now())
        self._recent_intents.clear()
        self._emit("stack_reset", {})

    def suggest_next_interaction(self) -> Suggestion | None:
        frame = self.current_frame
        try:
            return self._insights.suggest(
                current_topic=frame.context.topic,
                recent_intents=frame.recent_flow_intents() or self.recent_intents,
            )
        except Exception as exc:
            logger.exception(
                "suggestion ranking failed",
                exc_info=exc,
                extra={"event": "dialogue.suggestion_failed", "session_id": self.session_id},
            )
            return None

    # persistence

    def flush(self) -> bool:
        self._updates_since_flush = 0
        if self._store is None:
            return False
        try:
            self._store.set(self._storage_key("insights"), self._insights.to_dict())
            self._store.set(self._storage_key("history"), [entry.to_dict() for entry in self._stack.history])
        except Exception as exc:
            logger.exception(
                "insights flush failed",
                exc_info=exc,
                extra={"event": "dialogue.persist_failed", "session_id": self.session_id},
            )
            return False
        return True

    def _load_persisted(self) -> None:
        if self._store is None:
            return
        try:
            insights = self._store.get(self._storage_key("insights"))
            history = self._store.get(self._storage_key("history"))
        except Exception as exc:
            logger.exception(
                "insights load failed",
                exc_info=exc,
                extra={"event": "dialogue.load_failed", "session_id": self.session_id},
            )
            return
        if isinstance(insights, dict):
            self._insights.merge(insights)
        if isinstance(history, list):
            self._stack.restore_history(history)

    def _storage_key(self, kind: str) -> str:
        return f"dialogue:{self.session_id}:{kind}"

    # helpers

    def _transition(
        self,
        frame: DialogueFrame,
        target: DialogueState,
        signal: TransitionSignal | None = None,
    ) -> bool:
        outcome = apply_transition(frame, target, signal)
        if not outcome.ok:
            logger.warning(
                "invalid transition from=%s to=%s allowed=%s",
                outcome.from_state.value,
                outcome.to_state.value,
                ",".join(state.value for state in allowed_targets(outcome.from_state)),
                extra={
                    "event": "dialogue.invalid_transition",
                    "session_id": self.session_id,
                    "state": outcome.from_state.value,
                },
            )
            return False
        self._emit(
            "state_changed",
            {"from": outcome.from_state.value, "to": outcome.to_state.value, "frame_id": frame.frame_id},
        )
        return True

    def _fail(self, frame: DialogueFrame, reason: str) -> None:
        self._transition(frame, DialogueState.ERROR, TransitionSignal(error=reason))

    def _force_idle(self, frame: DialogueFrame) -> None:
        signals = {
            DialogueState.AWAITING_ENTITY: TransitionSignal(cancel=True),
            DialogueState.AWAITING_CONFIRMATION: TransitionSignal(cancel=True),
            DialogueState.PROCESSING: TransitionSignal(completed=True),
            DialogueState.ERROR: TransitionSignal(),
            DialogueState.DORMANT: TransitionSignal(resume=True),
        }
        signal = signals.get(frame.state)
        if signal is not None:
            self._transition(frame, DialogueState.IDLE, signal)
        clear_follow_up(frame)
        frame.pending_action = None

    def _result(self, result_type: ResultType, **fields: Any) -> DialogueResult:
        return DialogueResult(type=result_type, stack_depth=self.stack_depth, **fields)

    def _now(self) -> int:
        return self._clock.now_ms()


def _has_context(frame: DialogueFrame) -> bool:
    return frame.state != DialogueState.IDLE or frame.context.last_intent is not None


def _matches_any(reply: str, words: Sequence[str]) -> bool:
    for word in words:
        lowered = word.lower()
        if reply == lowered or reply.startswith(lowered + " "):
            return True
    return False
