"""Per-frame dialogue state machine: closed state set and guarded transitions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable

from mantis.agent.cognition.errors import INVALID_TRANSITION


class DialogueState(str, Enum):
    IDLE = "idle"
    AWAITING_ENTITY = "awaiting_entity"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    PROCESSING = "processing"
    ERROR = "error"
    DORMANT = "dormant"


@dataclass(frozen=True)
class TransitionSignal:
    """Guard inputs for one attempted transition."""

    awaiting_for: str | None = None
    entity_provided: bool = False
    cancel: bool = False
    confirmed: bool = False
    needs_confirmation: bool = False
    completed: bool = False
    error: str | None = None
    timed_out: bool = False
    resume: bool = False


@dataclass(frozen=True)
class TransitionOutcome:
    ok: bool
    from_state: DialogueState
    to_state: DialogueState
    reason: str = "ok"


Guard = Callable[[TransitionSignal], bool]


def _always(_signal: TransitionSignal) -> bool:
    return True


def _asked(signal: TransitionSignal) -> bool:
    return bool(signal.awaiting_for)


def _entity_provided(signal: TransitionSignal) -> bool:
    return signal.entity_provided


def _cancelled(signal: TransitionSignal) -> bool:
    return signal.cancel


def _confirmed(signal: TransitionSignal) -> bool:
    return signal.confirmed


def _completed(signal: TransitionSignal) -> bool:
    return signal.completed


def _needs_confirmation(signal: TransitionSignal) -> bool:
    return signal.needs_confirmation


def _resumed(signal: TransitionSignal) -> bool:
    return signal.resume


_TRANSITIONS: dict[DialogueState, dict[DialogueState, Guard]] = {
    DialogueState.IDLE: {
        DialogueState.PROCESSING: _always,
        DialogueState.AWAITING_ENTITY: _asked,
    },
    DialogueState.AWAITING_ENTITY: {
        DialogueState.PROCESSING: _entity_provided,
        DialogueState.IDLE: _cancelled,
        DialogueState.AWAITING_ENTITY: _asked,
    },
    DialogueState.AWAITING_CONFIRMATION: {
        DialogueState.PROCESSING: _confirmed,
        DialogueState.IDLE: _cancelled,
    },
    DialogueState.PROCESSING: {
        DialogueState.IDLE: _completed,
        DialogueState.AWAITING_ENTITY: _asked,
        DialogueState.AWAITING_CONFIRMATION: _needs_confirmation,
    },
    DialogueState.ERROR: {
        DialogueState.IDLE: _always,
    },
    DialogueState.DORMANT: {
        DialogueState.IDLE: _resumed,
    },
}


def _guard_for(current: DialogueState, target: DialogueState) -> Guard | None:
    if target == DialogueState.ERROR and current != DialogueState.ERROR:
        return lambda signal: bool(signal.error)
    if target == DialogueState.DORMANT and current != DialogueState.DORMANT:
        return lambda signal: signal.timed_out
    return _TRANSITIONS.get(current, {}).get(target)


def evaluate_transition(
    current: DialogueState,
    target: DialogueState,
    signal: TransitionSignal | None = None,
) -> TransitionOutcome:
    guard = _guard_for(current, target)
    if guard is None:
        return TransitionOutcome(False, current, target, INVALID_TRANSITION)
    if not guard(signal or TransitionSignal()):
        return TransitionOutcome(False, current, target, INVALID_TRANSITION)
    return TransitionOutcome(True, current, target)


def allowed_targets(current: DialogueState) -> list[DialogueState]:
    targets = list(_TRANSITIONS.get(current, {}).keys())
    if current != DialogueState.ERROR:
        targets.append(DialogueState.ERROR)
    if current != DialogueState.DORMANT:
        targets.append(DialogueState.DORMANT)
    return targets
