from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from typing import Any

from mantis.agent.cognition.dialogue.states import (
    DialogueState,
    TransitionOutcome,
    TransitionSignal,
    evaluate_transition,
)


@dataclass
class FrameContext:
    last_intent: str | None = None
    last_entities: dict[str, str] = field(default_factory=dict)
    last_response: str | None = None
    topic: str | None = None
    sub_topic: str | None = None
    timestamp: int = 0


@dataclass
class FlowStep:
    intent: str | None
    entities: dict[str, str]
    timestamp: int
    kind: str = "turn"


@dataclass
class PendingAction:
    intent: str
    entities: dict[str, str]
    confidence: float
    response: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class DialogueFrame:
    frame_id: str
    context: FrameContext
    state: DialogueState = DialogueState.IDLE
    awaiting_for: str | None = None
    follow_up_count: int = 0
    conversation_flow: list[FlowStep] = field(default_factory=list)
    pending_action: PendingAction | None = None
    valid_values: list[str] | None = None
    follow_up_options: dict[str, Any] = field(default_factory=dict)
    is_digression: bool = False
    created_at: int = 0

    def flow_signature(self) -> str:
        return "->".join(step.intent for step in self.conversation_flow if step.intent)

    def recent_flow_intents(self, limit: int = 3) -> list[str]:
        intents = [step.intent for step in self.conversation_flow if step.intent]
        return intents[-limit:]


def create_frame(
    now_ms: int,
    *,
    context: FrameContext | None = None,
    is_digression: bool = False,
) -> DialogueFrame:
    frame_context = context or FrameContext()
    frame_context.timestamp = now_ms
    return DialogueFrame(
        frame_id=uuid.uuid4().hex[:12],
        context=frame_context,
        is_digression=is_digression,
        created_at=now_ms,
    )


def apply_transition(
    frame: DialogueFrame,
    target: DialogueState,
    signal: TransitionSignal | None = None,
) -> TransitionOutcome:
    outcome = evaluate_transition(frame.state, target, signal)
    if outcome.ok:
        frame.state = target
    return outcome


def clear_follow_up(frame: DialogueFrame) -> None:
    frame.awaiting_for = None
    frame.valid_values = None
    frame.follow_up_options = {}


def reset_frame(frame: DialogueFrame, now_ms: int) -> None:
    """Reset in place: the frame keeps its identity and position on the stack."""
    frame.context = FrameContext(timestamp=now_ms)
    frame.state = DialogueState.IDLE
    frame.follow_up_count = 0
    frame.conversation_flow = []
    frame.pending_action = None
    clear_follow_up(frame)


def snapshot_frame(frame: DialogueFrame) -> dict[str, Any]:
    raw = asdict(frame)
    raw["state"] = frame.state.value
    return raw
