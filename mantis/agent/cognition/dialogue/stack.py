from __future__ import annotations

from collections import deque
from dataclasses import asdict, dataclass, replace
from typing import Any, Iterable

from mantis.agent.cognition.dialogue.frame import (
    DialogueFrame,
    FrameContext,
    create_frame,
    snapshot_frame,
)

HISTORY_COMPLETED = "completed"
HISTORY_NESTED = "nested_conversation"


@dataclass(frozen=True)
class HistoryEntry:
    kind: str
    frame: dict[str, Any]
    ended_at: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class DialogueStack:
    """LIFO stack of dialogue frames plus a bounded log of closed frames.

    The root frame is created with the stack and can never be popped, so the
    stack always holds at least one frame.
    """

    def __init__(self, now_ms: int, *, history_limit: int = 10) -> None:
        self._frames: list[DialogueFrame] = [create_frame(now_ms)]
        self._history: deque[HistoryEntry] = deque(maxlen=max(1, history_limit))

    @property
    def depth(self) -> int:
        return len(self._frames)

    @property
    def current(self) -> DialogueFrame:
        return self._frames[-1]

    @property
    def root(self) -> DialogueFrame:
        return self._frames[0]

    @property
    def frames(self) -> tuple[DialogueFrame, ...]:
        return tuple(self._frames)

    @property
    def history(self) -> list[HistoryEntry]:
        return list(self._history)

    def push(self, now_ms: int, *, is_digression: bool = True) -> DialogueFrame:
        seeded = _copy_context(self.current.context)
        frame = create_frame(now_ms, context=seeded, is_digression=is_digression)
        self._frames.append(frame)
        return frame

    def pop(self, now_ms: int) -> DialogueFrame | None:
        if len(self._frames) <= 1:
            return None
        frame = self._frames.pop()
        self.archive(frame, HISTORY_NESTED, now_ms)
        return frame

    def archive(self, frame: DialogueFrame, kind: str, now_ms: int) -> None:
        self._history.append(HistoryEntry(kind=kind, frame=snapshot_frame(frame), ended_at=now_ms))

    def reset(self, now_ms: int) -> DialogueFrame:
        self._frames = [create_frame(now_ms)]
        return self.current

    def restore_history(self, entries: Iterable[dict[str, Any]]) -> int:
        restored = 0
        for raw in entries:
            if not isinstance(raw, dict) or not isinstance(raw.get("frame"), dict):
                continue
            self._history.append(
                HistoryEntry(
                    kind=str(raw.get("kind") or HISTORY_COMPLETED),
                    frame=dict(raw["frame"]),
                    ended_at=int(raw.get("ended_at") or 0),
                )
            )
            restored += 1
        return restored


def _copy_context(context: FrameContext) -> FrameContext:
    return replace(context, last_entities=dict(context.last_entities))
