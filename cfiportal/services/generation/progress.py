from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


STARTED = "started"
ITEM_COMPLETED = "item_completed"
COMPLETED = "completed"
FAILED = "failed"
TIMEOUT = "timeout"
TERMINAL_EVENTS = frozenset({COMPLETED, FAILED})


def task_topic(task_id: str) -> str:
    return f"tasks/{task_id}"


def chat_topic(conversation_id: str) -> str:
    return f"chat/{conversation_id}"


def progress_percent(completed: int, total: int) -> int:
    # Floor keeps the value monotonic and only reaches 100 on the last item.
    if total <= 0:
        return 100
    completed = max(0, min(completed, total))
    return completed * 100 // total


@dataclass
class ProgressTracker:
    """Client-side view of a job built from its (possibly replayed) events."""

    total: int = 0
    completed_keys: set[str] = field(default_factory=set)
    status: str = "pending"
    message: str | None = None

    @property
    def completed(self) -> int:
        return len(self.completed_keys)

    @property
    def percent(self) -> int:
        if self.status == COMPLETED:
            return 100
        return progress_percent(self.completed, self.total)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_EVENTS or self.status == TIMEOUT

    def apply(self, event: dict[str, Any]) -> dict[str, Any]:
        event_type = event.get("type")
        if event_type == STARTED:
            self.total = max(self.total, int(event.get("total") or 0))
            if self.status == "pending":
                self.status = "processing"
        elif event_type == ITEM_COMPLETED:
            # Keyed by item so duplicates and out-of-order delivery never double count.
            item_key = event.get("item_key")
            if item_key is not None:
                self.completed_keys.add(str(item_key))
            self.total = max(self.total, int(event.get("total") or 0))
            if self.status == "pending":
                self.status = "processing"
        elif event_type in TERMINAL_EVENTS and not self.is_terminal:
            self.status = str(event_type)
            self.message = event.get("message")
        return self.snapshot()

    def mark_timeout(self, message: str) -> dict[str, Any]:
        self.status = TIMEOUT
        self.message = message
        return self.snapshot()

    def snapshot(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "completed": self.completed,
            "total": self.total,
            "progress": self.percent,
            "message": self.message,
        }
