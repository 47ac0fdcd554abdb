# engine_events.py
"""Events the engine sends to the host UI, and the bus that delivers them.

Delivery is fire-and-forget: nobody listening is fine, and a listener that
blows up is reported and ignored. The wire names match what the popup and
relay expect (``updateProgress``, ``autofillComplete``,
``requiresUserIntervention``).
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

UPDATE_PROGRESS = "updateProgress"
AUTOFILL_COMPLETE = "autofillComplete"
REQUIRES_USER_INTERVENTION = "requiresUserIntervention"
NOTICE = "notice"
NOTICE_CLEARED = "noticeCleared"

SEVERITIES = ("info", "success", "warning", "error")


@dataclass(frozen=True)
class ProgressUpdate:
    progress: int
    status: str
    step_index: int

    name = UPDATE_PROGRESS

    def to_message(self) -> Dict[str, Any]:
        return {"action": self.name, "progress": self.progress, "status": self.status}


@dataclass(frozen=True)
class AutofillComplete:
    success: bool
    message: str
    state: str

    name = AUTOFILL_COMPLETE

    def to_message(self) -> Dict[str, Any]:
        return {"action": self.name, "success": self.success, "message": self.message}


@dataclass(frozen=True)
class UserInterventionRequired:
    message: str
    step_index: Optional[int] = None

    name = REQUIRES_USER_INTERVENTION

    def to_message(self) -> Dict[str, Any]:
        return {"action": self.name, "message": self.message}


@dataclass(frozen=True)
class Notice:
    """``auto_dismiss_ms == 0`` keeps the notice up until it is cleared."""

    message: str
    severity: str = "info"
    auto_dismiss_ms: int = 3000

    name = NOTICE

    def to_message(self) -> Dict[str, Any]:
        return {
            "action": self.name,
            "message": self.message,
            "severity": self.severity,
            "autoDismissMs": self.auto_dismiss_ms,
        }


@dataclass(frozen=True)
class NoticeCleared:
    name = NOTICE_CLEARED

    def to_message(self) -> Dict[str, Any]:
        return {"action": self.name}


Handler = Callable[[Any], Any]


class EventBus:
    def __init__(self) -> None:
        self._handlers: Dict[str, List[Handler]] = {}
        self._pending: Set[asyncio.Task] = set()

    def on(self, event_name: str, handler: Handler) -> None:
        self._handlers.setdefault(event_name, []).append(handler)

    def off(self, event_name: str, handler: Handler) -> None:
        handlers = self._handlers.get(event_name, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event: Any) -> None:
        for handler in list(self._handlers.get(event.name, [])):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._on_task_done)
            except Exception as exc:
                print(f"  • Listener for {event.name} failed: {exc}")

    def notify(self, message: str, severity: str = "info", auto_dismiss_ms: int = 3000) -> Notice:
        if severity not in SEVERITIES:
            severity = "info"
        notice = Notice(message=message, severity=severity, auto_dismiss_ms=max(0, auto_dismiss_ms))
        self.emit(notice)
        return notice

    def clear_notice(self) -> None:
        self.emit(NoticeCleared())

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            print(f"  • Async listener failed: {exc}")
