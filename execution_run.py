# execution_run.py
"""State owned by one execution of a plan.

Every place the engine waits (pause hold, navigation, element polling,
inter-step settle, intervention) goes through the methods here, so a cancel
is seen at each of them. Waiting is built on ``asyncio.Event`` rather than
polling flags.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Awaitable, Dict, FrozenSet, Optional, TypeVar

from autofill_errors import InvalidRunTransition, RunCancelled
from plan_schema import Plan

T = TypeVar("T")


class RunState(str, Enum):
    IDLE = "Idle"
    RUNNING = "Running"
    PAUSED = "Paused"
    CANCELLED = "Cancelled"
    COMPLETED = "Completed"
    FAILED = "Failed"


class PauseOrigin(str, Enum):
    USER = "user"
    INTERVENTION = "intervention"


TRANSITIONS: Dict[RunState, FrozenSet[RunState]] = {
    RunState.IDLE: frozenset({RunState.RUNNING}),
    RunState.RUNNING: frozenset({RunState.PAUSED, RunState.CANCELLED, RunState.COMPLETED, RunState.FAILED}),
    RunState.PAUSED: frozenset({RunState.RUNNING, RunState.CANCELLED}),
    RunState.CANCELLED: frozenset(),
    RunState.COMPLETED: frozenset(),
    RunState.FAILED: frozenset(),
}
ACTIVE_STATES = frozenset({RunState.RUNNING, RunState.PAUSED})
TERMINAL_STATES = frozenset({RunState.CANCELLED, RunState.COMPLETED, RunState.FAILED})


@dataclass
class ExecutionRun:
    plan: Plan
    submission_id: Optional[str] = None
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    step_index: int = 0
    state: RunState = RunState.IDLE
    intervention_count: int = 0
    last_error: Optional[str] = None
    pause_origin: Optional[PauseOrigin] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self._running = asyncio.Event()
        self._cancelled = asyncio.Event()

    @property
    def total_steps(self) -> int:
        return len(self.plan.steps)

    @property
    def is_active(self) -> bool:
        return self.state in ACTIVE_STATES

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def transition(self, target: RunState) -> None:
        if target not in TRANSITIONS[self.state]:
            raise InvalidRunTransition(self.state.value, target.value)
        self.state = target
        if target is RunState.RUNNING:
            self.pause_origin = None
            if self.started_at is None:
                self.started_at = datetime.now(UTC)
            self._running.set()
        else:
            self._running.clear()
        if target is RunState.CANCELLED:
            self._cancelled.set()
        if target in TERMINAL_STATES:
            self.finished_at = datetime.now(UTC)

    def pause(self, origin: PauseOrigin) -> None:
        self.transition(RunState.PAUSED)
        self.pause_origin = origin

    def advance_to(self, index: int) -> None:
        if index < self.step_index:
            raise ValueError(f"step index cannot move backwards ({self.step_index} -> {index})")
        self.step_index = index

    def ensure_not_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise RunCancelled()

    async def sleep(self, ms: float) -> None:
        """Suspend for ``ms`` milliseconds; raises RunCancelled on cancel."""
        self.ensure_not_cancelled()
        if ms <= 0:
            await asyncio.sleep(0)
        else:
            try:
                await asyncio.wait_for(self._cancelled.wait(), timeout=ms / 1000)
            except asyncio.TimeoutError:
                pass
        self.ensure_not_cancelled()

    async def hold_while_paused(self, timeout_ms: Optional[int] = None) -> bool:
        """Suspend until the run is Running again.

        Returns False when ``timeout_ms`` elapsed first. Raises RunCancelled
        when the run is cancelled in the meantime.
        """
        self.ensure_not_cancelled()
        if self.state is RunState.RUNNING:
            return True
        resumed = asyncio.ensure_future(self._running.wait())
        cancelled = asyncio.ensure_future(self._cancelled.wait())
        try:
            await asyncio.wait(
                {resumed, cancelled},
                timeout=None if timeout_ms is None else timeout_ms / 1000,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            resumed.cancel()
            cancelled.cancel()
        self.ensure_not_cancelled()
        return self.state is RunState.RUNNING

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the run is cancelled first."""
        self.ensure_not_cancelled()
        work = asyncio.ensure_future(awaitable)
        cancelled = asyncio.ensure_future(self._cancelled.wait())
        try:
            await asyncio.wait({work, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()
            interrupted = not work.done()
            if interrupted:
                work.cancel()
        if interrupted:
            raise RunCancelled()
        return work.result()

    def snapshot(self) -> Dict[str, object]:
        return {
            "run_id": self.run_id,
            "state": self.state.value,
            "step_index": self.step_index,
            "total_steps": self.total_steps,
            "intervention_count": self.intervention_count,
            "last_error": self.last_error,
            "submission_id": self.submission_id,
        }
