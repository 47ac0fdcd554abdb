# intervention.py
"""Hand a step over to a human and wait for them to finish it.

The gate flips the run to Paused, tells the host (event plus a persistent
notice), then holds until ``resume()`` flips it back. The count of
interventions is bumped by the controller's ``resume``, not here.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional

from autofill_errors import InterventionRequired
from engine_events import EventBus, UserInterventionRequired
from execution_run import ExecutionRun, PauseOrigin, RunState

ResolvedHook = Callable[[ExecutionRun], Awaitable[None]]


class InterventionGate:
    def __init__(
        self,
        events: EventBus,
        timeout_ms: Optional[int] = None,
        on_resolved: Optional[ResolvedHook] = None,
    ) -> None:
        self.events = events
        self.timeout_ms = timeout_ms
        self.on_resolved = on_resolved

    async def request(self, run: ExecutionRun, message: str) -> None:
        """Pause ``run`` for manual handling of ``message``.

        Returns once the run is resumed. Raises RunCancelled if the run is
        cancelled while waiting, or InterventionRequired if a timeout is
        configured and elapses first.
        """
        # a user pause that is already in effect is honoured first
        await run.hold_while_paused()

        run.pause(PauseOrigin.INTERVENTION)
        print(f"🛑 Human action needed: {message}")
        self.events.notify(
            f"Please manually handle: {message}. Click Resume when done.",
            severity="warning",
            auto_dismiss_ms=0,
        )
        self.events.emit(UserInterventionRequired(message=message, step_index=run.step_index))

        try:
            resumed = await run.hold_while_paused(timeout_ms=self.timeout_ms)
        finally:
            self.events.clear_notice()

        if not resumed:
            # hand control back so the controller can fail the run
            run.transition(RunState.RUNNING)
            raise InterventionRequired(message, timeout_ms=self.timeout_ms)

        print(f"  ↪ Intervention resolved ({run.intervention_count} so far). Continuing.")
        if self.on_resolved is not None:
            await self.on_resolved(run)
