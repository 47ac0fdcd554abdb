# controller.py
"""Drives one plan at a time against a page.

``start`` validates the plan and spins the run off as an asyncio task, so the
host keeps control and can call ``pause``/``resume``/``cancel`` while steps
execute. A failing step is retried on its alternative targets, handed to a
human when the generator was unsure of it, and otherwise fails the run.
"""

from __future__ import annotations

import asyncio
import math
from typing import Any, Mapping, Optional, Union

from autofill_errors import (
    AutofillError,
    InterventionRequired,
    PlanValidationError,
    RunAlreadyActive,
    RunCancelled,
    UnhandledStepError,
)
from engine_config import EngineConfig
from engine_events import AutofillComplete, EventBus, ProgressUpdate
from execution_run import ExecutionRun, PauseOrigin, RunState
from executor import StepInterpreter, _format_inline
from intervention import InterventionGate
from plan_schema import PAUSE_FOR_INPUT, Plan, Step, parse_plan_text, plan_from_dict, validate_plan
from run_journal import RunJournal
from submissions import CANCELLED_MESSAGE, SubmissionLifecycle
from target_resolver import TargetResolver

SUCCESS_MESSAGE = "Form filled successfully"

PlanInput = Union[Plan, Mapping[str, Any], str]


def progress_percent(index: int, total: int) -> int:
    # half-up rounding, so 2.5 -> 3
    return int(math.floor(100 * (index + 1) / total + 0.5))


def coerce_plan(candidate: PlanInput) -> Plan:
    """Validate ``candidate`` and return it as a typed :class:`Plan`."""
    if isinstance(candidate, str):
        candidate = parse_plan_text(candidate)
    validation = validate_plan(candidate)
    if not validation.valid:
        raise PlanValidationError(validation.errors)
    if isinstance(candidate, Plan):
        return candidate
    return plan_from_dict(candidate)


class ExecutionController:
    def __init__(
        self,
        page: Any,
        config: Optional[EngineConfig] = None,
        events: Optional[EventBus] = None,
        lifecycle: Optional[SubmissionLifecycle] = None,
        journal: Optional[RunJournal] = None,
    ) -> None:
        self.page = page
        self.config = config or EngineConfig()
        self.events = events or EventBus()
        self.lifecycle = lifecycle
        self.journal = journal
        self.resolver = TargetResolver(self.config.resolve_rounds, self.config.resolve_interval_ms)
        self.gate = InterventionGate(
            self.events,
            timeout_ms=self.config.intervention_timeout_ms,
            on_resolved=self._on_intervention_resolved,
        )
        self.interpreter = StepInterpreter(page, self.resolver, self.gate, self.config)
        self.current: Optional[ExecutionRun] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def state(self) -> RunState:
        return self.current.state if self.current else RunState.IDLE

    # ------------------------------------------------------------------
    # Host surface
    # ------------------------------------------------------------------
    def start(self, plan: PlanInput, submission_id: Optional[str] = None) -> ExecutionRun:
        """Begin executing ``plan``. Must be called from a running event loop.

        Raises RunAlreadyActive while another run is Running or Paused, and
        PlanValidationError before any state changes when the plan is malformed.
        """
        if self.current is not None and self.current.is_active:
            raise RunAlreadyActive(self.current.state.value)
        typed_plan = coerce_plan(plan)

        run = ExecutionRun(plan=typed_plan, submission_id=submission_id)
        run.transition(RunState.RUNNING)
        self.current = run
        self._task = asyncio.get_running_loop().create_task(self._drive(run))
        return run

    async def wait(self) -> Optional[ExecutionRun]:
        if self._task is None:
            return self.current
        # the caller being cancelled must not tear the run down mid-step
        return await asyncio.shield(self._task)

    async def run(self, plan: PlanInput, submission_id: Optional[str] = None) -> ExecutionRun:
        self.start(plan, submission_id=submission_id)
        return await self.wait()

    def pause(self) -> bool:
        run = self.current
        if run is None or run.state is not RunState.RUNNING:
            return False
        run.pause(PauseOrigin.USER)
        print("⏸️ Autofill paused.")
        self.events.notify("Autofill paused", "info", self.config.notice_ms)
        return True

    def resume(self) -> bool:
        run = self.current
        if run is None or run.state is not RunState.PAUSED:
            return False
        if run.pause_origin is PauseOrigin.INTERVENTION:
            run.intervention_count += 1
        run.transition(RunState.RUNNING)
        print("▶️ Autofill resumed.")
        return True

    def cancel(self) -> bool:
        run = self.current
        if run is None or not run.is_active:
            return False
        run.transition(RunState.CANCELLED)
        print("✋ Autofill cancellation requested.")
        return True

    def snapshot(self) -> dict:
        if self.current is None:
            return {"state": RunState.IDLE.value}
        return self.current.snapshot()

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------
    async def _drive(self, run: ExecutionRun) -> ExecutionRun:
        self._announce(run)
        if self.journal is not None:
            self.journal.start(run.run_id, run.plan)

        try:
            await self._execute_steps(run)
            # a pause during the last step holds completion until resume
            await run.hold_while_paused()
            run.transition(RunState.COMPLETED)
        except RunCancelled:
            print("🛑 Run cancelled.")
        except (UnhandledStepError, InterventionRequired) as exc:
            print(f"❌ {exc}")
            await self._fail(run, str(exc))
        except Exception as exc:
            print(f"❌ Unexpected error during autofill: {exc}")
            await self._fail(run, str(exc) or exc.__class__.__name__)

        await self._finalize(run)
        return run

    def _announce(self, run: ExecutionRun) -> None:
        print(f"🚀 Starting autofill run {run.run_id} ({run.total_steps} steps)")
        for warning in run.plan.warnings:
            print(f"⚠️ Plan warning: {warning}")
            self.events.notify(warning, "warning", self.config.notice_ms)
        if run.plan.captcha_likely:
            print("⚠️ This form probably has a CAPTCHA; expect to solve it by hand.")
            self.events.notify("CAPTCHA likely on this form", "warning", self.config.notice_ms)

    async def _execute_steps(self, run: ExecutionRun) -> None:
        total = run.total_steps
        for index in range(run.step_index, total):
            run.ensure_not_cancelled()
            await run.hold_while_paused()
            run.advance_to(index)

            step = run.plan.steps[index]
            status = step.label(index, total)
            self.events.emit(
                ProgressUpdate(progress=progress_percent(index, total), status=status, step_index=index)
            )
            self.events.notify(status, "info", self.config.notice_ms)
            if self.journal is not None:
                self.journal.record_step(index, status)

            await self._execute_step_with_policy(run, index, step)
            # let the page settle after DOM changes
            await run.sleep(self.config.settle_ms)

    async def _execute_step_with_policy(self, run: ExecutionRun, index: int, step: Step) -> None:
        try:
            await self.interpreter.execute(step, run)
            return
        except (RunCancelled, InterventionRequired):
            raise
        except Exception as exc:
            error = exc
        print(f"⚠️ Step {index + 1} failed: {_format_inline(error)}")

        await run.hold_while_paused()

        if step.confidence < self.config.confidence_threshold or step.kind == PAUSE_FOR_INPUT:
            message = step.description or f"Step {index + 1}"
            if self.journal is not None:
                self.journal.record_step(index, f"Handed to user: {message}")
            await self.gate.request(run, message)
            return

        if not step.alternatives:
            raise UnhandledStepError(index, step, error) from error

        last_error = error
        for alternative in step.alternatives:
            run.ensure_not_cancelled()
            print(f"  ↪ Trying alternative target: {alternative}")
            try:
                await self.interpreter.execute(step.retarget(alternative), run)
            except (RunCancelled, InterventionRequired):
                raise
            except Exception as exc:
                print(f"  • Alternative failed: {_format_inline(exc)}")
                last_error = exc
                continue
            print(f"  ✅ Alternative worked: {alternative}")
            return
        raise UnhandledStepError(index, step, last_error) from last_error

    async def _fail(self, run: ExecutionRun, message: str) -> None:
        run.last_error = message
        try:
            # a failure noticed during a user pause is reported once resumed
            await run.hold_while_paused()
        except RunCancelled:
            return
        run.transition(RunState.FAILED)

    async def _on_intervention_resolved(self, run: ExecutionRun) -> None:
        if self.journal is not None:
            self.journal.record_step(run.step_index, f"User intervention #{run.intervention_count} resolved")
        if self.lifecycle is None or run.submission_id is None:
            return
        try:
            await self.lifecycle.note_intervention(run.submission_id)
        except AutofillError as exc:
            print(f"⚠️ Could not record intervention on submission: {exc}")

    async def _finalize(self, run: ExecutionRun) -> None:
        state = run.state
        if state is RunState.COMPLETED:
            success, message, severity = True, SUCCESS_MESSAGE, "success"
        elif state is RunState.CANCELLED:
            success, message, severity = False, CANCELLED_MESSAGE, "warning"
        else:
            success, message, severity = False, run.last_error or "Autofill failed", "error"

        print(f"🏁 Run {run.run_id} finished: {state.value}. {message}")
        self.events.emit(AutofillComplete(success=success, message=message, state=state.value))
        self.events.notify(message, severity, self.config.notice_ms)

        if self.journal is not None:
            if state is RunState.FAILED:
                await self.journal.capture(self.page, "failure")
            self.journal.finish(state.value, message)

        if self.lifecycle is None or run.submission_id is None:
            return
        try:
            if success:
                await self.lifecycle.mark_submitted(run.submission_id)
            else:
                await self.lifecycle.mark_error(run.submission_id, message)
        except AutofillError as exc:
            print(f"⚠️ Could not update submission {run.submission_id}: {exc}")
