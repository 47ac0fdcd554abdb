# executor.py
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from playwright.async_api import Error as PlaywrightError

from autofill_errors import StepTimeout
from engine_config import EngineConfig
from execution_run import ExecutionRun
from intervention import InterventionGate
from plan_schema import (
    ClickStep,
    NavigateStep,
    PauseForInputStep,
    SelectStep,
    Step,
    TypeStep,
    UnknownStep,
    WaitStep,
)
from target_resolver import TargetResolver

# value writes fire input + change so framework listeners (React, Vue, ...) see them
SET_VALUE_JS = """(element, value) => {
    if (typeof element.focus === 'function') {
        element.focus();
    }
    element.value = value;
    element.dispatchEvent(new Event('input', { bubbles: true }));
    element.dispatchEvent(new Event('change', { bubbles: true }));
}"""

SELECT_VALUE_JS = """(element, value) => {
    element.value = value;
    element.dispatchEvent(new Event('change', { bubbles: true }));
}"""

SCROLL_CENTER_JS = """(element) => {
    if (typeof element.scrollIntoView === 'function') {
        element.scrollIntoView({ behavior: 'smooth', block: 'center' });
    }
}"""

ACTIVATE_JS = "(element) => element.click()"


def _truncate_text(text: Any, limit: int) -> str:
    """Safely truncate text representations while preserving ASCII output."""
    if text is None:
        return ""
    value = str(text)
    if len(value) <= limit:
        return value
    return value[:limit] + "..."


def _format_inline(text: Any, limit: int = 160) -> str:
    """Format text for inline display by collapsing whitespace and quoting safely."""
    collapsed = " ".join((_truncate_text(text, limit) or "").split())
    return collapsed.replace('"', "'")


def _elapsed_ms(since: float) -> float:
    return (time.monotonic() - since) * 1000


class StepInterpreter:
    """Performs one step's effect on the page.

    Raises whatever went wrong (ElementNotFound, StepTimeout, Playwright
    errors); deciding what a failure means for the run is the controller's job.
    """

    def __init__(
        self,
        page: Any,
        resolver: TargetResolver,
        gate: InterventionGate,
        config: Optional[EngineConfig] = None,
    ) -> None:
        self.page = page
        self.resolver = resolver
        self.gate = gate
        self.config = config or EngineConfig()
        self._handlers: Dict[type, Callable[[Any, ExecutionRun], Awaitable[None]]] = {
            NavigateStep: self._navigate,
            TypeStep: self._type,
            ClickStep: self._click,
            SelectStep: self._select,
            WaitStep: self._wait,
            PauseForInputStep: self._pause_for_input,
        }

    async def execute(self, step: Step, run: ExecutionRun) -> None:
        handler = self._handlers.get(type(step))
        if handler is None:
            kind = step.type_name if isinstance(step, UnknownStep) else step.kind
            print(f"⚠️ Unknown step type: {kind}. Skipping.")
            return
        print(f"🔹 Executing: {step.kind} -> {_format_inline(step.target or step.value or '')}")
        await handler(step, run)

    async def _element(self, target: str, run: ExecutionRun) -> Any:
        return await self.resolver.resolve(self.page, target, sleep=run.sleep)

    async def _navigate(self, step: NavigateStep, run: ExecutionRun) -> None:
        # playwright treats timeout=0 as "no timeout"
        timeout = self.config.navigate_timeout_ms or 0
        await run.guard(self.page.goto(step.url, wait_until="load", timeout=timeout))

    async def _type(self, step: TypeStep, run: ExecutionRun) -> None:
        element = await self._element(step.selector, run)
        await element.evaluate(SET_VALUE_JS, step.text)

    async def _click(self, step: ClickStep, run: ExecutionRun) -> None:
        element = await self._element(step.selector, run)
        await element.evaluate(SCROLL_CENTER_JS)
        # let a smooth scroll finish before clicking
        await run.sleep(self.config.click_settle_ms)
        await element.evaluate(ACTIVATE_JS)

    async def _select(self, step: SelectStep, run: ExecutionRun) -> None:
        element = await self._element(step.selector, run)
        await element.evaluate(SELECT_VALUE_JS, step.option)

    async def _wait(self, step: WaitStep, run: ExecutionRun) -> None:
        if not step.selector:
            duration = step.duration_ms if step.duration_ms is not None else self.config.default_sleep_ms
            await run.sleep(duration)
            return

        timeout_ms = step.timeout_ms if step.timeout_ms is not None else self.config.wait_timeout_ms
        started = time.monotonic()
        while True:
            try:
                found = await self.resolver.probe(self.page, step.selector)
            except PlaywrightError as exc:
                # the page may be mid-navigation; keep polling
                print(f"  • Wait probe failed: {_format_inline(exc)}")
                found = None
            if found is not None:
                return
            if _elapsed_ms(started) >= timeout_ms:
                raise StepTimeout(step.selector, timeout_ms)
            await run.sleep(self.config.wait_poll_ms)

    async def _pause_for_input(self, step: PauseForInputStep, run: ExecutionRun) -> None:
        await self.gate.request(run, step.description or "Manual input required")
