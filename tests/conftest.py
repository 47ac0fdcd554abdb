import asyncio
from typing import Any, Dict, List, Optional, Tuple

import pytest
from playwright.async_api import Error as PlaywrightError

from engine_config import EngineConfig
from executor import ACTIVATE_JS, SCROLL_CENTER_JS, SELECT_VALUE_JS, SET_VALUE_JS


class FakeElement:
    """Stands in for an ElementHandle; applies the interpreter's scripts."""

    def __init__(self, name: str = "element"):
        self.name = name
        self.value: Optional[str] = None
        self.dispatched: List[str] = []
        self.clicks = 0
        self.scrolled = False
        self.calls: List[Tuple[str, Any]] = []
        self.fail_with: Optional[Exception] = None

    async def evaluate(self, script: str, arg: Any = None) -> None:
        self.calls.append((script, arg))
        if self.fail_with is not None:
            raise self.fail_with
        if script == SET_VALUE_JS:
            self.value = arg
            self.dispatched += ["input", "change"]
        elif script == SELECT_VALUE_JS:
            self.value = arg
            self.dispatched.append("change")
        elif script == SCROLL_CENTER_JS:
            self.scrolled = True
        elif script == ACTIVATE_JS:
            self.clicks += 1


class FakePage:
    """Just enough of a Playwright Page for the engine.

    CSS references beginning with ``/`` or ``(`` are rejected the way Chromium
    rejects XPath handed to querySelector.
    """

    def __init__(self):
        self.css: Dict[str, FakeElement] = {}
        self.xpath: Dict[str, FakeElement] = {}
        self.queries: List[str] = []
        self.visited: List[str] = []
        self.goto_kwargs: List[Dict[str, Any]] = []
        self.goto_gate: Optional[asyncio.Event] = None
        self.screenshots: List[str] = []
        self._hidden_for: Dict[str, int] = {}
        self.errors: List[Exception] = []

    def add(self, selector: str, element: Optional[FakeElement] = None) -> FakeElement:
        element = element or FakeElement(selector)
        self.css[selector] = element
        return element

    def add_xpath(self, expression: str, element: Optional[FakeElement] = None) -> FakeElement:
        element = element or FakeElement(expression)
        self.xpath[expression] = element
        return element

    def appear_after(self, selector: str, misses: int) -> None:
        """Make ``selector`` invisible to the first ``misses`` lookups."""
        self._hidden_for[selector] = misses

    async def query_selector(self, selector: str) -> Optional[FakeElement]:
        self.queries.append(selector)
        if self.errors:
            raise self.errors.pop(0)
        engine, _, body = selector.partition("=")
        if engine == "css":
            if body.startswith(("/", "(")):
                raise PlaywrightError(f"SyntaxError: '{body}' is not a valid selector.")
            lookup = self.css
        else:
            lookup = self.xpath
        remaining = self._hidden_for.get(body, 0)
        if remaining > 0:
            self._hidden_for[body] = remaining - 1
            return None
        return lookup.get(body)

    async def goto(self, url: str, **kwargs: Any) -> None:
        self.visited.append(url)
        self.goto_kwargs.append(kwargs)
        if self.goto_gate is not None:
            await self.goto_gate.wait()

    async def screenshot(self, path: str, full_page: bool = False) -> bytes:
        data = b"\x89PNG fake"
        with open(path, "wb") as handle:
            handle.write(data)
        self.screenshots.append(path)
        return data


class EventRecorder:
    def __init__(self):
        self.events: List[Any] = []

    def __call__(self, event: Any) -> None:
        self.events.append(event)

    def named(self, name: str) -> List[Any]:
        return [event for event in self.events if event.name == name]


async def wait_for_state(controller, state, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while controller.state is not state:
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError(f"controller never reached {state} (stuck at {controller.state})")
        await asyncio.sleep(0.001)


@pytest.fixture
def page() -> FakePage:
    return FakePage()


@pytest.fixture
def fast_config() -> EngineConfig:
    return EngineConfig(
        settle_ms=0,
        click_settle_ms=0,
        resolve_rounds=2,
        resolve_interval_ms=0,
        wait_timeout_ms=50,
        wait_poll_ms=5,
        default_sleep_ms=0,
        notice_ms=0,
    )
