# target_resolver.py
"""Locate the element a step targets on the live page.

Generated target references are sometimes CSS and sometimes XPath, and the
generator does not say which. Each round asks the strategies in order: CSS
first, and XPath only when the page rejects the reference as CSS syntax. A
valid CSS selector that matches nothing ends the round without an XPath try.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any, Awaitable, Callable, Optional, Sequence

from playwright.async_api import Error as PlaywrightError

from autofill_errors import ElementNotFound

Sleep = Callable[[float], Awaitable[None]]

# fragments Chromium and Playwright use when a selector does not parse
_SYNTAX_MARKERS = (
    "is not a valid selector",
    "syntaxerror",
    "unexpected token",
    "while parsing",
    "unsupported token",
    "not a valid xpath",
)


class SelectorSyntaxError(Exception):
    """The page refused the reference in this strategy's query language."""


def _is_syntax_error(exc: Exception) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in _SYNTAX_MARKERS)


def _sanitize_selector(selector: str | None) -> str | None:
    if not selector:
        return selector

    def _repl(match):
        attr = match.group(1).strip()
        value = match.group(3)
        value = value.replace('"', '\\"')
        return f'[{attr}="{value}"]'

    return re.sub(r"\[([^\]=]+)=([\'\"])(.*?)\2\]", _repl, selector)


class CssStrategy:
    name = "css"

    async def query(self, page: Any, target: str) -> Any:
        normalized = _sanitize_selector(target) or target
        try:
            return await page.query_selector(f"css={normalized}")
        except PlaywrightError as exc:
            if _is_syntax_error(exc):
                raise SelectorSyntaxError(str(exc)) from exc
            raise


class XPathStrategy:
    name = "xpath"

    async def query(self, page: Any, target: str) -> Any:
        # query_selector returns the first match in document order
        try:
            return await page.query_selector(f"xpath={target}")
        except PlaywrightError as exc:
            if _is_syntax_error(exc):
                raise SelectorSyntaxError(str(exc)) from exc
            raise


DEFAULT_STRATEGIES = (CssStrategy(), XPathStrategy())


class TargetResolver:
    def __init__(
        self,
        rounds: int = 5,
        interval_ms: int = 500,
        strategies: Optional[Sequence[Any]] = None,
    ) -> None:
        self.rounds = max(1, rounds)
        self.interval_ms = interval_ms
        self.strategies = tuple(strategies or DEFAULT_STRATEGIES)

    async def probe(self, page: Any, target: str) -> Any:
        """One round: the first element a strategy finds, or ``None``."""
        for strategy in self.strategies:
            try:
                return await strategy.query(page, target)
            except SelectorSyntaxError as exc:
                print(f"  • {strategy.name} rejected '{target}': {exc}")
                continue
        return None

    async def resolve(self, page: Any, target: str, sleep: Optional[Sleep] = None) -> Any:
        """Resolve ``target`` within ``rounds`` attempts or raise ElementNotFound.

        ``sleep`` is the caller's suspension point between rounds; a run passes
        its cancellable sleep so a cancel interrupts the retry loop.
        """
        sleep = sleep or _default_sleep
        for attempt in range(1, self.rounds + 1):
            try:
                element = await self.probe(page, target)
            except PlaywrightError as exc:
                # e.g. the execution context went away during a navigation
                print(f"  • Lookup of '{target}' failed on round {attempt}: {exc}")
                element = None
            if element is not None:
                return element
            if attempt < self.rounds:
                await sleep(self.interval_ms)
        raise ElementNotFound(target)


async def _default_sleep(ms: float) -> None:
    await asyncio.sleep(ms / 1000)
