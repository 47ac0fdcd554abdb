"""Launch Chromium on a persistent profile for autofill runs.

Lender portals often keep the dealer signed in through cookies, so runs reuse
one profile directory instead of a fresh incognito context. The helpers return
both the Playwright controller and the objects required for shutdown so
callers can release them.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Tuple

from playwright.async_api import BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError


async def launch_persistent(
    start_url: Optional[str],
    profile_dir: str,
    *,
    headless: bool = False,
) -> Tuple[Playwright, BrowserContext, Page]:
    """Launch a persistent Chromium context backed by ``profile_dir``.

    Parameters
    ----------
    start_url:
        Optional lender URL to open right after launch.
    profile_dir:
        Directory holding the Chromium profile (cookies, localStorage,
        sessions). Created when missing.
    headless:
        Launch without a window. Interventions need a visible browser, so the
        default keeps it visible.
    """

    profile_path = Path(profile_dir)
    profile_path.mkdir(parents=True, exist_ok=True)

    playwright = await async_playwright().start()
    context = await playwright.chromium.launch_persistent_context(
        str(profile_path),
        headless=headless,
    )

    if context.pages:
        page = context.pages[0]
    else:
        page = await context.new_page()

    if start_url:
        try:
            await page.goto(start_url, wait_until="load")
        except PlaywrightError as exc:
            # the plan usually navigates again; leave recovery to it
            print(f"⚠️ Could not open {start_url}: {exc}")

    return playwright, context, page


async def shutdown(playwright: Optional[Playwright], context: Optional[BrowserContext]) -> None:
    """Dispose of the resources returned by ``launch_persistent``."""

    try:
        if context:
            await context.close()
    finally:
        if playwright:
            await playwright.stop()
