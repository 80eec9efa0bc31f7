# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Chromium session for running facet sync from the command line.

The engine only ever sees ``session.page``. Navigation waits for the
storefront's facet panel to mount rather than for the network to go quiet:
listing pages keep polling analytics and lazy images long after the filters
are usable.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .errors import BrowserError

logger = logging.getLogger(__name__)

DEFAULT_LOCALE = "en-IN"

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)


@dataclass
class BrowserConfig:
    headless: bool = True
    locale: str = DEFAULT_LOCALE  # storefronts geo-switch on Accept-Language
    viewport_width: int = 1366  # narrower layouts fold the facet panel into a drawer
    viewport_height: int = 900
    user_agent: str = DEFAULT_USER_AGENT
    goto_timeout_ms: int = 30000
    panel_timeout_ms: int = 15000


_INSTALL_TIMEOUT_S = 300
_install_tried = False


def _missing_executable(exc: BaseException) -> bool:
    return "executable doesn't exist" in str(exc).lower()


async def _auto_install_chromium() -> bool:
    """One ``playwright install chromium`` per process. True if it succeeded."""
    global _install_tried  # noqa: PLW0603
    if _install_tried:
        return False
    _install_tried = True

    logger.info("Chromium missing, installing it once for this process")
    try:
        proc = await asyncio.create_subprocess_exec(
            sys.executable, "-m", "playwright", "install", "chromium",
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        logger.warning("Could not start the Chromium installer: %s", exc)
        return False
    try:
        _, stderr = await asyncio.wait_for(proc.communicate(), timeout=_INSTALL_TIMEOUT_S)
    except TimeoutError:
        proc.kill()
        logger.warning("Chromium install gave up after %ds", _INSTALL_TIMEOUT_S)
        return False
    if proc.returncode != 0:
        logger.warning("Chromium install exited %d: %s", proc.returncode, stderr.decode(errors="replace")[:300])
    return proc.returncode == 0


class BrowserSession:
    """One Chromium, one context, one page."""

    def __init__(self, config: BrowserConfig | None = None):
        self.config = config or BrowserConfig()
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None

    @property
    def page(self) -> Page:
        if self._page is None:
            raise RuntimeError("Browser session not started. Use create_session() or call start().")
        return self._page

    async def start(self) -> None:
        self._playwright = await async_playwright().start()
        self._browser = await self._launch()
        self._context = await self._browser.new_context(
            viewport={"width": self.config.viewport_width, "height": self.config.viewport_height},
            locale=self.config.locale,
            user_agent=self.config.user_agent,
            accept_downloads=False,
        )
        self._page = await self._context.new_page()
        logger.info("Browser ready (headless=%s, locale=%s)", self.config.headless, self.config.locale)

    async def _launch(self) -> Browser:
        chromium = self._playwright.chromium
        args = ["--disable-blink-features=AutomationControlled", f"--lang={self.config.locale}"]
        try:
            return await chromium.launch(headless=self.config.headless, args=args)
        except Exception as exc:
            if not _missing_executable(exc):
                raise
            if not await _auto_install_chromium():
                raise BrowserError("Chromium is not installed. Run: playwright install chromium") from exc
        return await chromium.launch(headless=self.config.headless, args=args)

    async def stop(self) -> None:
        """Tear down in reverse order. Errors from a dead browser are ignored."""
        self._page = None
        for closer in (self._context, self._browser):
            if closer is not None:
                with suppress(Exception):
                    await closer.close()
        if self._playwright is not None:
            with suppress(Exception):
                await self._playwright.stop()
        self._context = self._browser = self._playwright = None
        logger.info("Browser closed")

    async def navigate(self, url: str, panel_anchors: Sequence[str] = ()) -> bool:
        """Open *url* and wait for any of *panel_anchors* to attach.

        Returns False when the panel did not show up in time; the readiness
        gate then gets its own chance before any facet is touched.
        """
        await self.page.goto(url, wait_until="domcontentloaded", timeout=self.config.goto_timeout_ms)
        if not panel_anchors:
            return True
        try:
            await self.page.wait_for_selector(
                ", ".join(panel_anchors), state="attached", timeout=self.config.panel_timeout_ms
            )
        except PlaywrightTimeoutError:
            logger.info("Facet panel not attached after %dms on %s", self.config.panel_timeout_ms, url)
            return False
        return True


@asynccontextmanager
async def create_session(config: BrowserConfig | None = None) -> AsyncGenerator[BrowserSession, None]:
    session = BrowserSession(config)
    await session.start()
    try:
        yield session
    finally:
        await session.stop()
