# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Page handle protocol: the slice of Playwright's API adapters may use.

Leaf module with no internal facetsync dependencies.
A real ``playwright.async_api.Page`` satisfies :class:`PageHandle` as-is;
tests pass a fake DOM implementing the same methods, so adapters never
touch a global document or a browser runtime directly.
"""

from __future__ import annotations

import logging
from contextlib import suppress
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class ElementHandle(Protocol):
    """Subset of ``playwright.async_api.ElementHandle``."""

    async def query_selector(self, selector: str) -> ElementHandle | None: ...

    async def query_selector_all(self, selector: str) -> list[ElementHandle]: ...

    async def inner_text(self) -> str: ...

    async def get_attribute(self, name: str) -> str | None: ...

    async def is_checked(self) -> bool: ...

    async def click(self, **kwargs) -> None: ...

    async def scroll_into_view_if_needed(self, **kwargs) -> None: ...


@runtime_checkable
class PageHandle(Protocol):
    """Subset of ``playwright.async_api.Page``."""

    @property
    def url(self) -> str: ...

    async def query_selector(self, selector: str) -> ElementHandle | None: ...

    async def query_selector_all(self, selector: str) -> list[ElementHandle]: ...


# Either a page or an element can be the root of a selector lookup.
Root = PageHandle | ElementHandle

# Per-interaction Playwright timeout; a click that cannot land within this
# is treated as a failed attempt, not a hung request.
CLICK_TIMEOUT_MS = 5000


async def text_of(element: ElementHandle | None) -> str:
    """inner_text() that returns "" instead of raising on detached elements."""
    if element is None:
        return ""
    try:
        return (await element.inner_text()) or ""
    except Exception:
        logger.debug("inner_text failed", exc_info=True)
        return ""


async def first(root: Root, selector: str | None) -> ElementHandle | None:
    """query_selector that tolerates a missing selector and DOM errors."""
    if not selector:
        return None
    try:
        return await root.query_selector(selector)
    except Exception:
        logger.debug("query_selector(%r) failed", selector, exc_info=True)
        return None


async def all_of(root: Root, selector: str | None) -> list[ElementHandle]:
    """query_selector_all that returns [] on a missing selector or DOM error."""
    if not selector:
        return []
    try:
        return list(await root.query_selector_all(selector))
    except Exception:
        logger.debug("query_selector_all(%r) failed", selector, exc_info=True)
        return []


async def click(element: ElementHandle) -> None:
    """Scroll *element* into view (best effort) and click it.

    Click errors propagate so callers can count the attempt as failed.
    """
    with suppress(Exception):
        await element.scroll_into_view_if_needed(timeout=CLICK_TIMEOUT_MS)
    await element.click(timeout=CLICK_TIMEOUT_MS)
