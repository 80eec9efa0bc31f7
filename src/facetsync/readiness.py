# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Readiness gate: bounded polling for a storefront's facet UI anchors."""

from __future__ import annotations

import asyncio
import logging

from .page import PageHandle, first
from .profiles import SiteProfile, SiteRegistry

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 10
DEFAULT_DELAY_MS = 1000


async def wait_for_profile_ready(
    page: PageHandle,
    profile: SiteProfile,
    max_attempts: int | None = None,
    delay_ms: int | None = None,
) -> bool:
    """Poll *profile*'s anchors until one exists.

    A budget pinned in the profile wins over the caller's. Returns False once
    attempts run out, unless the profile sets ``assume_ready``.
    """
    spec = profile.readiness
    if spec.max_attempts is not None:
        attempts = spec.max_attempts
    else:
        attempts = max_attempts if max_attempts is not None else DEFAULT_MAX_ATTEMPTS
    delay = spec.delay_ms if spec.delay_ms is not None else (delay_ms if delay_ms is not None else DEFAULT_DELAY_MS)

    for attempt in range(1, attempts + 1):
        for anchor in spec.anchors:
            if await first(page, anchor) is not None:
                logger.debug("%s: ready on %r (attempt %d/%d)", profile.site_id, anchor, attempt, attempts)
                if spec.settle_ms:
                    await asyncio.sleep(spec.settle_ms / 1000)
                return True
        logger.debug("%s: no facet anchors yet (attempt %d/%d)", profile.site_id, attempt, attempts)
        if attempt < attempts:
            await asyncio.sleep(delay / 1000)

    if spec.assume_ready:
        logger.warning("%s: facet anchors not found after %d attempts, proceeding anyway", profile.site_id, attempts)
        return True
    logger.warning("%s: facet anchors not found after %d attempts", profile.site_id, attempts)
    return False


async def wait_for_adapter_ready(
    page: PageHandle,
    site_id: str,
    max_attempts: int | None = None,
    delay_ms: int | None = None,
    *,
    registry: SiteRegistry | None = None,
) -> bool:
    """Wait until the facet UI of *site_id* has rendered on *page*."""
    registry = registry if registry is not None else SiteRegistry()
    return await wait_for_profile_ready(page, registry.get(site_id), max_attempts, delay_ms)
