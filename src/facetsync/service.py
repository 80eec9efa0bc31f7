# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Request-level orchestration: site resolution → readiness → adapter.

FacetSyncService is what the gateway and the CLI call. It owns no page
state; every call resolves the storefront from ``page.url`` and builds a
fresh adapter, so nothing outlives a request.
"""

from __future__ import annotations

import asyncio
import logging

from . import ApplyResult, FacetSet
from .adapters import SiteAdapter, adapter_for
from .config import EngineConfig
from .engine import verify_applied
from .errors import ExtractionError, ReadinessTimeoutError
from .page import PageHandle
from .pipeline_timer import PipelineTimer
from .profiles import SiteProfile, SiteRegistry
from .readiness import wait_for_profile_ready

logger = logging.getLogger(__name__)


class FacetSyncService:
    def __init__(self, config: EngineConfig | None = None, registry: SiteRegistry | None = None) -> None:
        self.config = config or EngineConfig()
        self.registry = registry if registry is not None else SiteRegistry.from_path(self.config.profiles_path)

    def resolve(self, page: PageHandle) -> tuple[SiteProfile, SiteAdapter]:
        """Profile and adapter for *page*; raises UnsupportedSiteError."""
        profile = self.registry.resolve(page.url)
        return profile, adapter_for(profile)

    async def get_current_filters(self, page: PageHandle, *, timer: PipelineTimer | None = None) -> FacetSet:
        """Read the facets applied on *page*, retrying extraction once."""
        timer = timer or PipelineTimer()
        try:
            profile, adapter = self.resolve(page)

            timer.stage("readiness")
            if not await wait_for_profile_ready(
                page, profile, self.config.extract_ready_attempts, self.config.extract_ready_delay_ms
            ):
                logger.info("%s: facet UI not detected, extracting anyway", profile.site_id)

            timer.stage("extract")
            try:
                return await adapter.extract(page)
            except Exception as exc:
                logger.warning("%s: extraction failed (%s), retrying once", profile.site_id, exc)
            await asyncio.sleep(self.config.extract_retry_delay_ms / 1000)
            try:
                return await adapter.extract(page)
            except Exception as exc:
                raise ExtractionError(f"could not read filters on {profile.site_id}: {exc}") from exc
        finally:
            timer.finalize()

    async def apply_filters(
        self,
        page: PageHandle,
        requested: FacetSet,
        *,
        reset_first: bool = False,
        timer: PipelineTimer | None = None,
    ) -> ApplyResult:
        """Apply *requested* and attach the call-level ``verified`` flag."""
        timer = timer or PipelineTimer()
        try:
            profile, adapter = self.resolve(page)

            timer.stage("readiness")
            if not await wait_for_profile_ready(
                page, profile, self.config.apply_ready_attempts, self.config.apply_ready_delay_ms
            ):
                raise ReadinessTimeoutError(
                    f"{profile.site_id}: filter panel did not load",
                    site_id=profile.site_id,
                    attempts=profile.readiness.max_attempts or self.config.apply_ready_attempts,
                )

            logger.info("%s: applying %s", profile.site_id, requested.to_dict())
            result = await adapter.apply(
                page,
                requested,
                reset_first=reset_first,
                second_pass=self.config.second_pass,
                timer=timer,
            )

            timer.stage("verify")
            if not requested.is_empty and self.config.verify_delay_ms:
                await asyncio.sleep(self.config.verify_delay_ms / 1000)
            verified = await verify_applied(adapter, page, requested, self.config.verify_threshold)
            return result.with_verified(verified)
        finally:
            timer.finalize()
