# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Apply → verify → retry loop over facet groups.

Per requested facet:

    PENDING → ATTEMPTING → APPLIED | EXHAUSTED
    PENDING → SKIPPED_ALREADY_APPLIED   (visible on group entry)

Groups run brand → size → color with an inter-group delay. A single
best-effort second pass revisits EXHAUSTED facets only; APPLIED and
SKIPPED facets are never touched again. Failures are never fatal: the
result reports what took effect.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from . import GROUP_ORDER, ApplyResult, FacetGroupKind, FacetOutcome, FacetSet, FacetState
from .normalizer import coverage, exact_match, find_match

if TYPE_CHECKING:
    from .adapters import SiteAdapter
    from .page import PageHandle
    from .pipeline_timer import PipelineTimer

logger = logging.getLogger(__name__)


@dataclass
class _Tracked:
    kind: FacetGroupKind
    label: str
    state: FacetState = FacetState.PENDING
    passes: int = 0

    def outcome(self) -> FacetOutcome:
        return FacetOutcome(kind=self.kind, label=self.label, state=self.state, passes=self.passes)


class RetryVerifyEngine:
    """Drive one adapter through a requested FacetSet."""

    def __init__(
        self,
        adapter: SiteAdapter,
        *,
        group_delay_s: float = 0.0,
        second_pass: bool = True,
        timer: PipelineTimer | None = None,
    ) -> None:
        self.adapter = adapter
        self.group_delay_s = group_delay_s
        self.second_pass = second_pass
        self.timer = timer

    async def run(self, page: PageHandle, requested: FacetSet) -> ApplyResult:
        tracked = [_Tracked(kind, label) for kind in GROUP_ORDER for label in requested.group(kind)]
        if not tracked:
            return ApplyResult.build(requested, FacetSet())

        self._stage("apply")
        first_group = True
        for kind in GROUP_ORDER:
            group = [t for t in tracked if t.kind is kind]
            if not group:
                continue
            if not first_group and self.group_delay_s:
                await asyncio.sleep(self.group_delay_s)
            first_group = False
            await self._run_group(page, kind, group)

        exhausted = [t for t in tracked if t.state is FacetState.EXHAUSTED]
        if exhausted and self.second_pass:
            self._stage("second_pass")
            logger.info("%s: second pass over %d exhausted facets", self.adapter.site_id, len(exhausted))
            for t in exhausted:
                await self._attempt(page, t)

        applied = FacetSet.from_groups(
            {kind: [t.label for t in tracked if t.kind is kind and t.state.counts_as_applied] for kind in GROUP_ORDER}
        )
        result = ApplyResult.build(requested, applied, (t.outcome() for t in tracked))
        logger.info(
            "%s: applied %d/%d facets (partial=%s)",
            self.adapter.site_id,
            applied.total,
            requested.total,
            result.partial_success,
        )
        return result

    async def _run_group(self, page: PageHandle, kind: FacetGroupKind, group: list[_Tracked]) -> None:
        try:
            present = (await self.adapter.extract(page)).group(kind)
        except Exception as exc:
            logger.warning("%s: could not read %s facets before applying: %s", self.adapter.site_id, kind, exc)
            present = ()

        # Membership is exact: "XL" being applied says nothing about "L".
        for t in group:
            if find_match(present, t.label, exact_match) is not None:
                t.state = FacetState.SKIPPED_ALREADY_APPLIED
                logger.info("%s: %s %r already applied, skipping", self.adapter.site_id, kind, t.label)

        for t in group:
            if t.state is FacetState.PENDING:
                await self._attempt(page, t)

    async def _attempt(self, page: PageHandle, t: _Tracked) -> None:
        t.state = FacetState.ATTEMPTING
        t.passes += 1
        try:
            ok = await self.adapter.apply_facet(page, t.kind, t.label)
        except Exception as exc:
            logger.warning("%s: %s %r raised: %s", self.adapter.site_id, t.kind, t.label, exc)
            ok = False
        t.state = FacetState.APPLIED if ok else FacetState.EXHAUSTED

    def _stage(self, name: str) -> None:
        if self.timer is not None:
            self.timer.stage(name)


async def verify_applied(
    adapter: SiteAdapter,
    page: PageHandle,
    requested: FacetSet,
    threshold: float = 0.5,
) -> bool:
    """Call-level check: at least *threshold* of *requested* is visible now.

    An empty request, or a page that cannot be read, counts as verified.
    """
    if requested.is_empty:
        return True
    try:
        current = await adapter.extract(page)
    except Exception as exc:
        logger.warning("%s: verification extract failed: %s", adapter.site_id, exc)
        return True
    found, total = coverage(requested, current)
    logger.info("%s: verification found %d/%d requested facets", adapter.site_id, found, total)
    return found / total >= threshold
