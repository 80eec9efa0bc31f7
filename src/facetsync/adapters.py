# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Site adapter contract and the profile-driven implementation.

Every storefront is driven through the same five operations:

- extract: read the currently applied facets into a FacetSet
- reset: clear every active facet
- apply: apply a requested FacetSet (delegates to RetryVerifyEngine)
- is_filter_applied: verification, defined as "extract() now shows it"
- apply_facet: one facet with bounded internal retry

ConfiguredSiteAdapter implements all of them from a SiteProfile table, so
storefronts differ only in selectors and interaction order. Markup drift is
handled softly: a missing control is logged and skipped, and an interaction
error costs one attempt, never the whole group.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable

from . import GROUP_ORDER, ApplyResult, FacetGroupKind, FacetSet
from .engine import RetryVerifyEngine
from .errors import FacetNotFoundError, InteractionError
from .normalizer import classify_all, clean_dom_label, exact_match, find_match, fuzzy_match
from .page import ElementHandle, PageHandle, Root, all_of, click, first, text_of
from .profiles import GroupSpec, SiteProfile

logger = logging.getLogger(__name__)


async def _pause(ms: int) -> None:
    await asyncio.sleep(ms / 1000)


class SiteAdapter(ABC):
    """Contract every storefront adapter fulfils."""

    site_id: str = "unknown"
    group_delay_s: float = 0.0

    @abstractmethod
    async def extract(self, page: PageHandle) -> FacetSet:
        """Return the facets currently applied on *page*."""

    @abstractmethod
    async def reset(self, page: PageHandle) -> None:
        """Clear all active facets on *page*."""

    @abstractmethod
    async def apply_facet(self, page: PageHandle, kind: FacetGroupKind, value: str) -> bool:
        """Apply one facet, retrying internally. True once verified."""

    def matcher(self, kind: FacetGroupKind) -> Callable[[str, str], bool]:
        """Label comparison for *kind*: exact for sizes, fuzzy otherwise."""
        return exact_match if kind is FacetGroupKind.SIZE else fuzzy_match

    async def is_filter_applied(self, page: PageHandle, kind: FacetGroupKind, value: str) -> bool:
        current = await self.extract(page)
        return find_match(current.group(kind), value, self.matcher(kind)) is not None

    async def apply(
        self,
        page: PageHandle,
        requested: FacetSet,
        *,
        reset_first: bool = False,
        second_pass: bool = True,
        timer=None,
    ) -> ApplyResult:
        """Apply *requested* group by group with verification and a second pass."""
        if reset_first:
            await self.reset(page)
        engine = RetryVerifyEngine(self, group_delay_s=self.group_delay_s, second_pass=second_pass, timer=timer)
        return await engine.run(page, requested)


class ConfiguredSiteAdapter(SiteAdapter):
    """SiteAdapter driven entirely by a :class:`SiteProfile`."""

    def __init__(self, profile: SiteProfile) -> None:
        self.profile = profile
        self.site_id = profile.site_id
        self.group_delay_s = profile.timing.group_delay_ms / 1000
        self._rules = profile.classification_rules()

    def __repr__(self) -> str:
        return f"ConfiguredSiteAdapter({self.site_id!r})"

    def matcher(self, kind: FacetGroupKind) -> Callable[[str, str], bool]:
        spec = self.profile.group(kind)
        if spec is None:
            return super().matcher(kind)
        return exact_match if spec.match_mode(kind) == "exact" else fuzzy_match

    # ── Extraction ────────────────────────────────────────────────────

    async def extract(self, page: PageHandle) -> FacetSet:
        """Summary strip first; per-section checked controls when it is empty."""
        pairs = await self._summary_labels(page)
        if pairs:
            facets = classify_all(pairs, self._rules)
            logger.debug("%s: extracted from summary: %s", self.site_id, facets.to_dict())
            return facets

        groups: dict[FacetGroupKind, list[str]] = {}
        for kind in GROUP_ORDER:
            spec = self.profile.group(kind)
            if spec is None:
                continue
            section = await self._section(page, kind, spec)
            if section is None:
                continue
            labels: list[str] = []
            for option in await all_of(section, spec.options):
                if await self._is_selected(option, spec):
                    label = await self._option_text(option, spec)
                    if label:
                        labels.append(label)
            groups[kind] = labels
        facets = FacetSet.from_groups(groups)
        logger.debug("%s: extracted from sections: %s", self.site_id, facets.to_dict())
        return facets

    async def _summary_labels(self, page: PageHandle) -> list[tuple[str, str | None]]:
        summary = self.profile.summary
        if summary is None:
            return []
        container = await first(page, summary.container)
        if container is None:
            return []
        pairs: list[tuple[str, str | None]] = []
        for item in await all_of(container, summary.item):
            label_el = await first(item, summary.label) if summary.label else item
            label = clean_dom_label(await text_of(label_el))
            if not label:
                continue
            pairs.append((label, await self._type_tag(item)))
        return pairs

    async def _type_tag(self, item: ElementHandle) -> str | None:
        summary = self.profile.summary
        if summary is None or not summary.type_tag:
            return None
        tag_el = await first(item, summary.type_tag)
        if tag_el is None:
            return None
        if summary.type_attribute:
            try:
                return await tag_el.get_attribute(summary.type_attribute)
            except Exception:
                logger.debug("%s: type attribute unreadable", self.site_id, exc_info=True)
                return None
        return await text_of(tag_el)

    # ── Sections and options ──────────────────────────────────────────

    async def _section(self, page: PageHandle, kind: FacetGroupKind, spec: GroupSpec) -> Root | None:
        if not spec.section:
            return page
        sections = await all_of(page, spec.section)
        if not spec.heading_text:
            return sections[0] if sections else None
        wanted = spec.heading_text.lower()
        for section in sections:
            heading = await first(section, spec.heading) if spec.heading else section
            if wanted in (await text_of(heading)).lower():
                return section
        return None

    async def _option_text(self, option: ElementHandle, spec: GroupSpec) -> str:
        label_el = await first(option, spec.option_label) if spec.option_label else None
        return clean_dom_label(await text_of(label_el or option))

    async def _is_selected(self, option: ElementHandle, spec: GroupSpec) -> bool:
        try:
            if spec.selected_attribute:
                value = await option.get_attribute(spec.selected_attribute)
                return value is not None and value.lower() != "false"
            checkbox = await first(option, spec.checkbox)
            return checkbox is not None and await checkbox.is_checked()
        except Exception:
            logger.debug("%s: selection state unreadable", self.site_id, exc_info=True)
            return False

    async def _find_option(
        self, root: Root, spec: GroupSpec, kind: FacetGroupKind, value: str
    ) -> ElementHandle | None:
        matches = self.matcher(kind)
        for option in await all_of(root, spec.options):
            if matches(await self._option_text(option, spec), value):
                return option
        return None

    async def _expand(self, section: Root, kind: FacetGroupKind, spec: GroupSpec) -> None:
        if not spec.expand:
            return
        if spec.expanded_marker and await first(section, spec.expanded_marker) is not None:
            return
        toggle = await first(section, spec.expand)
        if toggle is not None:
            await click(toggle)
            await _pause(self.profile.timing.expand_settle_ms)
        if spec.expanded_marker and await first(section, spec.expanded_marker) is None:
            raise InteractionError(f"{kind} section did not expand")

    async def _show_more(self, section: Root, kind: FacetGroupKind, spec: GroupSpec) -> bool:
        more = await first(section, spec.more)
        if more is None:
            return False
        logger.info("%s: %s option not visible, clicking 'more'", self.site_id, kind)
        await click(more)
        await _pause(self.profile.timing.expand_settle_ms)
        return True

    async def _interaction_target(self, option: ElementHandle, spec: GroupSpec, target: str) -> ElementHandle | None:
        if target == "checkbox":
            return await first(option, spec.checkbox)
        if target == "label":
            return await first(option, spec.label)
        return option

    # ── Apply ─────────────────────────────────────────────────────────

    async def apply_facet(self, page: PageHandle, kind: FacetGroupKind, value: str) -> bool:
        spec = self.profile.group(kind)
        if spec is None:
            logger.warning("%s: no %s facets configured, skipping %r", self.site_id, kind, value)
            return False

        attempts = spec.attempts(kind)
        for attempt in range(1, attempts + 1):
            logger.debug("%s: %s %r attempt %d/%d", self.site_id, kind, value, attempt, attempts)
            try:
                if await self._apply_once(page, kind, spec, value):
                    logger.info("%s: applied %s %r", self.site_id, kind, value)
                    return True
            except FacetNotFoundError as exc:
                logger.warning("%s: %s, skipping %r", self.site_id, exc, value)
                return False
            except Exception as exc:
                logger.warning(
                    "%s: %s %r attempt %d/%d failed: %s", self.site_id, kind, value, attempt, attempts, exc
                )
            if attempt < attempts:
                await _pause(self.profile.timing.retry_delay_ms)

        logger.warning("%s: gave up on %s %r after %d attempts", self.site_id, kind, value, attempts)
        return False

    async def _apply_once(self, page: PageHandle, kind: FacetGroupKind, spec: GroupSpec, value: str) -> bool:
        section = await self._section(page, kind, spec)
        if section is None:
            raise FacetNotFoundError(f"{kind} section not found", kind=kind, label=value)

        await self._expand(section, kind, spec)
        option = await self._find_option(section, spec, kind, value)
        if option is None and spec.more and await self._show_more(section, kind, spec):
            option = await self._find_option(section, spec, kind, value)
        if option is None:
            logger.info("%s: no %s option matching %r", self.site_id, kind, value)
            return False

        # Already toggled by an earlier attempt; only verification is pending.
        if await self._is_selected(option, spec):
            return await self.is_filter_applied(page, kind, value)

        for target in self.profile.interaction:
            element = await self._interaction_target(option, spec, target)
            if element is None:
                continue
            await click(element)
            await self._confirm(page, spec)
            await _pause(self.profile.timing.click_settle_ms)
            if await self.is_filter_applied(page, kind, value):
                return True
            if await self._is_selected(option, spec):
                logger.debug("%s: %s %r toggled but not yet visible", self.site_id, kind, value)
                return False
        return False

    async def _confirm(self, page: PageHandle, spec: GroupSpec) -> None:
        if not spec.confirm:
            return
        button = await first(page, spec.confirm)
        if button is not None:
            await click(button)

    # ── Reset ─────────────────────────────────────────────────────────

    async def reset(self, page: PageHandle) -> None:
        timing = self.profile.timing
        if self.profile.clear_all and await first(page, self.profile.clear_all) is not None:
            try:
                await self._clear_all(page)
                return
            except Exception as exc:
                logger.warning("%s: clear-all failed (%s), unchecking facets instead", self.site_id, exc)

        for kind in GROUP_ORDER:
            spec = self.profile.group(kind)
            if spec is None:
                continue
            section = await self._section(page, kind, spec)
            if section is None:
                continue
            for option in await all_of(section, spec.options):
                await self._uncheck(option, spec)
        await _pause(timing.reset_settle_ms)

    async def _clear_all(self, page: PageHandle) -> None:
        for round_ in (1, 2):
            button = await first(page, self.profile.clear_all)
            if button is None:
                return
            logger.info("%s: clearing all facets (round %d)", self.site_id, round_)
            await click(button)
            await _pause(self.profile.timing.reset_settle_ms)
            if (await self.extract(page)).is_empty:
                return
        logger.warning("%s: facets remain after clear-all", self.site_id)

    async def _uncheck(self, option: ElementHandle, spec: GroupSpec) -> None:
        checkbox = await first(option, spec.checkbox)
        if checkbox is None:
            return
        try:
            for _ in range(2):
                if not await checkbox.is_checked():
                    return
                await click(checkbox)
                await _pause(self.profile.timing.click_settle_ms)
            if await checkbox.is_checked():
                logger.warning("%s: option still checked after reset", self.site_id)
        except Exception as exc:
            logger.warning("%s: could not uncheck option: %s", self.site_id, exc)


def adapter_for(profile: SiteProfile) -> SiteAdapter:
    return ConfiguredSiteAdapter(profile)
