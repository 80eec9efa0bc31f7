# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Per-storefront configuration tables and the site registry.

A storefront is described entirely by a :class:`SiteProfile`: readiness
anchors, where the applied-filters summary lives, how each facet group's
section/options/checkboxes are located, and which controls to click in which
order. New storefronts are added to ``sites.yaml``, not as new code.

Profiles are validated with pydantic at load time so a typo in a selector
table fails fast with :class:`ProfileError` instead of silently at apply time.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from importlib import resources
from pathlib import Path
from typing import Literal
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from . import FacetGroupKind
from .errors import ProfileError, UnsupportedSiteError
from .normalizer import DEFAULT_COLOR_NAMES, DEFAULT_SIZE_PATTERNS, ClassificationRules

logger = logging.getLogger(__name__)

_BUNDLED_PROFILES = "sites.yaml"

InteractionTarget = Literal["checkbox", "label", "option"]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class ReadinessSpec(_Frozen):
    """Anchors that exist once the facet panel has mounted.

    ``max_attempts``/``delay_ms`` pin the polling budget for a site; when
    unset the caller's budget applies.
    """

    anchors: tuple[str, ...] = Field(min_length=1)
    max_attempts: int | None = Field(None, ge=1)
    delay_ms: int | None = Field(None, ge=0)
    settle_ms: int = Field(0, ge=0, description="Extra wait after an anchor is found")
    assume_ready: bool = Field(False, description="Report ready even when attempts run out")


class SummarySpec(_Frozen):
    """The "applied filters" strip most storefronts render above the grid."""

    container: str
    item: str
    label: str | None = Field(None, description="Label element inside an item; None = item text")
    type_tag: str | None = Field(None, description="Element whose text names the facet group")
    type_attribute: str | None = Field(None, description="Attribute of type_tag carrying the group name")


class GroupSpec(_Frozen):
    """How to find and toggle the options of one facet group."""

    options: str
    section: str | None = Field(None, description="Section selector; None = whole page")
    heading: str | None = None
    heading_text: str | None = None
    option_label: str | None = Field(None, description="Label element inside an option; None = option text")
    checkbox: str | None = 'input[type="checkbox"]'
    label: str | None = "label"
    selected_attribute: str | None = Field(
        None, description="Attribute marking a selected option (link-style facets); replaces the checkbox check"
    )
    expand: str | None = None
    expanded_marker: str | None = None
    more: str | None = None
    confirm: str | None = Field(None, description="Apply button clicked after toggling (modal pickers)")
    match: Literal["exact", "fuzzy"] | None = Field(None, description="None = exact for sizes, fuzzy otherwise")
    max_attempts: int | None = Field(None, ge=1, description="None = 3 for sizes, 2 otherwise")

    def match_mode(self, kind: FacetGroupKind) -> str:
        if self.match is not None:
            return self.match
        return "exact" if kind is FacetGroupKind.SIZE else "fuzzy"

    def attempts(self, kind: FacetGroupKind) -> int:
        if self.max_attempts is not None:
            return self.max_attempts
        return 3 if kind is FacetGroupKind.SIZE else 2


class TimingSpec(_Frozen):
    click_settle_ms: int = Field(1000, ge=0)
    retry_delay_ms: int = Field(2000, ge=0)
    group_delay_ms: int = Field(2000, ge=0)
    expand_settle_ms: int = Field(1500, ge=0)
    reset_settle_ms: int = Field(500, ge=0)


class RulesSpec(_Frozen):
    size_patterns: tuple[str, ...] = DEFAULT_SIZE_PATTERNS
    color_names: tuple[str, ...] = DEFAULT_COLOR_NAMES

    def build(self) -> ClassificationRules:
        return ClassificationRules(size_patterns=self.size_patterns, color_names=self.color_names)


class SiteProfile(_Frozen):
    """Everything the configured adapter needs to drive one storefront."""

    site_id: str
    hosts: tuple[str, ...] = Field(min_length=1)
    readiness: ReadinessSpec
    summary: SummarySpec | None = None
    groups: dict[FacetGroupKind, GroupSpec]
    clear_all: str | None = None
    interaction: tuple[InteractionTarget, ...] = ("checkbox", "label", "option")
    timing: TimingSpec = TimingSpec()
    rules: RulesSpec = RulesSpec()

    @field_validator("hosts")
    @classmethod
    def _lower_hosts(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(h.strip().lower().removeprefix("www.") for h in v)

    def matches_host(self, host: str) -> bool:
        host = host.lower().removeprefix("www.")
        return any(host == h or host.endswith("." + h) for h in self.hosts)

    def group(self, kind: FacetGroupKind) -> GroupSpec | None:
        return self.groups.get(kind)

    def classification_rules(self) -> ClassificationRules:
        return self.rules.build()

    def with_timing(self, **overrides: int) -> SiteProfile:
        """Copy with timing fields replaced (tests and fast local runs)."""
        return self.model_copy(update={"timing": self.timing.model_copy(update=overrides)})


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def parse_profiles(raw: Mapping) -> dict[str, SiteProfile]:
    """Validate a ``{"sites": {site_id: {...}}}`` mapping into profiles."""
    sites = raw.get("sites") if isinstance(raw, Mapping) else None
    if not isinstance(sites, Mapping) or not sites:
        raise ProfileError("profile file must contain a non-empty 'sites' mapping")
    profiles: dict[str, SiteProfile] = {}
    for site_id, body in sites.items():
        if not isinstance(body, Mapping):
            raise ProfileError(f"site {site_id!r}: expected a mapping")
        try:
            profiles[site_id] = SiteProfile.model_validate({"site_id": site_id, **body})
        except ValidationError as exc:
            raise ProfileError(f"site {site_id!r}: {exc}") from exc
    return profiles


def load_profiles(path: str | Path | None = None) -> dict[str, SiteProfile]:
    """Load profiles from *path*, or the bundled ``sites.yaml`` when None."""
    try:
        if path is None:
            text = resources.files(__package__).joinpath(_BUNDLED_PROFILES).read_text(encoding="utf-8")
        else:
            text = Path(path).read_text(encoding="utf-8")
        raw = yaml.safe_load(text)
    except (OSError, yaml.YAMLError) as exc:
        raise ProfileError(f"cannot read site profiles from {path or _BUNDLED_PROFILES}: {exc}") from exc
    profiles = parse_profiles(raw)
    logger.debug("Loaded %d site profiles: %s", len(profiles), ", ".join(profiles))
    return profiles


def host_of(url_or_host: str) -> str:
    """Hostname of a URL, or the input itself when it is already a bare host."""
    if "://" not in url_or_host:
        return url_or_host.strip().lower()
    try:
        return (urlparse(url_or_host).hostname or "").lower()
    except ValueError:
        return ""


class SiteRegistry:
    """Resolves pages and site ids to profiles."""

    def __init__(self, profiles: Mapping[str, SiteProfile] | None = None) -> None:
        self._profiles: dict[str, SiteProfile] = dict(profiles if profiles is not None else load_profiles())

    @classmethod
    def from_path(cls, path: str | Path | None) -> SiteRegistry:
        return cls(load_profiles(path))

    def __iter__(self) -> Iterator[SiteProfile]:
        return iter(self._profiles.values())

    def __len__(self) -> int:
        return len(self._profiles)

    def __contains__(self, site_id: object) -> bool:
        return site_id in self._profiles

    def get(self, site_id: str) -> SiteProfile:
        try:
            return self._profiles[site_id]
        except KeyError:
            raise UnsupportedSiteError(f"Unsupported site: {site_id}", host=site_id) from None

    def resolve(self, url_or_host: str) -> SiteProfile:
        """Profile whose hosts match *url_or_host*; raises UnsupportedSiteError."""
        host = host_of(url_or_host)
        for profile in self._profiles.values():
            if host and profile.matches_host(host):
                return profile
        raise UnsupportedSiteError(f"Unsupported site: {host or url_or_host!r}", host=host)

    def replace(self, profile: SiteProfile) -> None:
        self._profiles[profile.site_id] = profile
