# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""facetsync: carry listing-page facet selections between storefronts.

Canonical, site-independent filter model shared by every adapter:
- FacetSet: brand/size/color label groups for one listing-page state
- ApplyResult: what an apply call actually achieved, with per-facet outcomes
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum


class FacetGroupKind(StrEnum):
    """One of the three facet groups every storefront exposes."""

    BRAND = "brand"
    SIZE = "size"
    COLOR = "color"

    @property
    def plural(self) -> str:
        return f"{self.value}s"


# Apply order matters: some storefronts only populate size options after the
# brand/category is narrowed.
GROUP_ORDER: tuple[FacetGroupKind, ...] = (
    FacetGroupKind.BRAND,
    FacetGroupKind.SIZE,
    FacetGroupKind.COLOR,
)


class FacetState(StrEnum):
    """Per-facet state inside a single apply call."""

    PENDING = "pending"
    ATTEMPTING = "attempting"
    APPLIED = "applied"
    SKIPPED_ALREADY_APPLIED = "skipped_already_applied"
    EXHAUSTED = "exhausted"

    @property
    def counts_as_applied(self) -> bool:
        return self in (FacetState.APPLIED, FacetState.SKIPPED_ALREADY_APPLIED)


def _dedupe(labels: Iterable[str]) -> tuple[str, ...]:
    seen: set[str] = set()
    out: list[str] = []
    for label in labels:
        if label and label not in seen:
            seen.add(label)
            out.append(label)
    return tuple(out)


@dataclass(frozen=True)
class FacetSet:
    """Brand/size/color selections for one listing page.

    Labels are stored as tuples in display order; duplicates (case-sensitive)
    are dropped on construction. Equality ignores order.
    """

    brands: tuple[str, ...] = ()
    sizes: tuple[str, ...] = ()
    colors: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "brands", _dedupe(self.brands))
        object.__setattr__(self, "sizes", _dedupe(self.sizes))
        object.__setattr__(self, "colors", _dedupe(self.colors))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FacetSet):
            return NotImplemented
        return all(set(self.group(k)) == set(other.group(k)) for k in GROUP_ORDER)

    def __hash__(self) -> int:
        return hash(tuple(frozenset(self.group(k)) for k in GROUP_ORDER))

    def group(self, kind: FacetGroupKind) -> tuple[str, ...]:
        return getattr(self, kind.plural)

    @property
    def total(self) -> int:
        return len(self.brands) + len(self.sizes) + len(self.colors)

    @property
    def is_empty(self) -> bool:
        return self.total == 0

    def contains(self, kind: FacetGroupKind, label: str) -> bool:
        return label in self.group(kind)

    @classmethod
    def from_groups(cls, groups: Mapping[FacetGroupKind, Iterable[str]]) -> FacetSet:
        return cls(**{k.plural: tuple(groups.get(k, ())) for k in GROUP_ORDER})

    @classmethod
    def from_payload(cls, payload: Mapping | None) -> FacetSet:
        """Build from a wire/persistence dict; values may be strings or {text, value}."""
        from .normalizer import normalize_label

        if not payload:
            return cls()
        groups: dict[FacetGroupKind, list[str]] = {}
        for kind in GROUP_ORDER:
            raw = payload.get(kind.plural) or []
            if isinstance(raw, (str, Mapping)):
                raw = [raw]
            groups[kind] = [normalize_label(v) for v in raw]
        return cls.from_groups(groups)

    def to_dict(self) -> dict[str, list[str]]:
        return {k.plural: list(self.group(k)) for k in GROUP_ORDER}


@dataclass(frozen=True)
class FacetOutcome:
    """Final state of one requested facet after an apply call."""

    kind: FacetGroupKind
    label: str
    state: FacetState
    passes: int = 0  # apply_facet invocations (0 when skipped)


@dataclass(frozen=True)
class ApplyResult:
    """Outcome of applying a requested FacetSet to a page.

    ``success``: at least one requested facet is applied.
    ``partial_success``: some, but not all, requested facets are applied.
    ``verified``: call-level check that at least half of the requested facets
    are visible after the whole sequence (kept distinct from partial_success).
    """

    success: bool
    applied_filters: FacetSet
    partial_success: bool
    requested: FacetSet = field(default_factory=FacetSet)
    outcomes: tuple[FacetOutcome, ...] = ()
    verified: bool | None = None

    @property
    def unapplied(self) -> FacetSet:
        return FacetSet.from_groups(
            {
                k: [v for v in self.requested.group(k) if not self.applied_filters.contains(k, v)]
                for k in GROUP_ORDER
            }
        )

    @classmethod
    def build(
        cls,
        requested: FacetSet,
        applied: FacetSet,
        outcomes: Iterable[FacetOutcome] = (),
        verified: bool | None = None,
    ) -> ApplyResult:
        applied_count = applied.total
        return cls(
            success=applied_count > 0,
            applied_filters=applied,
            partial_success=0 < applied_count < requested.total,
            requested=requested,
            outcomes=tuple(outcomes),
            verified=verified,
        )

    def with_verified(self, verified: bool) -> ApplyResult:
        return ApplyResult(
            success=self.success,
            applied_filters=self.applied_filters,
            partial_success=self.partial_success,
            requested=self.requested,
            outcomes=self.outcomes,
            verified=verified,
        )

    def to_dict(self) -> dict:
        data: dict = {
            "success": self.success,
            "appliedFilters": self.applied_filters.to_dict(),
            "partialSuccess": self.partial_success,
        }
        if self.verified is not None:
            data["verified"] = self.verified
        if self.partial_success or not self.success:
            data["unapplied"] = self.unapplied.to_dict()
        return data


__all__ = [
    "GROUP_ORDER",
    "ApplyResult",
    "FacetGroupKind",
    "FacetOutcome",
    "FacetSet",
    "FacetState",
]
