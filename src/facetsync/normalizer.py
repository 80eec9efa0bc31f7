# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Facet label normalization, classification and fuzzy matching.

Pure Python module, no browser dependencies.

Storefronts render the same facet differently ("UK 8", "UK 8 (120)",
"Nike - 23"). Everything that compares labels across sites goes through
this module:

- normalize_label: resolve a facet value (str or {text, value}) to a label
- clean_dom_label: strip trailing result counts from text read off the page
- classify: assign a label to brand/size/color
- fuzzy_match: asymmetric containment/token-overlap comparison
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from . import GROUP_ORDER, FacetGroupKind, FacetSet

# ── Default classification tables ─────────────────────────────────────

DEFAULT_SIZE_PATTERNS: tuple[str, ...] = (
    r"^UK \d+$",
    r"^(XS|S|M|L|XL|XXL|XXXL|2XL|3XL|4XL|5XL)$",
    r"^(\d{1,2}(\.\d+)?|one size)$",
)

DEFAULT_COLOR_NAMES: tuple[str, ...] = (
    "Black", "White", "Red", "Blue", "Green", "Yellow", "Beige", "Brown",
    "Grey", "Pink", "Purple", "Orange", "Navy", "Maroon", "Olive", "Teal",
    "Cyan", "Magenta", "Gold", "Silver", "Bronze", "Multicolor", "Multi-Color",
    "Off White", "Cream", "Printed", "Striped", "Floral", "Geometric",
    "Abstract", "Animal Print", "Camouflage", "Tie & Dye", "Ombre", "Metallic",
    "Neon", "Pastel",
)  # fmt: skip

# Trailing result counts: "Nike (23)", "UK 8 (120)"
_COUNT_SUFFIX_RE = re.compile(r"\s*\(\d+\)\s*$")
_WHITESPACE_RE = re.compile(r"\s+")

# Explicit type tag text → group. Checked in order, first hit wins.
_TYPE_TAG_KEYWORDS: tuple[tuple[str, FacetGroupKind], ...] = (
    ("brand", FacetGroupKind.BRAND),
    ("colour", FacetGroupKind.COLOR),
    ("color", FacetGroupKind.COLOR),
    ("size", FacetGroupKind.SIZE),
)


@dataclass(frozen=True)
class ClassificationRules:
    """Per-site regex/keyword tables used by :func:`classify`."""

    size_patterns: tuple[str, ...] = DEFAULT_SIZE_PATTERNS
    color_names: tuple[str, ...] = DEFAULT_COLOR_NAMES
    _size_res: tuple[re.Pattern, ...] = field(init=False, repr=False, compare=False)
    _colors: frozenset[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_size_res", tuple(re.compile(p, re.IGNORECASE) for p in self.size_patterns))
        object.__setattr__(self, "_colors", frozenset(c.casefold() for c in self.color_names))

    def is_size(self, label: str) -> bool:
        return any(r.match(label) for r in self._size_res)

    def is_color(self, label: str) -> bool:
        return label.casefold() in self._colors


DEFAULT_RULES = ClassificationRules()


# ── Normalization ─────────────────────────────────────────────────────


def normalize_label(value: object) -> str:
    """Resolve a facet value to a trimmed label.

    Accepts a plain string or a ``{text, value}`` mapping (``text`` wins,
    then ``value``, then the value itself).
    """
    if isinstance(value, Mapping):
        resolved = value.get("text")
        if resolved is None:
            resolved = value.get("value")
        if resolved is None:
            resolved = value
        value = resolved
    if value is None:
        return ""
    return _WHITESPACE_RE.sub(" ", str(value)).strip()


def clean_dom_label(text: str | None) -> str:
    """Normalize text read from the DOM: collapse whitespace, drop "(N)" counts."""
    if not text:
        return ""
    text = _WHITESPACE_RE.sub(" ", text).strip()
    return _COUNT_SUFFIX_RE.sub("", text).strip()


def kind_from_type_tag(tag: str | None) -> FacetGroupKind | None:
    """Map an explicit page type tag ("Brand", "size_facet", "Colour") to a group."""
    if not tag:
        return None
    low = tag.strip().lower()
    for keyword, kind in _TYPE_TAG_KEYWORDS:
        if keyword in low:
            return kind
    return None


def classify(
    label: str,
    rules: ClassificationRules = DEFAULT_RULES,
    type_tag: str | None = None,
) -> FacetGroupKind:
    """Assign *label* to exactly one facet group.

    Priority: explicit type tag > size pattern > color palette > brand.
    """
    tagged = kind_from_type_tag(type_tag)
    if tagged is not None:
        return tagged
    label = normalize_label(label)
    if rules.is_size(label):
        return FacetGroupKind.SIZE
    if rules.is_color(label):
        return FacetGroupKind.COLOR
    return FacetGroupKind.BRAND


# ── Matching ──────────────────────────────────────────────────────────


def fuzzy_match(a: str, b: str) -> bool:
    """Case-insensitive containment or token overlap.

    True if either string contains the other, or any whitespace token of *a*
    longer than 3 characters occurs in *b*. Short labels (<= 3 chars) only
    match through containment.
    """
    a_norm = normalize_label(a).lower()
    b_norm = normalize_label(b).lower()
    if not a_norm or not b_norm:
        return False
    if a_norm in b_norm or b_norm in a_norm:
        return True
    return any(len(token) > 3 and token in b_norm for token in a_norm.split(" "))


def exact_match(a: str, b: str) -> bool:
    """Case-insensitive equality after normalization."""
    a_norm = normalize_label(a).casefold()
    return bool(a_norm) and a_norm == normalize_label(b).casefold()


def find_match(
    candidates: Sequence[str], value: str, matches: Callable[[str, str], bool] = fuzzy_match
) -> str | None:
    """Return the first candidate that matches *value* (fuzzy by default)."""
    for candidate in candidates:
        if matches(candidate, value):
            return candidate
    return None


def facet_sets_match(left: FacetSet, right: FacetSet) -> bool:
    """Group-wise fuzzy equality: every label on each side has a counterpart."""
    for kind in GROUP_ORDER:
        a, b = left.group(kind), right.group(kind)
        if any(find_match(b, v) is None for v in a):
            return False
        if any(find_match(a, v) is None for v in b):
            return False
    return True


def coverage(requested: FacetSet, current: FacetSet) -> tuple[int, int]:
    """Count requested facets visible in *current*. Returns (found, total)."""
    found = 0
    for kind in GROUP_ORDER:
        labels = current.group(kind)
        found += sum(1 for v in requested.group(kind) if find_match(labels, v) is not None)
    return found, requested.total


def classify_all(
    labels: Iterable[tuple[str, str | None]],
    rules: ClassificationRules = DEFAULT_RULES,
) -> FacetSet:
    """Bucket (label, type_tag) pairs into a FacetSet."""
    groups: dict[FacetGroupKind, list[str]] = {k: [] for k in GROUP_ORDER}
    for label, tag in labels:
        label = normalize_label(label)
        if label:
            groups[classify(label, rules, tag)].append(label)
    return FacetSet.from_groups(groups)
