# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""facetsync exception hierarchy.

All facetsync-specific errors inherit from FacetSyncError, allowing callers
to catch the base class for any failure or specific subclasses for targeted
handling. Only UnsupportedSiteError and ExtractionError are expected to
escape the service layer; the rest are folded into results by adapters and
the engine.
"""

from __future__ import annotations


class FacetSyncError(Exception):
    """Base exception for all facetsync errors."""


class UnsupportedSiteError(FacetSyncError):
    """No site profile matches the page's host."""

    def __init__(self, message: str, *, host: str = "") -> None:
        super().__init__(message)
        self.host = host


class FacetNotFoundError(FacetSyncError):
    """An expected facet section or control is absent from the page."""

    def __init__(self, message: str, *, kind: str = "", label: str = "") -> None:
        super().__init__(message)
        self.kind = kind
        self.label = label


class InteractionError(FacetSyncError):
    """A click/toggle did not produce the expected verified state."""


class ReadinessTimeoutError(FacetSyncError):
    """The storefront's facet UI never showed any anchor element."""

    def __init__(self, message: str, *, site_id: str = "", attempts: int = 0) -> None:
        super().__init__(message)
        self.site_id = site_id
        self.attempts = attempts


class ExtractionError(FacetSyncError):
    """Reading the current facets failed, including the single retry."""


class GatewayTimeout(FacetSyncError):
    """A gateway request was answered with the timeout fallback."""


class ProfileError(FacetSyncError):
    """A site profile table is malformed."""


class BrowserError(FacetSyncError):
    """The browser could not be launched."""
