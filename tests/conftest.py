# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import facetsync  # noqa: F401
except ImportError:
    raise ImportError("facetsync is not installed. Run: pip install -e '.[dev]'") from None

import pytest

from facetsync.adapters import ConfiguredSiteAdapter
from facetsync.config import EngineConfig
from facetsync.profiles import SiteRegistry, parse_profiles
from facetsync.service import FacetSyncService
from tests._fake_dom import FakeStorefront, storefront_profile_dict


@pytest.fixture(autouse=True)
def _block_real_browser(request, monkeypatch):
    """Safety net: unit tests never launch Chromium.

    Tests marked ``browser`` opt out.
    """
    if "browser" in request.keywords:
        return

    async def _refuse(*args, **kwargs):
        raise RuntimeError("Real browser launch blocked in unit tests. Patch create_session explicitly.")

    monkeypatch.setattr("facetsync.browser_session.BrowserSession.start", _refuse)


@pytest.fixture
def profile():
    return parse_profiles(storefront_profile_dict())["teststore"]


@pytest.fixture
def registry(profile):
    return SiteRegistry({"teststore": profile})


@pytest.fixture
def adapter(profile):
    return ConfiguredSiteAdapter(profile)


@pytest.fixture
def fast_config():
    return EngineConfig(
        rpc_timeout_s=5.0,
        extract_ready_attempts=2,
        extract_ready_delay_ms=0,
        apply_ready_attempts=2,
        apply_ready_delay_ms=0,
        extract_retry_delay_ms=0,
        verify_delay_ms=0,
    )


@pytest.fixture
def service(fast_config, registry):
    return FacetSyncService(fast_config, registry)


@pytest.fixture
def shoe_store():
    """Listing page offering Nike/Adidas/Puma, S/M and Black/White (+Teal behind 'more')."""
    return FakeStorefront(
        options={
            "brand": ["Nike", "Adidas", "Puma"],
            "size": ["S", "M"],
            "color": ["Black", "White"],
        },
        hidden={"color": ["Teal"]},
    )
