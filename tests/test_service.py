# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for FacetSyncService orchestration."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from facetsync import FacetSet
from facetsync.adapters import ConfiguredSiteAdapter
from facetsync.errors import ExtractionError, ReadinessTimeoutError, UnsupportedSiteError
from facetsync.pipeline_timer import PipelineTimer
from facetsync.service import FacetSyncService
from tests._fake_dom import FakeStorefront


class TestGetCurrentFilters:
    async def test_reads_applied_facets(self, service):
        store = FakeStorefront(options={"brand": ["Nike", "Puma"]}, applied={"brand": ["Puma"]})
        assert await service.get_current_filters(store.page) == FacetSet(brands=("Puma",))

    async def test_extracts_even_when_not_ready(self, service):
        store = FakeStorefront(options={"brand": ["Nike"]}, applied={"brand": ["Nike"]}, mounted=False)
        assert await service.get_current_filters(store.page) == FacetSet(brands=("Nike",))

    async def test_retries_extraction_once(self, service, shoe_store):
        with patch.object(
            ConfiguredSiteAdapter,
            "extract",
            new=AsyncMock(side_effect=[RuntimeError("context destroyed"), FacetSet(sizes=("M",))]),
        ):
            assert await service.get_current_filters(shoe_store.page) == FacetSet(sizes=("M",))

    async def test_second_failure_raises(self, service, shoe_store):
        with patch.object(ConfiguredSiteAdapter, "extract", new=AsyncMock(side_effect=RuntimeError("gone"))):
            with pytest.raises(ExtractionError, match="teststore"):
                await service.get_current_filters(shoe_store.page)

    async def test_unsupported_site(self, service):
        store = FakeStorefront("https://elsewhere.example/shoes")
        with pytest.raises(UnsupportedSiteError):
            await service.get_current_filters(store.page)

    async def test_timer_stages_finalized(self, service, shoe_store):
        timer = PipelineTimer()
        await service.get_current_filters(shoe_store.page, timer=timer)
        assert timer.stage_names == ["readiness", "extract"]
        assert timer.current_stage is None


class TestApplyFilters:
    async def test_applies_and_verifies(self, service, shoe_store):
        result = await service.apply_filters(shoe_store.page, FacetSet(brands=("Nike",), sizes=("M",)))
        assert result.success and not result.partial_success
        assert result.verified is True
        assert shoe_store.checked("brand") == ["Nike"]

    async def test_partial_result_verified_at_half(self, service, shoe_store):
        result = await service.apply_filters(shoe_store.page, FacetSet(brands=("Nike",), sizes=("L",)))
        assert result.partial_success is True
        assert result.verified is True

    async def test_verified_false_when_below_threshold(self, service, shoe_store):
        result = await service.apply_filters(
            shoe_store.page, FacetSet(brands=("Nike",), sizes=("L", "XL"), colors=("Red",))
        )
        assert result.partial_success is True
        assert result.verified is False

    async def test_not_ready_raises(self, service):
        store = FakeStorefront(options={"brand": ["Nike"]}, mounted=False)
        with pytest.raises(ReadinessTimeoutError) as excinfo:
            await service.apply_filters(store.page, FacetSet(brands=("Nike",)))
        assert excinfo.value.site_id == "teststore"
        assert store.page.clicks == []

    async def test_reset_first(self, service):
        store = FakeStorefront(options={"brand": ["Nike", "Puma"]}, applied={"brand": ["Puma"]})
        await service.apply_filters(store.page, FacetSet(brands=("Nike",)), reset_first=True)
        assert store.checked("brand") == ["Nike"]

    async def test_without_reset_existing_facets_stay(self, service):
        store = FakeStorefront(options={"brand": ["Nike", "Puma"]}, applied={"brand": ["Puma"]})
        await service.apply_filters(store.page, FacetSet(brands=("Nike",)))
        assert store.checked("brand") == ["Nike", "Puma"]

    async def test_verify_delay_only_for_non_empty_request(self, fast_config, registry, shoe_store):
        svc = FacetSyncService(fast_config.with_overrides(verify_delay_ms=3000), registry)
        with patch("facetsync.service.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await svc.apply_filters(shoe_store.page, FacetSet())
        sleep.assert_not_awaited()

    async def test_timer_records_apply_stages(self, service, shoe_store):
        timer = PipelineTimer()
        await service.apply_filters(shoe_store.page, FacetSet(sizes=("L",)), timer=timer)
        assert timer.stage_names == ["readiness", "apply", "second_pass", "verify"]


class TestConstruction:
    def test_registry_from_config_path(self, tmp_path, fast_config):
        path = tmp_path / "sites.yaml"
        path.write_text(
            "sites:\n"
            "  tiny:\n"
            "    hosts: [tiny.example]\n"
            "    readiness: {anchors: ['.f']}\n"
            "    groups: {brand: {options: '.b'}}\n"
        )
        svc = FacetSyncService(fast_config.with_overrides(profiles_path=str(path)))
        assert "tiny" in svc.registry
        assert "flipkart" not in svc.registry

    def test_bundled_registry_by_default(self):
        assert "myntra" in FacetSyncService().registry
