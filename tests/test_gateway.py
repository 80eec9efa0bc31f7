# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for FacetGateway: single response per request, timeouts, serialization."""

from __future__ import annotations

import asyncio

import pytest

from facetsync import ApplyResult, FacetSet
from facetsync.config import EngineConfig
from facetsync.errors import GatewayTimeout, UnsupportedSiteError
from facetsync.gateway import (
    APPLY_TIMEOUT_ERROR,
    GET_FILTERS_TIMEOUT_ERROR,
    NOT_VERIFIED_ERROR,
    ApplyFiltersRequest,
    FacetGateway,
    parse_request,
)
from tests._fake_dom import FakePage


class _Collector:
    def __init__(self) -> None:
        self.responses: list[dict] = []

    def send(self, response: dict) -> None:
        self.responses.append(response)


class _StubService:
    """Service double with configurable latency and results."""

    def __init__(
        self,
        *,
        delay_s: float = 0.0,
        filters: FacetSet | None = None,
        result: ApplyResult | None = None,
        error: Exception | None = None,
    ) -> None:
        self.config = EngineConfig()
        self.delay_s = delay_s
        self.filters = filters or FacetSet()
        self.result = result
        self.error = error
        self.events: list[str] = []
        self.apply_calls: list[tuple[FacetSet, bool]] = []

    async def _work(self, name: str) -> None:
        self.events.append(f"start:{name}")
        await asyncio.sleep(self.delay_s)
        self.events.append(f"end:{name}")
        if self.error is not None:
            raise self.error

    async def get_current_filters(self, page, *, timer=None):
        await self._work("get")
        return self.filters

    async def apply_filters(self, page, requested, *, reset_first=False, timer=None):
        self.apply_calls.append((requested, reset_first))
        await self._work("apply")
        if self.result is not None:
            return self.result
        return ApplyResult.build(requested, requested, verified=True)


@pytest.fixture
def page():
    return FakePage("https://shop.test/men-shoes")


# ---------------------------------------------------------------------------
# Request parsing
# ---------------------------------------------------------------------------


class TestParseRequest:
    def test_apply_with_mixed_values(self):
        request = parse_request(
            {"action": "applyFilters", "filters": {"brands": ["Nike", {"text": "Puma", "value": "p"}]}}
        )
        assert isinstance(request, ApplyFiltersRequest)
        assert request.reset is False
        assert request.filters.to_facet_set() == FacetSet(brands=("Nike", "Puma"))

    def test_unknown_group_keys_ignored(self):
        request = parse_request({"action": "applyFilters", "filters": {"sizes": ["M"], "price": ["0-500"]}})
        assert request.filters.to_facet_set() == FacetSet(sizes=("M",))

    async def test_invalid_requests_answered(self, page):
        gateway = FacetGateway(page, _StubService(), timeout_s=1)
        for message in ({"action": "deleteEverything"}, {"action": "applyFilters"}, "hello", None):
            response = await gateway.handle(message)
            assert response["error"].startswith("invalid request")

    async def test_ping(self, page):
        service = _StubService()
        gateway = FacetGateway(page, service, timeout_s=1)
        assert await gateway.handle({"action": "ping"}) == {"status": "connected"}
        assert service.events == []


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class TestResponses:
    async def test_get_current_filters(self, page):
        service = _StubService(filters=FacetSet(brands=("Nike",)))
        response = await FacetGateway(page, service, timeout_s=1).handle({"action": "getCurrentFilters"})
        assert response == {
            "filters": {"url": page.url, "data": {"brands": ["Nike"], "sizes": [], "colors": []}}
        }

    async def test_apply_filters(self, page):
        service = _StubService()
        response = await FacetGateway(page, service, timeout_s=1).handle(
            {"action": "applyFilters", "filters": {"sizes": ["M"]}, "reset": True}
        )
        assert response["success"] is True
        assert response["result"]["success"] is True
        assert "error" not in response
        assert service.apply_calls == [(FacetSet(sizes=("M",)), True)]

    async def test_not_verified_flagged(self, page):
        requested = FacetSet(brands=("Nike",))
        result = ApplyResult.build(requested, requested).with_verified(False)
        response = await FacetGateway(page, _StubService(result=result), timeout_s=1).handle(
            {"action": "applyFilters", "filters": {"brands": ["Nike"]}}
        )
        assert response["success"] is True
        assert response["error"] == NOT_VERIFIED_ERROR
        assert response["result"]["verified"] is False

    async def test_partial_result_not_flagged(self, page):
        requested = FacetSet(brands=("Nike",), sizes=("L",))
        result = ApplyResult.build(requested, FacetSet(brands=("Nike",))).with_verified(False)
        response = await FacetGateway(page, _StubService(result=result), timeout_s=1).handle(
            {"action": "applyFilters", "filters": requested.to_dict()}
        )
        assert "error" not in response
        assert response["result"]["partialSuccess"] is True

    async def test_domain_error_on_get(self, page):
        service = _StubService(error=UnsupportedSiteError("no adapter for shop.test", host="shop.test"))
        response = await FacetGateway(page, service, timeout_s=1).handle({"action": "getCurrentFilters"})
        assert response == {"filters": None, "error": "no adapter for shop.test"}

    async def test_unexpected_error_on_apply(self, page):
        service = _StubService(error=RuntimeError("Target page, context or browser has been closed"))
        response = await FacetGateway(page, service, timeout_s=1).handle(
            {"action": "applyFilters", "filters": {"brands": ["Nike"]}}
        )
        assert response["success"] is False
        assert "closed" in response["error"]


# ---------------------------------------------------------------------------
# Timeout race
# ---------------------------------------------------------------------------


class TestTimeout:
    async def test_late_result_discarded(self, page):
        # Work resolves at T+25 against a T+20 deadline (scaled to ms).
        service = _StubService(delay_s=0.025)
        gateway = FacetGateway(page, service, timeout_s=0.020)
        channel = _Collector()

        timed_out = await gateway.dispatch({"action": "applyFilters", "filters": {"brands": ["Nike"]}}, channel)

        assert timed_out is True
        assert channel.responses == [{"success": False, "error": APPLY_TIMEOUT_ERROR}]
        await gateway.drain()
        await asyncio.sleep(0)
        assert service.events == ["start:apply", "end:apply"]
        assert len(channel.responses) == 1

    async def test_get_timeout_fallback(self, page):
        gateway = FacetGateway(page, _StubService(delay_s=0.05), timeout_s=0.01)
        response = await gateway.handle({"action": "getCurrentFilters"})
        assert response == {"filters": None, "error": GET_FILTERS_TIMEOUT_ERROR}
        await gateway.drain()

    async def test_work_before_deadline_wins(self, page):
        gateway = FacetGateway(page, _StubService(delay_s=0.01), timeout_s=0.5)
        channel = _Collector()
        assert await gateway.dispatch({"action": "getCurrentFilters"}, channel) is False
        assert "data" in channel.responses[0]["filters"]

    async def test_call_raises_on_timeout(self, page):
        gateway = FacetGateway(page, _StubService(delay_s=0.05), timeout_s=0.01)
        with pytest.raises(GatewayTimeout):
            await gateway.call({"action": "getCurrentFilters"})
        await gateway.drain()

    async def test_late_failure_does_not_leak(self, page):
        service = _StubService(delay_s=0.03, error=RuntimeError("detached"))
        gateway = FacetGateway(page, service, timeout_s=0.01)
        channel = _Collector()
        await gateway.dispatch({"action": "getCurrentFilters"}, channel)
        await gateway.drain()
        await asyncio.sleep(0)
        assert channel.responses == [{"filters": None, "error": GET_FILTERS_TIMEOUT_ERROR}]

    def test_default_timeout_from_config(self, page):
        service = _StubService()
        assert FacetGateway(page, service).timeout_s == service.config.rpc_timeout_s == 20.0


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


class TestSerialization:
    async def test_requests_never_overlap(self, page):
        service = _StubService(delay_s=0.01)
        gateway = FacetGateway(page, service, timeout_s=1)
        await asyncio.gather(
            gateway.handle({"action": "applyFilters", "filters": {"brands": ["Nike"]}}),
            gateway.handle({"action": "getCurrentFilters"}),
        )
        assert service.events == ["start:apply", "end:apply", "start:get", "end:get"]

    async def test_next_request_waits_for_abandoned_work(self, page):
        service = _StubService(delay_s=0.15)
        gateway = FacetGateway(page, service, timeout_s=0.1)
        first = await gateway.handle({"action": "applyFilters", "filters": {"brands": ["Nike"]}})
        assert first["error"] == APPLY_TIMEOUT_ERROR
        assert gateway.busy

        service.delay_s = 0.0
        second = await gateway.handle({"action": "getCurrentFilters"})
        assert "data" in second["filters"]
        assert service.events == ["start:apply", "end:apply", "start:get", "end:get"]
        assert not gateway.busy


# ---------------------------------------------------------------------------
# Against the fake storefront
# ---------------------------------------------------------------------------


class TestEndToEnd:
    async def test_apply_then_read(self, service, shoe_store):
        gateway = FacetGateway(shoe_store.page, service, timeout_s=5)
        applied = await gateway.handle({"action": "applyFilters", "filters": {"brands": ["Puma"], "sizes": ["S"]}})
        assert applied["success"] is True
        assert applied["result"]["appliedFilters"] == {"brands": ["Puma"], "sizes": ["S"], "colors": []}

        current = await gateway.handle({"action": "getCurrentFilters"})
        assert FacetSet.from_payload(current["filters"]["data"]) == FacetSet(brands=("Puma",), sizes=("S",))

    async def test_unsupported_site(self, service):
        gateway = FacetGateway(FakePage("https://elsewhere.example/"), service, timeout_s=5)
        response = await gateway.handle({"action": "applyFilters", "filters": {"brands": ["Nike"]}})
        assert response["success"] is False
        assert "elsewhere.example" in response["error"]
