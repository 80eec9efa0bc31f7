# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Request/response boundary: exactly one response per request.

Each request is answered by whichever comes first, the work's own result or
a fixed timeout fallback. The timeout is cooperative: the work keeps running
against the page, and its eventual result is detected and discarded. Work is
serialized per gateway by chaining every new request behind the previous one,
including work that outlived its timeout, so DOM operations never overlap.

Wire format::

    {"action": "getCurrentFilters"}
        → {"filters": {"url": ..., "data": FacetSet}} | {"filters": null, "error": ...}
    {"action": "applyFilters", "filters": FacetSet, "reset": false}
        → {"success": bool, "result": ApplyResult, "error"?: ...}
    {"action": "ping"} → {"status": "connected"}
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Annotated, Any, Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from . import FacetSet
from .errors import FacetSyncError, GatewayTimeout
from .logging_config import request_context
from .page import PageHandle
from .pipeline_timer import PipelineTimer
from .service import FacetSyncService

logger = logging.getLogger(__name__)

GET_FILTERS_TIMEOUT_ERROR = "timeout"
APPLY_TIMEOUT_ERROR = "taking too long"
NOT_VERIFIED_ERROR = "could not verify filters were applied"

FacetValue = str | dict[str, Any]


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class FacetSetPayload(BaseModel):
    """Inbound FacetSet; values are labels or {text, value} objects."""

    model_config = ConfigDict(extra="ignore")

    brands: list[FacetValue] = Field(default_factory=list)
    sizes: list[FacetValue] = Field(default_factory=list)
    colors: list[FacetValue] = Field(default_factory=list)

    def to_facet_set(self) -> FacetSet:
        return FacetSet.from_payload(self.model_dump())


class GetCurrentFiltersRequest(BaseModel):
    action: Literal["getCurrentFilters"]


class ApplyFiltersRequest(BaseModel):
    action: Literal["applyFilters"]
    filters: FacetSetPayload
    reset: bool = Field(default=False, description="Clear active facets before applying")


class PingRequest(BaseModel):
    action: Literal["ping"]


Request = Annotated[
    GetCurrentFiltersRequest | ApplyFiltersRequest | PingRequest,
    Field(discriminator="action"),
]
_REQUEST = TypeAdapter(Request)


def parse_request(message: Any) -> GetCurrentFiltersRequest | ApplyFiltersRequest | PingRequest:
    """Validate an inbound message. Raises pydantic ValidationError."""
    return _REQUEST.validate_python(message)


# ---------------------------------------------------------------------------
# Response channel
# ---------------------------------------------------------------------------


class ResponseChannel(Protocol):
    def send(self, response: dict) -> None: ...


class _OnceChannel:
    """Forward the first response only; later sends are logged and dropped."""

    __slots__ = ("_channel", "_action", "sent")

    def __init__(self, channel: ResponseChannel, action: str) -> None:
        self._channel = channel
        self._action = action
        self.sent = False

    def send(self, response: dict) -> bool:
        if self.sent:
            logger.info("Discarding late %s response: %s", self._action, _summary(response))
            return False
        self.sent = True
        self._channel.send(response)
        return True


class _Collector:
    def __init__(self) -> None:
        self.responses: list[dict] = []

    def send(self, response: dict) -> None:
        self.responses.append(response)


def _summary(response: dict) -> str:
    if "error" in response:
        return f"error={response['error']!r}"
    if "filters" in response:
        return "filters"
    return f"success={response.get('success')}"


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


class FacetGateway:
    """Timeout-guarded dispatcher bound to one page."""

    def __init__(
        self,
        page: PageHandle,
        service: FacetSyncService | None = None,
        *,
        timeout_s: float | None = None,
    ) -> None:
        self.page = page
        self.service = service or FacetSyncService()
        self.timeout_s = timeout_s if timeout_s is not None else self.service.config.rpc_timeout_s
        self._tail: asyncio.Task | None = None

    @property
    def busy(self) -> bool:
        return self._tail is not None and not self._tail.done()

    async def dispatch(self, message: Any, channel: ResponseChannel) -> bool:
        """Answer *message* exactly once on *channel*.

        Returns once a response has been sent. True if that response was
        the timeout fallback.
        """
        try:
            request = parse_request(message)
        except ValidationError as exc:
            logger.warning("Rejecting malformed request: %s", exc.errors()[:1])
            channel.send({"error": f"invalid request: {_first_error(exc)}"})
            return False

        if isinstance(request, PingRequest):
            channel.send({"status": "connected"})
            return False

        with request_context(request.action):
            return await self._dispatch(request, channel)

    async def _dispatch(
        self, request: GetCurrentFiltersRequest | ApplyFiltersRequest, channel: ResponseChannel
    ) -> bool:
        once = _OnceChannel(channel, request.action)
        timer = PipelineTimer()
        if isinstance(request, GetCurrentFiltersRequest):
            work = self._enqueue(lambda: self._get_current_filters(timer))
            fallback = {"filters": None, "error": GET_FILTERS_TIMEOUT_ERROR}
        else:
            requested = request.filters.to_facet_set()
            work = self._enqueue(lambda: self._apply_filters(requested, request.reset, timer))
            fallback = {"success": False, "error": APPLY_TIMEOUT_ERROR}

        done, _pending = await asyncio.wait({work}, timeout=self.timeout_s)
        if work in done:
            once.send(self._respond(request, work))
            return False

        report = timer.timeout_report()
        logger.warning(
            "%s timed out after %.1fs at stage %s (%.0fms): %s",
            request.action,
            self.timeout_s,
            report["timed_out_at"],
            report["timed_out_stage_ms"],
            report["hint"],
        )
        once.send(fallback)
        work.add_done_callback(lambda task: once.send(self._respond(request, task)))
        return True

    async def handle(self, message: Any) -> dict:
        """Dispatch *message* and return its single response."""
        collector = _Collector()
        await self.dispatch(message, collector)
        return collector.responses[0]

    async def call(self, message: Any) -> dict:
        """Like :meth:`handle`, but raise GatewayTimeout on the timeout fallback."""
        collector = _Collector()
        if await self.dispatch(message, collector):
            raise GatewayTimeout(f"no result within {self.timeout_s:.0f}s: {collector.responses[0].get('error')}")
        return collector.responses[0]

    async def drain(self) -> None:
        """Wait for in-flight work, including work abandoned by a timeout."""
        while self._tail is not None and not self._tail.done():
            await asyncio.wait({self._tail})

    # ── Work ──────────────────────────────────────────────────────────

    def _enqueue(self, work: Callable[[], Awaitable[Any]]) -> asyncio.Task:
        previous = self._tail

        async def chained():
            if previous is not None and not previous.done():
                logger.debug("Waiting for previous request to finish")
                await asyncio.wait({previous})
            return await work()

        task = asyncio.ensure_future(chained())
        self._tail = task
        return task

    async def _get_current_filters(self, timer: PipelineTimer) -> dict:
        facets = await self.service.get_current_filters(self.page, timer=timer)
        return {"filters": {"url": self.page.url, "data": facets.to_dict()}}

    async def _apply_filters(self, requested: FacetSet, reset: bool, timer: PipelineTimer) -> dict:
        result = await self.service.apply_filters(self.page, requested, reset_first=reset, timer=timer)
        response: dict = {"success": True, "result": result.to_dict()}
        if result.verified is False and not result.partial_success and not requested.is_empty:
            response["error"] = NOT_VERIFIED_ERROR
        return response

    def _respond(self, request: BaseModel, task: asyncio.Task) -> dict:
        if task.cancelled():
            exc: BaseException | None = asyncio.CancelledError("request cancelled")
        else:
            exc = task.exception()
        if exc is None:
            return task.result()
        if isinstance(exc, FacetSyncError):
            logger.warning("%s failed: %s", request.action, exc)
        else:
            logger.error("%s failed: %s", request.action, exc, exc_info=exc)
        if isinstance(request, GetCurrentFiltersRequest):
            return {"filters": None, "error": str(exc)}
        return {"success": False, "error": str(exc)}


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    err = errors[0]
    loc = ".".join(str(p) for p in err.get("loc", ())) or "message"
    return f"{loc}: {err.get('msg', 'invalid')}"
