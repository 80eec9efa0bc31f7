# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Stage timer for facet extraction/apply calls.

Created outside the gateway's timeout race so it survives an abandoned call
and can explain where a timed-out request was spending its time.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

_STAGE_HINTS = {
    "readiness": "Facet panel never rendered. The listing page may still be loading or the selectors drifted.",
    "extract": "Reading applied facets is slow. The summary strip may be missing, forcing a full section scan.",
    "apply": "Facet clicks are slow to take effect. Large brand lists need 'show more' expansion.",
    "second_pass": "Retrying exhausted facets. Some requested values may not exist on this storefront.",
    "verify": "Post-apply verification is waiting for the product grid to refresh.",
}


@dataclass(slots=True)
class StageRecord:
    name: str
    start_ns: int
    end_ns: int = 0

    @property
    def elapsed_ms(self) -> float:
        return round((self.end_ns - self.start_ns) / 1e6, 1)


class PipelineTimer:
    """Record stage transitions of one service call."""

    __slots__ = ("_stages", "_current", "_start_ns")

    def __init__(self) -> None:
        self._stages: list[StageRecord] = []
        self._current: StageRecord | None = None
        self._start_ns: int = time.monotonic_ns()

    def stage(self, name: str) -> None:
        """Close the running stage and open *name*."""
        now = time.monotonic_ns()
        if self._current is not None:
            self._current.end_ns = now
            self._stages.append(self._current)
        self._current = StageRecord(name=name, start_ns=now)

    def finalize(self) -> None:
        if self._current is not None:
            self._current.end_ns = time.monotonic_ns()
            self._stages.append(self._current)
            self._current = None

    @property
    def current_stage(self) -> str | None:
        return self._current.name if self._current else None

    @property
    def stage_names(self) -> list[str]:
        names = [s.name for s in self._stages]
        if self._current is not None:
            names.append(self._current.name)
        return names

    def elapsed_per_stage(self) -> dict[str, float]:
        """{stage: elapsed_ms}, including the running stage. Repeated stages accumulate."""
        now = time.monotonic_ns()
        result: dict[str, float] = {}
        for s in self._stages:
            result[s.name] = round(result.get(s.name, 0.0) + s.elapsed_ms, 1)
        if self._current is not None:
            ms = round((now - self._current.start_ns) / 1e6, 1)
            result[self._current.name] = round(result.get(self._current.name, 0.0) + ms, 1)
        return result

    def timeout_report(self) -> dict:
        """Structured diagnostic logged when the gateway answers with a timeout."""
        now = time.monotonic_ns()
        current = self.current_stage or "unknown"
        return {
            "error": "timeout",
            "completed_stages": [{"stage": s.name, "ms": s.elapsed_ms} for s in self._stages],
            "timed_out_at": current,
            "timed_out_stage_ms": round((now - self._current.start_ns) / 1e6, 1) if self._current else 0,
            "total_ms": round((now - self._start_ns) / 1e6, 1),
            "hint": self.hint_for_stage(current),
        }

    @staticmethod
    def hint_for_stage(stage: str) -> str:
        return _STAGE_HINTS.get(stage, f"Timed out during '{stage}' stage.")
