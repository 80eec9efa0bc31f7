# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Engine configuration with FACETSYNC_* environment overrides."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace

logger = logging.getLogger(__name__)

_ENV_PREFIX = "FACETSYNC_"
_TRUTHY = frozenset({"1", "true", "yes", "on"})
_FALSY = frozenset({"0", "false", "no", "off"})


@dataclass(frozen=True)
class EngineConfig:
    """Timeouts, polling budgets and delays for one service instance."""

    rpc_timeout_s: float = 20.0
    extract_ready_attempts: int = 10
    extract_ready_delay_ms: int = 1000
    apply_ready_attempts: int = 30
    apply_ready_delay_ms: int = 2000
    extract_retry_delay_ms: int = 3000
    verify_delay_ms: int = 3000
    verify_threshold: float = 0.5
    second_pass: bool = True
    profiles_path: str | None = None  # None = bundled sites.yaml

    def __post_init__(self) -> None:
        if self.rpc_timeout_s <= 0:
            raise ValueError(f"rpc_timeout_s must be positive, got {self.rpc_timeout_s}")
        if not 0.0 <= self.verify_threshold <= 1.0:
            raise ValueError(f"verify_threshold must be within [0, 1], got {self.verify_threshold}")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides) -> EngineConfig:
        """Defaults, then FACETSYNC_<FIELD> variables, then explicit *overrides*.

        Unparseable values are logged and ignored.
        """
        env = os.environ if environ is None else environ
        values: dict = {}
        for f in fields(cls):
            raw = env.get(_ENV_PREFIX + f.name.upper(), "").strip()
            if not raw:
                continue
            try:
                values[f.name] = _coerce(f.name, raw, f.default)
            except ValueError:
                logger.warning("Ignoring invalid %s%s=%r", _ENV_PREFIX, f.name.upper(), raw)
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def with_overrides(self, **overrides) -> EngineConfig:
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def _coerce(name: str, raw: str, default):
    if isinstance(default, bool):
        low = raw.lower()
        if low in _TRUTHY:
            return True
        if low in _FALSY:
            return False
        raise ValueError(name)
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return raw
