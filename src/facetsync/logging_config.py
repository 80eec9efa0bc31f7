# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Log setup for the CLI and any host embedding the gateway.

facetsync modules log through plain ``logging.getLogger(__name__)``. This
module routes those records through structlog so every line carries the
request being served (``request_id``, ``action``) once the gateway has bound
them with :func:`request_context`.

Leaf module with no facetsync imports.
"""

from __future__ import annotations

import itertools
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

# Chatty at DEBUG and unrelated to facet work.
_QUIET_LOGGERS = ("asyncio", "playwright")

_request_ids = itertools.count(1)


def _processors() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
    ]


def configure(*, json_output: bool = False, level: str = "INFO") -> None:
    """Install one stderr handler on the root logger.

    ``json_output`` switches the console renderer for JSON lines. An unknown
    ``level`` falls back to INFO. Safe to call more than once.
    """
    chain = _processors()
    structlog.configure(
        processors=[*chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    render = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(colors=False)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, render],
            foreign_pre_chain=chain,
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(logging.getLevelNamesMapping().get(level.upper(), logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(root.level, logging.WARNING))


@contextmanager
def request_context(action: str, **fields: object) -> Iterator[str]:
    """Bind a fresh ``request_id`` and *action* to log lines in this context.

    Tasks created inside the block inherit the binding, so work that outlives
    a timeout still logs under the request that started it.
    """
    request_id = f"r{next(_request_ids)}"
    with structlog.contextvars.bound_contextvars(request_id=request_id, action=action, **fields):
        yield request_id
