"""
memo_sdk.tier0_core.logging
────────────────────────────
Structured logs for the memoizer: lookup failures, dropped writes, timing
labels and misbehaving callbacks. Events are dotted names with key/value
context, never preformatted strings.

Loggers are wrapped individually rather than through structlog.configure(),
and output goes to a handler on the ``memo_sdk`` logger hierarchy, so a host
application's own structlog and root-logger setup are left alone.

Minimal stack: structlog (stdout JSON or console)
Configure via: MEMO_LOG_LEVEL, MEMO_LOG_FORMAT=json|console
"""
from __future__ import annotations

import logging
import os
import sys
from typing import Any, TextIO

import structlog

_ROOT = "memo_sdk"
_MAX_VALUE_CHARS = 512

_handler: logging.Handler | None = None


# ── Processors ────────────────────────────────────────────────────────────────

def _truncate_processor(
    logger: Any, method: str, event_dict: dict
) -> dict:
    """Clip oversized string fields (error details, stack text) before output."""
    for key, value in event_dict.items():
        if isinstance(value, str) and len(value) > _MAX_VALUE_CHARS:
            event_dict[key] = value[:_MAX_VALUE_CHARS] + "…"
    return event_dict


_shared_processors: list[Any] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.processors.StackInfoRenderer(),
    _truncate_processor,
]


# ── Configuration ─────────────────────────────────────────────────────────────

def configure_logging(
    level: str | None = None,
    fmt: str | None = None,
    stream: TextIO | None = None,
) -> None:
    """
    (Re)install the memo_sdk log handler. get_logger() calls this once with
    the environment defaults; call it again to change level, format or sink.

    Usage:
        configure_logging(level="DEBUG", fmt="console")
    """
    global _handler
    level_name = (level or os.getenv("MEMO_LOG_LEVEL", "INFO")).upper()
    fmt = (fmt or os.getenv("MEMO_LOG_FORMAT", "json")).lower()

    if fmt == "console":
        render_chain: list[Any] = [structlog.dev.ConsoleRenderer()]
    else:
        render_chain = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *render_chain,
            ],
        )
    )

    root = logging.getLogger(_ROOT)
    if _handler is not None:
        root.removeHandler(_handler)
    root.addHandler(handler)
    root.setLevel(getattr(logging, level_name, logging.INFO))
    root.propagate = False
    _handler = handler


# ── Public API ────────────────────────────────────────────────────────────────

def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Return a structured logger bound to the given name.

    Usage:
        log = get_logger(__name__)
        log.warning("memoizer.lookup_failed", key="memos:abc:def", error="timeout")
    """
    if _handler is None:
        configure_logging()
    return structlog.wrap_logger(
        logging.getLogger(name or _ROOT),
        processors=[
            structlog.stdlib.filter_by_level,
            *_shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
    )


__all__ = ["get_logger", "configure_logging"]
