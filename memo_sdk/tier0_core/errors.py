"""
memo_sdk.tier0_core.errors
───────────────────────────
Error taxonomy for the memoizer. Every error carries a stable machine code
and internal detail. Only InvalidUsageError (and ConfigurationError at
construction time) ever reaches callers; everything else is recovered
locally by degrading to a direct computation.
"""
from __future__ import annotations

from typing import Any


# ── Base error ────────────────────────────────────────────────────────────────

class MemoizerError(Exception):
    """
    Base class for all memoizer errors. Every error has:
    - code: stable machine-readable string (snake_case)
    - detail: human-readable context for logs
    - metadata: structured fields, logged alongside the event
    """

    code: str = "memoizer_error"
    default_detail: str = "Memoizer failure."

    def __init__(self, detail: str | None = None, **metadata: Any) -> None:
        self.detail = detail or self.default_detail
        self.metadata = metadata
        super().__init__(self.detail)

    def to_dict(self) -> dict:
        return {"code": self.code, "detail": self.detail, **self.metadata}


# ── Typed error classes ───────────────────────────────────────────────────────

class InvalidUsageError(MemoizerError, TypeError):
    """A memoized function was called incorrectly (e.g. without a callback)."""
    code = "invalid_usage"
    default_detail = "Last argument to a memoized function must be a callback."


class StoreError(MemoizerError):
    """The cache store is unreachable or a transport operation failed."""
    code = "store_error"
    default_detail = "Cache store operation failed."


class LookupTimeout(MemoizerError):
    """A cache read did not settle within its budget."""
    code = "lookup_timeout"
    default_detail = "Cache lookup timed out."


class DecodeError(MemoizerError, ValueError):
    """A cached payload could not be decompressed or parsed."""
    code = "decode_error"
    default_detail = "Cached payload is malformed."


class ConfigurationError(MemoizerError):
    """Misconfiguration detected while building a memoizer."""
    code = "configuration_error"
    default_detail = "Invalid memoizer configuration."


__all__ = [
    "MemoizerError",
    "InvalidUsageError",
    "StoreError",
    "LookupTimeout",
    "DecodeError",
    "ConfigurationError",
]
