"""
memo_sdk.tier1_runtime.serialize
─────────────────────────────────
JSON codec for result tuples. Plain data round-trips as-is; two extra types
survive the trip:

  - datetimes, written as ISO-8601 text with a fractional-second part and
    revived by pattern match on decode (any string in that exact shape
    comes back as a datetime);
  - exceptions, written as a tagged object limited to an allow-list of
    fields and revived as CachedError.

Anything else (sets, arbitrary objects, cyclic structures) raises TypeError
or ValueError on encode.
"""
from __future__ import annotations

import json
import re
import traceback
from datetime import datetime, timedelta
from typing import Any

from memo_sdk.tier0_core.errors import DecodeError

ERROR_TAG = "$__memoized_error"
ERROR_FIELDS = ("message", "arguments", "type", "name", "stack")

_ISO_RE = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d+(?:Z|[+-]\d{2}:?\d{2})?$"
)
_PLAIN = (str, int, float, bool, type(None))


class CachedError(Exception):
    """An error revived from the cache. Only the allow-listed fields survive."""

    def __init__(
        self,
        message: str = "",
        *,
        name: str = "Exception",
        type: str | None = None,
        stack: str | None = None,
        arguments: list | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.name = name
        self.type = type
        self.stack = stack
        self.arguments = list(arguments or [])

    def __repr__(self) -> str:
        return f"CachedError(name={self.name!r}, message={self.message!r})"


# ── Encoding ──────────────────────────────────────────────────────────────────

def format_datetime(value: datetime) -> str:
    text = value.isoformat(timespec="microseconds")
    if value.utcoffset() == timedelta(0):
        text = text[: -len("+00:00")] + "Z"
    return text


def error_payload(exc: BaseException) -> dict[str, Any]:
    """Restricted-field representation of an exception, tagged for revival."""
    if isinstance(exc, CachedError):
        return {
            "message": exc.message,
            "arguments": exc.arguments,
            "type": exc.type,
            "name": exc.name,
            "stack": exc.stack,
            ERROR_TAG: True,
        }
    kind = getattr(exc, "type", None)
    return {
        "message": str(exc),
        "arguments": [a if isinstance(a, _PLAIN) else repr(a) for a in exc.args],
        "type": kind if kind is None or isinstance(kind, str) else str(kind),
        "name": type(exc).__name__,
        "stack": "".join(
            traceback.format_exception(type(exc), exc, exc.__traceback__)
        ),
        ERROR_TAG: True,
    }


def _default(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return format_datetime(obj)
    if isinstance(obj, BaseException):
        return error_payload(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not cacheable")


def dumps(value: Any, *, canonical: bool = False) -> bytes:
    """
    Serialize to UTF-8 JSON bytes with datetime/exception support.
    canonical=True sorts object keys and drops whitespace, for hashing.
    """
    if canonical:
        text = json.dumps(value, default=_default, sort_keys=True, separators=(",", ":"))
    else:
        text = json.dumps(value, default=_default, separators=(",", ":"))
    return text.encode("utf-8")


def encode(result: tuple | list) -> bytes:
    """
    Encode a result tuple.

    Usage:
        payload = encode((None, {"id": 1}, datetime.now(timezone.utc)))
    """
    return dumps(list(result))


# ── Decoding ──────────────────────────────────────────────────────────────────

def parse_datetime(text: str) -> datetime | None:
    if not _ISO_RE.match(text):
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def _optional_str(value: Any) -> str | None:
    return None if value is None else str(value)


def _revive_error(payload: dict) -> CachedError:
    # Other writers may not follow the field types exactly.
    arguments = payload.get("arguments")
    if not isinstance(arguments, list):
        arguments = [] if arguments is None else [arguments]
    return CachedError(
        str(payload.get("message") or ""),
        name=str(payload.get("name") or "Exception"),
        type=_optional_str(payload.get("type")),
        stack=_optional_str(payload.get("stack")),
        arguments=arguments,
    )


def revive(value: Any) -> Any:
    """Walk decoded JSON and restore datetimes and tagged errors."""
    if isinstance(value, str):
        parsed = parse_datetime(value)
        return value if parsed is None else parsed
    if isinstance(value, list):
        return [revive(v) for v in value]
    if isinstance(value, dict):
        if value.get(ERROR_TAG) is True:
            return _revive_error(value)
        return {k: revive(v) for k, v in value.items()}
    return value


def decode(data: bytes | str) -> tuple:
    """
    Decode a payload written by encode().

    Raises:
        DecodeError: payload is not UTF-8 JSON, is nested too deeply, or
                     is not a list.
    """
    try:
        raw = json.loads(data)
    except (UnicodeDecodeError, ValueError, RecursionError) as exc:
        raise DecodeError(f"Cached payload is not valid JSON: {exc}") from exc
    if not isinstance(raw, list):
        raise DecodeError(
            "Cached payload is not a result tuple", got=type(raw).__name__
        )
    try:
        return tuple(revive(v) for v in raw)
    except (TypeError, ValueError, RecursionError) as exc:
        raise DecodeError(f"Cached payload has an unexpected shape: {exc!r}") from exc


__all__ = [
    "CachedError",
    "ERROR_TAG",
    "ERROR_FIELDS",
    "encode",
    "decode",
    "dumps",
    "revive",
    "format_datetime",
    "parse_datetime",
    "error_payload",
]
