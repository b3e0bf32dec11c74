"""
memo_sdk.tier1_runtime.compress
────────────────────────────────
Size-triggered gzip for cache payloads. Compressed values carry a fixed
7-byte marker, so readers can tell compressed from raw without knowing the
writer's threshold (writers on another version or config may differ).

Wire format: [b"$gzip__"][gzip bytes]  or  [raw bytes]
"""
from __future__ import annotations

import gzip
import zlib

from memo_sdk.tier0_core.errors import DecodeError

GZIP_MAGIC = b"$gzip__"
DEFAULT_THRESHOLD = 500  # bytes
COMPRESS_LEVEL = 6


def maybe_compress(
    data: bytes | None, threshold: int = DEFAULT_THRESHOLD
) -> bytes | None:
    """Gzip and prefix payloads of at least *threshold* bytes."""
    if not data or len(data) < threshold:
        return data
    return GZIP_MAGIC + gzip.compress(data, compresslevel=COMPRESS_LEVEL)


def maybe_decompress(data: bytes | None) -> bytes | None:
    """
    Undo maybe_compress(). Payloads without the marker pass through.

    Raises:
        DecodeError: the marker is present but the gzip stream is corrupt.
    """
    if not data or not data.startswith(GZIP_MAGIC):
        return data
    try:
        return gzip.decompress(data[len(GZIP_MAGIC):])
    except (OSError, EOFError, zlib.error) as exc:
        raise DecodeError(f"Corrupt compressed payload: {exc}") from exc


def is_compressed(data: bytes | None) -> bool:
    return bool(data) and data.startswith(GZIP_MAGIC)


__all__ = [
    "GZIP_MAGIC",
    "DEFAULT_THRESHOLD",
    "maybe_compress",
    "maybe_decompress",
    "is_compressed",
]
