"""
memo_sdk.tier1_runtime.identity
────────────────────────────────
Function identity and argument fingerprints.

A wrapped function gets one opaque key at wrap time. By default that key is a
random UUID4, not a digest of the function's code: two closures with the same
source but different captured state must never share cache entries. Tests
that need reproducible keys can swap in source_key_strategy, at the cost of
exactly that guarantee.
"""
from __future__ import annotations

import hashlib
import inspect
import uuid
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from memo_sdk.tier1_runtime.serialize import dumps

KeyStrategy = Callable[[Callable[..., Any]], str]


# ── Key strategies ─────────────────────────────────────────────────────────

def uuid_key_strategy(fn: Callable[..., Any]) -> str:
    """Random UUID4. Never collides, never reproducible."""
    return str(uuid.uuid4())


def source_key_strategy(fn: Callable[..., Any]) -> str:
    """
    SHA-1 of the function's source text (falls back to its qualified name).
    Identical-looking closures collide; use for tests only.
    """
    try:
        basis = inspect.getsource(fn)
    except (OSError, TypeError):
        basis = f"{getattr(fn, '__module__', '')}.{getattr(fn, '__qualname__', repr(fn))}"
    return hashlib.sha1(basis.encode("utf-8")).hexdigest()


_strategy: KeyStrategy = uuid_key_strategy


def set_key_strategy(strategy: KeyStrategy) -> None:
    """Replace the process-wide key strategy (use in tests)."""
    global _strategy
    _strategy = strategy


def reset_key_strategy() -> None:
    global _strategy
    _strategy = uuid_key_strategy


def new_function_key(
    fn: Callable[..., Any], strategy: KeyStrategy | None = None
) -> str:
    """Generate the identity for a newly wrapped function."""
    return (strategy or _strategy)(fn)


# ── Argument fingerprints ──────────────────────────────────────────────────

def fingerprint(args: Sequence[Any], kwargs: Mapping[str, Any] | None = None) -> str:
    """
    SHA-1 hex digest of the canonical JSON of an argument list.

    Value-equal arguments (including dicts with different key order) give the
    same digest. Keyword arguments, when present, are hashed as a trailing
    object so f(1, x=2) and f(1, 2) differ.

    Raises:
        TypeError / ValueError: an argument cannot be serialized.
    """
    payload: list[Any] = list(args)
    if kwargs:
        payload = [payload, dict(kwargs)]
    return hashlib.sha1(dumps(payload, canonical=True)).hexdigest()


__all__ = [
    "KeyStrategy",
    "uuid_key_strategy",
    "source_key_strategy",
    "set_key_strategy",
    "reset_key_strategy",
    "new_function_key",
    "fingerprint",
]
