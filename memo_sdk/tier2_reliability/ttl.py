"""
memo_sdk.tier2_reliability.ttl
────────────────────────────────
Time-to-live policy for memoized results: a fixed duration, or a function of
the result tuple evaluated once the real computation has finished (e.g. to
honour a freshness header in the response). Durations are milliseconds;
timedelta is accepted anywhere a duration is.

A TTL of 0 means "don't store".
"""
from __future__ import annotations

import inspect
import math
from collections.abc import Callable
from datetime import timedelta
from typing import Any, Union

Duration = Union[int, float, timedelta]
TtlSpec = Union[Duration, Callable[..., Duration], None]


def to_millis(value: Any) -> int:
    """
    Normalise a duration to non-negative integer milliseconds. Fractions round
    up, so a positive duration never collapses to 0 ("don't store").
    """
    if isinstance(value, timedelta):
        if value < timedelta(0):
            raise ValueError(f"TTL must be non-negative, got {value!r}")
        return -(-(value // timedelta(microseconds=1)) // 1000)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"TTL must be a number of milliseconds, got {value!r}")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError(f"TTL must be finite, got {value!r}")
    if value < 0:
        raise ValueError(f"TTL must be non-negative, got {value!r}")
    return math.ceil(value)


def _takes_result(fn: Callable[..., Any]) -> bool:
    try:
        params = inspect.signature(fn).parameters.values()
    except (TypeError, ValueError):
        return True
    positional = (
        inspect.Parameter.POSITIONAL_ONLY,
        inspect.Parameter.POSITIONAL_OR_KEYWORD,
        inspect.Parameter.VAR_POSITIONAL,
    )
    return any(p.kind in positional for p in params)


class TtlPolicy:
    """
    Usage:
        TtlPolicy(None, default_ttl=120000)          # default
        TtlPolicy(5000, default_ttl=120000)          # fixed
        TtlPolicy(lambda err, resp: 0 if err else resp["max_age"] * 1000, 120000)
        TtlPolicy(lambda: 100, default_ttl=120000)   # computed, ignores result

    A TTL function receives the result tuple spread as positional arguments,
    unless it accepts no positional arguments at all, in which case it is
    called with none.
    """

    def __init__(self, ttl: TtlSpec, default_ttl: int) -> None:
        self._fn: Callable[..., Duration] | None = None
        self._static: int | None = None
        self._spread = True
        if ttl is None:
            self._static = to_millis(default_ttl)
        elif callable(ttl):
            self._fn = ttl
            self._spread = _takes_result(ttl)
        else:
            self._static = to_millis(ttl)

    @property
    def is_static(self) -> bool:
        return self._fn is None

    @property
    def static_ttl(self) -> int | None:
        return self._static

    def resolve(self, result: tuple) -> int:
        """TTL for a finished computation. The function form gets the tuple spread."""
        if self._fn is None:
            return self._static  # type: ignore[return-value]
        value = self._fn(*result) if self._spread else self._fn()
        return to_millis(value)

    def lookup_budget(self, lookup_timeout: int) -> int:
        """
        How long a lookup may wait. Never longer than a static TTL: a value
        that lives 50 ms isn't worth waiting a second for. A computed TTL is
        unknown until after the lookup, so the configured timeout applies.
        """
        if self._fn is None:
            return min(self._static, lookup_timeout)  # type: ignore[type-var]
        return lookup_timeout


__all__ = ["TtlPolicy", "TtlSpec", "to_millis"]
