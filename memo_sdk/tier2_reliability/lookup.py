"""
memo_sdk.tier2_reliability.lookup
───────────────────────────────────
Race a cache read against a time budget.

The read runs as its own task and is never cancelled on timeout: the caller
simply stops waiting. Whatever the read eventually produces is retrieved and
dropped, so a slow store can't deliver a second answer to a caller who has
already moved on.
"""
from __future__ import annotations

import asyncio

from memo_sdk.tier0_core.errors import LookupTimeout
from memo_sdk.tier2_reliability.store import StoreAdapter

# Reads that lost the race. Held until they settle so they aren't
# garbage-collected mid-flight.
_abandoned: set[asyncio.Task] = set()


def _discard(task: asyncio.Task) -> None:
    _abandoned.discard(task)
    if not task.cancelled():
        task.exception()


async def race_lookup(store: StoreAdapter, key: str, budget_ms: int) -> bytes | None:
    """
    Read *key*, giving up after *budget_ms*.

    Returns:
        The raw stored bytes, or None if the key is absent.

    Raises:
        LookupTimeout: the budget elapsed first.
        StoreError:    the store is not ready or the read failed.
    """
    read = asyncio.ensure_future(store.get_raw(key))
    done, _ = await asyncio.wait({read}, timeout=max(budget_ms, 0) / 1000)
    if read not in done:
        _abandoned.add(read)
        read.add_done_callback(_discard)
        raise LookupTimeout(key=key, budget_ms=budget_ms)
    return read.result()


def abandoned_reads() -> int:
    """Number of timed-out reads still outstanding."""
    return len(_abandoned)


__all__ = ["race_lookup", "abandoned_reads"]
