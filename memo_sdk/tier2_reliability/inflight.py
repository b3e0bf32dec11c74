"""
memo_sdk.tier2_reliability.inflight
─────────────────────────────────────
Per-function table of computations in progress and the callers waiting on
them (cache-stampede suppression, in-process only).

States per fingerprint:
  idle       : no entry
  computing  : entry present; the first caller is running the function and
               later callers queue behind it
  resolved   : transient; the entry is popped and every waiter gets the same
               result tuple, in the order they joined

Each memoized function owns its own table. Nothing here is shared across
functions, and no locking is needed: every mutation happens on the event
loop thread between awaits.
"""
from __future__ import annotations

from collections.abc import Callable

from memo_sdk.tier0_core import metrics
from memo_sdk.tier0_core.logging import get_logger

log = get_logger(__name__)

Waiter = Callable[[tuple], None]


class InFlightTable:
    def __init__(self) -> None:
        self._entries: dict[str, list[Waiter]] = {}

    def join(self, args_hash: str, waiter: Waiter) -> bool:
        """
        Register *waiter* for *args_hash*.

        Returns True when the caller started a new entry and must run the
        computation itself; False when it was queued behind one.
        """
        queue = self._entries.get(args_hash)
        if queue is not None:
            queue.append(waiter)
            return False
        self._entries[args_hash] = [waiter]
        metrics.inflight_entries().inc()
        return True

    def resolve(self, args_hash: str, result: tuple) -> int:
        """
        Hand *result* to every waiter for *args_hash*, once each, in join
        order. Returns how many were called.
        """
        waiters = self._entries.pop(args_hash, None)
        if waiters is None:
            return 0
        metrics.inflight_entries().dec()
        for waiter in waiters:
            try:
                waiter(result)
            except Exception:
                log.exception("memoizer.callback_failed", args_hash=args_hash)
        return len(waiters)

    def pending(self, args_hash: str) -> int:
        """Number of callers waiting on *args_hash* (0 when idle)."""
        return len(self._entries.get(args_hash, ()))

    def __contains__(self, args_hash: object) -> bool:
        return args_hash in self._entries

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["InFlightTable", "Waiter"]
