"""
memo_sdk.tier2_reliability.memoize
────────────────────────────────────
Transparent memoization for asynchronous functions, backed by a shared cache
store, with in-process stampede protection.

Two calling conventions are supported and picked automatically at wrap time:

  callback  : fn(*args, callback); callback(err_or_None, *results).
              The memoized function returns None and calls back later.
  coroutine : async def fn(*args, **kwargs) -> value.
              The memoized function is awaited and returns or raises.

Per call: fingerprint the arguments → race a cache read against the lookup
budget → on hit, deliver the decoded tuple → on miss, timeout or any store
failure, either queue behind an identical in-flight computation or run the
function, then persist in the background and resolve every waiter.

A dead or slow store degrades to "as if unmemoized", never to a failed call.

Usage:
    memoize = create_memoizer("redis://localhost:6379/0", memoize_key_namespace="v42")

    @memoize.memoize(ttl=60_000)
    async def fetch_profile(user_id: str) -> dict: ...

    def legacy_lookup(sku, done): ...
    legacy_lookup = memoize(legacy_lookup, ttl=5000, time_label="legacy_lookup")
"""
from __future__ import annotations

import asyncio
import contextvars
import functools
import inspect
import time
import types
from collections.abc import Callable, Coroutine
from typing import Any

from memo_sdk.tier0_core import metrics
from memo_sdk.tier0_core.config import MemoizerConfig, get_config
from memo_sdk.tier0_core.errors import (
    DecodeError,
    InvalidUsageError,
    LookupTimeout,
    MemoizerError,
    StoreError,
)
from memo_sdk.tier0_core.logging import get_logger
from memo_sdk.tier1_runtime.compress import maybe_compress, maybe_decompress
from memo_sdk.tier1_runtime.identity import KeyStrategy, fingerprint, new_function_key
from memo_sdk.tier1_runtime.serialize import decode, encode
from memo_sdk.tier2_reliability.inflight import InFlightTable, Waiter
from memo_sdk.tier2_reliability.lookup import race_lookup
from memo_sdk.tier2_reliability.store import CacheBackend, StoreAdapter, resolve_backend
from memo_sdk.tier2_reliability.ttl import TtlPolicy, TtlSpec

log = get_logger(__name__)

BASE_NAMESPACE = "memos"

ErrorPredicate = Callable[[BaseException], bool]


def _always(err: BaseException) -> bool:
    return True


def build_namespace(custom: str | None = None) -> str:
    """``memos`` or ``memos:<custom>``; bump *custom* to invalidate everything."""
    return f"{BASE_NAMESPACE}:{custom}" if custom else BASE_NAMESPACE


class Memoizer:
    """
    Produces memoized functions that share one cache store and config.

    Args:
        store:               A CacheBackend, or an already-built StoreAdapter.
        config:              Options; defaults to get_config().
        memoize_errors_when: Predicate deciding whether an error result is
                             cached. Defaults to caching every error.
        key_strategy:        Override how function identities are generated.
    """

    def __init__(
        self,
        store: CacheBackend | StoreAdapter,
        config: MemoizerConfig | None = None,
        *,
        memoize_errors_when: ErrorPredicate | None = None,
        key_strategy: KeyStrategy | None = None,
    ) -> None:
        self.store = store if isinstance(store, StoreAdapter) else StoreAdapter(store)
        self.config = config or get_config()
        self.namespace = build_namespace(self.config.memoize_key_namespace)
        self._errors_when = memoize_errors_when or _always
        self._key_strategy = key_strategy
        self._background: set[asyncio.Task] = set()

    # ── Wrapping ──────────────────────────────────────────────────────────────

    def wrap(
        self,
        fn: Callable[..., Any],
        ttl: TtlSpec = None,
        time_label: str | None = None,
    ) -> "MemoizedFunction":
        """Memoize *fn*. Coroutine functions get the awaitable convention."""
        if not callable(fn):
            raise InvalidUsageError(f"Cannot memoize non-callable {fn!r}")
        if inspect.iscoroutinefunction(fn):
            return CoroutineMemoized(self, fn, ttl, time_label)
        return CallbackMemoized(self, fn, ttl, time_label)

    __call__ = wrap

    def memoize(
        self, ttl: TtlSpec = None, *, time_label: str | None = None
    ) -> Callable[[Callable[..., Any]], "MemoizedFunction"]:
        """Decorator form of wrap()."""
        def decorator(fn: Callable[..., Any]) -> MemoizedFunction:
            return self.wrap(fn, ttl, time_label)
        return decorator

    def cache_key(self, function_key: str, args_hash: str) -> str:
        return f"{self.namespace}:{function_key}:{args_hash}"

    async def drain(self) -> None:
        """Wait for background computations and cache writes to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ── Internals shared by memoized functions ────────────────────────────────

    def _spawn(
        self,
        coro: Coroutine[Any, Any, Any],
        on_done: Callable[[asyncio.Task], None] | None = None,
    ) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        task.add_done_callback(on_done or _log_task_failure)
        return task

    def _report(self, event: str, exc: BaseException, **fields: Any) -> None:
        if isinstance(exc, MemoizerError):
            fields.update(code=exc.code, **exc.metadata)
        if self.config.is_production:
            log.debug(event, error=str(exc), **fields)
        else:
            log.warning(event, error=str(exc), **fields)

    async def _lookup(self, key: str, budget_ms: int) -> tuple | None:
        try:
            raw = await race_lookup(self.store, key, budget_ms)
            if raw is None:
                metrics.lookups(outcome="miss").inc()
                return None
            result = decode(maybe_decompress(raw))
        except LookupTimeout as exc:
            metrics.lookups(outcome="timeout").inc()
            self._report("memoizer.lookup_timeout", exc)
            return None
        except (StoreError, DecodeError) as exc:
            metrics.lookups(outcome="error").inc()
            self._report("memoizer.lookup_failed", exc, key=key)
            return None
        metrics.lookups(outcome="hit").inc()
        return result

    def _should_store(self, result: tuple) -> bool:
        err = result[0] if result else None
        if not isinstance(err, BaseException):
            return True
        if not isinstance(err, Exception):
            # Cancellation and friends describe this call, not the arguments.
            return False
        try:
            return bool(self._errors_when(err))
        except Exception:
            log.exception("memoizer.error_predicate_failed", error=repr(err))
            return False

    def _persist(self, key: str, result: tuple, ttl: TtlPolicy) -> None:
        """Encode now (callers may mutate the result later), write in the background."""
        if not self._should_store(result):
            metrics.store_writes(outcome="skipped").inc()
            return
        try:
            ttl_ms = ttl.resolve(result)
        except Exception:
            log.exception("memoizer.ttl_failed", key=key)
            metrics.store_writes(outcome="skipped").inc()
            return
        if ttl_ms == 0:
            metrics.store_writes(outcome="skipped").inc()
            return
        try:
            payload = maybe_compress(encode(result), self.config.compress_threshold)
        except (TypeError, ValueError) as exc:
            self._report("memoizer.encode_failed", exc, key=key)
            metrics.store_writes(outcome="skipped").inc()
            return
        self._spawn(self._write(key, ttl_ms, payload))

    async def _write(self, key: str, ttl_ms: int, payload: bytes) -> None:
        try:
            await self.store.set_with_ttl(key, ttl_ms, payload)
        except StoreError as exc:
            metrics.store_writes(outcome="error").inc()
            self._report("memoizer.store_write_failed", exc, key=key)
        else:
            metrics.store_writes(outcome="ok").inc()


def _log_task_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        log.error("memoizer.task_failed", error=repr(exc), exc_info=exc)


# ── Memoized functions ────────────────────────────────────────────────────────

class MemoizedFunction:
    """
    Common machinery for both calling conventions. One instance per wrapped
    function: one identity, one TTL policy, one in-flight table.

    Memoized functions are descriptors, so they work as methods. The receiver
    is passed through to the underlying function but is not part of the
    fingerprint.
    """

    def __init__(
        self,
        memoizer: Memoizer,
        fn: Callable[..., Any],
        ttl: TtlSpec,
        time_label: str | None,
    ) -> None:
        functools.update_wrapper(self, fn)
        self._memoizer = memoizer
        self._fn = fn
        self._name = getattr(fn, "__qualname__", repr(fn))
        self._time_label = time_label
        self.function_key = new_function_key(fn, memoizer._key_strategy)
        self.ttl = TtlPolicy(ttl, memoizer.config.default_ttl)
        self.in_flight = InFlightTable()

    def __get__(self, instance: Any, owner: type | None = None) -> Any:
        if instance is None:
            return self
        return functools.partial(self._call, instance)

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        return self._call(None, *args, **kwargs)

    def _call(self, receiver: Any, /, *args: Any, **kwargs: Any) -> Any:
        raise NotImplementedError

    def _start(
        self,
        receiver: Any,
        args: tuple,
        kwargs: dict,
        on_complete: Callable[[tuple], None],
    ) -> None:
        """Run the underlying function; call on_complete(result) exactly once."""
        raise NotImplementedError

    def _target(self, receiver: Any) -> Callable[..., Any]:
        if receiver is None:
            return self._fn
        return types.MethodType(self._fn, receiver)

    def _fingerprint(self, args: tuple, kwargs: dict) -> str | None:
        try:
            return fingerprint(args, kwargs)
        except (TypeError, ValueError) as exc:
            log.warning(
                "memoizer.unhashable_arguments",
                function=self._name,
                error=str(exc),
            )
            return None

    async def _dispatch(
        self, receiver: Any, args: tuple, kwargs: dict, waiter: Waiter
    ) -> None:
        memoizer = self._memoizer
        args_hash = self._fingerprint(args, kwargs)
        if args_hash is None:
            # Can't key it, so neither cache nor coalesce: just run it.
            metrics.computations().inc()
            self._start(receiver, args, kwargs, waiter)
            return

        key = memoizer.cache_key(self.function_key, args_hash)
        budget = self.ttl.lookup_budget(memoizer.config.lookup_timeout)
        if budget > 0:
            cached = await memoizer._lookup(key, budget)
            if cached is not None:
                waiter(cached)
                return

        if not self.in_flight.join(args_hash, waiter):
            metrics.coalesced().inc()
            return

        metrics.computations().inc()
        started = time.monotonic()
        self._start(
            receiver, args, kwargs,
            functools.partial(self._settle, key, args_hash, started),
        )

    def _settle(self, key: str, args_hash: str, started: float, result: tuple) -> None:
        elapsed = time.monotonic() - started
        metrics.compute_seconds().observe(elapsed)
        if self._time_label:
            log.info(
                "memoizer.timing",
                label=self._memoizer.config.time_label_prefix + self._time_label,
                elapsed_ms=round(elapsed * 1000, 2),
            )
        self._memoizer._persist(key, result, self.ttl)
        self.in_flight.resolve(args_hash, result)

    def __repr__(self) -> str:
        return f"<memoized {self._name} key={self.function_key}>"


class CallbackMemoized(MemoizedFunction):
    """fn(*args, callback) convention. Must be called inside a running loop."""

    def _call(self, receiver: Any, /, *args: Any, **kwargs: Any) -> None:
        if not args or not callable(args[-1]):
            raise InvalidUsageError(
                "Last argument to a memoized function must be a callback",
                function=self._name,
            )
        try:
            asyncio.get_running_loop()
        except RuntimeError as exc:
            raise InvalidUsageError(
                "Memoized functions must be called from a running event loop",
                function=self._name,
            ) from exc

        *call_args, done = args
        context = contextvars.copy_context()

        def waiter(result: tuple) -> None:
            context.run(done, *result)

        self._memoizer._spawn(self._dispatch(receiver, tuple(call_args), kwargs, waiter))

    def _start(
        self,
        receiver: Any,
        args: tuple,
        kwargs: dict,
        on_complete: Callable[[tuple], None],
    ) -> None:
        settled = False

        def complete(*result: Any) -> None:
            nonlocal settled
            if settled:
                log.warning("memoizer.duplicate_completion", function=self._name)
                return
            settled = True
            on_complete(result)

        try:
            self._target(receiver)(*args, complete, **kwargs)
        except BaseException as exc:
            if not settled:
                # Waiters must be released whatever was raised; non-Exception
                # results are never persisted.
                complete(exc)
            elif isinstance(exc, Exception):
                log.exception("memoizer.raised_after_completion", function=self._name)
            if not isinstance(exc, Exception):
                raise


class CoroutineMemoized(MemoizedFunction):
    """async def convention. Awaiting returns the value or raises the error."""

    async def _call(self, receiver: Any, /, *args: Any, **kwargs: Any) -> Any:
        future = asyncio.get_running_loop().create_future()

        def waiter(result: tuple) -> None:
            if not future.done():
                future.set_result(result)

        await self._dispatch(receiver, args, kwargs, waiter)
        result = await future
        if result and result[0] is not None:
            raise result[0]
        return result[1] if len(result) > 1 else None

    def _start(
        self,
        receiver: Any,
        args: tuple,
        kwargs: dict,
        on_complete: Callable[[tuple], None],
    ) -> None:
        # Own task: cancelling one waiter must not cancel the shared computation.
        def finished(task: asyncio.Task) -> None:
            if task.cancelled():
                on_complete((asyncio.CancelledError(),))
            elif task.exception() is not None:
                on_complete((task.exception(),))
            else:
                on_complete((None, task.result()))

        self._memoizer._spawn(self._target(receiver)(*args, **kwargs), on_done=finished)


# ── Factory ───────────────────────────────────────────────────────────────────

def create_memoizer(
    client: Any = None,
    config: MemoizerConfig | None = None,
    *,
    memoize_errors_when: ErrorPredicate | None = None,
    key_strategy: KeyStrategy | None = None,
    **overrides: Any,
) -> Memoizer:
    """
    Build a Memoizer from whatever store handle is at hand.

    Args:
        client:    None (connect to REDIS_URL), a redis URL, a
                   redis.asyncio.Redis client, or any CacheBackend.
        config:    Base configuration; defaults to get_config().
        overrides: Config fields to replace, e.g. lookup_timeout=20.

    Usage:
        memoize = create_memoizer(redis_client, memoize_key_namespace=git_sha)
    """
    config = (config or get_config()).with_overrides(**overrides)
    backend = resolve_backend(client, config)
    return Memoizer(
        backend,
        config,
        memoize_errors_when=memoize_errors_when,
        key_strategy=key_strategy,
    )


__all__ = [
    "Memoizer",
    "MemoizedFunction",
    "CallbackMemoized",
    "CoroutineMemoized",
    "create_memoizer",
    "build_namespace",
    "BASE_NAMESPACE",
]
