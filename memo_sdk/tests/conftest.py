"""
memo_sdk test configuration.

All tests run against the in-process MemoryBackend (or fakeredis); no Redis
server required. Override by setting environment variables before running
pytest.
"""
from __future__ import annotations

import asyncio
import os
import time

import pytest

# ── Force test settings ───────────────────────────────────────────────────
# These must be set before any memo_sdk modules are imported.

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("MEMO_LOG_LEVEL", "WARNING")
os.environ.setdefault("MEMO_LOG_FORMAT", "console")


# ── Fixtures ───────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def reset_module_singletons():
    """Fresh config and default key strategy for every test."""
    from memo_sdk.tier0_core.config import _reset_config
    from memo_sdk.tier1_runtime.identity import reset_key_strategy

    _reset_config()
    yield
    _reset_config()
    reset_key_strategy()


class FakeClock:
    """Manually advanced time source for MemoryBackend expiry."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms / 1000


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend(clock):
    from memo_sdk.tier2_reliability.store import MemoryBackend
    return MemoryBackend(time_fn=clock)


@pytest.fixture
def config():
    from memo_sdk.tier0_core.config import MemoizerConfig
    return MemoizerConfig(environment="test", memoize_key_namespace=str(time.time_ns()))


@pytest.fixture
def memoizer(backend, config):
    from memo_sdk.tier2_reliability.memoize import Memoizer
    return Memoizer(backend, config)


@pytest.fixture
def invoke():
    """Call a callback-style memoized function; the future gets the result tuple."""

    def _invoke(memoized, *args):
        future = asyncio.get_running_loop().create_future()

        def done(*result):
            future.set_result(result)

        memoized(*args, done)
        return future

    return _invoke
