"""
memo_sdk
────────
Stable top-level exports. Import from here, not from sub-modules directly.
Every name exported here is part of the public API and subject to semver.
"""
from memo_sdk.tier0_core.logging import configure_logging, get_logger
from memo_sdk.tier0_core.errors import (
    MemoizerError,
    InvalidUsageError,
    StoreError,
    LookupTimeout,
    DecodeError,
    ConfigurationError,
)
from memo_sdk.tier0_core.config import get_config, MemoizerConfig

from memo_sdk.tier1_runtime.identity import (
    fingerprint,
    new_function_key,
    set_key_strategy,
    reset_key_strategy,
    source_key_strategy,
    uuid_key_strategy,
)
from memo_sdk.tier1_runtime.serialize import encode, decode, CachedError
from memo_sdk.tier1_runtime.compress import maybe_compress, maybe_decompress

from memo_sdk.tier2_reliability.store import (
    CacheBackend,
    MemoryBackend,
    RedisBackend,
    StoreAdapter,
)
from memo_sdk.tier2_reliability.memoize import Memoizer, MemoizedFunction, create_memoizer

__version__ = "0.1.0"
__all__ = [
    # logging
    "get_logger", "configure_logging",
    # errors
    "MemoizerError", "InvalidUsageError", "StoreError",
    "LookupTimeout", "DecodeError", "ConfigurationError",
    # config
    "get_config", "MemoizerConfig",
    # identity
    "fingerprint", "new_function_key", "set_key_strategy",
    "reset_key_strategy", "source_key_strategy", "uuid_key_strategy",
    # codec
    "encode", "decode", "CachedError",
    # compression
    "maybe_compress", "maybe_decompress",
    # store
    "CacheBackend", "MemoryBackend", "RedisBackend", "StoreAdapter",
    # engine
    "Memoizer", "MemoizedFunction", "create_memoizer",
]
