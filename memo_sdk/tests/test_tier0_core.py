"""Tests for tier0_core modules."""
from __future__ import annotations

import io
import json

import pytest
from prometheus_client import REGISTRY
from pydantic import ValidationError

from memo_sdk.tier0_core import metrics
from memo_sdk.tier0_core.config import MemoizerConfig, _reset_config, get_config
from memo_sdk.tier0_core.errors import (
    ConfigurationError,
    DecodeError,
    InvalidUsageError,
    LookupTimeout,
    MemoizerError,
    StoreError,
)
from memo_sdk.tier0_core.logging import configure_logging, get_logger


# ── errors ─────────────────────────────────────────────────────────────────

class TestErrors:
    def test_error_has_code_and_detail(self):
        e = StoreError("Not connected", key="memos:a:b")
        assert e.code == "store_error"
        assert str(e) == "Not connected"
        assert e.metadata == {"key": "memos:a:b"}

    def test_default_detail(self):
        e = LookupTimeout()
        assert "timed out" in str(e)

    def test_invalid_usage_is_type_error(self):
        e = InvalidUsageError()
        assert isinstance(e, MemoizerError)
        assert isinstance(e, TypeError)
        assert "callback" in str(e)

    def test_decode_error_is_value_error(self):
        assert isinstance(DecodeError(), ValueError)

    def test_to_dict(self):
        e = ConfigurationError("bad client", hint="use a URL")
        assert e.to_dict() == {
            "code": "configuration_error",
            "detail": "bad client",
            "hint": "use a URL",
        }


# ── config ─────────────────────────────────────────────────────────────────

class TestConfig:
    def test_defaults(self, monkeypatch):
        for var in ("MEMO_LOOKUP_TIMEOUT", "MEMO_DEFAULT_TTL", "MEMO_KEY_NAMESPACE"):
            monkeypatch.delenv(var, raising=False)
        cfg = MemoizerConfig()
        assert cfg.lookup_timeout == 1000
        assert cfg.default_ttl == 120000
        assert cfg.memoize_key_namespace is None
        assert cfg.compress_threshold == 500
        assert cfg.time_label_prefix == ""

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("MEMO_LOOKUP_TIMEOUT", "20")
        monkeypatch.setenv("MEMO_KEY_NAMESPACE", "deploy-7")
        _reset_config()
        cfg = get_config()
        assert cfg.lookup_timeout == 20
        assert cfg.memoize_key_namespace == "deploy-7"

    def test_get_config_is_cached(self):
        assert get_config() is get_config()

    def test_fields_by_name(self):
        cfg = MemoizerConfig(lookup_timeout=50, default_ttl=10)
        assert cfg.lookup_timeout == 50
        assert cfg.default_ttl == 10

    def test_numeric_namespace_is_coerced(self):
        assert MemoizerConfig(memoize_key_namespace=1700000000).memoize_key_namespace == "1700000000"

    def test_negative_duration_rejected(self):
        with pytest.raises(ValidationError):
            MemoizerConfig(lookup_timeout=-1)

    def test_unknown_environment_rejected(self):
        with pytest.raises(ValidationError):
            MemoizerConfig(environment="qa")

    def test_with_overrides_returns_copy(self):
        base = MemoizerConfig(environment="test", lookup_timeout=1000)
        cfg = base.with_overrides(lookup_timeout=20)
        assert cfg.lookup_timeout == 20
        assert cfg.environment == "test"
        assert base.lookup_timeout == 1000
        assert base.with_overrides() is base

    def test_is_production(self):
        assert MemoizerConfig(environment="production").is_production
        assert not MemoizerConfig(environment="test").is_production


# ── logging / metrics ──────────────────────────────────────────────────────

class TestObservability:
    def test_get_logger_returns_bound_logger(self):
        log = get_logger("memo_sdk.tests")
        assert hasattr(log, "warning")

    def test_counter_increments(self):
        labels = {"service": metrics._SERVICE, "env": metrics._ENV, "outcome": "hit"}
        before = REGISTRY.get_sample_value("memo_lookups_total", labels) or 0.0
        metrics.lookups(outcome="hit").inc()
        assert REGISTRY.get_sample_value("memo_lookups_total", labels) == before + 1

    def test_json_lines_go_to_the_configured_stream(self):
        stream = io.StringIO()
        configure_logging(level="INFO", fmt="json", stream=stream)
        try:
            get_logger("memo_sdk.tests").warning("memoizer.test_event", key="memos:a:b")
            record = json.loads(stream.getvalue().strip().splitlines()[-1])
        finally:
            configure_logging()
        assert record["event"] == "memoizer.test_event"
        assert record["key"] == "memos:a:b"
        assert record["level"] == "warning"

    def test_level_filters_and_long_values_are_clipped(self):
        stream = io.StringIO()
        configure_logging(level="WARNING", fmt="json", stream=stream)
        try:
            log = get_logger("memo_sdk.tests")
            log.info("memoizer.hidden")
            log.warning("memoizer.shown", error="x" * 5000)
            lines = stream.getvalue().strip().splitlines()
        finally:
            configure_logging()
        assert len(lines) == 1
        assert len(json.loads(lines[0])["error"]) < 600
