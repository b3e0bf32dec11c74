"""Tests for tier1_runtime modules."""
from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from memo_sdk.tier0_core.errors import DecodeError
from memo_sdk.tier1_runtime.compress import (
    DEFAULT_THRESHOLD,
    GZIP_MAGIC,
    is_compressed,
    maybe_compress,
    maybe_decompress,
)
from memo_sdk.tier1_runtime.identity import (
    fingerprint,
    new_function_key,
    set_key_strategy,
    source_key_strategy,
)
from memo_sdk.tier1_runtime.serialize import (
    ERROR_FIELDS,
    ERROR_TAG,
    CachedError,
    decode,
    encode,
    format_datetime,
    parse_datetime,
)


# ── identity ───────────────────────────────────────────────────────────────

class TestFunctionKey:
    def test_default_keys_are_unique(self):
        fn = lambda done: done(None)  # noqa: E731
        assert new_function_key(fn) != new_function_key(fn)

    def test_source_strategy_is_reproducible(self):
        def fn(done):
            done(None)

        assert source_key_strategy(fn) == source_key_strategy(fn)
        assert len(source_key_strategy(fn)) == 40

    def test_process_wide_strategy(self):
        set_key_strategy(lambda fn: "fixed")
        assert new_function_key(print) == "fixed"

    def test_explicit_strategy_wins(self):
        set_key_strategy(lambda fn: "global")
        assert new_function_key(print, lambda fn: "local") == "local"


class TestFingerprint:
    def test_value_equal_args_match(self):
        a = [1, {"x": [1, 2], "y": "z"}, None]
        b = [1, {"y": "z", "x": [1, 2]}, None]
        assert fingerprint(a) == fingerprint(b)

    def test_different_args_differ(self):
        assert fingerprint([1, 2]) != fingerprint([2, 1])
        assert fingerprint(["1"]) != fingerprint([1])

    def test_fixed_length_hex(self):
        digest = fingerprint([{"some": "data"}])
        assert len(digest) == 40
        int(digest, 16)

    def test_tuples_and_lists_match(self):
        assert fingerprint((1, 2)) == fingerprint([1, 2])

    def test_kwargs_are_part_of_the_fingerprint(self):
        assert fingerprint([1], {"x": 2}) != fingerprint([1, 2])
        assert fingerprint([1], {"x": 2, "y": 3}) == fingerprint([1], {"y": 3, "x": 2})
        assert fingerprint([1], {}) == fingerprint([1])

    def test_datetime_args(self):
        when = datetime(2000, 1, 1, tzinfo=timezone.utc)
        assert fingerprint([when]) == fingerprint([datetime(2000, 1, 1, tzinfo=timezone.utc)])
        assert fingerprint([when]) != fingerprint([when + timedelta(seconds=1)])

    def test_unserializable_args_raise(self):
        with pytest.raises(TypeError):
            fingerprint([object()])


# ── serialize ──────────────────────────────────────────────────────────────

class TestCodec:
    def test_plain_roundtrip(self):
        result = (None, {"some": "data", "n": [1, 2.5, True, None]}, ["other", "data"])
        assert decode(encode(result)) == (None, {"some": "data", "n": [1, 2.5, True, None]}, ["other", "data"])

    def test_empty_tuple(self):
        assert decode(encode(())) == ()

    def test_dates_are_revived(self):
        date = datetime(2000, 1, 1, tzinfo=timezone.utc)
        result = decode(encode((None, date, {"at": [date]})))
        assert isinstance(result[1], datetime)
        assert result[1] == date
        assert result[2]["at"][0] == date

    def test_microseconds_survive(self):
        date = datetime(2021, 6, 5, 4, 3, 2, 123456, tzinfo=timezone(timedelta(hours=2)))
        assert decode(encode((date,)))[0] == date

    def test_naive_datetime_stays_naive(self):
        date = datetime(2000, 1, 2, 3, 4, 5)
        revived = decode(encode((date,)))[0]
        assert revived == date
        assert revived.tzinfo is None

    def test_utc_is_written_with_z(self):
        assert format_datetime(datetime(2000, 1, 1, tzinfo=timezone.utc)) == "2000-01-01T00:00:00.000000Z"

    def test_javascript_style_timestamps_parse(self):
        parsed = parse_datetime("2000-01-01T00:00:00.000Z")
        assert parsed == datetime(2000, 1, 1, tzinfo=timezone.utc)

    def test_date_like_strings_without_fraction_stay_strings(self):
        assert decode(b'["2000-01-01T00:00:00Z", "2000-01-01"]') == ("2000-01-01T00:00:00Z", "2000-01-01")

    def test_error_roundtrip(self):
        try:
            raise ValueError("Hit Error!", 42)
        except ValueError as exc:
            exc.type = "upstream"
            error = exc

        revived = decode(encode((error,)))[0]
        assert isinstance(revived, CachedError)
        assert revived.message == str(error)
        assert revived.name == "ValueError"
        assert revived.type == "upstream"
        assert revived.arguments == ["Hit Error!", 42]
        assert "Traceback" in revived.stack
        assert "Hit Error!" in revived.stack

    def test_error_payload_is_restricted(self):
        error = RuntimeError("boom")
        error.secret = "do not cache"
        payload = json.loads(encode((error, "x")))
        assert set(payload[0]) == set(ERROR_FIELDS) | {ERROR_TAG}
        assert payload[0][ERROR_TAG] is True
        assert payload[1] == "x"

    def test_unserializable_error_args_become_reprs(self):
        marker = object()
        payload = json.loads(encode((KeyError(marker),)))
        assert payload[0]["arguments"] == [repr(marker)]

    def test_cached_error_reencodes_unchanged(self):
        original = CachedError("Special Error!", name="KeyError", type="t", stack="s", arguments=[1])
        revived = decode(encode((original,)))[0]
        assert (revived.message, revived.name, revived.type, revived.stack, revived.arguments) == (
            "Special Error!", "KeyError", "t", "s", [1],
        )

    def test_unsupported_values_raise(self):
        with pytest.raises(TypeError):
            encode((None, {1, 2}))

    def test_malformed_payload(self):
        with pytest.raises(DecodeError):
            decode(b"{not json")

    def test_invalid_utf8(self):
        with pytest.raises(DecodeError):
            decode(b"[\"\x80\"]")

    def test_non_list_payload(self):
        with pytest.raises(DecodeError):
            decode(b'{"a": 1}')

    def test_deeply_nested_payload(self):
        with pytest.raises(DecodeError):
            decode(b"[" * 100000 + b"]" * 100000)

    def test_loosely_typed_error_fields_are_coerced(self):
        revived = decode(
            b'[{"$__memoized_error": true, "message": "m", "arguments": 5, "name": 7}]'
        )[0]
        assert isinstance(revived, CachedError)
        assert revived.arguments == [5]
        assert revived.name == "7"
        assert revived.message == "m"


# ── compress ───────────────────────────────────────────────────────────────

class TestCompress:
    def test_small_payloads_untouched(self):
        data = b"x" * (DEFAULT_THRESHOLD - 1)
        assert maybe_compress(data) is data

    def test_large_payloads_compressed(self):
        data = b'["' + b"a" * 2000 + b'"]'
        packed = maybe_compress(data)
        assert packed.startswith(GZIP_MAGIC)
        assert len(packed) < len(data)
        assert is_compressed(packed)
        assert maybe_decompress(packed) == data

    def test_threshold_is_inclusive(self):
        data = b"y" * 10
        assert maybe_compress(data, threshold=10).startswith(GZIP_MAGIC)

    def test_raw_payloads_pass_through(self):
        assert maybe_decompress(b'[null, 1]') == b'[null, 1]'

    @pytest.mark.parametrize("empty", [None, b""])
    def test_empty_passes_through(self, empty):
        assert maybe_compress(empty, threshold=0) == empty
        assert maybe_decompress(empty) == empty
        assert not is_compressed(empty)

    def test_reader_needs_no_threshold(self):
        # Written with a low threshold, read by code that knows nothing of it.
        packed = maybe_compress(b"[1,2,3]", threshold=1)
        assert maybe_decompress(packed) == b"[1,2,3]"

    def test_corrupt_stream(self):
        with pytest.raises(DecodeError):
            maybe_decompress(GZIP_MAGIC + b"definitely not gzip")
