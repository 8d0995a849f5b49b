"""Tests for key decoders, value decoding and key filters."""

import struct

import msgpack
import pytest

from topic_snapshot.decoding import (
    decode_json_key,
    decode_message,
    decode_string_key,
    flatten_dict,
    get_key_decoder,
    render_key,
    render_value,
)
from topic_snapshot.filters import EqualsKeyFilter, accept_all, create_key_filter


class TestKeyDecoders:

    def test_string_key(self):
        assert decode_string_key(b"abc") == "abc"
        assert decode_string_key(None) is None

    def test_json_key_kept_as_text(self):
        assert decode_json_key(b'{"id": 1}') == '{"id": 1}'

    def test_invalid_json_key(self):
        with pytest.raises(ValueError):
            decode_json_key(b"{not json")

    def test_long_key(self):
        decoder = get_key_decoder("long")

        assert decoder(struct.pack(">q", 1234567890123)) == 1234567890123
        assert decoder(None) is None

    def test_unknown_key_type(self):
        with pytest.raises(ValueError):
            get_key_decoder("guid")

    def test_render_json_key(self):
        assert render_key('{"id": 1}', "json") == {"id": 1}
        assert render_key("plain", "string") == "plain"
        assert render_key(None, "json") is None


class TestValueDecoding:

    def test_msgpack_first_in_auto_mode(self):
        assert decode_message(msgpack.packb({"a": 1}), "auto") == {"a": 1}

    def test_json_mode_skips_msgpack(self):
        # b"1" is also a valid msgpack integer (49)
        assert decode_message(b"1", "json") == 1

    def test_undecodable_value_falls_back_to_text(self):
        assert decode_message(b"not json", "json") == {"raw_value": "not json"}

    def test_render_raw_value(self):
        assert render_value(b'{"a": 1}', True) == '{"a": 1}'
        assert render_value(None, False) is None

    def test_flatten_dict(self):
        flat = flatten_dict({"data": {"bid": 100, "ask": 101}, "tags": ["x"], "empty": []})

        assert flat == {"data_bid": 100, "data_ask": 101, "tags": '["x"]', "empty": None}


class TestKeyFilters:

    def test_no_filter_accepts_everything(self):
        key_filter = create_key_filter("none", "string")

        assert key_filter is accept_all
        assert key_filter(None)

    def test_equals_string(self):
        key_filter = create_key_filter("equals", "string", "k1")

        assert key_filter("k1")
        assert not key_filter("k2")
        assert not key_filter(None)

    def test_equals_string_with_numeric_sample(self):
        key_filter = create_key_filter("equals", "string", 42)

        assert key_filter("42")
        assert not key_filter("43")

    def test_equals_long(self):
        key_filter = create_key_filter("equals", "long", "42")

        assert key_filter(42)
        assert not key_filter(43)

    def test_equals_json_ignores_formatting(self):
        key_filter = EqualsKeyFilter("json", '{"id": 1, "kind": "a"}')

        assert key_filter('{"kind":"a","id":1}')
        assert not key_filter('{"id": 2}')

    def test_unknown_filter(self):
        with pytest.raises(ValueError):
            create_key_filter("regex", "string", ".*")
