import json
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from cronq import codec
from cronq.errors import MalformedRecord


def test_mixed_values_survive_encoding():
    attrs = {
        "name": "report",
        "count": 3,
        "ratio": 0.25,
        "enabled": True,
        "missing": None,
        "tags": ["a", "b"],
        "pair": (1, "two"),
        "nested": {"deep": {"list": [1, {"x": (2, 3)}]}},
        "when": datetime(2025, 11, 6, 9, 30, tzinfo=timezone.utc),
        "day": date(2025, 11, 6),
        "raw": b"\x00\xffbytes",
        "unique": {1, 2, 3},
        "frozen": frozenset({"a"}),
        "amount": Decimal("12.50"),
    }
    assert codec.decode(codec.encode(attrs)) == attrs


def test_user_mapping_with_tag_key_round_trips():
    attrs = {"meta": {"__cronq__": "tuple", "value": [1, 2]}, "odd": {"__cronq__": "nope"}}
    assert codec.decode(codec.encode(attrs)) == attrs


def test_blob_is_versioned_json():
    envelope = json.loads(codec.encode({"a": 1}))
    assert envelope == {"v": codec.VERSION, "attrs": {"a": 1}}


def test_decode_accepts_bytes():
    assert codec.decode(codec.encode({"a": [1]}).encode("utf-8")) == {"a": [1]}


@pytest.mark.parametrize("blob", [
    "not json at all",
    "[1, 2, 3]",
    '{"attrs": {}}',
    '{"v": 1, "attrs": [1]}',
    '{"v": 1, "attrs": {"x": {"__cronq__": "pickle", "value": "..."}}}',
    '{"v": 1, "attrs": {"x": {"__cronq__": "date", "value": "yesterday"}}}',
    '{"v": 1, "attrs": {"x": {"__cronq__": "bytes"}}}',
])
def test_undecodable_blobs_raise_malformed_record(blob):
    with pytest.raises(MalformedRecord):
        codec.decode(blob)


def test_version_mismatch_is_malformed():
    with pytest.raises(MalformedRecord, match="version"):
        codec.decode('{"v": 2, "attrs": {}}')


def test_non_text_blob_is_malformed():
    with pytest.raises(MalformedRecord):
        codec.decode(None)


def test_encode_rejects_non_string_keys():
    with pytest.raises(TypeError):
        codec.encode({"ok": {1: "bad"}})


def test_encode_rejects_unknown_types():
    with pytest.raises(TypeError):
        codec.encode({"obj": object()})


def test_strip_drops_only_named_keys():
    attrs = {"id": "x", "class_name": "C", "payload": 1}
    assert codec.strip(attrs, ("id", "class_name")) == {"payload": 1}
    assert attrs["id"] == "x"
