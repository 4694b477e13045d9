"""
Attribute blob codec.

Job attributes are stored as a versioned JSON envelope::

    {"v": 1, "attrs": {...}}

Values JSON has no native form for are written as tagged objects
``{"__cronq__": "<tag>", "value": ...}`` and restored on decode, so
datetimes, tuples, sets, bytes and decimals survive a round trip.
"""
import base64
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, Mapping

from .errors import MalformedRecord

VERSION = 1
TAG = "__cronq__"


def _tagged(tag: str, value: Any) -> Dict[str, Any]:
    return {TAG: tag, "value": value}


def _pack(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Mapping):
        out = {}
        for k, v in value.items():
            if not isinstance(k, str):
                raise TypeError(f"attribute keys must be strings, got {k!r}")
            out[k] = _pack(v)
        # a user mapping holding the tag key must not read back as a tagged value
        if TAG in out:
            return _tagged("dict", out)
        return out
    if isinstance(value, list):
        return [_pack(v) for v in value]
    if isinstance(value, tuple):
        return _tagged("tuple", [_pack(v) for v in value])
    if isinstance(value, frozenset):
        return _tagged("frozenset", [_pack(v) for v in value])
    if isinstance(value, set):
        return _tagged("set", [_pack(v) for v in value])
    # datetime is a date subclass, check it first
    if isinstance(value, datetime):
        return _tagged("datetime", value.isoformat())
    if isinstance(value, date):
        return _tagged("date", value.isoformat())
    if isinstance(value, (bytes, bytearray)):
        return _tagged("bytes", base64.b64encode(bytes(value)).decode("ascii"))
    if isinstance(value, Decimal):
        return _tagged("decimal", str(value))
    raise TypeError(f"cannot encode attribute value of type {type(value).__name__}")


def _unpack_tagged(tag: str, value: Any) -> Any:
    if tag == "dict":
        if not isinstance(value, dict):
            raise TypeError("dict value must be a mapping")
        return {k: _unpack(v) for k, v in value.items()}
    if tag == "tuple":
        return tuple(_unpack(v) for v in value)
    if tag == "set":
        return set(_unpack(v) for v in value)
    if tag == "frozenset":
        return frozenset(_unpack(v) for v in value)
    if tag == "datetime":
        return datetime.fromisoformat(value)
    if tag == "date":
        return date.fromisoformat(value)
    if tag == "bytes":
        return base64.b64decode(value.encode("ascii"), validate=True)
    if tag == "decimal":
        return Decimal(value)
    raise MalformedRecord(f"unknown value tag {tag!r}")


def _unpack(value: Any) -> Any:
    if isinstance(value, dict):
        if TAG in value:
            try:
                return _unpack_tagged(value[TAG], value["value"])
            except MalformedRecord:
                raise
            except (KeyError, TypeError, ValueError, ArithmeticError) as e:
                raise MalformedRecord(f"bad {value.get(TAG)!r} value: {e}") from e
        return {k: _unpack(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_unpack(v) for v in value]
    return value


def encode(attributes: Mapping[str, Any]) -> str:
    """Serialize an attribute mapping into a storable blob."""
    return json.dumps({"v": VERSION, "attrs": _pack(dict(attributes))}, separators=(",", ":"))


def decode(blob: str) -> Dict[str, Any]:
    """Restore an attribute mapping; raises MalformedRecord on anything unreadable."""
    if isinstance(blob, (bytes, bytearray)):
        try:
            blob = blob.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedRecord(f"attribute blob is not UTF-8: {e}") from e
    if not isinstance(blob, str):
        raise MalformedRecord(f"attribute blob must be text, got {type(blob).__name__}")
    try:
        envelope = json.loads(blob)
    except ValueError as e:
        raise MalformedRecord(f"attribute blob is not valid JSON: {e}") from e
    if not isinstance(envelope, dict) or "v" not in envelope or "attrs" not in envelope:
        raise MalformedRecord("attribute blob has no version envelope")
    if envelope["v"] != VERSION:
        raise MalformedRecord(f"unsupported attribute blob version {envelope['v']!r} (expected {VERSION})")
    attrs = envelope["attrs"]
    if not isinstance(attrs, dict):
        raise MalformedRecord("attribute blob does not hold a mapping")
    return _unpack(attrs)


def strip(attributes: Mapping[str, Any], keys: Iterable[str]) -> Dict[str, Any]:
    """Copy of `attributes` without the column-backed `keys`."""
    drop = set(keys)
    return {k: v for k, v in attributes.items() if k not in drop}
