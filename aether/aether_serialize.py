"""
Conversion between Aether values, host Python objects and wire formats.

Aether values are a closed set: ``None``, ``bool``, ``float``, ``str``,
``list`` and ``dict`` with string keys. ``from_host`` and ``to_host`` are the
only ways values cross the host boundary; both return fresh containers so a
host never shares mutable state with a running engine.
"""

from __future__ import annotations

import json
import math
import re
import collections.abc
from typing import Any, Optional

import yaml

from aether.aether_errors import InvalidValueError


# --------------------------
# Host values
# --------------------------

def from_host(obj: Any) -> Any:
    """
    Convert a host object into an Aether value.
    ints become floats, tuples become lists; anything outside the value set,
    NaN/Infinity, non-string object keys and cyclic containers raise
    InvalidValueError.
    """
    try:
        return _from_host(obj, set())
    except RecursionError:
        raise InvalidValueError("value nested too deeply to convert") from None


def _from_host(obj: Any, active: set) -> Any:
    match obj:
        case None | bool() | str():
            return obj
        case int():
            try:
                return float(obj)
            except OverflowError:
                raise InvalidValueError(f"integer {obj} is too large for a number") from None
        case float():
            if math.isnan(obj) or math.isinf(obj):
                raise InvalidValueError(f"{obj!r} is not a finite number")
            return obj
    if isinstance(obj, (list, tuple, collections.abc.Mapping)):
        if id(obj) in active:
            raise InvalidValueError("cyclic value cannot be converted")
        active.add(id(obj))
        try:
            if isinstance(obj, collections.abc.Mapping):
                out = {}
                for key, value in obj.items():
                    if not isinstance(key, str):
                        raise InvalidValueError(f"object keys must be strings, got {type(key).__name__}")
                    out[key] = _from_host(value, active)
                return out
            return [_from_host(item, active) for item in obj]
        finally:
            active.discard(id(obj))
    raise InvalidValueError(f"unsupported host type {type(obj).__name__}")


def to_host(value: Any) -> Any:
    """Return a deep copy of an Aether value as plain Python data."""
    try:
        return _to_host(value)
    except RecursionError:
        raise InvalidValueError("value nested too deeply to convert") from None


def _to_host(value: Any) -> Any:
    match value:
        case list():
            return [_to_host(item) for item in value]
        case dict():
            return {key: _to_host(item) for key, item in value.items()}
        case _:
            return value


def _jsonable(value: Any) -> Any:
    # Integral numbers are written without a fractional part
    match value:
        case bool() | None | str():
            return value
        case float() if value.is_integer() and abs(value) < 2 ** 53:
            return int(value)
        case list():
            return [_jsonable(item) for item in value]
        case dict():
            return {key: _jsonable(item) for key, item in value.items()}
    return value


def to_json(value: Any, pretty: bool = False) -> str:
    try:
        return json.dumps(_jsonable(value), ensure_ascii=False, indent=2 if pretty else None)
    except RecursionError:
        raise InvalidValueError("value nested too deeply to encode as JSON") from None


def from_json(text: str) -> Any:
    """Decode JSON text into an Aether value."""
    try:
        data = json.loads(text, parse_constant=_reject_constant)
    except json.JSONDecodeError as e:
        raise InvalidValueError(f"invalid JSON: {e}") from e
    except RecursionError:
        raise InvalidValueError("JSON nested too deeply") from None
    return from_host(data)


def _reject_constant(name: str):
    raise InvalidValueError(f"{name} is not a finite number")


# --------------------------
# Wire formats
# --------------------------

def _norm_text(data: bytes | bytearray | str, *, encoding: Optional[str] = None) -> str:
    if isinstance(data, (bytes, bytearray)):
        try:
            return data.decode(encoding or 'utf-8', errors='replace')
        except LookupError:
            return data.decode('utf-8', errors='replace')
    return data


def _encoding_from_content_type(content_type: Optional[str]) -> Optional[str]:
    if not content_type:
        return None
    m = re.search(r'charset\s*=\s*([^\s;]+)', content_type, re.IGNORECASE)
    if m:
        return m.group(1).strip('"').strip("'")
    return None


def detect_format(content_type: Optional[str] = None, data_hint: Optional[str] = None) -> Optional[str]:
    """
    Returns 'json' or 'yaml' (or None when unknown).
    Uses Content-Type first; falls back to simple data sniffing if provided.
    """
    ct = (content_type or "").lower()
    if 'json' in ct:
        return 'json'
    if 'yaml' in ct:
        return 'yaml'
    if ct:
        return None
    if data_hint is not None:
        s = data_hint.lstrip()
        if s.startswith('{') or s.startswith('['):
            return 'json'
    return None


def deserialize(data: bytes | bytearray | str,
                *,
                content_type: Optional[str] = None,
                fmt: Optional[str] = None) -> Any:
    """
    Convert wire data (bytes/string) to plain Python structures.
    If fmt is None, uses content_type, then sniffing. Unknown formats and
    undecodable structured text come back as the raw text.
    """
    text = _norm_text(data, encoding=_encoding_from_content_type(content_type))
    f = fmt or detect_format(content_type, text)
    if f == 'json':
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            # Declared JSON that is actually YAML-like
            try:
                return yaml.safe_load(text)
            except yaml.YAMLError:
                return text
    if f == 'yaml':
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError:
            return text
    return text


def serialize(value: Any, *, fmt: str, pretty: bool = True) -> str:
    """Convert an Aether value into 'json' or 'yaml' text."""
    f = (fmt or '').lower()
    built = _jsonable(value)
    if f == 'json':
        return json.dumps(built, ensure_ascii=False, indent=2 if pretty else None)
    if f == 'yaml':
        return yaml.safe_dump(built, sort_keys=False, allow_unicode=True)
    raise ValueError(f"Unsupported serialization format: {fmt!r}")


__all__ = [
    "from_host",
    "to_host",
    "to_json",
    "from_json",
    "deserialize",
    "serialize",
    "detect_format",
]
