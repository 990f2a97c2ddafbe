"""
QRSeal Canonical JSON Encoding

Every signature in QRSeal is computed over the canonical encoding of a
payload, so independent implementations must produce byte-identical output
for semantically identical payloads regardless of key insertion order.
"""

import json
import math
from typing import Any, Dict, List, Union

from .errors import EncodingError


def canonicalize(obj: Any) -> bytes:
    """
    Convert an object to its canonical JSON encoding.

    Rules:
    - Object keys sorted lexicographically (Unicode code point order), at every level
    - Object keys must be strings
    - No whitespace between tokens (compact form)
    - UTF-8 encoding, no BOM, no ASCII escaping
    - Arrays (lists and tuples) preserve order
    - Integers in decimal, floats in shortest round-trip form
    - NaN and Infinity are rejected

    Returns:
        UTF-8 encoded bytes of canonical JSON

    Raises:
        EncodingError: cyclic structure, unsupported type, non-string key
            or non-finite number
    """
    canonical = _canonicalize_value(obj, set())
    try:
        return json.dumps(
            canonical,
            separators=(',', ':'),
            ensure_ascii=False,
            allow_nan=False,
        ).encode('utf-8')
    except (TypeError, ValueError) as e:
        raise EncodingError(str(e)) from e


def canonicalize_str(obj: Any) -> str:
    """Return canonical JSON as string."""
    return canonicalize(obj).decode('utf-8')


def _canonicalize_value(value: Any, seen: set) -> Any:
    """Recursively canonicalize a value."""
    if value is None:
        return None
    elif isinstance(value, bool):
        return value
    elif isinstance(value, int):
        return int(value)
    elif isinstance(value, float):
        if not math.isfinite(value):
            raise EncodingError(f"Cannot canonicalize non-finite number: {value!r}")
        return value
    elif isinstance(value, str):
        return value
    elif isinstance(value, dict):
        return _enter(value, seen, _canonicalize_object)
    elif isinstance(value, (list, tuple)):
        return _enter(value, seen, _canonicalize_array)
    else:
        raise EncodingError(f"Cannot canonicalize type: {type(value).__name__}")


def _enter(container: Any, seen: set, fn) -> Any:
    marker = id(container)
    if marker in seen:
        raise EncodingError("Cannot canonicalize cyclic structure")
    seen.add(marker)
    try:
        return fn(container, seen)
    finally:
        seen.discard(marker)


def _canonicalize_object(obj: Dict[str, Any], seen: set) -> Dict[str, Any]:
    """Canonicalize an object by sorting keys lexicographically."""
    for k in obj:
        if not isinstance(k, str):
            raise EncodingError(f"Object keys must be strings, got {type(k).__name__}")
    return {k: _canonicalize_value(obj[k], seen) for k in sorted(obj.keys())}


def _canonicalize_array(arr: Union[List, tuple], seen: set) -> List:
    """Canonicalize an array, preserving order."""
    return [_canonicalize_value(item, seen) for item in arr]
