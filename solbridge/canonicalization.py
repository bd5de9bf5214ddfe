"""
solbridge Canonical JSON

Bridge payloads are embedded in minted tokens as the hex encoding of their
canonical JSON bytes, so the same payload always produces the same token
data and the same data hash.

Rules:
- Object keys sorted lexicographically (Unicode code point order)
- No whitespace between tokens
- UTF-8, no ASCII escaping
- Integers kept as integers; large values are carried as decimal strings
- Arrays preserve order
"""

import json
from typing import Any, Dict, List, Union


def canonicalize(obj: Any) -> bytes:
    """Return the canonical JSON encoding of ``obj`` as UTF-8 bytes."""
    canonical = _canonicalize_value(obj)
    return json.dumps(canonical, separators=(',', ':'), ensure_ascii=False).encode('utf-8')


def to_token_data(payload: Dict[str, Any]) -> str:
    """Encode a payload as the hex string stored in ``genesis.data.tokenData``."""
    return canonicalize(payload).hex()


def from_token_data(token_data: str) -> Dict[str, Any]:
    """
    Decode ``genesis.data.tokenData``.

    Raises:
        ValueError: if the field is not hex-encoded UTF-8 JSON object
    """
    raw = bytes.fromhex(token_data)
    decoded = json.loads(raw.decode('utf-8'))
    if not isinstance(decoded, dict):
        raise ValueError("token data is not a JSON object")
    return decoded


def _canonicalize_value(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    elif isinstance(value, float):
        if value != value or value in (float('inf'), float('-inf')):
            raise ValueError("NaN and infinity cannot be canonicalized")
        return value
    elif isinstance(value, dict):
        return _canonicalize_object(value)
    elif isinstance(value, (list, tuple)):
        return _canonicalize_array(value)
    else:
        raise ValueError(f"Cannot canonicalize type: {type(value)}")


def _canonicalize_object(obj: Dict[str, Any]) -> Dict[str, Any]:
    return {k: _canonicalize_value(obj[k]) for k in sorted(obj.keys())}


def _canonicalize_array(arr: Union[List, tuple]) -> List:
    return [_canonicalize_value(item) for item in arr]
