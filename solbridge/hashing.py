"""
solbridge Hashing

All digests are SHA-256. Hex output is lowercase without prefix; the
target network's address form prefixes the hex digest with ``[SHA256]``.
"""

import hashlib
import re
from typing import Union

SHA256_TAG = "[SHA256]"

_HEX_RE = re.compile(r"[0-9a-fA-F]+")


def sha256_bytes(data: Union[bytes, str]) -> bytes:
    """Compute SHA-256 over bytes (strings are UTF-8 encoded)."""
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).digest()


def sha256_hex(data: Union[bytes, str]) -> str:
    """Compute SHA-256 and return lowercase hex."""
    return sha256_bytes(data).hex()


def tagged_address(digest: bytes) -> str:
    """Render a 32-byte digest in the target network's tagged address form."""
    return f"{SHA256_TAG}{digest.hex()}"


def is_hex(value: str, length: int = 0) -> bool:
    """True if ``value`` is hex, optionally of an exact character length."""
    if not isinstance(value, str) or not value:
        return False
    if length and len(value) != length:
        return False
    return _HEX_RE.fullmatch(value) is not None and len(value) % 2 == 0

