"""
solbridge Lock Event Extraction

Decodes the TokenLocked event that the bridge program emits through
``Program data: <base64>`` log lines.

Wire layout (little-endian):
    discriminator   8 bytes   sha256("event:TokenLocked")[:8]
    lock_id        32 bytes
    user           32 bytes   account public key, rendered base58
    amount          u64
    recipient       u32 length + UTF-8 bytes
    nonce           u64
    timestamp       i64

The on-chain program limits the recipient to 64 characters, so clients
strip the ``[SHA256]`` tag from tagged addresses before locking.
Extraction restores the tag; encoding strips it again.
"""

import base64
import binascii
import re
import struct
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Union

import base58

from .errors import InvalidEventStructure, MalformedEvent
from .hashing import SHA256_TAG

TOKEN_LOCKED_DISCRIMINATOR = bytes([18, 238, 170, 48, 2, 120, 199, 224])
PROGRAM_DATA_PREFIX = "Program data: "

U64_MAX = 2 ** 64 - 1
I64_MAX = 2 ** 63 - 1

_BARE_DIGEST_RE = re.compile(r"[0-9a-fA-F]{64}")


def canonical_recipient(recipient: str) -> str:
    """Restore the ``[SHA256]`` tag on a bare 64-hex-character digest."""
    if _BARE_DIGEST_RE.fullmatch(recipient):
        return f"{SHA256_TAG}{recipient}"
    return recipient


def on_chain_recipient(recipient: str) -> str:
    """Strip the ``[SHA256]`` tag so the recipient fits the on-chain limit."""
    if recipient.startswith(SHA256_TAG):
        return recipient[len(SHA256_TAG):]
    return recipient


@dataclass(frozen=True)
class LockEvent:
    """One TokenLocked event. ``target_recipient`` is always canonical."""
    lock_id: bytes
    user: str
    amount: int
    target_recipient: str
    nonce: int
    timestamp: int

    @property
    def lock_id_hex(self) -> str:
        return self.lock_id.hex()

    def structural_problems(self) -> List[str]:
        """Return every field constraint this event violates."""
        problems = []
        if not isinstance(self.lock_id, bytes) or len(self.lock_id) != 32:
            problems.append("lock_id must be exactly 32 bytes")
        if not self.user:
            problems.append("user must not be empty")
        else:
            try:
                if len(base58.b58decode(self.user)) != 32:
                    problems.append("user is not a 32-byte account key")
            except ValueError:
                problems.append("user is not valid base58")
        if not isinstance(self.amount, int) or not 0 < self.amount <= U64_MAX:
            problems.append("amount must be a positive u64")
        if not self.target_recipient:
            problems.append("target_recipient must not be empty")
        if not isinstance(self.nonce, int) or not 0 <= self.nonce <= U64_MAX:
            problems.append("nonce must be a non-negative u64")
        if not isinstance(self.timestamp, int) or not 0 < self.timestamp <= I64_MAX:
            problems.append("timestamp must be positive")
        return problems

    def validate(self) -> None:
        """
        Raises:
            InvalidEventStructure: listing every violated constraint
        """
        problems = self.structural_problems()
        if problems:
            raise InvalidEventStructure("; ".join(problems), {"problems": problems})

    def to_dict(self) -> Dict[str, str]:
        """Canonical string form embedded in proofs and token payloads."""
        return {
            "lockId": self.lock_id_hex,
            "user": self.user,
            "amount": str(self.amount),
            "targetRecipient": self.target_recipient,
            "nonce": str(self.nonce),
            "timestamp": str(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LockEvent":
        """
        Rebuild an event from its canonical string form.

        Raises:
            InvalidEventStructure: if a field is missing or not parseable
        """
        try:
            return cls(
                lock_id=bytes.fromhex(data["lockId"]),
                user=data["user"],
                amount=int(data["amount"]),
                target_recipient=canonical_recipient(data["targetRecipient"]),
                nonce=int(data["nonce"]),
                timestamp=int(data["timestamp"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidEventStructure(f"Unparseable lock event: {e}") from e


class _Reader:
    """Bounds-checked cursor over event bytes."""

    def __init__(self, data: bytes):
        self._data = data
        self._pos = 0

    def take(self, n: int, field: str) -> bytes:
        end = self._pos + n
        if end > len(self._data):
            raise MalformedEvent(
                f"Truncated event: {field} needs {n} bytes at offset {self._pos}, "
                f"only {len(self._data) - self._pos} remain"
            )
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def unpack(self, fmt: str, field: str):
        return struct.unpack(fmt, self.take(struct.calcsize(fmt), field))[0]

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos


def _event_bytes(raw: Union[str, bytes]) -> bytes:
    if isinstance(raw, bytes):
        return raw
    if not isinstance(raw, str):
        raise MalformedEvent(f"Unsupported event input type: {type(raw).__name__}")
    if not raw.startswith(PROGRAM_DATA_PREFIX):
        raise MalformedEvent("Log line is not a program data record")
    try:
        return base64.b64decode(raw[len(PROGRAM_DATA_PREFIX):].strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedEvent(f"Program data is not valid base64: {e}") from e


def extract_lock_event(raw: Union[str, bytes]) -> LockEvent:
    """
    Decode a TokenLocked event from a ``Program data:`` log line or raw bytes.

    Raises:
        MalformedEvent: if the data is absent, truncated, carries another
            event's discriminator, or has trailing bytes
    """
    data = _event_bytes(raw)
    if not data:
        raise MalformedEvent("Empty event data")

    reader = _Reader(data)
    if reader.take(8, "discriminator") != TOKEN_LOCKED_DISCRIMINATOR:
        raise MalformedEvent("Discriminator does not match TokenLocked")

    lock_id = reader.take(32, "lock_id")
    user = base58.b58encode(reader.take(32, "user")).decode("ascii")
    amount = reader.unpack("<Q", "amount")
    recipient_len = reader.unpack("<I", "recipient length")
    try:
        recipient = reader.take(recipient_len, "recipient").decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedEvent(f"Recipient is not valid UTF-8: {e}") from e
    nonce = reader.unpack("<Q", "nonce")
    timestamp = reader.unpack("<q", "timestamp")

    if reader.remaining:
        raise MalformedEvent(f"{reader.remaining} unexpected trailing bytes after event")

    return LockEvent(
        lock_id=lock_id,
        user=user,
        amount=amount,
        target_recipient=canonical_recipient(recipient),
        nonce=nonce,
        timestamp=timestamp,
    )


def encode_lock_event(event: LockEvent) -> bytes:
    """Serialize an event exactly as the bridge program emits it."""
    user_bytes = base58.b58decode(event.user)
    if len(event.lock_id) != 32 or len(user_bytes) != 32:
        raise InvalidEventStructure("lock_id and user must both be 32 bytes")
    recipient = on_chain_recipient(event.target_recipient).encode("utf-8")
    return b"".join([
        TOKEN_LOCKED_DISCRIMINATOR,
        event.lock_id,
        user_bytes,
        struct.pack("<Q", event.amount),
        struct.pack("<I", len(recipient)),
        recipient,
        struct.pack("<Q", event.nonce),
        struct.pack("<q", event.timestamp),
    ])


def encode_log_line(event: LockEvent) -> str:
    """Render an event as the ``Program data:`` log line the runtime prints."""
    return PROGRAM_DATA_PREFIX + base64.b64encode(encode_lock_event(event)).decode("ascii")


def find_lock_event(log_messages: Iterable[str]) -> Optional[LockEvent]:
    """Return the first TokenLocked event in a transaction's logs, if any."""
    for line in log_messages or []:
        if not line.startswith(PROGRAM_DATA_PREFIX):
            continue
        try:
            return extract_lock_event(line)
        except MalformedEvent:
            continue
    return None
