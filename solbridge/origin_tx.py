"""
solbridge Origin Transaction

The raw Solana transaction is carried through proofs as opaque wire bytes
(base64) together with the runtime's log lines. ``OriginTransaction``
exposes the handful of fields the bridge relies on: primary signature,
account keys, invoked programs, log lines, and the signed message bytes.

Supports legacy and v0 messages. Program ids loaded through address
lookup tables are not resolved from the message; they still surface
through the runtime's ``Program <id> invoke [n]`` log lines.
"""

import base64
import binascii
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import base58
from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from .errors import TransactionValidationFailed

SIGNATURE_LENGTH = 64
PUBKEY_LENGTH = 32
VERSION_PREFIX_MASK = 0x80

_INVOKE_RE = re.compile(r"^Program (\w+) invoke \[\d+\]$")


def decode_compact_u16(data: bytes, offset: int) -> Tuple[int, int]:
    """Decode a compact-u16 ("shortvec") length. Returns (value, new_offset)."""
    value = 0
    for i in range(3):
        if offset >= len(data):
            raise ValueError("Truncated compact-u16")
        byte = data[offset]
        offset += 1
        value |= (byte & 0x7F) << (7 * i)
        if not byte & 0x80:
            return value, offset
    raise ValueError("compact-u16 longer than 3 bytes")


def encode_compact_u16(value: int) -> bytes:
    if not 0 <= value <= 0xFFFF:
        raise ValueError("compact-u16 out of range")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


@dataclass
class CompiledInstruction:
    program_id_index: int
    accounts: List[int]
    data: bytes


@dataclass
class ParsedMessage:
    version: Optional[int]
    num_required_signatures: int
    num_readonly_signed: int
    num_readonly_unsigned: int
    account_keys: List[str]
    recent_blockhash: str
    instructions: List[CompiledInstruction]
    lookup_table_count: int = 0


def parse_message(data: bytes) -> ParsedMessage:
    """
    Parse a legacy or v0 message.

    Raises:
        ValueError: if the bytes are truncated or not a message
    """
    pos = 0
    version = None
    if data and data[0] & VERSION_PREFIX_MASK:
        version = data[0] & 0x7F
        if version != 0:
            raise ValueError(f"Unsupported message version {version}")
        pos = 1

    if pos + 3 > len(data):
        raise ValueError("Truncated message header")
    header = data[pos:pos + 3]
    pos += 3

    key_count, pos = decode_compact_u16(data, pos)
    keys = []
    for _ in range(key_count):
        key = data[pos:pos + PUBKEY_LENGTH]
        if len(key) != PUBKEY_LENGTH:
            raise ValueError("Truncated account key")
        keys.append(base58.b58encode(key).decode("ascii"))
        pos += PUBKEY_LENGTH

    blockhash = data[pos:pos + 32]
    if len(blockhash) != 32:
        raise ValueError("Truncated recent blockhash")
    pos += 32

    ix_count, pos = decode_compact_u16(data, pos)
    instructions = []
    for _ in range(ix_count):
        if pos >= len(data):
            raise ValueError("Truncated instruction")
        program_index = data[pos]
        pos += 1
        n_accounts, pos = decode_compact_u16(data, pos)
        accounts = list(data[pos:pos + n_accounts])
        if len(accounts) != n_accounts:
            raise ValueError("Truncated instruction accounts")
        pos += n_accounts
        n_data, pos = decode_compact_u16(data, pos)
        ix_data = data[pos:pos + n_data]
        if len(ix_data) != n_data:
            raise ValueError("Truncated instruction data")
        pos += n_data
        instructions.append(CompiledInstruction(program_index, accounts, ix_data))

    lookups = 0
    if version == 0:
        lookups, pos = decode_compact_u16(data, pos)
        for _ in range(lookups):
            pos += PUBKEY_LENGTH
            n_writable, pos = decode_compact_u16(data, pos)
            pos += n_writable
            n_readonly, pos = decode_compact_u16(data, pos)
            pos += n_readonly
        if pos > len(data):
            raise ValueError("Truncated address table lookups")

    return ParsedMessage(
        version=version,
        num_required_signatures=header[0],
        num_readonly_signed=header[1],
        num_readonly_unsigned=header[2],
        account_keys=keys,
        recent_blockhash=base58.b58encode(blockhash).decode("ascii"),
        instructions=instructions,
        lookup_table_count=lookups,
    )


@dataclass
class OriginTransaction:
    """
    A confirmed origin-chain transaction as returned by ``getTransaction``
    with base64 encoding. ``raw`` is the complete signed wire transaction.
    """
    signature: str
    raw: bytes
    log_messages: List[str] = field(default_factory=list)
    slot: int = 0
    block_time: Optional[int] = None
    err: Any = None

    _signatures: Optional[List[bytes]] = field(default=None, init=False, repr=False, compare=False)
    _message_bytes: Optional[bytes] = field(default=None, init=False, repr=False, compare=False)
    _message: Optional[ParsedMessage] = field(default=None, init=False, repr=False, compare=False)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_rpc(cls, signature: str, result: Dict[str, Any]) -> "OriginTransaction":
        """
        Build from a ``getTransaction`` result fetched with ``encoding=base64``.

        Raises:
            TransactionValidationFailed: if the result carries no base64 payload
        """
        tx_field = result.get("transaction")
        if not (isinstance(tx_field, (list, tuple)) and len(tx_field) == 2 and tx_field[1] == "base64"):
            raise TransactionValidationFailed(
                f"Transaction {signature} was not returned in base64 wire encoding"
            )
        meta = result.get("meta") or {}
        return cls(
            signature=signature,
            raw=base64.b64decode(tx_field[0]),
            log_messages=list(meta.get("logMessages") or []),
            slot=int(result.get("slot") or 0),
            block_time=result.get("blockTime"),
            err=meta.get("err"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form embedded in proofs (``rawTransaction``)."""
        return {
            "encoding": "base64",
            "data": base64.b64encode(self.raw).decode("ascii"),
            "logMessages": list(self.log_messages),
        }

    @classmethod
    def from_dict(
        cls,
        signature: str,
        data: Dict[str, Any],
        slot: int = 0,
        block_time: Optional[int] = None,
    ) -> "OriginTransaction":
        if not isinstance(data, dict):
            raise TransactionValidationFailed("Embedded transaction is not an object")
        if data.get("encoding") != "base64" or "data" not in data:
            raise TransactionValidationFailed("Embedded transaction is not base64 wire data")
        try:
            raw = base64.b64decode(data["data"], validate=True)
        except (binascii.Error, ValueError) as e:
            raise TransactionValidationFailed(f"Embedded transaction is not valid base64: {e}") from e
        return cls(
            signature=signature,
            raw=raw,
            log_messages=list(data.get("logMessages") or []),
            slot=slot,
            block_time=block_time,
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def _split(self) -> None:
        if self._signatures is not None:
            return
        try:
            count, pos = decode_compact_u16(self.raw, 0)
        except ValueError as e:
            raise TransactionValidationFailed(f"Unparseable transaction: {e}") from e
        sigs = []
        for _ in range(count):
            sig = self.raw[pos:pos + SIGNATURE_LENGTH]
            if len(sig) != SIGNATURE_LENGTH:
                raise TransactionValidationFailed("Truncated transaction signatures")
            sigs.append(sig)
            pos += SIGNATURE_LENGTH
        self._signatures = sigs
        self._message_bytes = self.raw[pos:]

    @property
    def signatures(self) -> List[bytes]:
        self._split()
        return list(self._signatures)

    @property
    def primary_signature(self) -> Optional[str]:
        """Base58 of the first signature; this is the transaction id."""
        sigs = self.signatures
        return base58.b58encode(sigs[0]).decode("ascii") if sigs else None

    @property
    def message_bytes(self) -> bytes:
        self._split()
        return self._message_bytes

    @property
    def message(self) -> ParsedMessage:
        if self._message is None:
            try:
                self._message = parse_message(self.message_bytes)
            except ValueError as e:
                raise TransactionValidationFailed(f"Unparseable transaction message: {e}") from e
        return self._message

    @property
    def account_keys(self) -> List[str]:
        return list(self.message.account_keys)

    @property
    def fee_payer(self) -> Optional[str]:
        keys = self.message.account_keys
        return keys[0] if keys else None

    def invoked_programs(self) -> List[str]:
        """Program ids from top-level instructions and ``invoke`` log lines."""
        programs = []
        keys = self.message.account_keys
        for ix in self.message.instructions:
            if ix.program_id_index < len(keys):
                programs.append(keys[ix.program_id_index])
        for line in self.log_messages:
            m = _INVOKE_RE.match(line)
            if m:
                programs.append(m.group(1))
        return list(dict.fromkeys(programs))

    def verify_primary_signature(self) -> bool:
        """Check the first signature against the fee payer over the message."""
        try:
            sigs = self.signatures
            payer = self.fee_payer
        except TransactionValidationFailed:
            return False
        if not sigs or payer is None:
            return False
        try:
            VerifyKey(base58.b58decode(payer)).verify(self.message_bytes, sigs[0])
            return True
        except (BadSignatureError, ValueError):
            return False


# ============================================================
# Building
# ============================================================

def compile_legacy_message(
    account_keys: Sequence[str],
    header: Tuple[int, int, int],
    recent_blockhash: str,
    instructions: Sequence[CompiledInstruction],
) -> bytes:
    """Serialize a legacy message. ``account_keys`` must already be ordered."""
    out = bytearray(header)
    out += encode_compact_u16(len(account_keys))
    for key in account_keys:
        out += base58.b58decode(key)
    out += base58.b58decode(recent_blockhash)
    out += encode_compact_u16(len(instructions))
    for ix in instructions:
        out.append(ix.program_id_index)
        out += encode_compact_u16(len(ix.accounts))
        out += bytes(ix.accounts)
        out += encode_compact_u16(len(ix.data))
        out += ix.data
    return bytes(out)


def sign_transaction(message: bytes, signers: Sequence[SigningKey]) -> bytes:
    """Sign ``message`` with each signer in account order and return wire bytes."""
    sigs = [sk.sign(message).signature for sk in signers]
    return encode_compact_u16(len(sigs)) + b"".join(sigs) + message
