"""
solbridge Confirmation Oracle

Answers two questions about the origin chain:
- Is the block at a given height (slot) the one the proof claims?
- Did the transaction land without error, and how final is it?

Block verification yields a three-way verdict. When the finalized block
cannot be fetched, the oracle falls back to an age rule: blocks younger
than ``pending_threshold`` slots (or ahead of the finalized frontier) are
PENDING; older blocks with a well-formed hash are accepted and the hash is
remembered as a trusted checkpoint. This fallback trusts the RPC endpoint;
no light-client verification is attempted.
"""

import logging
import re
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Set

from .errors import RpcError, TransactionFailed, TransactionNotFound
from .rpc import OriginRpc

logger = logging.getLogger(__name__)

DEFAULT_PENDING_THRESHOLD = 10
CONFIRMATION_STATUSES = ("processed", "confirmed", "finalized")

_BLOCKHASH_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


def is_valid_blockhash_format(block_hash: str) -> bool:
    return bool(block_hash) and _BLOCKHASH_RE.match(block_hash) is not None


class VerdictStatus(str, Enum):
    VERIFIED = "VERIFIED"
    PENDING = "PENDING"
    FAILED = "FAILED"


@dataclass
class BlockVerdict:
    """Result of ``verify_block_hash``. Exactly one status, never an exception."""
    status: VerdictStatus
    reason: str = ""
    block_hash: str = ""
    block_age: Optional[int] = None

    @classmethod
    def verified(cls, block_hash: str, reason: str = "", block_age: Optional[int] = None) -> "BlockVerdict":
        return cls(VerdictStatus.VERIFIED, reason, block_hash, block_age)

    @classmethod
    def pending(cls, reason: str, block_age: Optional[int] = None) -> "BlockVerdict":
        return cls(VerdictStatus.PENDING, reason, "", block_age)

    @classmethod
    def failed(cls, reason: str, block_age: Optional[int] = None) -> "BlockVerdict":
        return cls(VerdictStatus.FAILED, reason, "", block_age)

    @property
    def is_verified(self) -> bool:
        return self.status == VerdictStatus.VERIFIED

    @property
    def is_pending(self) -> bool:
        return self.status == VerdictStatus.PENDING


@dataclass
class ConfirmationRecord:
    """The origin chain's statement about one transaction."""
    signature: str
    confirmation_status: Optional[str]
    confirmations: Optional[int] = None
    err: Any = None
    slot: int = 0

    @property
    def usable(self) -> bool:
        return self.err is None and self.confirmation_status in CONFIRMATION_STATUSES

    @classmethod
    def from_status(cls, signature: str, status: Dict[str, Any]) -> "ConfirmationRecord":
        return cls(
            signature=signature,
            confirmation_status=status.get("confirmationStatus"),
            confirmations=status.get("confirmations"),
            err=status.get("err"),
            slot=int(status.get("slot") or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signature": self.signature,
            "confirmationStatus": self.confirmation_status,
            "confirmations": self.confirmations,
            "err": self.err,
            "slot": self.slot,
        }


@dataclass
class Checkpoint:
    slot: int
    block_hash: str
    block_height: int

    def to_dict(self) -> Dict[str, Any]:
        return {"slot": self.slot, "blockHash": self.block_hash, "blockHeight": self.block_height}


class ConfirmationOracle:
    """
    Queries the origin chain for block and transaction finality.

    Heights are measured in slots, the unit ``getBlock`` is addressed by.
    """

    def __init__(
        self,
        rpc: OriginRpc,
        pending_threshold: int = DEFAULT_PENDING_THRESHOLD,
        trusted_hashes: Optional[Iterable[str]] = None,
    ):
        if pending_threshold < 0:
            raise ValueError("pending_threshold must be non-negative")
        self.rpc = rpc
        self.pending_threshold = pending_threshold
        self._trusted: Set[str] = set(trusted_hashes or [])
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Trusted checkpoints
    # ------------------------------------------------------------------

    def add_trusted_hash(self, block_hash: str) -> None:
        with self._lock:
            self._trusted.add(block_hash)

    def is_trusted(self, block_hash: str) -> bool:
        with self._lock:
            return block_hash in self._trusted

    @property
    def trusted_hashes(self) -> Set[str]:
        with self._lock:
            return set(self._trusted)

    # ------------------------------------------------------------------
    # Block verification
    # ------------------------------------------------------------------

    def verify_block_hash(self, block_hash: str, height: int) -> BlockVerdict:
        """
        Verify that ``block_hash`` is the finalized block at ``height``.

        An empty ``block_hash`` asks the oracle to resolve the hash itself.

        Raises:
            RpcError: only if the finalized slot cannot be read for the
                fallback path
        """
        if block_hash and self.is_trusted(block_hash):
            return BlockVerdict.verified(block_hash, "trusted checkpoint")

        block = None
        try:
            block = self.rpc.get_block(height, "finalized")
        except RpcError as e:
            logger.info("Direct block lookup for %s failed (%s), using age fallback", height, e)

        if block:
            actual = block.get("blockhash", "")
            if not block_hash:
                self.add_trusted_hash(actual)
                return BlockVerdict.verified(actual, "resolved from finalized block")
            if actual == block_hash:
                self.add_trusted_hash(block_hash)
                return BlockVerdict.verified(block_hash, "matches finalized block")
            return BlockVerdict.failed(
                f"Block {height} hash mismatch: claimed {block_hash}, finalized {actual}"
            )

        if block_hash and not is_valid_blockhash_format(block_hash):
            return BlockVerdict.failed(f"Invalid block hash format: {block_hash!r}")

        current = self.rpc.get_slot("finalized")
        age = current - height

        if age < 0:
            return BlockVerdict.pending(
                f"Block {height} is {-age} slots ahead of the finalized slot", age
            )
        if age < self.pending_threshold:
            return BlockVerdict.pending(
                f"Block {height} is too recent for reliable validation (age: {age} slots)", age
            )
        if not block_hash:
            return BlockVerdict.failed(
                f"Block {height} unavailable at age {age} slots and no hash was claimed", age
            )

        self.add_trusted_hash(block_hash)
        logger.info("Block hash accepted via age fallback (age: %s slots)", age)
        return BlockVerdict.verified(block_hash, f"accepted via age fallback (age: {age} slots)", age)

    # ------------------------------------------------------------------
    # Transaction confirmation
    # ------------------------------------------------------------------

    def get_confirmation(self, signature: str) -> ConfirmationRecord:
        """
        Raises:
            TransactionNotFound: if the chain has no record of ``signature``
            TransactionFailed: if the transaction executed with an error
        """
        status = self.rpc.get_signature_status(signature)
        if status is None:
            raise TransactionNotFound(f"No status for transaction {signature}")
        record = ConfirmationRecord.from_status(signature, status)
        if record.err is not None:
            raise TransactionFailed(
                f"Transaction {signature} failed: {record.err}", {"err": record.err}
            )
        return record

    def get_latest_finalized_checkpoint(self) -> Checkpoint:
        """Most recent finalized block, used to seed trust state."""
        slot = self.rpc.get_slot("finalized")
        block = self.rpc.get_block(slot, "finalized")
        if not block:
            raise RpcError(f"Finalized block at slot {slot} is unavailable")
        height = block.get("blockHeight")
        checkpoint = Checkpoint(
            slot=slot,
            block_hash=block["blockhash"],
            block_height=int(height) if height is not None else slot,
        )
        self.add_trusted_hash(checkpoint.block_hash)
        return checkpoint
