"""
solbridge Proof Builder

Binds a lock event to its confirmed origin-chain transaction. A Proof
embeds the complete signed transaction (wire bytes and logs), so later
validation never depends on fetching it again.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .errors import RpcError, TransactionFailed, TransactionNotFound
from .events import LockEvent, find_lock_event
from .oracle import ConfirmationOracle, ConfirmationRecord
from .origin_tx import OriginTransaction
from .rpc import OriginRpc

logger = logging.getLogger(__name__)


@dataclass
class Proof:
    event: LockEvent
    signature: str
    block_hash: str
    block_height: int
    slot: int
    transaction: OriginTransaction
    confirmation: Optional[ConfirmationRecord]


class ProofBuilder:
    """Assembles Proofs from the origin chain."""

    def __init__(self, rpc: OriginRpc, oracle: ConfirmationOracle):
        self.rpc = rpc
        self.oracle = oracle

    def fetch_transaction(self, signature: str) -> OriginTransaction:
        """
        Raises:
            TransactionNotFound: the chain cannot produce the transaction
            TransactionFailed: the transaction executed with an error
        """
        result = self.rpc.get_transaction(signature, "confirmed")
        if result is None:
            raise TransactionNotFound(f"Transaction {signature} not found")
        tx = OriginTransaction.from_rpc(signature, result)
        if tx.err is not None:
            raise TransactionFailed(f"Transaction {signature} failed: {tx.err}", {"err": tx.err})
        return tx

    def _resolve_block_hash(self, slot: int) -> str:
        try:
            block = self.rpc.get_block(slot, "confirmed")
        except RpcError as e:
            logger.info("Could not resolve block hash for slot %s: %s", slot, e)
            return ""
        return (block or {}).get("blockhash", "")

    def build_proof(
        self,
        event: LockEvent,
        signature: str,
        slot: int,
        transaction: Optional[OriginTransaction] = None,
    ) -> Proof:
        """
        Build a Proof for ``event`` emitted by transaction ``signature``.

        The block hash is best-effort; an empty hash defers to the
        oracle's age fallback during validation.
        """
        tx = transaction or self.fetch_transaction(signature)
        confirmation = self.oracle.get_confirmation(signature)
        block_hash = self._resolve_block_hash(slot)

        logger.debug(
            "Built proof for %s at slot %s (status=%s, block_hash=%s)",
            signature, slot, confirmation.confirmation_status, block_hash or "<unresolved>",
        )
        return Proof(
            event=event,
            signature=signature,
            block_hash=block_hash,
            block_height=slot,
            slot=slot,
            transaction=tx,
            confirmation=confirmation,
        )

    def extract_and_build(self, signature: str, slot: Optional[int] = None) -> Optional[Proof]:
        """
        Fetch a transaction, extract its lock event and build the Proof.

        Returns None when the transaction carries no TokenLocked event.
        """
        tx = self.fetch_transaction(signature)
        event = find_lock_event(tx.log_messages)
        if event is None:
            return None
        return self.build_proof(event, signature, slot if slot is not None else tx.slot, transaction=tx)
