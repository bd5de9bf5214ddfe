"""
solbridge Lock Client

Builds, signs and submits the bridge program's ``lock_sol`` instruction,
which moves SOL into the program escrow and emits a TokenLocked event
naming the target-network recipient.

Accounts (in instruction order):
    bridge_state   PDA ["bridge_state"]   writable
    escrow         PDA ["escrow"]         writable
    user           wallet                 writable, signer
    system_program                        read-only
"""

import hashlib
import json
import logging
import os
import struct
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import base58
from nacl.bindings import crypto_core_ed25519_is_valid_point
from nacl.signing import SigningKey

from .errors import TransactionFailed
from .events import on_chain_recipient
from .origin_tx import CompiledInstruction, compile_legacy_message, sign_transaction
from .rpc import OriginRpc

logger = logging.getLogger(__name__)

SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"
LAMPORTS_PER_SOL = 1_000_000_000
FEE_RESERVE_LAMPORTS = 10_000_000
MAX_RECIPIENT_LENGTH = 64

BRIDGE_STATE_SEED = b"bridge_state"
ESCROW_SEED = b"escrow"
PDA_MARKER = b"ProgramDerivedAddress"


def instruction_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode("utf-8")).digest()[:8]


def find_program_address(seeds: Sequence[bytes], program_id: str) -> Tuple[str, int]:
    """Highest-bump off-curve address derived from ``seeds``; returns (address, bump)."""
    program = base58.b58decode(program_id)
    for bump in range(255, -1, -1):
        candidate = hashlib.sha256(b"".join(seeds) + bytes([bump]) + program + PDA_MARKER).digest()
        if not crypto_core_ed25519_is_valid_point(candidate):
            return base58.b58encode(candidate).decode("ascii"), bump
    raise ValueError("Unable to find a viable program address bump")


def load_solana_keypair(path: str) -> SigningKey:
    """Load a Solana CLI keypair file (JSON array of 64 secret-key bytes)."""
    with open(os.path.expanduser(path), "r", encoding="utf-8") as f:
        secret = json.load(f)
    if not isinstance(secret, list) or len(secret) != 64:
        raise ValueError(f"{path} is not a Solana keypair file")
    return SigningKey(bytes(secret[:32]))


def public_key_of(key: SigningKey) -> str:
    return base58.b58encode(bytes(key.verify_key)).decode("ascii")


def lock_instruction_data(amount: int, recipient: str) -> bytes:
    recipient_bytes = recipient.encode("utf-8")
    return (
        instruction_discriminator("lock_sol")
        + struct.pack("<Q", amount)
        + struct.pack("<I", len(recipient_bytes))
        + recipient_bytes
    )


def sol_to_lamports(amount_sol: float) -> int:
    return int(round(amount_sol * LAMPORTS_PER_SOL))


@dataclass
class LockReceipt:
    signature: str
    amount: int
    recipient: str
    confirmation_status: Optional[str]

    @property
    def confirmed(self) -> bool:
        return self.confirmation_status in ("confirmed", "finalized")


class LockClient:
    """Submits lock transactions for one wallet against one bridge program."""

    def __init__(self, rpc: OriginRpc, program_id: str, wallet: SigningKey):
        self.rpc = rpc
        self.program_id = program_id
        self.wallet = wallet

    @property
    def user(self) -> str:
        return public_key_of(self.wallet)

    def account_keys(self) -> List[str]:
        bridge_state, _ = find_program_address([BRIDGE_STATE_SEED], self.program_id)
        escrow, _ = find_program_address([ESCROW_SEED], self.program_id)
        return [self.user, bridge_state, escrow, SYSTEM_PROGRAM_ID, self.program_id]

    def build_transaction(self, amount: int, recipient: str, recent_blockhash: str) -> bytes:
        """
        Signed wire bytes for a ``lock_sol`` transaction.

        Raises:
            ValueError: amount is not positive or the recipient is too long
        """
        if amount <= 0:
            raise ValueError("amount must be positive")
        stripped = on_chain_recipient(recipient)
        if not stripped or len(stripped) > MAX_RECIPIENT_LENGTH:
            raise ValueError(f"recipient must be 1..{MAX_RECIPIENT_LENGTH} characters without its tag")

        # header: 1 signer, 0 read-only signed, 2 read-only unsigned (system program, bridge program)
        message = compile_legacy_message(
            self.account_keys(),
            (1, 0, 2),
            recent_blockhash,
            [CompiledInstruction(program_id_index=4, accounts=[1, 2, 0, 3],
                                 data=lock_instruction_data(amount, stripped))],
        )
        return sign_transaction(message, [self.wallet])

    def lock(self, amount: int, recipient: str) -> str:
        """
        Submit a lock transaction; returns its signature.

        Raises:
            ValueError: the wallet cannot cover the amount plus fees
        """
        balance = self.rpc.get_balance(self.user)
        if balance < amount + FEE_RESERVE_LAMPORTS:
            raise ValueError(
                f"Insufficient balance: need {(amount + FEE_RESERVE_LAMPORTS) / LAMPORTS_PER_SOL:.4f} SOL, "
                f"have {balance / LAMPORTS_PER_SOL:.4f} SOL"
            )
        raw = self.build_transaction(amount, recipient, self.rpc.get_latest_blockhash())
        signature = self.rpc.send_transaction(raw)
        logger.info("Submitted lock of %d lamports for %s: %s", amount, recipient, signature)
        return signature

    def wait_for_confirmation(self, signature: str, attempts: int = 30, interval: float = 2.0) -> Optional[str]:
        """
        Poll the signature status until confirmed or finalized.

        Returns the last observed confirmation status (None if never seen).

        Raises:
            TransactionFailed: the transaction executed with an error
        """
        status = None
        for attempt in range(1, attempts + 1):
            record = self.rpc.get_signature_status(signature)
            if record is not None:
                if record.get("err") is not None:
                    raise TransactionFailed(f"Lock transaction {signature} failed: {record['err']}",
                                            {"err": record["err"]})
                status = record.get("confirmationStatus")
                if status in ("confirmed", "finalized"):
                    return status
            logger.debug("Waiting for confirmation of %s (%d/%d)", signature, attempt, attempts)
            if attempt < attempts:
                time.sleep(interval)
        logger.warning("Transaction %s may still be pending confirmation", signature)
        return status

    def lock_and_confirm(self, amount: int, recipient: str, attempts: int = 30, interval: float = 2.0) -> LockReceipt:
        signature = self.lock(amount, recipient)
        status = self.wait_for_confirmation(signature, attempts, interval)
        return LockReceipt(signature=signature, amount=amount, recipient=recipient, confirmation_status=status)
