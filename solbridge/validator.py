"""
solbridge Proof Validator

Turns a Proof into a ValidatedProof through a linear pipeline:

1. Structural validation of the lock event       -> InvalidEventStructure
2. Block verification via the Confirmation Oracle -> BlockVerificationFailed
   (PENDING is not a failure: block_verified=False and continue)
3. Confirmation record check                      -> confirmation_verified
4. When both hold, confirm the bridge program was invoked
                                                  -> ProgramNotInvoked /
                                                     TransactionValidationFailed
5. VALIDATED if the block was verified, otherwise PENDING_VALIDATION

A ValidatedProof is returned in both the VALIDATED and PENDING_VALIDATION
cases; the mint policy decides what to do with the weaker one.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .errors import (
    BlockVerificationFailed,
    InvalidEventStructure,
    ProgramNotInvoked,
    SignatureMismatch,
    TransactionValidationFailed,
)
from .events import LockEvent
from .logging_config import audit_log
from .oracle import ConfirmationOracle, ConfirmationRecord, VerdictStatus
from .origin_tx import OriginTransaction
from .proof import Proof
from .rpc import OriginRpc

logger = logging.getLogger(__name__)

FINAL_STATUSES = ("confirmed", "finalized")


class ValidationStatus(str, Enum):
    VALIDATED = "VALIDATED"
    PENDING_VALIDATION = "PENDING_VALIDATION"


@dataclass
class ValidationOutcome:
    block_verified: bool
    confirmation_verified: bool
    status: ValidationStatus
    validated_at: int
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "blockVerified": self.block_verified,
            "confirmationVerified": self.confirmation_verified,
            "status": self.status.value,
            "validatedAtTimestamp": self.validated_at,
        }
        if self.reason:
            result["reason"] = self.reason
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ValidationOutcome":
        return cls(
            block_verified=bool(data.get("blockVerified")),
            confirmation_verified=bool(data.get("confirmationVerified")),
            status=ValidationStatus(data.get("status", ValidationStatus.PENDING_VALIDATION.value)),
            validated_at=int(data.get("validatedAtTimestamp") or 0),
            reason=data.get("reason"),
        )


@dataclass
class ValidatedProof:
    """A Proof reshaped into its canonical serialized form plus the outcome."""
    event: LockEvent
    signature: str
    raw_transaction: Optional[Dict[str, Any]]
    block_hash: str
    block_height: int
    slot: int
    block_time: Optional[int]
    confirmation_status: Optional[str]
    validation: ValidationOutcome

    @property
    def status(self) -> ValidationStatus:
        return self.validation.status

    @property
    def is_pending(self) -> bool:
        return self.validation.status == ValidationStatus.PENDING_VALIDATION

    def embedded_transaction(self) -> Optional[OriginTransaction]:
        if not self.raw_transaction:
            return None
        return OriginTransaction.from_dict(
            self.signature, self.raw_transaction, slot=self.slot, block_time=self.block_time
        )

    def origin_transaction_dict(self) -> Dict[str, Any]:
        return {
            "signature": self.signature,
            "rawTransaction": self.raw_transaction,
            "blockHeight": self.block_height,
            "slot": self.slot,
            "blockTime": self.block_time,
            "confirmationStatus": self.confirmation_status,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lockEvent": self.event.to_dict(),
            "originTransaction": self.origin_transaction_dict(),
            "blockHash": self.block_hash,
            "validation": self.validation.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ValidatedProof":
        """
        Raises:
            InvalidEventStructure: if the lock event or origin anchor is unparseable
        """
        origin = data.get("originTransaction") or {}
        try:
            return cls(
                event=LockEvent.from_dict(data["lockEvent"]),
                signature=origin["signature"],
                raw_transaction=origin.get("rawTransaction"),
                block_hash=data.get("blockHash", ""),
                block_height=int(origin["blockHeight"]),
                slot=int(origin["slot"]),
                block_time=origin.get("blockTime"),
                confirmation_status=origin.get("confirmationStatus"),
                validation=ValidationOutcome.from_dict(data.get("validation") or {}),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidEventStructure(f"Unparseable validated proof: {e}") from e


class ProofValidator:
    """Validates Proofs against the origin chain."""

    def __init__(self, rpc: OriginRpc, oracle: ConfirmationOracle, program_id: str):
        self.rpc = rpc
        self.oracle = oracle
        self.program_id = program_id

    def validate(self, proof: Proof) -> ValidatedProof:
        """
        Run the validation pipeline.

        Raises:
            InvalidEventStructure: event fields violate their constraints
            BlockVerificationFailed: the oracle definitively rejected the block
            ProgramNotInvoked: the bridge program is absent from the transaction
            TransactionValidationFailed: the transaction vanished or failed on refetch
        """
        # 1. structure
        proof.event.validate()

        # 2. block
        verdict = self.oracle.verify_block_hash(proof.block_hash, proof.block_height)
        if verdict.status == VerdictStatus.FAILED:
            raise BlockVerificationFailed(verdict.reason, {"block_height": proof.block_height})
        block_verified = verdict.is_verified
        block_hash = verdict.block_hash or proof.block_hash
        reason = verdict.reason if verdict.is_pending else None

        # 3. confirmation
        confirmation_verified = self._verify_confirmation(proof.confirmation)

        # 4. program invocation
        if block_verified and confirmation_verified:
            self._verify_program_invoked(proof)
        elif proof.transaction is not None:
            self._require_program(proof.signature, proof.transaction)

        # 5. classification
        status = ValidationStatus.VALIDATED if block_verified else ValidationStatus.PENDING_VALIDATION
        outcome = ValidationOutcome(
            block_verified=block_verified,
            confirmation_verified=confirmation_verified,
            status=status,
            validated_at=int(time.time()),
            reason=reason,
        )
        audit_log.proof_validated(
            proof.signature, status.value, block_verified, confirmation_verified, reason
        )

        return ValidatedProof(
            event=proof.event,
            signature=proof.signature,
            raw_transaction=proof.transaction.to_dict() if proof.transaction else None,
            block_hash=block_hash,
            block_height=proof.block_height,
            slot=proof.slot,
            block_time=proof.transaction.block_time if proof.transaction else None,
            confirmation_status=proof.confirmation.confirmation_status if proof.confirmation else None,
            validation=outcome,
        )

    def _verify_confirmation(self, record: Optional[ConfirmationRecord]) -> bool:
        if record is None:
            logger.warning("Proof carries no confirmation record")
            return False
        if not record.usable:
            logger.warning(
                "Confirmation record for %s unusable (status=%s, err=%s)",
                record.signature, record.confirmation_status, record.err,
            )
            return False
        return True

    def _verify_program_invoked(self, proof: Proof) -> None:
        result = self.rpc.get_transaction(proof.signature, "finalized")
        if result is not None:
            tx = OriginTransaction.from_rpc(proof.signature, result)
            if tx.err is not None:
                raise TransactionValidationFailed(f"Transaction {proof.signature} failed: {tx.err}")
        else:
            status = self.rpc.get_signature_status(proof.signature)
            if status is None:
                raise TransactionValidationFailed(
                    f"Transaction {proof.signature} not found on refetch"
                )
            if status.get("err") is not None:
                raise TransactionValidationFailed(
                    f"Transaction {proof.signature} failed: {status.get('err')}"
                )
            tx = proof.transaction

        self._require_program(proof.signature, tx)

    def _require_program(self, signature: str, tx: OriginTransaction) -> None:
        invoked = tx.invoked_programs()
        if self.program_id not in invoked:
            raise ProgramNotInvoked(
                f"Bridge program {self.program_id} not invoked by {signature}",
                {"invoked": invoked},
            )

    def validate_cryptographic_chain(self, proof: ValidatedProof) -> bool:
        """
        Re-check a validated proof against the origin chain at any later time.

        Returns False when the transaction is unknown, failed, or only
        weakly confirmed.

        Raises:
            SignatureMismatch: the embedded transaction's primary signature
                differs from the claimed signature
        """
        status = self.rpc.get_signature_status(proof.signature)
        if status is None:
            logger.warning("No signature status for %s", proof.signature)
            return False
        if status.get("err") is not None:
            logger.warning("Transaction %s reports error %s", proof.signature, status.get("err"))
            return False

        tx = proof.embedded_transaction()
        if tx is None:
            logger.warning(
                "Proof for %s embeds no transaction data; trusting signature status only",
                proof.signature,
            )
            return True
        if tx.primary_signature != proof.signature:
            audit_log.security_event(
                "EMBEDDED_SIGNATURE_MISMATCH",
                severity="high",
                claimed=proof.signature,
                embedded=tx.primary_signature,
            )
            raise SignatureMismatch(
                f"Embedded transaction signature {tx.primary_signature} "
                f"does not match claimed {proof.signature}"
            )

        return proof.confirmation_status in FINAL_STATUSES
