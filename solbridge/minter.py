"""
solbridge Mint Submitter

Submits at-most-once mint commitments to the target network and waits for
inclusion. Duplicates and unauthorized recipients are expected outcomes,
reported through ``MintOutcome`` rather than raised.

Genesis data is recorded in the replay guard before it is committed. A
mint interrupted after the commit (inclusion timeout, failed persistence)
resumes from that record: the aggregator reports the request id as taken
and the token is rebuilt from the committed data and its inclusion proof.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .artifacts import build_token_artifact, genesis_data, transaction_hash
from .errors import RequestIdExists
from .identity import CommitmentDeriver, MintCommitment, mint_state_hash
from .logging_config import audit_log
from .replay import InMemoryReplayGuard, ReplayGuard
from .target import TargetNetworkClient, build_authenticator
from .validator import ValidatedProof

logger = logging.getLogger(__name__)


class MintOutcome(str, Enum):
    MINTED = "MINTED"
    DUPLICATE = "DUPLICATE"
    UNAUTHORIZED = "UNAUTHORIZED"
    DEFERRED = "DEFERRED"

    @property
    def settles_event(self) -> bool:
        """Whether the lock event needs no further mint attempts."""
        return self in (MintOutcome.MINTED, MintOutcome.DUPLICATE)


@dataclass
class MintResult:
    outcome: MintOutcome
    commitment: Optional[MintCommitment] = None
    artifact: Optional[Dict[str, Any]] = None
    reason: str = ""

    @property
    def commitment_handle(self) -> Optional[str]:
        return self.commitment.commitment_handle if self.commitment else None


class MintSubmitter:
    """
    Args:
        target: commit service of the target network
        deriver: carries the minter key pair and origin program id
        allow_pending_mints: mint PENDING_VALIDATION proofs instead of deferring them
        guard: holds genesis data of committed but unfinished mints
    """

    def __init__(
        self,
        target: TargetNetworkClient,
        deriver: CommitmentDeriver,
        allow_pending_mints: bool = True,
        inclusion_timeout: float = 60.0,
        inclusion_poll_interval: float = 1.0,
        guard: Optional[ReplayGuard] = None,
    ):
        self.target = target
        self.deriver = deriver
        self.allow_pending_mints = allow_pending_mints
        self.inclusion_timeout = inclusion_timeout
        self.inclusion_poll_interval = inclusion_poll_interval
        self.guard = guard if guard is not None else InMemoryReplayGuard()

    def is_authorized(self, proof: ValidatedProof) -> bool:
        return self.deriver.minter.address == proof.event.target_recipient

    def submit(self, proof: ValidatedProof) -> MintResult:
        """
        Mint a token for ``proof``.

        Raises:
            TargetNetworkError: the commit service is unreachable
            InclusionTimeout: the commitment was accepted but never included
        """
        if not self.is_authorized(proof):
            reason = (
                f"Minter {self.deriver.minter.address} is not the designated "
                f"recipient {proof.event.target_recipient}"
            )
            audit_log.mint_skipped(proof.signature, reason)
            return MintResult(MintOutcome.UNAUTHORIZED, reason=reason)

        if proof.is_pending and not self.allow_pending_mints:
            reason = f"Proof is {proof.status.value}; pending mints are disabled"
            audit_log.mint_skipped(proof.signature, reason)
            return MintResult(MintOutcome.DEFERRED, reason=reason)

        commitment = self.deriver.derive(proof)
        data = self.guard.in_flight(commitment.request_id)
        resuming = data is not None
        if not resuming:
            data = genesis_data(commitment)
            self.guard.record_in_flight(commitment.request_id, data)
        tx_hash = transaction_hash(data)
        authenticator = build_authenticator(
            self.deriver.minter, tx_hash, mint_state_hash(commitment.asset_id)
        )

        try:
            commitment.commitment_handle = self.target.submit_commitment(
                commitment.request_id, tx_hash, authenticator
            )
        except RequestIdExists as e:
            if not resuming:
                logger.info("Replay prevented for asset %s: %s", commitment.asset_id, e)
                audit_log.mint_complete(commitment.asset_id, MintOutcome.DUPLICATE.value)
                return MintResult(MintOutcome.DUPLICATE, commitment=commitment, reason=str(e))
            logger.info("Resuming interrupted mint of asset %s", commitment.asset_id)
            commitment.commitment_handle = commitment.request_id
        else:
            audit_log.mint_submitted(commitment.request_id, commitment.asset_id, commitment.recipient_address)

        inclusion = self.target.wait_for_inclusion(
            commitment.request_id, self.inclusion_timeout, self.inclusion_poll_interval
        )
        if inclusion.transaction_hash != tx_hash:
            reason = (
                f"Request id {commitment.request_id} holds transaction hash "
                f"{inclusion.transaction_hash}, not the recorded {tx_hash}"
            )
            logger.error("Cannot resume mint of asset %s: %s", commitment.asset_id, reason)
            return MintResult(MintOutcome.DUPLICATE, commitment=commitment, reason=reason)

        artifact = build_token_artifact(data, inclusion)
        reason = "resumed after interruption" if resuming else ""
        return MintResult(MintOutcome.MINTED, commitment=commitment, artifact=artifact, reason=reason)

    def complete(self, result: MintResult) -> None:
        """Forget the recorded genesis data once the mint's outcome is persisted."""
        if result.commitment is not None:
            self.guard.clear_in_flight(result.commitment.request_id)
