"""
Artifact builder module for solbridge.

Constructs the documents persisted for each lock event:
- the minted token (target-network genesis envelope plus inclusion proof)
- a human-readable genesis record
- validation metadata for tokens minted before origin-chain finality
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from .canonicalization import canonicalize, to_token_data
from .hashing import sha256_hex
from .identity import MintCommitment
from .target import InclusionProof
from .validator import ValidatedProof

ARTIFACT_VERSION = "2.0"
LAMPORTS_PER_SOL = 1_000_000_000


def _utc_iso(dt: datetime) -> str:
    return dt.isoformat().replace("+00:00", "Z")


def artifact_prefix(proof: ValidatedProof) -> str:
    """Short lock id prefix used in artifact file names."""
    return proof.event.lock_id_hex[:8]


def genesis_data(commitment: MintCommitment) -> Dict[str, Any]:
    """
    Build ``genesis.data`` for a commitment.

    ``tokenData`` is the hex of the canonical payload JSON and ``dataHash``
    its SHA-256.
    """
    token_data = to_token_data(commitment.payload)
    return {
        "tokenId": commitment.asset_id,
        "tokenType": commitment.asset_class_id,
        "tokenData": token_data,
        "coins": commitment.coins,
        "recipient": commitment.recipient_address,
        "salt": commitment.salt,
        "dataHash": sha256_hex(bytes.fromhex(token_data)),
        "reason": None,
    }


def transaction_hash(data: Dict[str, Any]) -> str:
    """Hash committed to the target network for a genesis record."""
    return sha256_hex(canonicalize(data))


def build_token_artifact(data: Dict[str, Any], inclusion_proof: InclusionProof) -> Dict[str, Any]:
    return {
        "version": ARTIFACT_VERSION,
        "genesis": {
            "data": data,
            "inclusionProof": inclusion_proof.to_dict(),
        },
        "state": {
            "data": data["tokenData"],
            "owner": data["recipient"],
        },
        "transactions": [],
    }


def build_genesis_record(
    proof: ValidatedProof,
    commitment: MintCommitment,
    program_id: str,
    cluster: str = "testnet",
) -> Dict[str, Any]:
    event = proof.event
    return {
        "description": "Bridged SOL Genesis Record",
        "version": ARTIFACT_VERSION,
        "bridgeInfo": {
            "type": "SOLANA_TO_UNICITY",
            "bridgeContract": program_id,
            "createdAt": _utc_iso(datetime.now(timezone.utc)),
        },
        "solanaLockEvent": {
            "lockId": event.lock_id_hex,
            "user": event.user,
            "amount": {
                "lamports": str(event.amount),
                "sol": f"{event.amount / LAMPORTS_PER_SOL:.9f}",
            },
            "targetRecipient": event.target_recipient,
            "nonce": str(event.nonce),
            "timestamp": _utc_iso(datetime.fromtimestamp(event.timestamp, tz=timezone.utc)),
        },
        "solanaAnchor": {
            "blockHeight": proof.block_height,
            "slot": proof.slot,
            "blockHash": proof.block_hash,
            "transactionSignature": proof.signature,
            "explorerUrl": f"https://explorer.solana.com/tx/{proof.signature}?cluster={cluster}",
        },
        "unicityToken": {
            "tokenId": commitment.asset_id,
            "tokenType": commitment.asset_class_id,
            "requestId": commitment.request_id,
            "commitment": commitment.commitment_handle,
            "minter": commitment.minter_public_key.hex(),
            "recipient": commitment.recipient_address,
        },
        "validation": proof.validation.to_dict(),
    }


def build_validation_metadata(
    proof: ValidatedProof,
    rpc_url: str,
    program_id: str,
    retry_after_seconds: int = 600,
    cluster: str = "testnet",
    minted: Optional[bool] = None,
) -> Dict[str, Any]:
    """Instructions for re-validating a token minted before its block finalized."""
    now = datetime.now(timezone.utc)
    rpc = f'curl -X POST {rpc_url} -H "Content-Type: application/json" -d'
    return {
        "validationStatus": "PENDING",
        "reason": proof.validation.reason or "Block too recent for RPC validation",
        "minted": minted,
        "blockInfo": {
            "blockHeight": proof.block_height,
            "blockHash": proof.block_hash,
            "slot": proof.slot,
            "signature": proof.signature,
        },
        "validationInstructions": {
            "description": (
                "This token was created from a Solana transaction whose block "
                "was not yet finalized when the proof was validated."
            ),
            "retryAfter": "Wait for the block to finalize and become available via RPC",
            "validationSteps": [
                {
                    "step": 1,
                    "description": "Verify block exists",
                    "command": (
                        f"{rpc} '{{\"jsonrpc\":\"2.0\",\"id\":1,\"method\":\"getBlock\","
                        f"\"params\":[{proof.block_height}]}}'"
                    ),
                    "expectedResult": "Block data with matching blockhash",
                },
                {
                    "step": 2,
                    "description": "Verify transaction exists",
                    "command": (
                        f"{rpc} '{{\"jsonrpc\":\"2.0\",\"id\":1,\"method\":\"getTransaction\","
                        f"\"params\":[\"{proof.signature}\"]}}'"
                    ),
                    "expectedResult": "Transaction details",
                },
                {
                    "step": 3,
                    "description": "Check transaction success",
                    "expectedResult": "meta.err is null",
                },
                {
                    "step": 4,
                    "description": "Verify bridge program involvement",
                    "expectedResult": f"Transaction invokes bridge program {program_id}",
                },
            ],
        },
        "explorerUrls": {
            "transaction": f"https://explorer.solana.com/tx/{proof.signature}?cluster={cluster}",
            "block": f"https://explorer.solana.com/block/{proof.block_height}?cluster={cluster}",
        },
        "createdAt": _utc_iso(now),
        "validationNeededAfter": _utc_iso(now + timedelta(seconds=retry_after_seconds)),
    }
