"""
solbridge Identity & Commitment Derivation

Every identifier of a bridged token is derived from one pre-image, the
commitment string:

    lockId|txSignature|blockHeight|user|amount|nonce|timestamp

    minterSignature = secp256k1_sign(sk, SHA256(commitment))          (r||s||v)
    assetId         = SHA256(commitment + hex(minterSignature) + "_tokenId")
    assetClassId    = SHA256("BRIDGED_SOL_FROM_SOLANA" + originProgramId)
    salt            = SHA256(commitment + "_salt")
    requestId       = SHA256(minterPubKey || SHA256(assetId || MINT_SUFFIX))

Only the holder of the minter secret can produce the canonical assetId for
a lock event, and the target network accepts each requestId once.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .hashing import sha256_bytes, sha256_hex
from .signing import MinterKeyPair
from .validator import ValidatedProof

BRIDGE_TYPE = "SOLANA_BRIDGE"
ASSET_CLASS_TAG = "BRIDGED_SOL_FROM_SOLANA"
COIN_ID = "BRIDGED_SOL".encode("utf-8").hex()
TOKEN_ID_SUFFIX = "_tokenId"
SALT_SUFFIX = "_salt"
MINT_SUFFIX = bytes.fromhex("9e82002c144d7c5796c50f6db50a0c7bbd7f717ae3af6c6c71a3e9eba3022730")


def commitment_string(
    lock_id: str,
    tx_signature: str,
    block_height: Any,
    user: str,
    amount: Any,
    nonce: Any,
    timestamp: Any,
) -> str:
    return "|".join(str(part) for part in (
        lock_id, tx_signature, block_height, user, amount, nonce, timestamp
    ))


def commitment_for_proof(proof: ValidatedProof) -> str:
    event = proof.event
    return commitment_string(
        event.lock_id_hex,
        proof.signature,
        proof.block_height,
        event.user,
        event.amount,
        event.nonce,
        event.timestamp,
    )


def commitment_digest(commitment: str) -> bytes:
    return sha256_bytes(commitment)


def derive_asset_id(commitment: str, minter_signature: bytes) -> str:
    return sha256_hex(commitment + minter_signature.hex() + TOKEN_ID_SUFFIX)


def derive_asset_class_id(program_id: str) -> str:
    return sha256_hex(ASSET_CLASS_TAG + program_id)


def derive_salt(commitment: str) -> str:
    return sha256_hex(commitment + SALT_SUFFIX)


def mint_state_hash(asset_id: str) -> bytes:
    return sha256_bytes(bytes.fromhex(asset_id) + MINT_SUFFIX)


def derive_request_id(public_key: bytes, asset_id: str) -> str:
    return sha256_hex(public_key + mint_state_hash(asset_id))


@dataclass
class MintCommitment:
    """Identity bundle submitted to the target network for one lock event."""
    commitment: str
    asset_id: str
    asset_class_id: str
    salt: str
    recipient_address: str
    minter_signature: bytes
    minter_public_key: bytes
    request_id: str
    payload: Dict[str, Any]
    amount: int
    commitment_handle: Optional[str] = None

    @property
    def coins(self) -> List[List[str]]:
        return [[COIN_ID, str(self.amount)]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "commitment": self.commitment,
            "assetId": self.asset_id,
            "assetClassId": self.asset_class_id,
            "salt": self.salt,
            "recipientAddress": self.recipient_address,
            "minterSignature": self.minter_signature.hex(),
            "minterPublicKey": self.minter_public_key.hex(),
            "requestId": self.request_id,
            "commitmentHandle": self.commitment_handle,
        }


class CommitmentDeriver:
    """
    Derives mint commitments. The minter key pair and origin program id
    are injected; nothing is read from global state.
    """

    def __init__(self, minter: MinterKeyPair, program_id: str):
        self.minter = minter
        self.program_id = program_id

    def sign_commitment(self, commitment: str) -> bytes:
        return self.minter.sign_digest(commitment_digest(commitment))

    def derive(self, proof: ValidatedProof) -> MintCommitment:
        commitment = commitment_for_proof(proof)
        signature = self.sign_commitment(commitment)
        asset_id = derive_asset_id(commitment, signature)

        payload = {
            "bridgeType": BRIDGE_TYPE,
            **proof.to_dict(),
            "minterSignature": signature.hex(),
        }

        return MintCommitment(
            commitment=commitment,
            asset_id=asset_id,
            asset_class_id=derive_asset_class_id(self.program_id),
            salt=derive_salt(commitment),
            recipient_address=proof.event.target_recipient,
            minter_signature=signature,
            minter_public_key=self.minter.public_key,
            request_id=derive_request_id(self.minter.public_key, asset_id),
            payload=payload,
            amount=proof.event.amount,
        )
