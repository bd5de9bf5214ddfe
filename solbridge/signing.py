"""
solbridge Minter Keys

The minter signs commitment digests with recoverable secp256k1 ECDSA
(RFC 6979 deterministic nonces). Signatures are 65 bytes laid out as
``r || s || v`` with recovery id ``v`` in {0, 1}.

A minter's target-network address is the ``[SHA256]``-tagged SHA-256 of
its compressed public key.
"""

import json
import os
import secrets
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError

from .hashing import sha256_bytes, tagged_address

SIGNATURE_LENGTH = 65
WALLET_VERSION = "1.0"


def address_for_public_key(public_key: bytes) -> str:
    """Target-network address for a 33-byte compressed public key."""
    return tagged_address(sha256_bytes(public_key))


class MinterKeyPair:
    """
    Holds the minter's secret. Pass instances explicitly to the components
    that sign; never store them in module state.
    """

    def __init__(self, secret: bytes):
        if len(secret) != 32:
            raise ValueError("secp256k1 secret must be 32 bytes")
        try:
            self._sk = keys.PrivateKey(secret)
        except ValidationError as e:
            raise ValueError(f"Invalid secp256k1 secret: {e}") from e

    @classmethod
    def generate(cls) -> "MinterKeyPair":
        while True:
            try:
                return cls(secrets.token_bytes(32))
            except ValueError:
                continue

    @classmethod
    def from_hex(cls, secret_hex: str) -> "MinterKeyPair":
        return cls(bytes.fromhex(secret_hex))

    @property
    def public_key(self) -> bytes:
        """33-byte compressed public key."""
        return self._sk.public_key.to_compressed_bytes()

    @property
    def address(self) -> str:
        return address_for_public_key(self.public_key)

    def sign_digest(self, digest: bytes) -> bytes:
        """Sign a 32-byte digest; returns ``r || s || v``."""
        if len(digest) != 32:
            raise ValueError("digest must be 32 bytes")
        return self._sk.sign_msg_hash(digest).to_bytes()

    def __repr__(self) -> str:
        return f"MinterKeyPair(address={self.address})"

    # ------------------------------------------------------------------
    # Wallet file
    # ------------------------------------------------------------------

    def to_wallet_dict(self) -> Dict[str, Any]:
        return {
            "version": WALLET_VERSION,
            "secretKey": self._sk.to_bytes().hex(),
            "publicKey": self.public_key.hex(),
            "address": self.address,
            "createdAt": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        }

    def save(self, path: str) -> None:
        """Write the wallet file readable by the owner only."""
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(self.to_wallet_dict(), f, indent=2)

    @classmethod
    def load(cls, path: str) -> "MinterKeyPair":
        """
        Raises:
            ValueError: if the stored public key does not match the secret
        """
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        pair = cls.from_hex(raw["secretKey"])
        stored = raw.get("publicKey")
        if stored and stored.lower() != pair.public_key.hex():
            raise ValueError(f"Wallet {path} public key does not match its secret")
        return pair


def recover_public_key(signature: bytes, digest: bytes) -> Optional[bytes]:
    """
    Recover the compressed public key that produced ``signature`` over
    ``digest``. Returns None for any malformed or unrecoverable signature.
    """
    if len(signature) != SIGNATURE_LENGTH or len(digest) != 32:
        return None
    try:
        sig = keys.Signature(signature_bytes=signature)
        return sig.recover_public_key_from_msg_hash(digest).to_compressed_bytes()
    except (BadSignature, ValidationError, ValueError):
        return None


def verify_signature(signature: bytes, digest: bytes, public_key: bytes) -> bool:
    """True only if ``signature`` over ``digest`` verifies and recovers to ``public_key``."""
    if len(signature) != SIGNATURE_LENGTH or len(digest) != 32:
        return False
    try:
        sig = keys.Signature(signature_bytes=signature)
        pub = keys.PublicKey.from_compressed_bytes(public_key)
        if not sig.verify_msg_hash(digest, pub):
            return False
    except (BadSignature, ValidationError, ValueError):
        return False
    return recover_public_key(signature, digest) == public_key
