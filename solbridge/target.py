"""
solbridge Target Network

Client side of the Unicity aggregation layer: commitments are submitted
under a request id, and the aggregator returns an inclusion proof once the
commitment is part of its Merkle tree. The aggregator accepts each request
id exactly once, which makes it the authority for replay protection.

Inclusion proofs are checked locally:
- the authenticator's secp256k1 signature over the transaction hash
- the request id recomputed from the authenticator's public key and state hash
- the Merkle path from the leaf to the declared root (leaf-index directed)
"""

import itertools
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import requests

from .errors import InclusionTimeout, RequestIdExists, TargetNetworkError
from .hashing import is_hex, sha256_hex
from .signing import MinterKeyPair, verify_signature

logger = logging.getLogger(__name__)

AUTHENTICATOR_ALGORITHM = "secp256k1"


@dataclass
class InclusionProof:
    request_id: str
    transaction_hash: str
    authenticator: Dict[str, str]
    merkle_tree_path: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requestId": self.request_id,
            "transactionHash": self.transaction_hash,
            "authenticator": dict(self.authenticator),
            "merkleTreePath": dict(self.merkle_tree_path),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InclusionProof":
        return cls(
            request_id=data["requestId"],
            transaction_hash=data["transactionHash"],
            authenticator=dict(data["authenticator"]),
            merkle_tree_path=dict(data["merkleTreePath"]),
        )


def build_authenticator(minter: MinterKeyPair, transaction_hash: str, state_hash: bytes) -> Dict[str, str]:
    """Sign the transaction hash with the minter key."""
    return {
        "algorithm": AUTHENTICATOR_ALGORITHM,
        "publicKey": minter.public_key.hex(),
        "signature": minter.sign_digest(bytes.fromhex(transaction_hash)).hex(),
        "stateHash": state_hash.hex(),
    }


# ============================================================
# Merkle tree
# ============================================================

def leaf_hash(request_id: str, transaction_hash: str) -> str:
    return sha256_hex(bytes.fromhex(request_id) + bytes.fromhex(transaction_hash))


def _parent(left: str, right: str) -> str:
    return sha256_hex(bytes.fromhex(left) + bytes.fromhex(right))


def merkle_root_and_path(leaves: List[str], index: int) -> Tuple[str, List[str]]:
    """Root of ``leaves`` and the sibling path for ``leaves[index]``."""
    if not 0 <= index < len(leaves):
        raise IndexError("leaf index out of range")
    level = list(leaves)
    path = []
    while len(level) > 1:
        if len(level) % 2:
            level.append(level[-1])
        sibling = index ^ 1
        path.append(level[sibling])
        level = [_parent(level[i], level[i + 1]) for i in range(0, len(level), 2)]
        index //= 2
    return level[0], path


def verify_merkle_path(leaf: str, root: str, steps: List[str], leaf_index: int) -> bool:
    """Even index: current is the left child. Odd index: current is the right child."""
    try:
        current = leaf
        index = leaf_index
        for sibling in steps:
            if index % 2 == 0:
                current = _parent(current, sibling)
            else:
                current = _parent(sibling, current)
            index //= 2
    except ValueError:
        return False
    return current == root


def verify_inclusion_proof(
    proof: Dict[str, Any],
    expected_request_id: Optional[str] = None,
) -> Tuple[bool, str]:
    """
    Check an inclusion proof's internal consistency. Returns (valid, reason).
    """
    try:
        request_id = proof["requestId"]
        tx_hash = proof["transactionHash"]
        auth = proof["authenticator"]
        path = proof["merkleTreePath"]
    except (KeyError, TypeError):
        return False, "Inclusion proof is missing required fields"
    if not isinstance(auth, dict) or not isinstance(path, dict):
        return False, "authenticator and merkleTreePath must be objects"

    if not (is_hex(request_id, 64) and is_hex(tx_hash, 64)):
        return False, "requestId and transactionHash must be 32-byte hex"
    if expected_request_id is not None and request_id != expected_request_id:
        return False, f"requestId {request_id} does not match expected {expected_request_id}"

    if auth.get("algorithm") != AUTHENTICATOR_ALGORITHM:
        return False, f"Unsupported authenticator algorithm: {auth.get('algorithm')}"
    try:
        public_key = bytes.fromhex(auth["publicKey"])
        signature = bytes.fromhex(auth["signature"])
        state_hash = bytes.fromhex(auth["stateHash"])
    except (KeyError, ValueError, TypeError):
        return False, "Authenticator fields are not hex"

    if not verify_signature(signature, bytes.fromhex(tx_hash), public_key):
        return False, "Authenticator signature does not verify over transactionHash"
    if sha256_hex(public_key + state_hash) != request_id:
        return False, "requestId does not derive from authenticator public key and state hash"

    try:
        steps = list(path.get("steps") or [])
        leaf_index = int(path["leafIndex"])
        root = path["root"]
    except (KeyError, TypeError, ValueError):
        return False, "Merkle path is malformed"
    if not verify_merkle_path(leaf_hash(request_id, tx_hash), root, steps, leaf_index):
        return False, "Merkle path does not lead to the declared root"

    return True, "Valid"


# ============================================================
# Clients
# ============================================================

class TargetNetworkClient(ABC):
    """Commit service of the target network."""

    @abstractmethod
    def submit_commitment(self, request_id: str, transaction_hash: str, authenticator: Dict[str, str]) -> str:
        """
        Submit a commitment; returns its handle.

        Raises:
            RequestIdExists: the request id was already committed
        """
        pass

    @abstractmethod
    def get_inclusion_proof(self, request_id: str) -> Optional[InclusionProof]:
        """Inclusion proof, or None while the commitment is not yet included."""
        pass

    def wait_for_inclusion(self, request_id: str, timeout: float = 60.0, poll_interval: float = 1.0) -> InclusionProof:
        """
        Raises:
            InclusionTimeout: no proof became available within ``timeout``
        """
        deadline = time.monotonic() + timeout
        while True:
            proof = self.get_inclusion_proof(request_id)
            if proof is not None:
                return proof
            if time.monotonic() >= deadline:
                raise InclusionTimeout(f"No inclusion proof for {request_id} after {timeout}s")
            time.sleep(poll_interval)


class AggregatorClient(TargetNetworkClient):
    """JSON-RPC client for a Unicity aggregator gateway."""

    def __init__(self, url: str, timeout: float = 30.0, api_key: Optional[str] = None,
                 session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()
        if api_key:
            self._session.headers["X-API-Key"] = api_key
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def _call(self, method: str, params: Dict[str, Any]) -> Any:
        with self._lock:
            request_id = next(self._ids)
        body = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}
        try:
            resp = self._session.post(self.url, json=body, timeout=self.timeout)
            resp.raise_for_status()
            payload = resp.json()
        except requests.RequestException as e:
            raise TargetNetworkError(f"{method} failed: {e}") from e
        except ValueError as e:
            raise TargetNetworkError(f"{method} returned invalid JSON: {e}") from e
        if payload.get("error"):
            err = payload["error"]
            raise TargetNetworkError(f"{method} error {err.get('code')}: {err.get('message')}")
        return payload.get("result")

    def submit_commitment(self, request_id: str, transaction_hash: str, authenticator: Dict[str, str]) -> str:
        result = self._call("submit_commitment", {
            "requestId": request_id,
            "transactionHash": transaction_hash,
            "authenticator": authenticator,
            "receipt": False,
        }) or {}
        status = result.get("status")
        if status == "REQUEST_ID_EXISTS":
            raise RequestIdExists(f"Request id {request_id} already committed", {"request_id": request_id})
        if status != "SUCCESS":
            raise TargetNetworkError(f"Commitment {request_id} rejected with status {status}")
        return request_id

    def get_inclusion_proof(self, request_id: str) -> Optional[InclusionProof]:
        result = self._call("get_inclusion_proof", {"requestId": request_id})
        if not result:
            return None
        try:
            return InclusionProof.from_dict(result)
        except (KeyError, TypeError) as e:
            raise TargetNetworkError(f"Malformed inclusion proof for {request_id}: {e}") from e


class InMemoryTargetNetwork(TargetNetworkClient):
    """
    In-process aggregator for local runs and tests.

    Enforces request-id uniqueness and serves Merkle inclusion proofs over
    all commitments in submission order.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._order: List[str] = []
        self._commitments: Dict[str, Dict[str, Any]] = {}
        self.submissions = 0

    def submit_commitment(self, request_id: str, transaction_hash: str, authenticator: Dict[str, str]) -> str:
        with self._lock:
            self.submissions += 1
            if request_id in self._commitments:
                raise RequestIdExists(f"Request id {request_id} already committed", {"request_id": request_id})
            self._commitments[request_id] = {
                "transactionHash": transaction_hash,
                "authenticator": dict(authenticator),
            }
            self._order.append(request_id)
        return request_id

    def get_inclusion_proof(self, request_id: str) -> Optional[InclusionProof]:
        with self._lock:
            entry = self._commitments.get(request_id)
            if entry is None:
                return None
            leaves = [leaf_hash(rid, self._commitments[rid]["transactionHash"]) for rid in self._order]
            index = self._order.index(request_id)
        root, steps = merkle_root_and_path(leaves, index)
        return InclusionProof(
            request_id=request_id,
            transaction_hash=entry["transactionHash"],
            authenticator=dict(entry["authenticator"]),
            merkle_tree_path={"root": root, "leafIndex": index, "steps": steps},
        )

    def __contains__(self, request_id: str) -> bool:
        with self._lock:
            return request_id in self._commitments

    def __len__(self) -> int:
        with self._lock:
            return len(self._order)


def get_target_network(mode: str, url: str = "", timeout: float = 30.0,
                       api_key: Optional[str] = None) -> TargetNetworkClient:
    if mode == "memory":
        logger.warning("Using in-memory target network; commitments are not persisted")
        return InMemoryTargetNetwork()
    if mode == "aggregator":
        return AggregatorClient(url, timeout=timeout, api_key=api_key)
    raise ValueError(f"Unknown target network mode: {mode}")
