"""
solbridge Origin-Chain RPC

Read-mostly JSON-RPC client for a Solana cluster. Queries whose target is
not (yet) available return ``None`` instead of raising; transport failures
raise ``RpcError`` so callers can retry with backoff.
"""

import base64
import itertools
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import requests

from .errors import RpcError

logger = logging.getLogger(__name__)

# JSON-RPC error codes meaning "this slot has no block (yet)"
BLOCK_UNAVAILABLE_CODES = {
    -32004,  # block not available for slot
    -32007,  # slot skipped or missing due to ledger jump
    -32009,  # slot skipped or missing in long-term storage
    -32014,  # block status not yet available
}


class OriginRpc(ABC):
    """Interface the bridge uses to read the origin chain and submit lock transactions."""

    @abstractmethod
    def get_transaction(self, signature: str, commitment: str = "confirmed") -> Optional[Dict[str, Any]]:
        """Full transaction in base64 wire encoding, or None if unknown."""
        pass

    @abstractmethod
    def get_signature_statuses(self, signatures: Sequence[str]) -> List[Optional[Dict[str, Any]]]:
        """Batch status lookup (searching transaction history)."""
        pass

    @abstractmethod
    def get_block(self, slot: int, commitment: str = "finalized") -> Optional[Dict[str, Any]]:
        """Block header fields for ``slot``, or None if unavailable."""
        pass

    @abstractmethod
    def get_slot(self, commitment: str = "finalized") -> int:
        pass

    @abstractmethod
    def get_signatures_for_address(
        self,
        address: str,
        limit: int = 1000,
        before: Optional[str] = None,
        until: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Most-recent-first signature records for ``address``."""
        pass

    def get_signature_status(self, signature: str) -> Optional[Dict[str, Any]]:
        statuses = self.get_signature_statuses([signature])
        return statuses[0] if statuses else None

    @abstractmethod
    def get_latest_blockhash(self) -> str:
        pass

    @abstractmethod
    def send_transaction(self, raw: bytes) -> str:
        """Submit a signed wire transaction; returns its signature."""
        pass

    @abstractmethod
    def get_balance(self, address: str) -> int:
        """Balance of ``address`` in lamports."""
        pass


class SolanaRpcClient(OriginRpc):
    """
    HTTP JSON-RPC client backed by a ``requests.Session``.

    Thread-safe: the monitor's subscriber thread and processing loop share
    one instance.
    """

    def __init__(self, url: str, timeout: float = 30.0, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def _call(self, method: str, params: Optional[list] = None) -> Any:
        with self._lock:
            request_id = next(self._ids)
        body = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params or []}
        try:
            resp = self._session.post(self.url, json=body, timeout=self.timeout)
            resp.raise_for_status()
            payload = resp.json()
        except requests.RequestException as e:
            raise RpcError(f"{method} failed: {e}", {"method": method}) from e
        except ValueError as e:
            raise RpcError(f"{method} returned invalid JSON: {e}", {"method": method}) from e

        if "error" in payload and payload["error"] is not None:
            err = payload["error"]
            raise RpcError(
                f"{method} error {err.get('code')}: {err.get('message')}",
                {"method": method, "code": err.get("code")},
            )
        return payload.get("result")

    def get_transaction(self, signature: str, commitment: str = "confirmed") -> Optional[Dict[str, Any]]:
        return self._call("getTransaction", [
            signature,
            {"encoding": "base64", "commitment": commitment, "maxSupportedTransactionVersion": 0},
        ])

    def get_signature_statuses(self, signatures: Sequence[str]) -> List[Optional[Dict[str, Any]]]:
        result = self._call("getSignatureStatuses", [list(signatures), {"searchTransactionHistory": True}])
        return list((result or {}).get("value") or [None] * len(signatures))

    def get_block(self, slot: int, commitment: str = "finalized") -> Optional[Dict[str, Any]]:
        try:
            return self._call("getBlock", [
                slot,
                {
                    "commitment": commitment,
                    "transactionDetails": "none",
                    "rewards": False,
                    "maxSupportedTransactionVersion": 0,
                },
            ])
        except RpcError as e:
            if e.detail.get("code") in BLOCK_UNAVAILABLE_CODES:
                logger.debug("Block %s unavailable: %s", slot, e)
                return None
            raise

    def get_slot(self, commitment: str = "finalized") -> int:
        return int(self._call("getSlot", [{"commitment": commitment}]))

    def get_signatures_for_address(
        self,
        address: str,
        limit: int = 1000,
        before: Optional[str] = None,
        until: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        opts: Dict[str, Any] = {"limit": limit, "commitment": "confirmed"}
        if before:
            opts["before"] = before
        if until:
            opts["until"] = until
        return list(self._call("getSignaturesForAddress", [address, opts]) or [])

    def get_latest_blockhash(self) -> str:
        result = self._call("getLatestBlockhash", [{"commitment": "finalized"}])
        return result["value"]["blockhash"]

    def send_transaction(self, raw: bytes) -> str:
        return self._call("sendTransaction", [
            base64.b64encode(raw).decode("ascii"),
            {"encoding": "base64", "preflightCommitment": "confirmed"},
        ])

    def get_balance(self, address: str) -> int:
        result = self._call("getBalance", [address, {"commitment": "confirmed"}])
        return int(result["value"])
