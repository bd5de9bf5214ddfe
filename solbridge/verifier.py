"""
solbridge Independent Token Verifier

Re-verifies a minted token from its artifact file alone, optionally
cross-checking the origin chain over read-only RPC. Shares no state with
the monitor that minted the token.

Checks, in order:
    1. inclusion proof and genesis transaction hash
    2. bridge payload decode and required fields
    3. commitment string reconstruction
    4. minter signature recovery and recipient binding
    5. asset id, asset class, salt and request id re-derivation
    6. origin transaction status and embedded transaction integrity
    7. lock event re-extraction from origin logs

Every check yields PASS, FAIL or WARN. The token is VALID iff nothing FAILs.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .artifacts import transaction_hash
from .canonicalization import from_token_data
from .errors import (
    IdentityDerivationMismatch,
    InvalidEventStructure,
    RpcError,
    TransactionValidationFailed,
)
from .events import LockEvent, canonical_recipient, find_lock_event
from .hashing import is_hex, sha256_hex
from .identity import (
    BRIDGE_TYPE,
    commitment_digest,
    commitment_string,
    derive_asset_class_id,
    derive_asset_id,
    derive_request_id,
    derive_salt,
)
from .logging_config import audit_log
from .oracle import CONFIRMATION_STATUSES
from .origin_tx import OriginTransaction
from .rpc import OriginRpc
from .signing import SIGNATURE_LENGTH, address_for_public_key, recover_public_key, verify_signature
from .target import verify_inclusion_proof

logger = logging.getLogger(__name__)

LOCK_EVENT_FIELDS = ("lockId", "user", "amount", "targetRecipient", "nonce", "timestamp")
ORIGIN_FIELDS = ("signature", "blockHeight", "slot", "confirmationStatus")


class CheckStatus(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    WARN = "WARN"


@dataclass
class CheckResult:
    check: str
    status: CheckStatus
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"check": self.check, "status": self.status.value, "message": self.message}


@dataclass
class VerificationReport:
    asset_id: Optional[str] = None
    checks: List[CheckResult] = field(default_factory=list)

    def add(self, check: str, status: CheckStatus, message: str) -> CheckResult:
        result = CheckResult(check, status, message)
        self.checks.append(result)
        return result

    @property
    def verdict(self) -> str:
        return "INVALID" if self.failed else "VALID"

    @property
    def is_valid(self) -> bool:
        return not self.failed

    @property
    def failed(self) -> List[CheckResult]:
        return [c for c in self.checks if c.status == CheckStatus.FAIL]

    @property
    def warnings(self) -> List[CheckResult]:
        return [c for c in self.checks if c.status == CheckStatus.WARN]

    def status_of(self, check: str) -> Optional[CheckStatus]:
        for c in self.checks:
            if c.check == check:
                return c.status
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assetId": self.asset_id,
            "verdict": self.verdict,
            "checks": [c.to_dict() for c in self.checks],
        }

    def render(self) -> str:
        """Human-readable report."""
        marks = {CheckStatus.PASS: "✓ PASS", CheckStatus.FAIL: "✗ FAIL", CheckStatus.WARN: "! WARN"}
        lines = ["", "=" * 60, "SOLBRIDGE TOKEN VERIFICATION REPORT", "=" * 60]
        for c in self.checks:
            lines.append(f"\n{marks[c.status]}: {c.check}")
            lines.append(f"       {c.message}")
        lines.append("\n" + "=" * 60)
        if self.is_valid:
            lines.append(f"RESULT: VALID - {len(self.warnings)} warning(s)")
        else:
            lines.append(f"RESULT: INVALID - {len(self.failed)} check(s) failed")
        lines.append("=" * 60)
        return "\n".join(lines)


class TokenVerifier:
    """
    Args:
        rpc: read-only origin-chain access; None verifies offline only
        program_id: expected bridge program; enables the asset class and
            program invocation checks
    """

    def __init__(self, rpc: Optional[OriginRpc] = None, program_id: Optional[str] = None):
        self.rpc = rpc
        self.program_id = program_id

    def verify(self, artifact: Dict[str, Any]) -> VerificationReport:
        report = VerificationReport()
        try:
            genesis = artifact["genesis"]
            data = genesis["data"]
            inclusion = genesis["inclusionProof"]
        except (KeyError, TypeError):
            data = inclusion = None
        if not isinstance(data, dict) or not isinstance(inclusion, dict):
            report.add("artifact_structure", CheckStatus.FAIL, "Artifact lacks genesis data or inclusion proof")
            return self._finish(report)
        report.asset_id = data.get("tokenId")

        # 1. inclusion proof
        self._check_inclusion(report, data, inclusion)

        # 2. payload
        payload = self._check_payload(report, data)
        if payload is None:
            return self._finish(report)
        lock = payload["lockEvent"]
        origin = payload["originTransaction"]

        # 3. commitment
        commitment = commitment_string(
            lock["lockId"], origin["signature"], origin["blockHeight"],
            lock["user"], lock["amount"], lock["nonce"], lock["timestamp"],
        )
        report.add("commitment_reconstruction", CheckStatus.PASS, commitment)

        # 4. signature
        signature = bytes.fromhex(payload["minterSignature"])
        public_key = self._check_signature(report, commitment, signature, lock, data)

        # 5. identity
        self._check_identity(report, commitment, signature, public_key, data, inclusion)

        # 6. origin transaction
        embedded = self._check_origin_transaction(report, origin)

        # 7. event re-extraction
        self._check_event_reextraction(report, lock, origin["signature"], embedded)

        return self._finish(report)

    def _finish(self, report: VerificationReport) -> VerificationReport:
        audit_log.verification_result(
            report.asset_id or "<unknown>", report.verdict, [c.check for c in report.failed]
        )
        return report

    # ------------------------------------------------------------------
    # Individual checks
    # ------------------------------------------------------------------

    def _check_inclusion(self, report: VerificationReport, data: Dict[str, Any], inclusion: Dict[str, Any]) -> None:
        valid, reason = verify_inclusion_proof(inclusion)
        report.add("inclusion_proof", CheckStatus.PASS if valid else CheckStatus.FAIL, reason)

        try:
            expected = transaction_hash(data)
        except ValueError as e:
            report.add("genesis_transaction_hash", CheckStatus.FAIL, f"Genesis data not hashable: {e}")
            return
        if inclusion.get("transactionHash") == expected:
            report.add("genesis_transaction_hash", CheckStatus.PASS, "Genesis data matches committed hash")
        else:
            report.add(
                "genesis_transaction_hash", CheckStatus.FAIL,
                f"Committed hash {inclusion.get('transactionHash')} != recomputed {expected}",
            )

    def _check_payload(self, report: VerificationReport, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        token_data = data.get("tokenData")
        try:
            payload = from_token_data(token_data)
        except (ValueError, TypeError) as e:
            report.add("payload_decode", CheckStatus.FAIL, f"tokenData does not decode: {e}")
            return None

        if data.get("dataHash") == sha256_hex(bytes.fromhex(token_data)):
            report.add("data_hash", CheckStatus.PASS, "dataHash matches tokenData")
        else:
            report.add("data_hash", CheckStatus.FAIL, "dataHash does not match tokenData")

        if payload.get("bridgeType") != BRIDGE_TYPE:
            report.add("payload_decode", CheckStatus.FAIL, f"bridgeType is {payload.get('bridgeType')!r}")
            return None

        lock = payload.get("lockEvent")
        origin = payload.get("originTransaction")
        if not isinstance(lock, dict) or not isinstance(origin, dict):
            report.add("payload_decode", CheckStatus.FAIL, "lockEvent or originTransaction missing")
            return None
        missing = [f"lockEvent.{k}" for k in LOCK_EVENT_FIELDS if lock.get(k) in (None, "")]
        missing += [f"originTransaction.{k}" for k in ORIGIN_FIELDS if origin.get(k) in (None, "")]
        if missing:
            report.add("payload_decode", CheckStatus.FAIL, f"Missing fields: {', '.join(missing)}")
            return None

        sig_hex = payload.get("minterSignature")
        if not is_hex(sig_hex or "", SIGNATURE_LENGTH * 2):
            report.add("payload_decode", CheckStatus.FAIL, "minterSignature is not 65-byte hex")
            return None

        try:
            LockEvent.from_dict(lock).validate()
        except InvalidEventStructure as e:
            report.add("payload_decode", CheckStatus.FAIL, f"Lock event invalid: {e}")
            return None

        report.add("payload_decode", CheckStatus.PASS, f"{BRIDGE_TYPE} payload with complete lock event")
        return payload

    def _check_signature(
        self,
        report: VerificationReport,
        commitment: str,
        signature: bytes,
        lock: Dict[str, Any],
        data: Dict[str, Any],
    ) -> Optional[bytes]:
        digest = commitment_digest(commitment)
        public_key = recover_public_key(signature, digest)
        if public_key is None or not verify_signature(signature, digest, public_key):
            report.add("minter_signature", CheckStatus.FAIL, "Signature does not recover to a valid public key")
            return None

        # the recovered key must be the recipient's own key
        address = address_for_public_key(public_key)
        recipient = canonical_recipient(lock["targetRecipient"])
        if address != recipient:
            report.add(
                "minter_signature", CheckStatus.FAIL,
                f"Recovered minter address {address} does not match recipient {recipient}",
            )
            return None
        report.add("minter_signature", CheckStatus.PASS, f"Recovered minter key {public_key.hex()} owns {recipient}")

        if data.get("recipient") == recipient:
            report.add("token_recipient", CheckStatus.PASS, recipient)
        else:
            report.add("token_recipient", CheckStatus.FAIL, f"Token recipient {data.get('recipient')} != {recipient}")
        return public_key

    def _check_identity(
        self,
        report: VerificationReport,
        commitment: str,
        signature: bytes,
        public_key: Optional[bytes],
        data: Dict[str, Any],
        inclusion: Dict[str, Any],
    ) -> None:
        asset_id = derive_asset_id(commitment, signature)
        if asset_id == data.get("tokenId"):
            report.add("asset_id", CheckStatus.PASS, asset_id)
        else:
            report.add(
                "asset_id", CheckStatus.FAIL,
                f"{IdentityDerivationMismatch.code}: declared {data.get('tokenId')}, derived {asset_id}",
            )

        if self.program_id:
            class_id = derive_asset_class_id(self.program_id)
            status = CheckStatus.PASS if class_id == data.get("tokenType") else CheckStatus.FAIL
            report.add("asset_class_id", status, f"expected {class_id}, declared {data.get('tokenType')}")
        else:
            report.add("asset_class_id", CheckStatus.WARN, "No bridge program configured; asset class not checked")

        salt = derive_salt(commitment)
        report.add(
            "salt", CheckStatus.PASS if salt == data.get("salt") else CheckStatus.FAIL,
            f"expected {salt}, declared {data.get('salt')}",
        )

        if public_key is not None and is_hex(data.get("tokenId") or "", 64):
            request_id = derive_request_id(public_key, data["tokenId"])
            status = CheckStatus.PASS if request_id == inclusion.get("requestId") else CheckStatus.FAIL
            report.add("request_id", status, f"expected {request_id}, committed {inclusion.get('requestId')}")

    def _check_origin_transaction(
        self, report: VerificationReport, origin: Dict[str, Any]
    ) -> Optional[OriginTransaction]:
        signature = origin["signature"]

        if self.rpc is None:
            report.add("origin_status", CheckStatus.WARN, "Offline verification; origin chain not queried")
        else:
            try:
                status = self.rpc.get_signature_status(signature)
            except RpcError as e:
                status = None
                report.add("origin_status", CheckStatus.FAIL, f"Origin RPC unavailable: {e}")
            else:
                if status is None:
                    report.add("origin_status", CheckStatus.FAIL, f"Transaction {signature} not found on origin chain")
                elif status.get("err") is not None:
                    report.add("origin_status", CheckStatus.FAIL, f"Transaction failed: {status.get('err')}")
                elif status.get("confirmationStatus") not in CONFIRMATION_STATUSES:
                    report.add("origin_status", CheckStatus.FAIL, f"Unknown status {status.get('confirmationStatus')}")
                else:
                    report.add("origin_status", CheckStatus.PASS, f"Transaction {status.get('confirmationStatus')}")

        raw = origin.get("rawTransaction")
        if not raw:
            report.add("embedded_transaction", CheckStatus.WARN, "No embedded transaction data")
            return None
        try:
            tx = OriginTransaction.from_dict(signature, raw)
            primary = tx.primary_signature
        except TransactionValidationFailed as e:
            report.add("embedded_transaction", CheckStatus.FAIL, str(e))
            return None
        if primary != signature:
            report.add("embedded_transaction", CheckStatus.FAIL, f"Primary signature {primary} != claimed {signature}")
            return None
        if not tx.verify_primary_signature():
            report.add("embedded_transaction", CheckStatus.FAIL, "Ed25519 signature does not verify against fee payer")
            return None
        if self.program_id and self.program_id not in tx.invoked_programs():
            report.add("embedded_transaction", CheckStatus.FAIL, f"Bridge program {self.program_id} not invoked")
            return None
        report.add("embedded_transaction", CheckStatus.PASS, f"Signed by fee payer {tx.fee_payer}")
        return tx

    def _check_event_reextraction(
        self,
        report: VerificationReport,
        lock: Dict[str, Any],
        signature: str,
        embedded: Optional[OriginTransaction],
    ) -> None:
        claimed = LockEvent.from_dict(lock)

        if embedded is not None:
            found = find_lock_event(embedded.log_messages)
            if found is None:
                report.add("embedded_event", CheckStatus.WARN, "Embedded logs carry no TokenLocked event")
            elif found != claimed:
                report.add("embedded_event", CheckStatus.FAIL, _diff(found, claimed))
            else:
                report.add("embedded_event", CheckStatus.PASS, "Embedded logs match lock event")

        if self.rpc is None:
            return
        try:
            result = self.rpc.get_transaction(signature, "confirmed")
        except RpcError as e:
            report.add("origin_event", CheckStatus.WARN, f"Origin RPC unavailable: {e}")
            return
        if result is None:
            report.add("origin_event", CheckStatus.WARN, "Origin transaction no longer retrievable")
            return
        logs = (result.get("meta") or {}).get("logMessages") or []
        found = find_lock_event(logs)
        if found is None:
            report.add("origin_event", CheckStatus.WARN, "Origin logs unavailable or truncated")
        elif found != claimed:
            report.add("origin_event", CheckStatus.FAIL, _diff(found, claimed))
        else:
            report.add("origin_event", CheckStatus.PASS, "Origin chain logs match lock event")


def _diff(actual: LockEvent, claimed: LockEvent) -> str:
    a, c = actual.to_dict(), claimed.to_dict()
    fields = [k for k in a if a[k] != c[k]]
    return "Lock event mismatch in " + ", ".join(fields)
