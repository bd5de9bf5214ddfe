"""
solbridge Error Taxonomy

Three families:
- FatalBridgeError: the proof chain is broken for this event; it is never minted.
- ExpectedDuplicate: the event was already handled; processing may mark it done.
- ExternalUnavailable: an RPC or network dependency failed; retry later.

Pending confirmation is a verdict (see oracle.BlockVerdict), not an exception.
"""

from typing import Optional


class BridgeError(Exception):
    """Base class for all bridge errors."""

    code = "BRIDGE_ERROR"

    def __init__(self, message: str = "", detail: Optional[dict] = None):
        super().__init__(message or self.code)
        self.detail = detail or {}

    def to_dict(self) -> dict:
        return {"code": self.code, "message": str(self), "detail": self.detail}


# ============================================================
# Fatal
# ============================================================

class FatalBridgeError(BridgeError):
    code = "FATAL"


class MalformedEvent(FatalBridgeError):
    """Event bytes are missing, truncated, or carry the wrong discriminator."""
    code = "MALFORMED_EVENT"


class InvalidEventStructure(FatalBridgeError):
    """A decoded lock event violates a field constraint."""
    code = "INVALID_EVENT_STRUCTURE"


class BlockVerificationFailed(FatalBridgeError):
    code = "BLOCK_VERIFICATION_FAILED"


class SignatureMismatch(FatalBridgeError):
    """Embedded transaction's primary signature differs from the claimed one."""
    code = "SIGNATURE_MISMATCH"


class IdentityDerivationMismatch(FatalBridgeError):
    code = "IDENTITY_DERIVATION_MISMATCH"


class ProgramNotInvoked(FatalBridgeError):
    code = "PROGRAM_NOT_INVOKED"


class TransactionValidationFailed(FatalBridgeError):
    code = "TRANSACTION_VALIDATION_FAILED"


class TransactionNotFound(FatalBridgeError):
    code = "TRANSACTION_NOT_FOUND"


class TransactionFailed(FatalBridgeError):
    code = "TRANSACTION_FAILED"


# ============================================================
# Expected duplicates
# ============================================================

class ExpectedDuplicate(BridgeError):
    code = "EXPECTED_DUPLICATE"


class RequestIdExists(ExpectedDuplicate):
    """The target network already holds a commitment for this request id."""
    code = "REQUEST_ID_EXISTS"


# ============================================================
# External availability
# ============================================================

class ExternalUnavailable(BridgeError):
    code = "EXTERNAL_UNAVAILABLE"


class RpcError(ExternalUnavailable):
    code = "RPC_ERROR"


class TargetNetworkError(ExternalUnavailable):
    code = "TARGET_NETWORK_ERROR"


class InclusionTimeout(ExternalUnavailable):
    code = "INCLUSION_TIMEOUT"
