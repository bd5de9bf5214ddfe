"""
solbridge: Solana to Unicity lock/mint bridge

Version: 1.0.0

SOL locked in the bridge program on Solana is minted as a token on the
Unicity aggregation layer. Every minted token carries the complete signed
origin transaction, so anyone can verify it later without trusting the
bridge operator:

    lock event -> Proof -> ValidatedProof -> MintCommitment -> token artifact

Usage:
    from solbridge import (
        BridgeConfig,
        BridgeMonitor,
        MinterKeyPair,
        TokenVerifier,
    )

    config = BridgeConfig.from_env()
    minter = MinterKeyPair.load(config.minter_wallet)

    # Mint tokens for lock events until interrupted
    BridgeMonitor.from_config(config, minter).run()

    # Verify a token offline
    report = TokenVerifier(program_id=config.program_id).verify(artifact)
    if report.is_valid:
        ...
"""

__version__ = "1.0.0"

# Configuration and errors
from .config import BridgeConfig
from .errors import (
    BridgeError,
    ExpectedDuplicate,
    ExternalUnavailable,
    FatalBridgeError,
)

# Origin chain
from .events import LockEvent, encode_lock_event, extract_lock_event, find_lock_event
from .oracle import BlockVerdict, ConfirmationOracle, VerdictStatus
from .origin_tx import OriginTransaction
from .proof import Proof, ProofBuilder
from .rpc import OriginRpc, SolanaRpcClient
from .validator import ProofValidator, ValidatedProof, ValidationStatus

# Minting
from .identity import CommitmentDeriver, MintCommitment
from .minter import MintOutcome, MintResult, MintSubmitter
from .signing import MinterKeyPair
from .target import AggregatorClient, InMemoryTargetNetwork, TargetNetworkClient

# Operation
from .monitor import BridgeMonitor, ProcessStatus
from .replay import InMemoryReplayGuard, JsonFileReplayGuard, ReplayGuard
from .verifier import TokenVerifier, VerificationReport

__all__ = [
    "__version__",
    "BridgeConfig",
    "BridgeError",
    "ExpectedDuplicate",
    "ExternalUnavailable",
    "FatalBridgeError",
    "LockEvent",
    "encode_lock_event",
    "extract_lock_event",
    "find_lock_event",
    "BlockVerdict",
    "ConfirmationOracle",
    "VerdictStatus",
    "OriginTransaction",
    "Proof",
    "ProofBuilder",
    "OriginRpc",
    "SolanaRpcClient",
    "ProofValidator",
    "ValidatedProof",
    "ValidationStatus",
    "CommitmentDeriver",
    "MintCommitment",
    "MintOutcome",
    "MintResult",
    "MintSubmitter",
    "MinterKeyPair",
    "AggregatorClient",
    "InMemoryTargetNetwork",
    "TargetNetworkClient",
    "BridgeMonitor",
    "ProcessStatus",
    "InMemoryReplayGuard",
    "JsonFileReplayGuard",
    "ReplayGuard",
    "TokenVerifier",
    "VerificationReport",
]
