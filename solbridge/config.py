"""
Configuration module for solbridge.

All settings come from ``SOLBRIDGE_*`` environment variables through
``BridgeConfig.from_env()``. The resulting object is passed explicitly to
the components that need it; nothing reads the environment after startup.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

# ============================================================
# Defaults
# ============================================================

DEFAULT_RPC_URL = "https://api.testnet.solana.com"
DEFAULT_PROGRAM_ID = "9q5thPnZG7FKKNr61wceXdfuy2QRLYky8RTJonh2YzyB"
DEFAULT_AGGREGATOR_URL = "https://goggregator-test.unicity.network:443"
DEFAULT_OUTPUT_DIR = "bridge-output"
DEFAULT_MINTER_WALLET = "minter-wallet.json"
DEFAULT_SOLANA_WALLET = os.path.join("~", ".config", "solana", "id.json")
STATE_FILE_NAME = "processed-transactions.json"

TARGET_MODES = ("aggregator", "memory")
ARTIFACT_SINKS = ("file", "s3_object_lock")
CLUSTERS = ("mainnet-beta", "testnet", "devnet", "localnet")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, "").split(",") if item.strip()]


@dataclass
class BridgeConfig:
    rpc_url: str = DEFAULT_RPC_URL
    program_id: str = DEFAULT_PROGRAM_ID
    cluster: str = "testnet"
    rpc_timeout: float = 30.0

    target_mode: str = "aggregator"
    aggregator_url: str = DEFAULT_AGGREGATOR_URL
    aggregator_api_key: Optional[str] = None
    inclusion_timeout: float = 60.0
    inclusion_poll_interval: float = 1.0

    output_dir: str = DEFAULT_OUTPUT_DIR
    state_file: Optional[str] = None
    minter_wallet: str = DEFAULT_MINTER_WALLET
    solana_wallet: str = DEFAULT_SOLANA_WALLET

    pending_threshold: int = 10
    poll_interval: float = 3.0
    missed_poll_interval: float = 600.0
    missed_poll_limit: int = 50
    flush_every: int = 5
    max_backoff: float = 300.0
    allow_pending_mints: bool = True
    trusted_checkpoints: List[str] = field(default_factory=list)

    artifact_sink: str = "file"
    s3_bucket: Optional[str] = None
    s3_prefix: str = "solbridge/artifacts/"
    s3_retention_days: int = 365
    s3_legal_hold: str = "OFF"

    log_level: str = "INFO"
    log_json: bool = True
    log_file: Optional[str] = None

    def __post_init__(self):
        if not self.state_file:
            self.state_file = os.path.join(self.output_dir, STATE_FILE_NAME)

    @classmethod
    def from_env(cls) -> "BridgeConfig":
        """Build a configuration from ``SOLBRIDGE_*`` environment variables."""
        return cls(
            rpc_url=os.getenv("SOLBRIDGE_RPC_URL", DEFAULT_RPC_URL),
            program_id=os.getenv("SOLBRIDGE_PROGRAM_ID", DEFAULT_PROGRAM_ID),
            cluster=os.getenv("SOLBRIDGE_CLUSTER", "testnet"),
            rpc_timeout=float(os.getenv("SOLBRIDGE_RPC_TIMEOUT", "30")),
            target_mode=os.getenv("SOLBRIDGE_TARGET", "aggregator"),
            aggregator_url=os.getenv("SOLBRIDGE_AGGREGATOR_URL", DEFAULT_AGGREGATOR_URL),
            aggregator_api_key=os.getenv("SOLBRIDGE_AGGREGATOR_API_KEY") or None,
            inclusion_timeout=float(os.getenv("SOLBRIDGE_INCLUSION_TIMEOUT", "60")),
            inclusion_poll_interval=float(os.getenv("SOLBRIDGE_INCLUSION_POLL_INTERVAL", "1")),
            output_dir=os.getenv("SOLBRIDGE_OUTPUT_DIR", DEFAULT_OUTPUT_DIR),
            state_file=os.getenv("SOLBRIDGE_STATE_FILE") or None,
            minter_wallet=os.getenv("SOLBRIDGE_MINTER_WALLET", DEFAULT_MINTER_WALLET),
            solana_wallet=os.getenv("SOLBRIDGE_SOLANA_WALLET", DEFAULT_SOLANA_WALLET),
            pending_threshold=int(os.getenv("SOLBRIDGE_PENDING_SLOTS", "10")),
            poll_interval=float(os.getenv("SOLBRIDGE_POLL_INTERVAL", "3")),
            missed_poll_interval=float(os.getenv("SOLBRIDGE_MISSED_POLL_INTERVAL", "600")),
            missed_poll_limit=int(os.getenv("SOLBRIDGE_MISSED_POLL_LIMIT", "50")),
            flush_every=int(os.getenv("SOLBRIDGE_FLUSH_EVERY", "5")),
            max_backoff=float(os.getenv("SOLBRIDGE_MAX_BACKOFF", "300")),
            allow_pending_mints=_env_bool("SOLBRIDGE_ALLOW_PENDING_MINTS", True),
            trusted_checkpoints=_env_list("SOLBRIDGE_TRUSTED_CHECKPOINTS"),
            artifact_sink=os.getenv("SOLBRIDGE_ARTIFACT_SINK", "file"),
            s3_bucket=os.getenv("SOLBRIDGE_S3_BUCKET") or None,
            s3_prefix=os.getenv("SOLBRIDGE_S3_PREFIX", "solbridge/artifacts/"),
            s3_retention_days=int(os.getenv("SOLBRIDGE_S3_RETENTION_DAYS", "365")),
            s3_legal_hold=os.getenv("SOLBRIDGE_S3_LEGAL_HOLD", "OFF"),
            log_level=os.getenv("SOLBRIDGE_LOG_LEVEL", "INFO"),
            log_json=_env_bool("SOLBRIDGE_LOG_JSON", True),
            log_file=os.getenv("SOLBRIDGE_LOG_FILE") or None,
        )

    def validate(self) -> List[str]:
        """
        Check the configuration for values the bridge cannot run with.
        Returns a list of problems; empty means valid.
        """
        problems = []
        if not self.rpc_url:
            problems.append("rpc_url is required")
        if not self.program_id:
            problems.append("program_id is required")
        if self.target_mode not in TARGET_MODES:
            problems.append(f"target_mode must be one of {', '.join(TARGET_MODES)}")
        if self.target_mode == "aggregator" and not self.aggregator_url:
            problems.append("aggregator_url is required in aggregator mode")
        if self.artifact_sink not in ARTIFACT_SINKS:
            problems.append(f"artifact_sink must be one of {', '.join(ARTIFACT_SINKS)}")
        if self.artifact_sink == "s3_object_lock" and not self.s3_bucket:
            problems.append("s3_bucket is required for the s3_object_lock sink")
        if self.s3_legal_hold not in ("ON", "OFF"):
            problems.append("s3_legal_hold must be ON or OFF")
        if self.pending_threshold < 0:
            problems.append("pending_threshold must not be negative")
        if self.poll_interval <= 0 or self.missed_poll_interval <= 0:
            problems.append("poll intervals must be positive")
        if self.missed_poll_limit <= 0:
            problems.append("missed_poll_limit must be positive")
        if self.flush_every <= 0:
            problems.append("flush_every must be positive")
        if self.inclusion_timeout <= 0:
            problems.append("inclusion_timeout must be positive")
        if str(self.log_level).upper() not in LOG_LEVELS:
            problems.append(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return problems

    def file_status(self) -> Dict[str, bool]:
        """Which of the configured local files exist."""
        paths = {
            "minter_wallet": self.minter_wallet,
            "solana_wallet": os.path.expanduser(self.solana_wallet),
            "state_file": self.state_file,
        }
        return {name: Path(path).exists() for name, path in paths.items()}
