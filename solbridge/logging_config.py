"""
Logging configuration for solbridge.

Provides structured JSON logging for audit trails and debugging. Every
record emitted while a lock event is being processed carries the origin
transaction signature as its correlation id.
"""

import json
import logging
import sys
import time
from contextvars import ContextVar
from typing import Any, List, Optional

# Origin transaction currently being processed
correlation_id_var: ContextVar[str] = ContextVar('correlation_id', default='')


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    One object per line, suitable for log aggregation systems.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        correlation_id = correlation_id_var.get()
        if correlation_id:
            log_data["correlation_id"] = correlation_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class AuditLogger:
    """
    Logger for bridge audit events.

    One method per step of the lock-to-mint pipeline so that every
    decision about a lock event leaves a structured record.
    """

    def __init__(self, name: str = "solbridge.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, **kwargs) -> None:
        extra = {
            "event_type": event_type,
            "correlation_id": correlation_id_var.get(),
            **kwargs
        }

        record = self._logger.makeRecord(
            self._logger.name,
            level,
            "",
            0,
            f"{event_type}: {kwargs.get('message', '')}",
            (),
            None
        )
        record.extra_fields = extra
        self._logger.handle(record)

    def lock_detected(self, signature: str, slot: int, source: str) -> None:
        """Log a candidate lock transaction entering the queue."""
        self._log(
            logging.INFO,
            "LOCK_DETECTED",
            signature=signature,
            slot=slot,
            source=source,
            message=f"Lock transaction {signature} detected via {source}"
        )

    def proof_validated(
        self,
        signature: str,
        status: str,
        block_verified: bool,
        confirmation_verified: bool,
        reason: Optional[str] = None
    ) -> None:
        """Log the classification of a proof."""
        level = logging.INFO if status == "VALIDATED" else logging.WARNING
        self._log(
            level,
            "PROOF_VALIDATED",
            signature=signature,
            status=status,
            block_verified=block_verified,
            confirmation_verified=confirmation_verified,
            reason=reason,
            message=f"Proof for {signature} classified {status}"
        )

    def mint_submitted(self, request_id: str, asset_id: str, recipient: str) -> None:
        self._log(
            logging.INFO,
            "MINT_SUBMITTED",
            request_id=request_id,
            asset_id=asset_id,
            recipient=recipient,
            message=f"Mint commitment {request_id} submitted"
        )

    def mint_complete(self, asset_id: str, outcome: str, artifact_path: Optional[str] = None) -> None:
        level = logging.INFO if outcome == "MINTED" else logging.WARNING
        self._log(
            level,
            "MINT_COMPLETE",
            asset_id=asset_id,
            outcome=outcome,
            artifact_path=artifact_path,
            message=f"Mint outcome {outcome} for asset {asset_id}"
        )

    def mint_skipped(self, signature: str, reason: str) -> None:
        """Log a lock event that will not be minted (replay, policy, or fatal error)."""
        self._log(
            logging.WARNING,
            "MINT_SKIPPED",
            signature=signature,
            reason=reason,
            message=f"Mint skipped for {signature}: {reason}"
        )

    def verification_result(self, asset_id: str, verdict: str, failed_checks: List[str]) -> None:
        level = logging.INFO if verdict == "VALID" else logging.ERROR
        self._log(
            level,
            "VERIFICATION_RESULT",
            asset_id=asset_id,
            verdict=verdict,
            failed_checks=failed_checks,
            message=f"Token {asset_id} verified {verdict}"
        )

    def security_event(self, event: str, severity: str = "medium", **details: Any) -> None:
        """Log a security-relevant event such as a signature mismatch."""
        level = {
            "low": logging.INFO,
            "medium": logging.WARNING,
            "high": logging.ERROR,
            "critical": logging.CRITICAL
        }.get(severity, logging.WARNING)

        self._log(
            level,
            "SECURITY_EVENT",
            security_event=event,
            severity=severity,
            **details,
            message=f"Security event: {event}"
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting (recommended for production)
        log_file: Optional file path for log output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    # stderr keeps stdout free for command output
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def set_correlation_id(signature: str) -> None:
    correlation_id_var.set(signature)


audit_log = AuditLogger()
