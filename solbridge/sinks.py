"""
Artifact sinks for minted tokens and their companion records.

FileArtifactSink writes pretty-printed JSON into the output directory.
S3ObjectLockSink writes each document as an immutable object to a bucket
with Object Lock enabled.
Docs: https://docs.aws.amazon.com/AmazonS3/latest/userguide/object-lock.html
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from .config import BridgeConfig

logger = logging.getLogger(__name__)


def token_file_name(prefix: str) -> str:
    return f"unicity-token-{prefix}.json"


def genesis_record_name(prefix: str) -> str:
    return f"genesis-record-{prefix}.json"


def validation_metadata_name(prefix: str) -> str:
    return f"validation-metadata-{prefix}.json"


class ArtifactSink(ABC):
    @abstractmethod
    def write(self, name: str, document: Dict[str, Any]) -> str:
        """Persist ``document`` under ``name``; returns where it was stored."""
        pass


class FileArtifactSink(ArtifactSink):
    def __init__(self, output_dir: str):
        self.output_dir = output_dir

    def write(self, name: str, document: Dict[str, Any]) -> str:
        os.makedirs(self.output_dir, exist_ok=True)
        path = os.path.join(self.output_dir, name)
        fd, tmp_path = tempfile.mkstemp(prefix=".artifact-", suffix=".tmp", dir=self.output_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        logger.debug("Wrote %s", path)
        return path


class S3ObjectLockSink(ArtifactSink):
    """Requires a bucket with Object Lock enabled."""

    def __init__(self, bucket: str, prefix: str, retention_days: int, legal_hold: str = "OFF", client=None):
        self.bucket = bucket
        self.prefix = prefix.rstrip("/") + "/"
        self.retention_days = retention_days
        self.legal_hold = legal_hold
        self._client = client

    def _s3(self):
        if self._client is None:
            try:
                import boto3
            except ImportError as e:
                raise RuntimeError("boto3 required for the S3 Object Lock sink. Install solbridge[s3]") from e
            self._client = boto3.client("s3")
        return self._client

    def write(self, name: str, document: Dict[str, Any]) -> str:
        key = f"{self.prefix}{name}"
        retain_until = datetime.now(timezone.utc) + timedelta(days=int(self.retention_days))
        self._s3().put_object(
            Bucket=self.bucket,
            Key=key,
            Body=json.dumps(document, indent=2).encode("utf-8"),
            ContentType="application/json",
            ObjectLockMode="COMPLIANCE",
            ObjectLockRetainUntilDate=retain_until,
            ObjectLockLegalHoldStatus=self.legal_hold,
        )
        return f"s3://{self.bucket}/{key}"


def get_artifact_sink(config: BridgeConfig) -> ArtifactSink:
    if config.artifact_sink == "s3_object_lock":
        if not config.s3_bucket:
            raise ValueError("SOLBRIDGE_S3_BUCKET is required for the s3_object_lock sink")
        return S3ObjectLockSink(
            bucket=config.s3_bucket,
            prefix=config.s3_prefix,
            retention_days=config.s3_retention_days,
            legal_hold=config.s3_legal_hold,
        )
    return FileArtifactSink(config.output_dir)
