"""
solbridge Replay Guard

Local record of origin transactions that already produced a mint attempt,
plus the highest slot scanned. Entries are only ever added and the scanned
height only increases.

The guard also holds the genesis data of mints that were committed to the
target network but not yet persisted, keyed by request id. A retried mint
rebuilds its token from that record instead of re-deriving it.

This is bookkeeping only: the target network's request-id uniqueness is
the authoritative replay protection, so losing this file causes at most a
rejected duplicate submission.
"""

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Set

logger = logging.getLogger(__name__)

DEFAULT_FLUSH_EVERY = 5


class ReplayGuard(ABC):
    """Abstract interface for the processed-transaction set."""

    def __init__(self, flush_every: int = DEFAULT_FLUSH_EVERY):
        self._lock = threading.RLock()
        self._processed: Set[str] = set()
        self._in_flight: Dict[str, Dict[str, Any]] = {}
        self._last_checked_height = 0
        self._unflushed = 0
        self.flush_every = flush_every

    def is_processed(self, signature: str) -> bool:
        with self._lock:
            return signature in self._processed

    def mark_processed(self, signature: str, height: int) -> None:
        """Record ``signature``; flushes after every ``flush_every`` new entries."""
        with self._lock:
            if signature not in self._processed:
                self._processed.add(signature)
                self._unflushed += 1
            self._advance(height)
            if self.flush_every and self._unflushed >= self.flush_every:
                self.flush()

    def update_checked_height(self, height: int) -> None:
        with self._lock:
            self._advance(height)

    def _advance(self, height: int) -> None:
        if height > self._last_checked_height:
            self._last_checked_height = height

    def record_in_flight(self, request_id: str, genesis_data: Dict[str, Any]) -> None:
        """Remember committed genesis data; flushed before the commitment is sent."""
        with self._lock:
            self._in_flight[request_id] = genesis_data
            self.flush()

    def in_flight(self, request_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._in_flight.get(request_id)

    def clear_in_flight(self, request_id: str) -> None:
        with self._lock:
            if self._in_flight.pop(request_id, None) is not None:
                self._unflushed += 1

    @property
    def last_checked_height(self) -> int:
        with self._lock:
            return self._last_checked_height

    @property
    def processed(self) -> Set[str]:
        with self._lock:
            return set(self._processed)

    def __len__(self) -> int:
        with self._lock:
            return len(self._processed)

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "processedTransactions": sorted(self._processed),
                "lastCheckedHeight": self._last_checked_height,
                "inFlightMints": dict(self._in_flight),
                "savedAt": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            }

    def _merge(
        self,
        signatures: Iterable[str],
        height: int,
        in_flight: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> None:
        with self._lock:
            self._processed.update(signatures)
            for request_id, data in (in_flight or {}).items():
                self._in_flight.setdefault(request_id, data)
            self._advance(height)

    @abstractmethod
    def load(self) -> None:
        pass

    @abstractmethod
    def flush(self) -> None:
        pass


class InMemoryReplayGuard(ReplayGuard):
    """Replay guard without persistence."""

    def load(self) -> None:
        pass

    def flush(self) -> None:
        with self._lock:
            self._unflushed = 0


class JsonFileReplayGuard(ReplayGuard):
    """
    Replay guard persisted as JSON:
        {"processedTransactions": [...], "lastCheckedHeight": int,
         "inFlightMints": {requestId: genesisData}, "savedAt": str}

    Writes go to a temp file in the same directory followed by ``os.replace``,
    so a crash never leaves a truncated state file.
    """

    def __init__(self, path: str, flush_every: int = DEFAULT_FLUSH_EVERY):
        super().__init__(flush_every)
        self.path = path

    def load(self) -> None:
        """Merge persisted state into memory. A missing file is an empty set."""
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            logger.info("No replay state at %s, starting empty", self.path)
            return
        self._merge(
            data.get("processedTransactions") or [],
            int(data.get("lastCheckedHeight") or 0),
            data.get("inFlightMints"),
        )
        logger.info(
            "Loaded %d processed transactions (last checked height %d) from %s",
            len(self), self.last_checked_height, self.path,
        )

    def flush(self) -> None:
        with self._lock:
            data = self.snapshot()
            directory = os.path.dirname(os.path.abspath(self.path))
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".replay-", suffix=".tmp", dir=directory)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
            self._unflushed = 0
        logger.debug("Replay state flushed to %s", self.path)


def get_replay_guard(path: Optional[str], flush_every: int = DEFAULT_FLUSH_EVERY) -> ReplayGuard:
    if path:
        return JsonFileReplayGuard(path, flush_every)
    return InMemoryReplayGuard(flush_every)
