"""
solbridge Bridge Monitor

Watches the bridge program on the origin chain and mints a token for every
lock event.

Threads:
- the subscriber polls the program's recent signatures every
  ``poll_interval`` seconds and scans the last ``missed_poll_limit``
  signatures every ``missed_poll_interval`` seconds. It only enqueues.
- the processing loop takes one signature at a time off the queue and runs
  extraction, proof building, validation, minting and persistence.

A signature is recorded in the replay guard only after a definitive
outcome. Unavailable external systems and deferred pending proofs are
requeued with exponential backoff. A mint interrupted after its commitment
resumes on retry from the genesis data the guard recorded for it.
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Set, Tuple

from .artifacts import artifact_prefix, build_genesis_record, build_validation_metadata
from .config import BridgeConfig
from .errors import ExternalUnavailable, FatalBridgeError, TransactionNotFound
from .identity import CommitmentDeriver
from .logging_config import audit_log, set_correlation_id
from .minter import MintOutcome, MintResult, MintSubmitter
from .oracle import ConfirmationOracle
from .proof import ProofBuilder
from .replay import ReplayGuard, get_replay_guard
from .rpc import OriginRpc, SolanaRpcClient
from .signing import MinterKeyPair
from .sinks import (
    ArtifactSink,
    genesis_record_name,
    get_artifact_sink,
    token_file_name,
    validation_metadata_name,
)
from .target import TargetNetworkClient, get_target_network
from .validator import ProofValidator, ValidatedProof

logger = logging.getLogger(__name__)

SOURCE_SUBSCRIPTION = "subscription"
SOURCE_MISSED_POLL = "missed-poll"
SOURCE_MANUAL = "manual"

DEFAULT_MAX_ATTEMPTS = 10


class ProcessStatus(str, Enum):
    MINTED = "MINTED"
    DUPLICATE = "DUPLICATE"
    UNAUTHORIZED = "UNAUTHORIZED"
    DEFERRED = "DEFERRED"
    NO_EVENT = "NO_EVENT"
    ALREADY_PROCESSED = "ALREADY_PROCESSED"
    REJECTED = "REJECTED"
    RETRY = "RETRY"

    @property
    def is_final(self) -> bool:
        return self not in (ProcessStatus.DEFERRED, ProcessStatus.RETRY)


@dataclass
class ProcessResult:
    signature: str
    status: ProcessStatus
    reason: str = ""
    asset_id: Optional[str] = None
    locations: List[str] = field(default_factory=list)


class BridgeMonitor:
    """
    Args:
        config: bridge configuration
        rpc: origin-chain RPC
        builder: proof builder sharing ``rpc``
        validator: proof validator for the bridge program
        submitter: mint submitter holding the minter key
        guard: replay guard, already loaded
        sink: destination for minted tokens and companion records
        clock: monotonic time source
    """

    def __init__(
        self,
        config: BridgeConfig,
        rpc: OriginRpc,
        builder: ProofBuilder,
        validator: ProofValidator,
        submitter: MintSubmitter,
        guard: ReplayGuard,
        sink: ArtifactSink,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.rpc = rpc
        self.builder = builder
        self.validator = validator
        self.submitter = submitter
        self.guard = guard
        self.sink = sink
        self.max_attempts = max_attempts
        self._clock = clock

        self._queue: "queue.Queue[Tuple[str, Optional[int], str]]" = queue.Queue()
        self._lock = threading.Lock()
        self._pending: Set[str] = set()
        self._attempts: Dict[str, int] = {}
        self._delayed: Dict[str, Tuple[float, Optional[int], str]] = {}
        self._last_seen_signature: Optional[str] = None
        self._last_missed_poll: Optional[float] = None

        self._stop = threading.Event()
        self._subscriber: Optional[threading.Thread] = None
        self.processed_events = 0

    @classmethod
    def from_config(
        cls,
        config: BridgeConfig,
        minter: MinterKeyPair,
        rpc: Optional[OriginRpc] = None,
        target: Optional[TargetNetworkClient] = None,
        guard: Optional[ReplayGuard] = None,
        sink: Optional[ArtifactSink] = None,
        **kwargs,
    ) -> "BridgeMonitor":
        """
        Wire a monitor from configuration; any collaborator may be supplied.
        Remaining keyword arguments go to the constructor.
        """
        if rpc is None:
            rpc = SolanaRpcClient(config.rpc_url, timeout=config.rpc_timeout)
        if target is None:
            target = get_target_network(
                config.target_mode, config.aggregator_url,
                timeout=config.rpc_timeout, api_key=config.aggregator_api_key,
            )
        if guard is None:
            guard = get_replay_guard(config.state_file, config.flush_every)
            guard.load()
        oracle = ConfirmationOracle(rpc, config.pending_threshold, config.trusted_checkpoints)
        submitter = MintSubmitter(
            target,
            CommitmentDeriver(minter, config.program_id),
            allow_pending_mints=config.allow_pending_mints,
            inclusion_timeout=config.inclusion_timeout,
            inclusion_poll_interval=config.inclusion_poll_interval,
            guard=guard,
        )
        return cls(
            config=config,
            rpc=rpc,
            builder=ProofBuilder(rpc, oracle),
            validator=ProofValidator(rpc, oracle, config.program_id),
            submitter=submitter,
            guard=guard,
            sink=sink or get_artifact_sink(config),
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def enqueue(self, signature: str, slot: Optional[int] = None, source: str = SOURCE_MANUAL) -> bool:
        """Queue ``signature`` unless it is processed, queued or awaiting retry."""
        if self.guard.is_processed(signature):
            return False
        with self._lock:
            if signature in self._pending:
                return False
            self._pending.add(signature)
        self._queue.put((signature, slot, source))
        return True

    @property
    def queue_size(self) -> int:
        return self._queue.qsize()

    @property
    def retry_count(self) -> int:
        with self._lock:
            return len(self._delayed)

    def backoff_delay(self, attempts: int) -> float:
        return min(self.config.poll_interval * (2 ** attempts), self.config.max_backoff)

    def _release_due_retries(self) -> None:
        now = self._clock()
        with self._lock:
            due = [(sig, entry) for sig, entry in self._delayed.items() if entry[0] <= now]
            for sig, _ in due:
                del self._delayed[sig]
        for sig, (_, slot, source) in due:
            self._queue.put((sig, slot, source))

    def _settle(self, signature: str, slot: Optional[int], source: str, result: ProcessResult) -> None:
        with self._lock:
            if result.status.is_final:
                self._pending.discard(signature)
                self._attempts.pop(signature, None)
                return
            attempts = self._attempts.get(signature, 0) + 1
            if attempts > self.max_attempts:
                logger.error(
                    "Giving up on %s after %d attempts: %s", signature, attempts - 1, result.reason
                )
                self._pending.discard(signature)
                self._attempts.pop(signature, None)
                return
            self._attempts[signature] = attempts
            delay = self.backoff_delay(attempts)
            self._delayed[signature] = (self._clock() + delay, slot, source)
        logger.info("Retrying %s in %.0fs (attempt %d): %s", signature, delay, attempts, result.reason)

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def poll_recent(self) -> int:
        """Enqueue program signatures newer than the last one seen, oldest first."""
        records = self.rpc.get_signatures_for_address(
            self.config.program_id,
            limit=self.config.missed_poll_limit,
            until=self._last_seen_signature,
        )
        if records:
            self._last_seen_signature = records[0]["signature"]
        return self._enqueue_records(records, SOURCE_SUBSCRIPTION)

    def poll_missed(self) -> int:
        """Scan the most recent signatures for transactions above the last checked height."""
        self._last_missed_poll = self._clock()
        last_checked = self.guard.last_checked_height
        logger.info("Checking for missed transactions since slot %d", last_checked)
        records = self.rpc.get_signatures_for_address(
            self.config.program_id, limit=self.config.missed_poll_limit
        )
        fresh = [r for r in records if int(r.get("slot") or 0) > last_checked]
        found = self._enqueue_records(fresh, SOURCE_MISSED_POLL)
        if found:
            logger.info("Found %d missed transactions", found)
        return found

    def _enqueue_records(self, records: List[dict], source: str) -> int:
        found = 0
        for record in reversed(records):
            if record.get("err") is not None:
                continue
            if self.enqueue(record["signature"], record.get("slot"), source):
                found += 1
        return found

    def _missed_poll_due(self) -> bool:
        if self._last_missed_poll is None:
            return True
        return self._clock() - self._last_missed_poll >= self.config.missed_poll_interval

    def _subscribe_loop(self) -> None:
        while not self._stop.is_set():
            try:
                if self._missed_poll_due():
                    self.poll_missed()
                self.poll_recent()
            except ExternalUnavailable as e:
                logger.warning("Signature poll failed: %s", e)
            self._stop.wait(self.config.poll_interval)

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def process_signature(
        self, signature: str, slot: Optional[int] = None, source: str = SOURCE_MANUAL
    ) -> ProcessResult:
        """
        Run one origin transaction through the bridge pipeline.

        Fatal errors reject the transaction for good. Unavailable external
        systems yield RETRY and leave the replay guard untouched.
        """
        set_correlation_id(signature)
        try:
            return self._process(signature, slot, source)
        finally:
            set_correlation_id("")

    def _process(self, signature: str, slot: Optional[int], source: str) -> ProcessResult:
        if self.guard.is_processed(signature):
            logger.info("Transaction %s already processed", signature)
            return ProcessResult(signature, ProcessStatus.ALREADY_PROCESSED)

        try:
            proof = self.builder.extract_and_build(signature, slot)
            if proof is None:
                logger.debug("Transaction %s carries no lock event", signature)
                self.guard.mark_processed(signature, slot or 0)
                return ProcessResult(signature, ProcessStatus.NO_EVENT)

            audit_log.lock_detected(signature, proof.slot, source)
            validated = self.validator.validate(proof)
            if not self.validator.validate_cryptographic_chain(validated):
                logger.warning("Cryptographic chain for %s is not yet confirmed", signature)

            result = self.submitter.submit(validated)
        except TransactionNotFound as e:
            # Signatures are listed before the transaction is always served
            return ProcessResult(signature, ProcessStatus.RETRY, reason=str(e))
        except FatalBridgeError as e:
            logger.error("Rejected %s: %s [%s]", signature, e, e.code)
            self.guard.mark_processed(signature, slot or 0)
            return ProcessResult(signature, ProcessStatus.REJECTED, reason=f"{e.code}: {e}")
        except ExternalUnavailable as e:
            logger.warning("External system unavailable for %s: %s", signature, e)
            return ProcessResult(signature, ProcessStatus.RETRY, reason=str(e))

        if result.outcome == MintOutcome.DEFERRED:
            return ProcessResult(signature, ProcessStatus.DEFERRED, reason=result.reason)

        locations = []
        if result.artifact is not None:
            locations = self._persist(validated, result)
            self.processed_events += 1
        self.submitter.complete(result)

        self.guard.mark_processed(signature, validated.block_height)
        return ProcessResult(
            signature,
            ProcessStatus(result.outcome.value),
            reason=result.reason,
            asset_id=result.commitment.asset_id if result.commitment else None,
            locations=locations,
        )

    def _persist(self, proof: ValidatedProof, result: MintResult) -> List[str]:
        prefix = artifact_prefix(proof)
        locations = [self.sink.write(token_file_name(prefix), result.artifact)]
        record = build_genesis_record(proof, result.commitment, self.config.program_id, self.config.cluster)
        locations.append(self.sink.write(genesis_record_name(prefix), record))
        if proof.is_pending:
            metadata = build_validation_metadata(
                proof,
                self.config.rpc_url,
                self.config.program_id,
                retry_after_seconds=int(self.config.missed_poll_interval),
                cluster=self.config.cluster,
                minted=True,
            )
            locations.append(self.sink.write(validation_metadata_name(prefix), metadata))
        audit_log.mint_complete(result.commitment.asset_id, MintOutcome.MINTED.value, locations[0])
        return locations

    def process_once(self, timeout: Optional[float] = 1.0) -> Optional[ProcessResult]:
        """Process the next queued signature; None when nothing arrived within ``timeout``."""
        self._release_due_retries()
        try:
            signature, slot, source = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        try:
            result = self.process_signature(signature, slot, source)
        except Exception as e:
            logger.exception("Unexpected error processing %s", signature)
            result = ProcessResult(signature, ProcessStatus.RETRY, reason=str(e))
        finally:
            self._queue.task_done()
        self._settle(signature, slot, source, result)
        return result

    def drain(self) -> List[ProcessResult]:
        """Process everything currently runnable without waiting."""
        results = []
        while True:
            result = self.process_once(timeout=0)
            if result is None:
                return results
            results.append(result)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._subscriber is not None:
            return
        self._stop.clear()
        self._subscriber = threading.Thread(target=self._subscribe_loop, name="solbridge-subscriber", daemon=True)
        self._subscriber.start()
        logger.info(
            "Monitoring program %s (poll every %ss, missed-transaction scan every %ss)",
            self.config.program_id, self.config.poll_interval, self.config.missed_poll_interval,
        )

    def stop(self) -> None:
        self._stop.set()
        if self._subscriber is not None:
            self._subscriber.join(timeout=self.config.poll_interval + 5)
            self._subscriber = None
        self.guard.flush()
        logger.info(
            "Monitor stopped after %d minted events; %d transactions recorded",
            self.processed_events, len(self.guard),
        )

    def run(self) -> None:
        """Run until ``stop`` is called from another thread or the process is interrupted."""
        self.start()
        try:
            while not self._stop.is_set():
                self.process_once(timeout=1.0)
        finally:
            self.stop()
