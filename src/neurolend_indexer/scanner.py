"""
Backfill-then-poll scanner.

The scanner owns all mutable indexing state (current block pointer, buffer,
timers) and runs every chain read, flush and checkpoint save on one thread, so
windows never overlap and a flush never races an append.
"""

from __future__ import annotations

import enum
import time
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Event

import structlog
from prometheus_client import Counter, Gauge

from .batch_writer import EventBatchWriter
from .chain import ChainSourceError, LogSource
from .checkpoint import CheckpointStore
from .classifier import EventClassifier
from .models import Checkpoint, ClassifiedEvent

log = structlog.get_logger(__name__)

events_indexed_total = Counter(
    "neurolend_events_indexed_total",
    "Total events classified and buffered",
    labelnames=("event_name",),
)
windows_processed_total = Counter(
    "neurolend_windows_processed_total", "Total block windows fully processed"
)
window_retries_total = Counter(
    "neurolend_window_retries_total",
    "Total chain reads retried after a transient failure",
    labelnames=("stage",),
)
flush_failures_total = Counter(
    "neurolend_flush_failures_total", "Total failed flush/checkpoint attempts"
)
checkpoint_gauge = Gauge(
    "neurolend_checkpoint_block", "Next block recorded in the persisted checkpoint"
)
current_block_gauge = Gauge(
    "neurolend_current_block", "Next block the scanner will process"
)
index_lag_blocks = Gauge(
    "neurolend_index_lag_blocks", "Blocks behind chain head (latest - current + 1)"
)
scanner_state_gauge = Gauge(
    "neurolend_scanner_state",
    "1 for the scanner's current state, 0 otherwise",
    labelnames=("state",),
)


class ScannerState(str, enum.Enum):
    INITIALIZING = "initializing"
    BACKFILLING = "backfilling"
    LIVE_POLLING = "live_polling"
    ERROR_BACKOFF = "error_backoff"
    STOPPED = "stopped"


class StorageWriteError(RuntimeError):
    """A flush cycle kept failing; the operator has to intervene."""


@dataclass(frozen=True)
class BlockWindow:
    start: int
    end: int

    def span(self) -> int:
        return self.end - self.start + 1


def iter_windows(start: int, end: int, size: int) -> Iterator[BlockWindow]:
    """Yield consecutive windows of `size` blocks covering [start, end], last one clipped."""
    if size < 1:
        raise ValueError("window size must be >= 1")
    block = start
    while block <= end:
        window_end = min(block + size - 1, end)
        yield BlockWindow(block, window_end)
        block = window_end + 1


class Scanner:
    def __init__(
        self,
        source: LogSource,
        writer: EventBatchWriter,
        checkpoints: CheckpointStore,
        *,
        contract_address: str,
        classifier: EventClassifier | None = None,
        batch_size: int = 100,
        flush_threshold: int = 100,
        checkpoint_interval: int = 10,
        poll_interval: float = 30.0,
        retry_backoff: float = 5.0,
        flush_interval: float | None = 60.0,
        storage_retry_attempts: int = 3,
    ):
        if batch_size < 1 or flush_threshold < 1 or checkpoint_interval < 1:
            raise ValueError(
                "batch_size, flush_threshold and checkpoint_interval must be >= 1"
            )
        if storage_retry_attempts < 1:
            raise ValueError("storage_retry_attempts must be >= 1")

        self.source = source
        self.writer = writer
        self.checkpoints = checkpoints
        self.classifier = classifier or EventClassifier()
        self.contract_address = contract_address
        self.batch_size = batch_size
        self.flush_threshold = flush_threshold
        self.checkpoint_interval = checkpoint_interval
        self.poll_interval = poll_interval
        self.retry_backoff = retry_backoff
        self.flush_interval = flush_interval or None
        self.storage_retry_attempts = storage_retry_attempts

        self.current: int | None = None
        self.latest: int | None = None
        self._state = ScannerState.INITIALIZING
        self._resume_state = ScannerState.INITIALIZING
        self._stop_event = Event()
        self._storage_failed = False
        self._windows_since_checkpoint = 0
        self._last_commit = time.monotonic()
        self._set_state(ScannerState.INITIALIZING)

    @classmethod
    def from_settings(cls, settings, source: LogSource) -> "Scanner":
        return cls(
            source,
            EventBatchWriter(settings.output_dir),
            CheckpointStore(settings.checkpoint_path, settings.start_block),
            contract_address=settings.contract_address,
            batch_size=settings.batch_size,
            flush_threshold=settings.flush_threshold,
            checkpoint_interval=settings.checkpoint_interval,
            poll_interval=settings.poll_interval_seconds,
            retry_backoff=settings.retry_backoff_seconds,
            flush_interval=settings.flush_interval_seconds,
            storage_retry_attempts=settings.storage_retry_attempts,
        )

    @property
    def state(self) -> ScannerState:
        return self._state

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def _set_state(self, state: ScannerState) -> None:
        if state is not self._state:
            log.info("scanner_state_changed", old=self._state.value, new=state.value)
        self._state = state
        for member in ScannerState:
            scanner_state_gauge.labels(state=member.value).set(
                1 if member is state else 0
            )

    def stop(self) -> None:
        """Request shutdown. Observed between windows; safe to call from a signal handler."""
        self._stop_event.set()

    def run(self) -> None:
        """Run until stop() is called. Buffered events are flushed on the way out."""
        try:
            checkpoint = self.checkpoints.load()
            self.current = checkpoint.next_block
            current_block_gauge.set(self.current)
            log.info(
                "scanner_starting",
                contract=self.contract_address,
                next_block=self.current,
                batch_size=self.batch_size,
            )

            latest = self._latest_block()
            if latest is None:
                return
            if self.current <= latest:
                self._set_state(ScannerState.BACKFILLING)
                if not self._scan_range(latest):
                    return
                log.info("backfill_completed", next_block=self.current, latest=latest)

            self._set_state(ScannerState.LIVE_POLLING)
            self._poll()
        finally:
            self._shutdown()

    def _poll(self) -> None:
        while not self._stop_event.wait(self.poll_interval):
            latest = self._latest_block()
            if latest is None:
                return
            if latest >= self.current:
                log.debug("new_blocks", start=self.current, end=latest)
                if not self._scan_range(latest):
                    return
            if self._flush_due():
                self._commit()

    def _scan_range(self, latest: int) -> bool:
        """Process [current, latest] window by window. False if stopped part way."""
        for window in iter_windows(self.current, latest, self.batch_size):
            if self.stopped:
                return False
            events = self._fetch_window(window)
            if events is None:
                return False

            self.writer.append(events)
            self.current = window.end + 1
            self._windows_since_checkpoint += 1

            windows_processed_total.inc()
            current_block_gauge.set(self.current)
            index_lag_blocks.set(max(0, latest - self.current + 1))
            for event in events:
                events_indexed_total.labels(event_name=event.event_name).inc()
            log.info(
                "window_processed",
                start=window.start,
                end=window.end,
                events=len(events),
                buffered=self.writer.pending,
            )

            if (
                self.writer.pending >= self.flush_threshold
                or self._windows_since_checkpoint >= self.checkpoint_interval
            ):
                self._commit()
        return True

    def _fetch_window(self, window: BlockWindow) -> list[ClassifiedEvent] | None:
        """
        Fetch and classify one window, retrying it indefinitely on chain errors.

        Nothing is appended until the whole window succeeds, so an abandoned or
        failed attempt leaves no partial output. Returns None if stopped while
        backing off.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                raw_logs = self.source.get_logs(
                    self.contract_address, window.start, window.end
                )
                timestamps: dict[int, int] = {}
                events = []
                for raw_log in raw_logs:
                    if raw_log.block_number not in timestamps:
                        timestamps[raw_log.block_number] = (
                            self.source.get_block_timestamp(raw_log.block_number)
                        )
                    events.append(
                        self.classifier.classify(
                            raw_log, timestamps[raw_log.block_number]
                        )
                    )
            except ChainSourceError as e:
                if not self._back_off(
                    "window", e, attempt, start=window.start, end=window.end
                ):
                    return None
                continue
            self._recover()
            return events

    def _latest_block(self) -> int | None:
        attempt = 0
        while True:
            attempt += 1
            try:
                latest = self.source.latest_block_number()
            except ChainSourceError as e:
                if not self._back_off("latest_block", e, attempt):
                    return None
                continue
            self._recover()
            self.latest = latest
            if self.current is not None:
                index_lag_blocks.set(max(0, latest - self.current + 1))
            return latest

    def _back_off(self, stage: str, error: Exception, attempt: int, **context) -> bool:
        """Enter ERROR_BACKOFF and wait. False if a stop arrived meanwhile."""
        if self._state is not ScannerState.ERROR_BACKOFF:
            self._resume_state = self._state
            self._set_state(ScannerState.ERROR_BACKOFF)
        window_retries_total.labels(stage=stage).inc()
        log.warning(
            "chain_read_failed",
            stage=stage,
            attempt=attempt,
            retry_in=self.retry_backoff,
            error=str(error),
            **context,
        )
        return not self._stop_event.wait(self.retry_backoff)

    def _recover(self) -> None:
        if self._state is ScannerState.ERROR_BACKOFF:
            log.info("chain_read_recovered", resume=self._resume_state.value)
            self._set_state(self._resume_state)

    def _flush_due(self) -> bool:
        return (
            self.flush_interval is not None
            and self.writer.pending > 0
            and time.monotonic() - self._last_commit >= self.flush_interval
        )

    def _commit(self) -> None:
        """
        Flush the buffer, then persist the checkpoint.

        Flushing first means the checkpoint never points past an event that
        is still only in memory. Failures are retried; after the last attempt
        StorageWriteError propagates and no further window is scanned.
        """
        for attempt in range(1, self.storage_retry_attempts + 1):
            try:
                self.writer.flush()
                self.checkpoints.save(
                    Checkpoint(
                        next_block=self.current,
                        last_updated=datetime.now(timezone.utc),
                    )
                )
            except OSError as e:
                flush_failures_total.inc()
                log.error(
                    "flush_cycle_failed",
                    attempt=attempt,
                    max_attempts=self.storage_retry_attempts,
                    buffered=self.writer.pending,
                    error=str(e),
                )
                if attempt == self.storage_retry_attempts:
                    self._storage_failed = True
                    raise StorageWriteError(
                        f"Flush failed after {attempt} attempts: {e}"
                    ) from e
                time.sleep(self.retry_backoff)
                continue
            break

        self._windows_since_checkpoint = 0
        self._last_commit = time.monotonic()
        checkpoint_gauge.set(self.current)
        log.debug("checkpoint_committed", next_block=self.current)

    def _shutdown(self) -> None:
        self._stop_event.set()
        self._set_state(ScannerState.STOPPED)
        if self.current is None:
            return
        if self._storage_failed:
            log.error("scanner_stopped_unflushed", buffered=self.writer.pending)
            return
        self._commit()
        log.info("scanner_stopped", next_block=self.current)
