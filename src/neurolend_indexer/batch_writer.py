"""Buffered, append-only persistence of classified events as batch artifacts."""

from __future__ import annotations

import json
import os
import re
import tempfile
import time
from collections.abc import Iterable
from pathlib import Path
from threading import Lock

import structlog
from prometheus_client import Counter

from .models import ClassifiedEvent

log = structlog.get_logger(__name__)

ARTIFACT_PREFIX = "events_"
ARTIFACT_SUFFIX = ".json"
ARTIFACT_PATTERN = re.compile(r"^events_(\d+)\.json$")

artifacts_written_total = Counter(
    "neurolend_batch_artifacts_written_total", "Total batch artifacts written"
)
events_flushed_total = Counter(
    "neurolend_events_flushed_total", "Total events made durable by flushes"
)


def artifact_name(batch_id: int) -> str:
    # Fixed width keeps lexicographic order equal to write order
    return f"{ARTIFACT_PREFIX}{batch_id:013d}{ARTIFACT_SUFFIX}"


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class EventBatchWriter:
    """
    In-memory event buffer flushed to immutable, timestamp-named JSON artifacts.

    Appends and flushes are serialized by a lock. Events sharing a dedup key
    with an already-buffered event are dropped; duplicates across artifacts are
    left for readers to collapse.
    """

    def __init__(self, output_dir: str | os.PathLike, clock=_now_ms):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._lock = Lock()
        self._buffer: list[ClassifiedEvent] = []
        self._keys: set[tuple[str, int]] = set()
        self._last_id = self._highest_existing_id()

    def _highest_existing_id(self) -> int:
        highest = 0
        for entry in self.output_dir.iterdir():
            match = ARTIFACT_PATTERN.match(entry.name)
            if match:
                highest = max(highest, int(match.group(1)))
        return highest

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._buffer)

    def append(self, events: Iterable[ClassifiedEvent]) -> int:
        """Buffer events; returns how many were accepted. Nothing is durable yet."""
        accepted = 0
        with self._lock:
            for event in events:
                key = event.dedup_key
                if key in self._keys:
                    continue
                self._keys.add(key)
                self._buffer.append(event)
                accepted += 1
        return accepted

    def flush(self) -> Path | None:
        """
        Write the whole buffer as one new artifact and clear it.

        Returns the artifact path, or None when the buffer was empty. On failure
        the buffer is left untouched so the flush can be retried.
        """
        with self._lock:
            if not self._buffer:
                return None

            batch_id = max(self._clock(), self._last_id + 1)
            path = self.output_dir / artifact_name(batch_id)
            payload = json.dumps(
                [event.model_dump(mode="json") for event in self._buffer], indent=2
            )

            fd, tmp = tempfile.mkstemp(
                prefix=f".{path.name}.", suffix=".tmp", dir=self.output_dir
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp, path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise

            count = len(self._buffer)
            self._last_id = batch_id
            self._buffer = []
            self._keys = set()

        artifacts_written_total.inc()
        events_flushed_total.inc(count)
        log.info("batch_flushed", path=str(path), events=count)
        return path
