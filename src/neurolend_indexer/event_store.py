"""Read side of the batch artifacts: load, union by dedup key, summarize."""

from __future__ import annotations

import os
from collections import Counter
from collections.abc import Iterable
from pathlib import Path

import structlog
from pydantic import TypeAdapter, ValidationError

from .batch_writer import ARTIFACT_PATTERN
from .models import ClassifiedEvent

log = structlog.get_logger(__name__)

_events_adapter = TypeAdapter(list[ClassifiedEvent])


def list_artifacts(output_dir: str | os.PathLike) -> list[Path]:
    """Artifact paths in write order. Temp files and the checkpoint are ignored."""
    directory = Path(output_dir)
    if not directory.is_dir():
        return []
    return sorted(
        (entry for entry in directory.iterdir() if ARTIFACT_PATTERN.match(entry.name)),
        key=lambda entry: entry.name,
    )


def load_artifact(path: str | os.PathLike) -> list[ClassifiedEvent]:
    return _events_adapter.validate_json(Path(path).read_bytes())


def merge_events(batches: Iterable[Iterable[ClassifiedEvent]]) -> list[ClassifiedEvent]:
    """Collapse events by (transaction_hash, log_index); the first one seen wins."""
    merged: dict[tuple[str, int], ClassifiedEvent] = {}
    for batch in batches:
        for event in batch:
            merged.setdefault(event.dedup_key, event)
    return sorted(merged.values(), key=lambda e: (e.block_number, e.log_index))


def load_events(output_dir: str | os.PathLike) -> list[ClassifiedEvent]:
    batches = []
    for path in list_artifacts(output_dir):
        try:
            batches.append(load_artifact(path))
        except (OSError, ValidationError) as e:
            log.error("artifact_unreadable", path=str(path), error=str(e))
    events = merge_events(batches)
    log.debug("events_loaded", artifacts=len(batches), events=len(events))
    return events


def event_type_counts(events: Iterable[ClassifiedEvent]) -> dict[str, int]:
    return dict(Counter(event.event_name for event in events))
