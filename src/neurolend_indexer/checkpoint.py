"""Durable scan progress stored as a single JSON record."""

from __future__ import annotations

import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import structlog
from pydantic import ValidationError

from .models import Checkpoint

log = structlog.get_logger(__name__)


class CheckpointRegressionError(ValueError):
    pass


class CheckpointStore:
    def __init__(self, path: str | os.PathLike, start_block: int):
        self.path = Path(path)
        self.start_block = start_block
        self._last_next_block: int | None = None

    def load(self) -> Checkpoint:
        """
        Read the persisted checkpoint.

        A missing, unreadable or invalid file is not fatal: it is logged and the
        scan starts over from the configured start block.
        """
        checkpoint = None
        try:
            checkpoint = Checkpoint.model_validate_json(self.path.read_bytes())
        except FileNotFoundError:
            log.info("checkpoint_missing", path=str(self.path), start_block=self.start_block)
        except (OSError, ValidationError) as e:
            log.warning(
                "checkpoint_unreadable",
                path=str(self.path),
                start_block=self.start_block,
                error=str(e),
            )

        if checkpoint is None:
            checkpoint = Checkpoint(
                next_block=self.start_block, last_updated=datetime.now(timezone.utc)
            )
        else:
            log.info(
                "checkpoint_loaded",
                next_block=checkpoint.next_block,
                last_updated=checkpoint.last_updated.isoformat(),
            )
        self._last_next_block = checkpoint.next_block
        return checkpoint

    def save(self, checkpoint: Checkpoint) -> None:
        """Atomically replace the record: write a sibling temp file, fsync, rename."""
        if (
            self._last_next_block is not None
            and checkpoint.next_block < self._last_next_block
        ):
            raise CheckpointRegressionError(
                f"Refusing to move checkpoint back from {self._last_next_block} "
                f"to {checkpoint.next_block}"
            )

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(checkpoint.model_dump_json(indent=2))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

        self._last_next_block = checkpoint.next_block
        log.debug("checkpoint_saved", next_block=checkpoint.next_block)
