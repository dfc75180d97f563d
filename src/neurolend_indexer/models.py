from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

UNKNOWN_EVENT = "Unknown"


class RawLog(BaseModel):
    """One log entry as returned by eth_getLogs, hex fields normalized to 0x-lowercase."""

    model_config = ConfigDict(frozen=True)

    address: str
    topics: tuple[str, ...]
    data: str
    block_number: int = Field(..., ge=0)
    transaction_hash: str
    log_index: int = Field(..., ge=0)

    @property
    def topic0(self) -> str | None:
        return self.topics[0] if self.topics else None


class ClassifiedEvent(BaseModel):
    """Record layout of a batch artifact entry."""

    model_config = ConfigDict(frozen=True)

    event_name: str
    transaction_hash: str
    block_number: int
    block_timestamp: int
    log_index: int
    contract_address: str
    topics: tuple[str, ...]
    data: str

    @property
    def dedup_key(self) -> tuple[str, int]:
        return (self.transaction_hash, self.log_index)

    @classmethod
    def from_raw(
        cls, raw_log: RawLog, event_name: str, block_timestamp: int
    ) -> "ClassifiedEvent":
        return cls(
            event_name=event_name,
            transaction_hash=raw_log.transaction_hash,
            block_number=raw_log.block_number,
            block_timestamp=block_timestamp,
            log_index=raw_log.log_index,
            contract_address=raw_log.address,
            topics=raw_log.topics,
            data=raw_log.data,
        )


class Checkpoint(BaseModel):
    next_block: int = Field(..., ge=0)
    last_updated: datetime
