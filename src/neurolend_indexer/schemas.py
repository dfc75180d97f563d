from datetime import datetime

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str = "ok"
    next_block: int | None = None
    last_updated: datetime | None = None


class StatsResponse(BaseModel):
    total_events: int = Field(..., ge=0)
    event_types: dict[str, int]
    artifacts: int = Field(..., ge=0)
