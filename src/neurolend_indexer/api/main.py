"""Read-only HTTP projection over the scanner's checkpoint and batch artifacts."""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path

import structlog
from fastapi import Depends, FastAPI, Query, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from ..config import get_settings
from ..event_store import event_type_counts, list_artifacts, load_events
from ..logging import configure_logging
from ..models import Checkpoint, ClassifiedEvent
from ..schemas import HealthResponse, StatsResponse

settings = get_settings()
log = structlog.get_logger(__name__)

MAX_EVENTS = 1000


@asynccontextmanager
async def lifespan(app):
    configure_logging()
    yield


app = FastAPI(title=settings.app_name, lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET"],
    allow_headers=["*"],
)


def get_output_dir() -> Path:
    return get_settings().output_dir


def get_checkpoint_path() -> Path:
    return get_settings().checkpoint_path


@app.get("/health", response_model=HealthResponse)
def health(checkpoint_path: Path = Depends(get_checkpoint_path)) -> HealthResponse:
    # Liveness is read from the persisted checkpoint, never from scanner memory
    try:
        checkpoint = Checkpoint.model_validate_json(checkpoint_path.read_bytes())
    except FileNotFoundError:
        return HealthResponse()
    except (OSError, ValidationError) as e:
        log.warning("health_checkpoint_unreadable", error=str(e))
        return HealthResponse()
    return HealthResponse(
        next_block=checkpoint.next_block, last_updated=checkpoint.last_updated
    )


@app.get("/events", response_model=list[ClassifiedEvent])
def list_events(
    limit: int = Query(default=MAX_EVENTS, ge=1, le=MAX_EVENTS),
    output_dir: Path = Depends(get_output_dir),
) -> list[ClassifiedEvent]:
    return load_events(output_dir)[:limit]


@app.get("/stats", response_model=StatsResponse)
def stats(output_dir: Path = Depends(get_output_dir)) -> StatsResponse:
    events = load_events(output_dir)
    return StatsResponse(
        total_events=len(events),
        event_types=event_type_counts(events),
        artifacts=len(list_artifacts(output_dir)),
    )


@app.get("/metrics")
def metrics() -> Response:
    from prometheus_client import generate_latest

    payload = generate_latest()
    return Response(content=payload, media_type="text/plain")


def serve() -> None:
    import uvicorn

    uvicorn.run(
        "neurolend_indexer.api.main:app", host=settings.api_host, port=settings.api_port
    )


if __name__ == "__main__":
    serve()
