import json

import pytest
from fastapi.testclient import TestClient

from neurolend_indexer.api.main import app, get_checkpoint_path, get_output_dir
from neurolend_indexer.batch_writer import artifact_name


def _record(block: int, log_index: int, name: str = "LoanCreated") -> dict:
    return {
        "event_name": name,
        "transaction_hash": f"0x{block:064x}",
        "block_number": block,
        "block_timestamp": 1_730_000_000 + block,
        "log_index": log_index,
        "contract_address": "0xd9ab5190efa86eb955c5e146ccb30421fabc3405",
        "topics": ["0x" + "ee" * 32],
        "data": "0x",
    }


@pytest.fixture
def output_dir(tmp_path):
    directory = tmp_path / "indexer_output"
    directory.mkdir()
    return directory


@pytest.fixture
def client(output_dir):
    app.dependency_overrides[get_output_dir] = lambda: output_dir
    app.dependency_overrides[get_checkpoint_path] = lambda: output_dir / "indexer_state.json"
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


def test_health_without_checkpoint(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "next_block": None, "last_updated": None}


def test_health_reports_checkpoint(client, output_dir):
    (output_dir / "indexer_state.json").write_text(
        json.dumps({"next_block": 7040100, "last_updated": "2025-01-01T00:00:00Z"})
    )

    body = client.get("/health").json()

    assert body["next_block"] == 7040100
    assert body["last_updated"].startswith("2025-01-01T00:00:00")


def test_health_with_corrupt_checkpoint(client, output_dir):
    (output_dir / "indexer_state.json").write_text("{")
    body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["next_block"] is None


def test_events_unions_artifacts(client, output_dir):
    (output_dir / artifact_name(1)).write_text(json.dumps([_record(10, 0), _record(10, 1)]))
    (output_dir / artifact_name(2)).write_text(json.dumps([_record(10, 1), _record(11, 0)]))

    response = client.get("/events")

    assert response.status_code == 200
    assert [(e["block_number"], e["log_index"]) for e in response.json()] == [
        (10, 0),
        (10, 1),
        (11, 0),
    ]


def test_events_limit(client, output_dir):
    (output_dir / artifact_name(1)).write_text(
        json.dumps([_record(block, 0) for block in range(5)])
    )

    assert len(client.get("/events", params={"limit": 2}).json()) == 2
    assert client.get("/events", params={"limit": 0}).status_code == 422
    assert client.get("/events", params={"limit": 1001}).status_code == 422


def test_stats(client, output_dir):
    (output_dir / artifact_name(1)).write_text(
        json.dumps([_record(1, 0), _record(2, 0, "LoanRepaid")])
    )
    (output_dir / artifact_name(2)).write_text(json.dumps([_record(1, 0), _record(3, 0)]))

    assert client.get("/stats").json() == {
        "total_events": 3,
        "event_types": {"LoanCreated": 2, "LoanRepaid": 1},
        "artifacts": 2,
    }


def test_metrics_exposes_indexer_counters(client):
    # Importing the scanner registers its collectors on the default registry
    import neurolend_indexer.scanner  # noqa: F401

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "neurolend_events_indexed_total" in response.text
