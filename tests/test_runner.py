import signal
from unittest.mock import MagicMock, patch

import pytest

from neurolend_indexer import runner
from neurolend_indexer.config import Settings, get_settings
from neurolend_indexer.scanner import Scanner, StorageWriteError


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_settings_defaults(monkeypatch):
    monkeypatch.delenv("START_BLOCK", raising=False)
    settings = Settings(_env_file=None)

    assert settings.rpc_url == "https://evmrpc.0g.ai"
    assert settings.start_block == 7039846
    assert settings.batch_size == 100
    assert settings.flush_threshold == 100
    assert settings.checkpoint_path.name == "indexer_state.json"


def test_settings_env_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("START_BLOCK", "42")
    monkeypatch.setenv("BATCH_SIZE", "7")
    monkeypatch.setenv("OUTPUT_DIR", str(tmp_path))

    settings = get_settings()

    assert settings.start_block == 42
    assert settings.batch_size == 7
    assert settings.checkpoint_path == tmp_path / "indexer_state.json"


def test_build_scanner_uses_settings(monkeypatch, tmp_path):
    monkeypatch.setenv("OUTPUT_DIR", str(tmp_path))
    monkeypatch.setenv("BATCH_SIZE", "25")
    monkeypatch.setenv("RPC_REQUESTS_PER_SECOND", "4")

    scanner = runner.build_scanner()

    assert isinstance(scanner, Scanner)
    assert scanner.batch_size == 25
    assert scanner.source.rate_limiter.min_interval == pytest.approx(0.25)


def test_signal_handlers_request_stop():
    scanner = MagicMock()
    with patch("neurolend_indexer.runner.signal.signal") as register:
        runner.install_signal_handlers(scanner)

    handlers = {call.args[0]: call.args[1] for call in register.call_args_list}
    assert set(handlers) == {signal.SIGINT, signal.SIGTERM}

    handlers[signal.SIGTERM](signal.SIGTERM, None)
    scanner.stop.assert_called_once()


@pytest.mark.parametrize(
    ("side_effect", "exit_code"),
    [(None, 0), (StorageWriteError("disk full"), 1)],
)
def test_main_exit_code(side_effect, exit_code):
    scanner = MagicMock()
    scanner.run.side_effect = side_effect

    with (
        patch("neurolend_indexer.runner.configure_logging"),
        patch("neurolend_indexer.runner.start_http_server"),
        patch("neurolend_indexer.runner.install_signal_handlers"),
        patch("neurolend_indexer.runner.build_scanner", return_value=scanner),
    ):
        assert runner.main() == exit_code

    scanner.run.assert_called_once()


def test_main_survives_metrics_port_in_use():
    scanner = MagicMock()
    with (
        patch("neurolend_indexer.runner.configure_logging"),
        patch("neurolend_indexer.runner.start_http_server", side_effect=OSError("in use")),
        patch("neurolend_indexer.runner.install_signal_handlers"),
        patch("neurolend_indexer.runner.build_scanner", return_value=scanner),
    ):
        assert runner.main() == 0
