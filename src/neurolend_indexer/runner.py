"""Process entrypoint: wire settings into a Scanner and run it until signalled."""

from __future__ import annotations

import signal
import sys

import structlog
from prometheus_client import start_http_server

from .chain import Web3LogSource
from .config import get_settings
from .logging import configure_logging
from .scanner import Scanner, StorageWriteError

log = structlog.get_logger(__name__)


def build_scanner() -> Scanner:
    settings = get_settings()
    source = Web3LogSource.from_url(
        settings.rpc_url,
        timeout_seconds=settings.rpc_timeout_seconds,
        requests_per_second=settings.rpc_requests_per_second,
    )
    return Scanner.from_settings(settings, source)


def install_signal_handlers(scanner: Scanner) -> None:
    def _request_stop(signum, _frame):
        log.info("shutdown_requested", signal=signal.Signals(signum).name)
        scanner.stop()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)


def main() -> int:
    configure_logging()
    settings = get_settings()

    try:
        start_http_server(settings.metrics_port)
        log.info("metrics_server_started", port=settings.metrics_port)
    except OSError as e:
        # Port taken (e.g. by the API process); metrics stay reachable there
        log.warning("metrics_server_unavailable", port=settings.metrics_port, error=str(e))

    scanner = build_scanner()
    install_signal_handlers(scanner)
    log.info(
        "indexer_starting",
        rpc_url=settings.rpc_url,
        contract=settings.contract_address,
        output_dir=str(settings.output_dir),
    )
    try:
        scanner.run()
    except StorageWriteError:
        log.exception("indexer_storage_failed")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
