"""Chain log source: the JSON-RPC reads the scanner depends on."""

from __future__ import annotations

import time
from typing import Any, Callable, Protocol, Sequence, TypeVar

import structlog
from prometheus_client import Counter, Histogram
from requests.exceptions import RequestException
from web3 import Web3
from web3.exceptions import Web3Exception

from .models import RawLog
from .services.rate_limiter import RPCRateLimiter

log = structlog.get_logger(__name__)

T = TypeVar("T")

rpc_requests_total = Counter(
    "neurolend_rpc_requests_total",
    "Total RPC requests made",
    labelnames=("method", "status"),
)
rpc_request_duration_seconds = Histogram(
    "neurolend_rpc_request_duration_seconds",
    "RPC request latency in seconds",
    labelnames=("method",),
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Failures that are retried by the scanner rather than treated as fatal
TRANSIENT_ERRORS = (Web3Exception, RequestException, OSError, ValueError, KeyError)


class ChainSourceError(RuntimeError):
    """A chain read failed; the caller should back off and retry."""

    def __init__(self, method: str, cause: BaseException):
        super().__init__(f"{method} failed: {cause}")
        self.method = method
        self.cause = cause


class LogSource(Protocol):
    def latest_block_number(self) -> int:
        """Return the current chain head."""

    def get_logs(
        self, contract_address: str, from_block: int, to_block: int
    ) -> Sequence[RawLog]:
        """Return logs for [from_block, to_block] inclusive, in on-chain order."""

    def get_block_timestamp(self, block_number: int) -> int:
        """Return the block's unix timestamp."""


def to_hex(value: Any) -> str:
    """Normalize HexBytes/bytes/str to a 0x-prefixed lowercase hex string."""
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value).lower()
    return text if text.startswith("0x") else "0x" + text


def _to_int(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)


def to_raw_log(entry: Any) -> RawLog:
    return RawLog(
        address=str(entry["address"]).lower(),
        topics=tuple(to_hex(topic) for topic in entry["topics"]),
        data=to_hex(entry["data"]),
        block_number=_to_int(entry["blockNumber"]),
        transaction_hash=to_hex(entry["transactionHash"]),
        log_index=_to_int(entry["logIndex"]),
    )


class Web3LogSource:
    def __init__(self, web3: Web3, rate_limiter: RPCRateLimiter | None = None):
        self.web3 = web3
        self.rate_limiter = rate_limiter

    @classmethod
    def from_url(
        cls,
        rpc_url: str,
        timeout_seconds: int = 30,
        requests_per_second: float | None = None,
    ) -> "Web3LogSource":
        provider = Web3.HTTPProvider(
            rpc_url, request_kwargs={"timeout": timeout_seconds}
        )
        limiter = RPCRateLimiter(requests_per_second) if requests_per_second else None
        return cls(Web3(provider), limiter)

    def _call(self, method: str, func: Callable[[], T]) -> T:
        if self.rate_limiter is not None:
            self.rate_limiter.acquire()
        start_time = time.time()
        try:
            result = func()
        except TRANSIENT_ERRORS as e:
            rpc_requests_total.labels(method=method, status="error").inc()
            log.debug("rpc_call_failed", method=method, error=str(e))
            raise ChainSourceError(method, e) from e
        rpc_requests_total.labels(method=method, status="success").inc()
        rpc_request_duration_seconds.labels(method=method).observe(
            time.time() - start_time
        )
        return result

    def latest_block_number(self) -> int:
        return int(self._call("eth_blockNumber", lambda: self.web3.eth.block_number))

    def get_logs(
        self, contract_address: str, from_block: int, to_block: int
    ) -> list[RawLog]:
        checksum_address = Web3.to_checksum_address(contract_address)
        entries = self._call(
            "eth_getLogs",
            lambda: self.web3.eth.get_logs(
                {
                    "address": checksum_address,
                    "fromBlock": from_block,
                    "toBlock": to_block,
                }
            ),
        )
        try:
            return [to_raw_log(entry) for entry in entries]
        except (KeyError, ValueError, TypeError) as e:
            raise ChainSourceError("eth_getLogs", e) from e

    def get_block_timestamp(self, block_number: int) -> int:
        block = self._call(
            "eth_getBlockByNumber", lambda: self.web3.eth.get_block(block_number)
        )
        try:
            return _to_int(block["timestamp"])
        except (KeyError, TypeError) as e:
            raise ChainSourceError("eth_getBlockByNumber", e) from e
