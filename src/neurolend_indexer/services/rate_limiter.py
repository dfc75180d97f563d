"""RPC request pacing."""

import time
from threading import Lock
from typing import Callable, TypeVar

import structlog
from prometheus_client import Counter

log = structlog.get_logger(__name__)

throttle_delay_seconds = Counter(
    "neurolend_rpc_throttle_delay_seconds_total",
    "Total seconds spent waiting for an RPC request slot",
)

T = TypeVar("T")


class RPCRateLimiter:
    """Spaces calls at least 1/requests_per_second apart."""

    def __init__(self, requests_per_second: float, sleep: Callable[[float], None] = time.sleep):
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        self.min_interval = 1.0 / requests_per_second
        self._next_slot = 0.0
        self._sleep = sleep
        self._lock = Lock()

    def acquire(self) -> float:
        """Block until a request slot is available; returns the seconds waited."""
        with self._lock:
            now = time.monotonic()
            wait = self._next_slot - now
            if wait > 0:
                log.debug("rpc_throttle", sleep_seconds=wait)
                self._sleep(wait)
                throttle_delay_seconds.inc(wait)
                now = time.monotonic()
            self._next_slot = max(now, self._next_slot) + self.min_interval
            return max(wait, 0.0)

    def execute(self, func: Callable[[], T]) -> T:
        self.acquire()
        return func()
