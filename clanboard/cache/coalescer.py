"""
Request coalescing to prevent duplicate upstream fetches.

When several threads (request handlers, warmer workers) miss the same cache
key at once, only one live fetch is made and every caller gets its outcome.
"""
import threading
import logging
from concurrent.futures import Future, TimeoutError as FutureTimeout
from typing import Callable, Dict, Any, TypeVar

from clanboard.errors import UpstreamUnreachable

logger = logging.getLogger("cache.coalescer")

T = TypeVar("T")


class RequestCoalescer:
    """
    Shares one in-flight fetch per key.

    Pattern:
    - The first caller for a key registers a Future and runs the fetch
    - Later callers for the same key block on that Future
    - The outcome (value or exception) is delivered to all of them
    - The key is released as soon as the fetch settles, so the next miss
      starts a new fetch
    """

    def __init__(self, timeout: float = 60.0):
        """
        Args:
            timeout: Max seconds a joining caller waits for the shared fetch
        """
        self._in_flight: Dict[str, Future] = {}
        self._lock = threading.Lock()
        self._timeout = timeout
        self._joined = 0

    def run(self, key: str, fetch_fn: Callable[[], T]) -> T:
        """
        Run fetch_fn for key, or join the fetch already running for it.

        Raises:
            UpstreamUnreachable: joined fetch did not settle in time
            Exception: whatever fetch_fn raised, re-raised in every caller
        """
        with self._lock:
            future = self._in_flight.get(key)
            is_initiator = future is None
            if is_initiator:
                future = Future()
                self._in_flight[key] = future
            else:
                self._joined += 1

        if not is_initiator:
            logger.debug(f"Joining in-flight fetch for {key}")
            try:
                return future.result(timeout=self._timeout)
            except FutureTimeout as e:
                raise UpstreamUnreachable(
                    f"Timed out after {self._timeout}s waiting for in-flight fetch of {key}"
                ) from e

        try:
            future.set_result(fetch_fn())
        except BaseException as e:
            future.set_exception(e)
        finally:
            with self._lock:
                self._in_flight.pop(key, None)

        return future.result()

    def get_stats(self) -> Dict[str, Any]:
        """Coalescer statistics."""
        with self._lock:
            return {
                "active_requests": len(self._in_flight),
                "joined_requests": self._joined,
            }
