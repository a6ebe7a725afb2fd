"""At-most-one concurrent computation per key.

Computations run on a bounded thread pool rather than on the calling
thread, so every caller (including the one that started the computation)
can stop waiting at its own deadline without cancelling the work for the
others. The finished result is published to all waiters; so is a failure.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, Dict, Hashable, Optional, Tuple, TypeVar

from accessgraph.core.exceptions import ResolutionTimeoutError


logger = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight:
    """Deduplicates concurrent computations by key."""

    def __init__(self, max_workers: int = 8, thread_name_prefix: str = "accessgraph-resolve"):
        # Re-entrant: a done callback runs inline when the future already finished.
        self._lock = threading.RLock()
        self._calls: Dict[Hashable, Future] = {}
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix=thread_name_prefix
        )

    def do(
        self,
        key: Hashable,
        fn: Callable[[], T],
        timeout: Optional[float] = None,
    ) -> Tuple[T, bool]:
        """
        Run ``fn`` for ``key`` unless a run for the same key is in flight.

        Args:
            key: Deduplication key
            fn: Zero-argument computation
            timeout: Seconds this caller is willing to wait; None waits forever

        Returns:
            Tuple of (result, shared) where ``shared`` is True when the
            caller joined a computation started by someone else

        Raises:
            ResolutionTimeoutError: If this caller's wait times out
            Exception: Whatever ``fn`` raised
        """
        with self._lock:
            future = self._calls.get(key)
            shared = future is not None
            if future is None:
                future = self._executor.submit(fn)
                self._calls[key] = future
                future.add_done_callback(lambda f, k=key: self._forget(k, f))

        try:
            return future.result(timeout=timeout), shared
        except FutureTimeoutError:
            logger.warning("Gave up waiting on in-flight computation for %s after %ss", key, timeout)
            raise ResolutionTimeoutError(
                f"Timed out after {timeout}s waiting for computation of {key}"
            ) from None

    def in_flight(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._calls

    def _forget(self, key: Hashable, future: Future) -> None:
        with self._lock:
            if self._calls.get(key) is future:
                del self._calls[key]

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
