"""Coalescing of concurrent calls that share a key."""

import threading
from collections.abc import Callable
from concurrent.futures import Future
from typing import Any


class SingleFlight:
    """Runs at most one call per key at a time.

    Callers arriving while a call for the same key is in flight wait for it
    and receive its result, or its exception.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._calls: dict[str, Future] = {}

    def in_flight(self, key: str) -> bool:
        with self._lock:
            return key in self._calls

    def do(
        self, key: str, fn: Callable[[], Any], timeout: float | None = None
    ) -> tuple[Any, bool]:
        """Run fn for key, or join the call already running for it.

        Args:
            key: Coalescing key
            fn: Call to run when no call for key is in flight
            timeout: Longest a joining caller waits for the running call

        Returns:
            (result, shared) where shared is True when the result came from
            another caller's call

        Raises:
            TimeoutError: If a joining caller waits longer than timeout
        """
        with self._lock:
            future = self._calls.get(key)
            leader = future is None
            if leader:
                future = Future()
                self._calls[key] = future

        if not leader:
            return future.result(timeout=timeout), True

        try:
            result = fn()
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(result)
            return result, False
        finally:
            with self._lock:
                self._calls.pop(key, None)
