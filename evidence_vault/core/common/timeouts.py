# File: evidence_vault/core/common/timeouts.py

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Callable

from .errors import CollaboratorBusy, CollaboratorUnavailable

logger = logging.getLogger(__name__)


class TimeoutRunner:
    """
    Bounds blocking collaborator calls (pin, unpin, deal store, live checks) by a deadline.

    - A call needs a free slot before it is submitted. Waiting for one is bounded
      by `queue_timeout`; when it runs out the call is rejected with
      CollaboratorBusy and never reaches the collaborator.
    - The deadline counts from the moment the call starts running, so time
      spent waiting for a slot is never charged against it.
    - An overrunning call keeps its slot until it really returns. The
      collaborator's own request timeout (httpx `timeout=`) is what ends it.
    """

    def __init__(self, max_workers: int = 8, name: str = "collaborator", queue_timeout: float = 5.0):
        self.name = name
        self.max_workers = max_workers
        self.queue_timeout = queue_timeout
        self._slots = threading.BoundedSemaphore(max_workers)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)

    def has_capacity(self) -> bool:
        """True when a call submitted now would start right away."""
        if not self._slots.acquire(blocking=False):
            return False
        self._slots.release()
        return True

    def run(self, timeout_seconds: float, fn: Callable[..., Any], *args, **kwargs) -> Any:
        call_name = getattr(fn, "__qualname__", repr(fn))
        if not self._slots.acquire(timeout=self.queue_timeout):
            logger.warning(f"⚠️ {self.name} pool is saturated; {call_name} was not attempted")
            raise CollaboratorBusy(f"{self.name} pool is saturated; {call_name} was not attempted")

        started = threading.Event()

        def call():
            started.set()
            try:
                return fn(*args, **kwargs)
            finally:
                # Released before the result is visible to the caller.
                self._slots.release()

        try:
            future = self._executor.submit(call)
        except RuntimeError:
            self._slots.release()
            raise CollaboratorBusy(f"{self.name} pool is shut down; {call_name} was not attempted")

        # A slot guarantees an idle thread, so this only covers thread start-up.
        if not started.wait(max(self.queue_timeout, 1.0)) and future.cancel():
            self._slots.release()
            raise CollaboratorBusy(f"{self.name} pool did not start {call_name}")

        deadline = time.monotonic() + timeout_seconds
        try:
            return future.result(timeout=max(0.0, deadline - time.monotonic()))
        except FutureTimeout:
            logger.warning(f"{call_name} timed out after {timeout_seconds}s")
            raise CollaboratorUnavailable(f"{call_name} timed out after {timeout_seconds}s")

    def shutdown(self, wait: bool = False):
        self._executor.shutdown(wait=wait, cancel_futures=True)
