import logging
import threading
from typing import Callable, List, Optional

from .worker import MigrationWorker, default_worker_id

logger = logging.getLogger(__name__)


class MigrationPool:
    """
    Runs N migration workers on threads, each with its own worker id.
    stop() lets in-flight migrations finish; anything stranded by a hard
    crash is picked up again once its lease expires.
    """

    def __init__(self, worker_factory: Callable[[str], MigrationWorker], concurrency: int = 2):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.worker_factory = worker_factory
        self.concurrency = concurrency
        self.stop_event = threading.Event()
        self.workers: List[MigrationWorker] = []
        self._threads: List[threading.Thread] = []

    def start(self):
        if self._threads:
            logger.warning("Migration pool already running")
            return

        self.stop_event.clear()
        for index in range(self.concurrency):
            worker = self.worker_factory(default_worker_id(str(index)))
            thread = threading.Thread(
                target=worker.run_forever,
                args=(self.stop_event,),
                name=f"migration-{index}",
                daemon=True,
            )
            self.workers.append(worker)
            self._threads.append(thread)
            thread.start()
        logger.info(f"Started {self.concurrency} migration workers")

    def stop(self, timeout: Optional[float] = None):
        self.stop_event.set()
        self.join(timeout)
        self.workers = []
        self._threads = []
        logger.info("Migration pool stopped")

    def join(self, timeout: Optional[float] = None):
        for thread in self._threads:
            thread.join(timeout)

    def __enter__(self) -> "MigrationPool":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
