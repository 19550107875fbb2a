"""
Bounded pool of encode slots.

A fixed number of worker threads take units of work from one FIFO queue.
The queue has a hard limit: once it is full, ``submit`` raises QueueFullError
instead of accepting more work, and the caller turns that into a 503.

Each unit of work supervises a single ffmpeg process, so the thread count is
the number of encodes allowed to run at once.
"""

import queue
import threading
from typing import Callable, Dict, List, Optional

from compressor.enhanced_logger import setup_enhanced_logging, log_with_context
from compressor.errors import QueueFullError

logger = setup_enhanced_logging(__name__)

_STOP = object()


class EncodeWorkerPool:
    def __init__(self, concurrency: int = 2, queue_limit: int = 32):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if queue_limit < 1:
            raise ValueError("queue_limit must be at least 1")

        self.concurrency = concurrency
        self.queue_limit = queue_limit
        self._queue: "queue.Queue" = queue.Queue(maxsize=queue_limit)
        self._workers: List[threading.Thread] = []
        self._running_count = 0
        self._lock = threading.Lock()
        self._accepting = False

    @property
    def is_running(self) -> bool:
        return self._accepting

    def start(self) -> None:
        with self._lock:
            if self._accepting:
                return
            self._accepting = True
            for index in range(self.concurrency):
                worker = threading.Thread(
                    target=self._work, name=f"encode-slot-{index}", daemon=True
                )
                worker.start()
                self._workers.append(worker)

        log_with_context(
            logger, "info", "[WorkerPool] Started",
            concurrency=self.concurrency, queue_limit=self.queue_limit,
        )

    def submit(self, name: str, fn: Callable[[], None]) -> None:
        """
        Queue ``fn`` to run on the next free slot, in submission order.

        Raises:
            QueueFullError: If ``queue_limit`` units are already waiting
            RuntimeError: If the pool is not running
        """
        if not self._accepting:
            raise RuntimeError("Encode worker pool is not running")
        try:
            self._queue.put_nowait((name, fn))
        except queue.Full:
            log_with_context(
                logger, "warning", "[WorkerPool] Queue full, rejecting work",
                name=name, queue_limit=self.queue_limit,
            )
            raise QueueFullError(self.queue_limit)

    def _work(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                name, fn = item
                with self._lock:
                    self._running_count += 1
                try:
                    fn()
                except Exception:
                    # Units handle their own failures; this is a last resort
                    logger.exception(f"[WorkerPool] Unhandled error in {name}")
                finally:
                    with self._lock:
                        self._running_count -= 1
            finally:
                self._queue.task_done()

    def stats(self) -> Dict[str, int]:
        with self._lock:
            running = self._running_count
        return {
            "running": running,
            "queued": self._queue.qsize(),
            "concurrency": self.concurrency,
            "queue_limit": self.queue_limit,
        }

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None) -> None:
        """Stop accepting work; workers exit after the units already queued."""
        with self._lock:
            if not self._accepting:
                return
            self._accepting = False
            workers = list(self._workers)
            self._workers.clear()

        for _ in workers:
            # Blocking put: the sentinel waits behind queued work
            self._queue.put(_STOP)

        if wait:
            for worker in workers:
                worker.join(timeout)

        log_with_context(logger, "info", "[WorkerPool] Stopped")
