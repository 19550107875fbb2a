"""
Background task scheduler with an explicit start/stop lifecycle.

One daemon thread runs periodic tasks (the retention sweep) and one-shot
delayed tasks (input cleanup after a completed encode). A task that raises is
logged and, if periodic, rescheduled as usual; it never kills the thread.
"""

import heapq
import itertools
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from compressor.enhanced_logger import setup_enhanced_logging, log_with_context

logger = setup_enhanced_logging(__name__)


@dataclass(order=True)
class ScheduledTask:
    due: float
    seq: int
    name: str = field(compare=False)
    fn: Callable[[], None] = field(compare=False)
    interval: Optional[float] = field(default=None, compare=False)
    cancelled: bool = field(default=False, compare=False)

    def cancel(self) -> None:
        self.cancelled = True


class TaskScheduler:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._heap: List[ScheduledTask] = []
        self._seq = itertools.count()
        self._cond = threading.Condition()
        self._thread: Optional[threading.Thread] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def every(self, interval: float, fn: Callable[[], None], name: str, run_immediately: bool = False) -> ScheduledTask:
        """Run ``fn`` every ``interval`` seconds."""
        if interval <= 0:
            raise ValueError("interval must be positive")
        delay = 0 if run_immediately else interval
        return self._push(delay, fn, name, interval)

    def call_later(self, delay: float, fn: Callable[[], None], name: str) -> ScheduledTask:
        """Run ``fn`` once, ``delay`` seconds from now."""
        return self._push(max(0.0, delay), fn, name, None)

    def _push(self, delay, fn, name, interval) -> ScheduledTask:
        with self._cond:
            task = ScheduledTask(
                due=self._clock() + delay, seq=next(self._seq), name=name, fn=fn, interval=interval
            )
            heapq.heappush(self._heap, task)
            self._cond.notify()
        return task

    def pending(self) -> int:
        with self._cond:
            return sum(1 for task in self._heap if not task.cancelled)

    def start(self) -> None:
        with self._cond:
            if self._running:
                return
            self._running = True
            self._thread = threading.Thread(target=self._loop, name="task-scheduler", daemon=True)
            self._thread.start()
        logger.info("[Scheduler] Started")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Stop the thread. Tasks not yet due are dropped."""
        with self._cond:
            if not self._running:
                return
            self._running = False
            thread = self._thread
            self._thread = None
            self._cond.notify_all()

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

        with self._cond:
            dropped = sum(1 for task in self._heap if not task.cancelled)
            self._heap.clear()
        log_with_context(logger, "info", "[Scheduler] Stopped", dropped_tasks=dropped)

    def _next_due_task(self) -> Optional[ScheduledTask]:
        """Block until a task is due or the scheduler stops."""
        with self._cond:
            while self._running:
                if not self._heap:
                    self._cond.wait()
                    continue
                task = self._heap[0]
                if task.cancelled:
                    heapq.heappop(self._heap)
                    continue
                wait = task.due - self._clock()
                if wait > 0:
                    self._cond.wait(wait)
                    continue
                heapq.heappop(self._heap)
                return task
            return None

    def _loop(self) -> None:
        while True:
            task = self._next_due_task()
            if task is None:
                return

            try:
                task.fn()
            except Exception:
                logger.exception(f"[Scheduler] Task {task.name} failed")

            if task.interval is not None and not task.cancelled:
                with self._cond:
                    if self._running:
                        task.due = self._clock() + task.interval
                        task.seq = next(self._seq)
                        heapq.heappush(self._heap, task)
