"""
Background work for the ingestion pipeline.

Ingestions and deferred duplicate cleanups are plain callables handed to a
TaskQueue. ThreadPoolTaskQueue runs them on worker threads (delayed tasks
wait on a timer, then join the same pool). InlineTaskQueue runs dispatched
tasks immediately and keeps delayed tasks until run_scheduled() is called,
which is what the tests and one-shot CLI runs use.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from concurrent import futures
from dataclasses import dataclass
from typing import Callable, Optional


logger = logging.getLogger("task_queue")

Task = Callable[[], None]


def _task_name(task: Task) -> str:
    return getattr(task, "__qualname__", None) or repr(task)


def _run_logged(task: Task) -> None:
    try:
        task()
    except Exception:
        logger.exception(f"Task {_task_name(task)} failed")
        raise


class TaskQueue(ABC):
    @abstractmethod
    def dispatch(self, task: Task) -> None:
        """Run task as soon as possible."""

    @abstractmethod
    def schedule_after(self, delay_seconds: float, task: Task) -> None:
        """Run task once, no earlier than delay_seconds from now."""

    def shutdown(self, wait: bool = True) -> None:
        pass


class ThreadPoolTaskQueue(TaskQueue):
    def __init__(self, workers: int = 4):
        self._executor = futures.ThreadPoolExecutor(
            max_workers=max(1, workers), thread_name_prefix="ingestion"
        )
        self._timers: set[threading.Timer] = set()
        self._lock = threading.Lock()
        self._closed = False

    def dispatch(self, task: Task) -> None:
        if self._closed:
            raise RuntimeError("Task queue is shut down")
        self._executor.submit(_run_logged, task)

    def schedule_after(self, delay_seconds: float, task: Task) -> None:
        timer: Optional[threading.Timer] = None

        def fire():
            with self._lock:
                self._timers.discard(timer)
                if self._closed:
                    logger.warning(f"Dropping delayed task {_task_name(task)}, queue closed")
                    return
            self.dispatch(task)

        timer = threading.Timer(max(0.0, delay_seconds), fire)
        timer.daemon = True
        with self._lock:
            self._timers.add(timer)
        timer.start()
        logger.debug(f"Scheduled {_task_name(task)} in {delay_seconds:.0f}s")

    def pending_timers(self) -> int:
        with self._lock:
            return len(self._timers)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work. Delayed tasks that have not fired are cancelled."""
        with self._lock:
            self._closed = True
            timers = list(self._timers)
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        if timers:
            logger.info(f"Cancelled {len(timers)} delayed task(s)")
        self._executor.shutdown(wait=wait)


@dataclass
class ScheduledTask:
    due_at: float
    delay_seconds: float
    task: Task


class InlineTaskQueue(TaskQueue):
    def __init__(self):
        self.scheduled: list[ScheduledTask] = []

    def dispatch(self, task: Task) -> None:
        _run_logged(task)

    def schedule_after(self, delay_seconds: float, task: Task) -> None:
        self.scheduled.append(ScheduledTask(time.time() + delay_seconds, delay_seconds, task))

    def run_scheduled(self, only_due: bool = False) -> int:
        """Run the delayed tasks (all of them, or only those already due)."""
        now = time.time()
        ready = [s for s in self.scheduled if not only_due or s.due_at <= now]
        self.scheduled = [s for s in self.scheduled if all(s is not r for r in ready)]
        for scheduled in ready:
            _run_logged(scheduled.task)
        return len(ready)
