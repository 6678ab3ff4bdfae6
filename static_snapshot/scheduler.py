"""Deferred background jobs."""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict

logger = logging.getLogger("static_snapshot")


class Scheduler(ABC):
    @abstractmethod
    def defer(self, job: str, delay: float) -> None:
        """Run ``job`` once after ``delay`` seconds."""
        ...

    @abstractmethod
    def is_scheduled(self, job: str) -> bool:
        ...


class ThreadScheduler(Scheduler):
    """In-process scheduler backed by daemon timer threads.

    A job name is scheduled at most once at a time; deferring an already
    scheduled job is a no-op.
    """

    def __init__(self):
        self._handlers: Dict[str, Callable[[], None]] = {}
        self._timers: Dict[str, threading.Timer] = {}
        self._lock = threading.Lock()

    def register(self, job: str, handler: Callable[[], None]):
        self._handlers[job] = handler

    def defer(self, job: str, delay: float) -> None:
        if job not in self._handlers:
            raise KeyError(f"No handler registered for job {job!r}")
        with self._lock:
            if job in self._timers:
                return
            timer = threading.Timer(delay, self._run, args=(job,))
            timer.daemon = True
            self._timers[job] = timer
        timer.start()
        logger.debug(f"Scheduled {job} in {delay}s")

    def is_scheduled(self, job: str) -> bool:
        with self._lock:
            return job in self._timers

    def _run(self, job: str):
        with self._lock:
            self._timers.pop(job, None)
        try:
            self._handlers[job]()
        except Exception as e:
            logger.error(f"Background job {job} failed: {e}")

    def cancel_all(self):
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
